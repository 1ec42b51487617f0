"""Calendar sync routes (operators): status counts and on-demand resync."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from venuebook.core.database import get_db
from venuebook.core.dependencies import get_reconciliation_engine, require_admin
from venuebook.models.member import User
from venuebook.schemas import SyncStatsOut
from venuebook.services.reconciliation import ReconciliationEngine
from venuebook.services.sync_state import sync_stats

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/stats", response_model=SyncStatsOut)
async def get_sync_stats(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await sync_stats(db)


@router.post("/resync", status_code=status.HTTP_202_ACCEPTED)
async def resync(
    background_tasks: BackgroundTasks,
    _admin: User = Depends(require_admin),
    engine: ReconciliationEngine | None = Depends(get_reconciliation_engine),
):
    """Schedule a forced full pass. Skipped by the engine if a pass is already running."""
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Calendar sync is disabled")
    background_tasks.add_task(engine.force_resync)
    return {"status": "scheduled"}
