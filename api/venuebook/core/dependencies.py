"""FastAPI dependencies for injection into route handlers."""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from venuebook.core.auth import decode_token
from venuebook.core.config import settings
from venuebook.core.database import async_session_factory, get_db
from venuebook.models.member import User
from venuebook.services.access import PasscodeAccessGranter
from venuebook.services.calendar_adapter import build_calendar_adapter
from venuebook.services.leases import build_run_lock
from venuebook.services.notifications import build_notifier
from venuebook.services.reconciliation import ReconciliationEngine
from venuebook.services.reservations import ReservationManager

bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the current user from the JWT bearer token."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        payload = decode_token(credentials.credentials)
        if payload.get("type") != "access":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
        user_id = int(payload["sub"])
    except (JWTError, KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == user_id, User.is_active.is_(True)))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require the current user to be an operator."""
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


# ---------------------------------------------------------------------------
# Services (process-wide; tests override these)
# ---------------------------------------------------------------------------

@lru_cache
def get_reservation_manager() -> ReservationManager:
    return ReservationManager(
        async_session_factory,
        notifier=build_notifier(settings),
        access_granter=PasscodeAccessGranter(settings.access_lead_minutes),
        config=settings,
    )


@lru_cache
def get_reconciliation_engine() -> ReconciliationEngine | None:
    """None while calendar sync is disabled."""
    if not settings.calendar_enabled:
        return None
    return ReconciliationEngine(
        async_session_factory,
        build_calendar_adapter(settings),
        build_run_lock(settings),
        timezone=settings.timezone,
    )
