"""Current user route. Accounts are managed outside this service."""

from fastapi import APIRouter, Depends

from venuebook.core.dependencies import get_current_user
from venuebook.models.member import User
from venuebook.schemas import UserOut

router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return user
