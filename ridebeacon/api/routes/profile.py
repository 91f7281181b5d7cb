"""
Profile endpoints
=================

GET /api/auth/profile/{id}  -- user profile
PUT /api/auth/profile/{id}  -- partial profile update
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ridebeacon.api.dependencies import get_current_user, get_db
from ridebeacon.api.schemas import ERROR_RESPONSES, ProfileResponse, ProfileUpdateRequest
from ridebeacon.domain.enums import UserRole
from ridebeacon.domain.exceptions import UserNotFound
from ridebeacon.infrastructure.repositories import UserRepository

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    dependencies=[Depends(get_current_user)],
    responses=ERROR_RESPONSES,
)


@router.get("/profile/{user_id}", response_model=ProfileResponse, summary="Get a profile")
async def get_profile(user_id: int, db: AsyncSession = Depends(get_db)):
    user = await UserRepository(db).get_by_id(user_id)
    if user is None:
        raise UserNotFound(f"User {user_id} not found")
    return user


@router.put("/profile/{user_id}", response_model=ProfileResponse, summary="Update a profile")
async def update_profile(
    user_id: int,
    body: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    values = body.model_dump(exclude_unset=True)
    if values.get("role") is not None:
        values["role"] = UserRole(values["role"])
    user = await UserRepository(db).update_profile(user_id, values)
    if user is None:
        raise UserNotFound(f"User {user_id} not found")
    return user
