"""POST /api/reviews -- submit or update a rider's review of a ride."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ridebeacon.api.dependencies import get_current_user, get_db
from ridebeacon.api.schemas import ERROR_RESPONSES, ReviewRequest, ReviewResponse
from ridebeacon.domain.exceptions import RideNotFound
from ridebeacon.infrastructure.repositories import ReviewRepository, RideRepository

router = APIRouter(
    prefix="/reviews",
    tags=["reviews"],
    dependencies=[Depends(get_current_user)],
    responses=ERROR_RESPONSES,
)


@router.post("", response_model=ReviewResponse, summary="Submit a review")
async def submit_review(body: ReviewRequest, db: AsyncSession = Depends(get_db)):
    if await RideRepository(db).get_by_id(body.ride_id) is None:
        raise RideNotFound(f"Ride {body.ride_id} not found")
    # one review per (ride, rider); resubmitting overwrites it
    return await ReviewRepository(db).upsert(**body.model_dump())
