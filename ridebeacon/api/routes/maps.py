"""
Maps pass-through (no auth)
===========================

GET /api/geocode?address=                   -- {lat, lng} of the first match
GET /api/directions?origin=&destination=    -- {polyline, steps}
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ridebeacon.api.dependencies import get_maps_client
from ridebeacon.api.schemas import ERROR_RESPONSES, DirectionsResponse, GeocodeResponse
from ridebeacon.domain.exceptions import ValidationFailed
from ridebeacon.infrastructure.maps import MapsClient

router = APIRouter(tags=["maps"], responses=ERROR_RESPONSES)


@router.get("/geocode", response_model=GeocodeResponse, summary="Geocode an address")
async def geocode(
    address: Optional[str] = None,
    maps: MapsClient = Depends(get_maps_client),
):
    if not address:
        raise ValidationFailed("No address provided")
    return await maps.geocode(address)


@router.get("/directions", response_model=DirectionsResponse, summary="Driving directions")
async def directions(
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    maps: MapsClient = Depends(get_maps_client),
):
    if not origin or not destination:
        raise ValidationFailed("Missing origin or destination")
    return await maps.directions(origin, destination)
