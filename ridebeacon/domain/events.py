"""
Realtime event catalog.

Every message the server pushes over the socket is one of the models
below.  Each carries its wire name in ``event`` (the discriminator of
``RideEvent``) and knows which room it belongs to:

=========================  ====================  ======================
event                      payload               recipients
=========================  ====================  ======================
new_ride_request           full ride             every connection
driver_location_update     rideId/driverId/pos   ride_<rideId>
driver_location_ack        lat/lng               driver_<driverId>
ride_status_update         rideId/status         ride_<rideId>
driver_assigned            rideId/driver         ride_<rideId>
ride_completed             rideId                ride_<rideId>
ride_cancelled             rideId                ride_<rideId>
ride_updated               full ride             ride_<rideId>
=========================  ====================  ======================
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def ride_room(ride_id: int | str) -> str:
    return f"ride_{ride_id}"


def driver_room(driver_id: int | str) -> str:
    return f"driver_{driver_id}"


class _BaseEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event: str

    def room(self) -> Optional[str]:
        """Target room, or ``None`` for a broadcast to every connection."""
        raise NotImplementedError

    def payload(self) -> dict[str, Any]:
        """Body delivered to clients (the ``data`` part of the frame)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"event"})

    def to_wire(self) -> dict[str, Any]:
        """Full serialisation, used by the cross-instance relay."""
        return self.model_dump(mode="json", by_alias=True)


class _RideScoped(_BaseEvent):
    ride_id: int = Field(alias="rideId")

    def room(self) -> Optional[str]:
        return ride_room(self.ride_id)


class NewRideRequest(_BaseEvent):
    event: Literal["new_ride_request"] = "new_ride_request"
    ride: dict[str, Any]

    def room(self) -> Optional[str]:
        return None

    def payload(self) -> dict[str, Any]:
        return self.ride


class DriverLocationUpdate(_RideScoped):
    event: Literal["driver_location_update"] = "driver_location_update"
    driver_id: int = Field(alias="driverId")
    lat: float
    lng: float


class DriverLocationAck(_BaseEvent):
    event: Literal["driver_location_ack"] = "driver_location_ack"
    driver_id: int = Field(alias="driverId")
    lat: float
    lng: float

    def room(self) -> Optional[str]:
        return driver_room(self.driver_id)

    def payload(self) -> dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng}


class RideStatusUpdate(_RideScoped):
    event: Literal["ride_status_update"] = "ride_status_update"
    status: str


class DriverAssigned(_RideScoped):
    event: Literal["driver_assigned"] = "driver_assigned"
    driver: Optional[dict[str, Any]] = None


class RideCompleted(_RideScoped):
    event: Literal["ride_completed"] = "ride_completed"


class RideCancelled(_RideScoped):
    event: Literal["ride_cancelled"] = "ride_cancelled"


class RideUpdated(_RideScoped):
    event: Literal["ride_updated"] = "ride_updated"
    ride: dict[str, Any]

    def payload(self) -> dict[str, Any]:
        return self.ride


RideEvent = Annotated[
    Union[
        NewRideRequest,
        DriverLocationUpdate,
        DriverLocationAck,
        RideStatusUpdate,
        DriverAssigned,
        RideCompleted,
        RideCancelled,
        RideUpdated,
    ],
    Field(discriminator="event"),
]

_event_adapter: TypeAdapter[RideEvent] = TypeAdapter(RideEvent)


def parse_event(data: dict[str, Any]) -> RideEvent:
    """Rebuild a typed event from its ``to_wire`` form."""
    return _event_adapter.validate_python(data)
