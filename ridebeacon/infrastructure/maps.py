"""
Google Maps pass-through (geocode + directions).

No caching and no retries: the caller gets exactly what the provider
said, trimmed to the fields the apps use.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ridebeacon.domain.exceptions import (
    NotFound,
    UpstreamTimeout,
    UpstreamUnavailable,
    ValidationFailed,
)

logger = logging.getLogger(__name__)


class MapsClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        geocode_url: str,
        directions_url: str,
        region: str = "in",
    ):
        self.client = client
        self.api_key = api_key
        self.geocode_url = geocode_url
        self.directions_url = directions_url
        self.region = region

    async def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.client.get(url, params={**params, "key": self.api_key})
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout("Maps provider timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Maps request to %s failed: %s", url, exc)
            raise UpstreamUnavailable("Maps provider unavailable") from exc
        return response.json()

    async def geocode(self, address: str) -> dict[str, float]:
        """Return ``{"lat", "lng"}`` of the first match for *address*."""
        data = await self._get(
            self.geocode_url, {"address": address, "region": self.region}
        )
        status = data.get("status")
        if status == "ZERO_RESULTS" or (status == "OK" and not data.get("results")):
            raise NotFound("No geocode results found", reason="no_geocode_results")
        if status != "OK":
            logger.info("Geocode for %r returned status %s", address, status)
            raise ValidationFailed(str(status), reason="geocode_failed")

        location = data["results"][0]["geometry"]["location"]
        return {"lat": location["lat"], "lng": location["lng"]}

    async def directions(self, origin: str, destination: str) -> dict[str, Any]:
        """Overview polyline plus every step polyline of the first route."""
        data = await self._get(
            self.directions_url,
            {
                "origin": origin,
                "destination": destination,
                "mode": "driving",
                "traffic_model": "best_guess",
                "departure_time": "now",
            },
        )
        routes = data.get("routes") or []
        if not routes:
            raise NotFound("No route found", reason="no_route_found")

        route = routes[0]
        steps = [
            step["polyline"]["points"]
            for leg in route.get("legs", [])
            for step in leg.get("steps", [])
            if step.get("polyline", {}).get("points")
        ]
        return {"polyline": route["overview_polyline"]["points"], "steps": steps}
