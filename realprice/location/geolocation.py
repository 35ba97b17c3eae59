"""Resolve the origin coordinate used for offer distances."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from realprice.config import settings
from realprice.db.models import PreferredLocation
from realprice.views.geo import Coordinate

logger = logging.getLogger(__name__)


class GeolocationErrorCode(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    POSITION_UNAVAILABLE = "position-unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"


class GeolocationError(Exception):
    """Raised by a geolocation provider that cannot produce a position."""

    def __init__(self, code: GeolocationErrorCode, message: str = ""):
        self.code = code
        super().__init__(message or code.value)


class GeolocationProvider(Protocol):
    async def current_position(self) -> Coordinate:
        ...


class LocationStatus(str, Enum):
    NOT_REQUESTED = "not-requested"
    LIVE = "live"
    PREFERRED = "preferred"
    PERMISSION_DENIED = "permission-denied"
    POSITION_UNAVAILABLE = "position-unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"


_STATUS_BY_ERROR = {
    GeolocationErrorCode.PERMISSION_DENIED: LocationStatus.PERMISSION_DENIED,
    GeolocationErrorCode.POSITION_UNAVAILABLE: LocationStatus.POSITION_UNAVAILABLE,
    GeolocationErrorCode.TIMEOUT: LocationStatus.TIMEOUT,
    GeolocationErrorCode.UNSUPPORTED: LocationStatus.UNSUPPORTED,
}


@dataclass(frozen=True)
class ResolvedLocation:
    """
    Origin for distance computation.

    `status` records how the origin was obtained, or why live geolocation
    failed. `origin` is None when neither a live nor a preferred location
    is available, in which case every distance is unknown.
    """

    origin: Optional[Coordinate]
    status: LocationStatus
    fallback_used: bool = False
    address: Optional[str] = None


class LocationResolver:
    """Live geolocation first, then the user's preferred location, then nothing."""

    def __init__(
        self,
        provider: Optional[GeolocationProvider] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.provider = provider
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.geolocation_timeout_seconds
        )

    async def _live_position(self) -> Coordinate:
        if self.provider is None:
            raise GeolocationError(GeolocationErrorCode.UNSUPPORTED, "No geolocation provider")
        try:
            return await asyncio.wait_for(self.provider.current_position(), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise GeolocationError(GeolocationErrorCode.TIMEOUT) from e

    async def resolve(
        self,
        preferred: Optional[PreferredLocation] = None,
        request_live: bool = True,
    ) -> ResolvedLocation:
        """
        Pick the origin coordinate.

        Args:
            preferred: The user's saved location, if any
            request_live: Whether to ask the provider at all

        Returns:
            ResolvedLocation; never raises for geolocation failures
        """
        status = LocationStatus.NOT_REQUESTED
        if request_live:
            try:
                position = await self._live_position()
                return ResolvedLocation(position, LocationStatus.LIVE)
            except GeolocationError as e:
                status = _STATUS_BY_ERROR[e.code]
                logger.info(f"Live geolocation unavailable ({e.code.value})")

        if preferred is not None:
            return ResolvedLocation(
                Coordinate(preferred.latitude, preferred.longitude),
                LocationStatus.PREFERRED if status == LocationStatus.NOT_REQUESTED else status,
                fallback_used=True,
                address=preferred.address,
            )
        return ResolvedLocation(None, status)
