"""Tests for origin resolution."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from realprice.db.models import PreferredLocation
from realprice.location.geolocation import (
    GeolocationError,
    GeolocationErrorCode,
    LocationResolver,
    LocationStatus,
)
from realprice.views.geo import Coordinate

HOME = PreferredLocation(address="Home", latitude=-23.5, longitude=-46.6)


def failing_provider(code: GeolocationErrorCode):
    provider = AsyncMock()
    provider.current_position.side_effect = GeolocationError(code)
    return provider


@pytest.mark.asyncio
async def test_live_position_wins():
    provider = AsyncMock()
    provider.current_position.return_value = Coordinate(1.0, 2.0)

    resolved = await LocationResolver(provider).resolve(HOME)

    assert resolved.origin == Coordinate(1.0, 2.0)
    assert resolved.status == LocationStatus.LIVE
    assert not resolved.fallback_used


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code,status",
    [
        (GeolocationErrorCode.PERMISSION_DENIED, LocationStatus.PERMISSION_DENIED),
        (GeolocationErrorCode.POSITION_UNAVAILABLE, LocationStatus.POSITION_UNAVAILABLE),
        (GeolocationErrorCode.TIMEOUT, LocationStatus.TIMEOUT),
        (GeolocationErrorCode.UNSUPPORTED, LocationStatus.UNSUPPORTED),
    ],
)
async def test_each_failure_maps_to_distinct_status(code, status):
    resolved = await LocationResolver(failing_provider(code)).resolve(None)

    assert resolved.status == status
    assert resolved.origin is None


@pytest.mark.asyncio
async def test_failure_falls_back_to_preferred_location():
    resolver = LocationResolver(failing_provider(GeolocationErrorCode.PERMISSION_DENIED))

    resolved = await resolver.resolve(HOME)

    assert resolved.origin == Coordinate(-23.5, -46.6)
    assert resolved.fallback_used
    assert resolved.status == LocationStatus.PERMISSION_DENIED
    assert resolved.address == "Home"


@pytest.mark.asyncio
async def test_no_provider_is_unsupported():
    resolved = await LocationResolver().resolve(None)
    assert resolved.status == LocationStatus.UNSUPPORTED


@pytest.mark.asyncio
async def test_not_requested_uses_preferred():
    resolved = await LocationResolver().resolve(HOME, request_live=False)
    assert resolved.status == LocationStatus.PREFERRED


@pytest.mark.asyncio
async def test_slow_provider_times_out():
    class SlowProvider:
        async def current_position(self):
            await asyncio.sleep(10)
            return Coordinate(0, 0)

    resolved = await LocationResolver(SlowProvider(), timeout_seconds=0.01).resolve(None)

    assert resolved.status == LocationStatus.TIMEOUT
