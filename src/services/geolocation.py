"""Location fixes with reverse-geocoded addresses.

The platform GPS and geocoder are external; they are reached through the
:class:`PositionProvider` protocol.  :class:`LocationService` adds the bounded
wait, the address formatting and fallback, and remembers the last fix so the
panic flow can reuse it without another GPS round-trip.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import structlog

from src.models.alert import Location
from src.models.errors import LocationUnavailableError, PermissionDeniedError

logger = structlog.get_logger(__name__)


class PositionProvider(Protocol):
    """Platform location API."""

    async def current_position(self) -> tuple[float, float]:
        """Return ``(latitude, longitude)``; may raise :class:`PermissionDeniedError`."""
        ...

    async def reverse_geocode(self, latitude: float, longitude: float) -> list[dict[str, Any]]:
        """Return candidate addresses with ``street`` / ``city`` / ``region`` keys."""
        ...


def format_address(candidates: list[dict[str, Any]]) -> str:
    """Compose ``"street, city, region"`` from the first geocode candidate.

    Missing parts are dropped.  Returns an empty string when nothing usable
    was found.
    """
    if not candidates:
        return ""
    first = candidates[0] or {}
    parts = [str(first.get(key) or "").strip() for key in ("street", "city", "region")]
    return ", ".join(part for part in parts if part)


class LocationService:
    """Obtains a :class:`Location` within a bounded time."""

    __slots__ = ("_last_fix", "_provider", "_timeout")

    def __init__(self, provider: PositionProvider, *, timeout_seconds: float = 10.0) -> None:
        self._provider = provider
        self._timeout = timeout_seconds
        self._last_fix: Location | None = None

    @property
    def last_fix(self) -> Location | None:
        return self._last_fix

    async def current_location(self) -> Location:
        """Fetch a fresh fix.

        Raises
        ------
        PermissionDeniedError
            The user refused location access.  Never retried here.
        LocationUnavailableError
            The provider failed or did not answer within the timeout.
        """
        try:
            location = await asyncio.wait_for(self._fetch(), timeout=self._timeout)
        except PermissionDeniedError:
            logger.warning("location.permission_denied")
            raise
        except asyncio.TimeoutError:
            logger.warning("location.timeout", timeout_s=self._timeout)
            raise LocationUnavailableError(
                "Timed out waiting for a location fix", timeout_seconds=self._timeout
            ) from None
        except LocationUnavailableError:
            raise
        except Exception as exc:
            logger.warning("location.provider_failed", exc_info=True)
            raise LocationUnavailableError(str(exc) or "Location provider failed") from exc

        self._last_fix = location
        logger.info("location.fix_obtained", address=location.address)
        return location

    async def ensure_location(self) -> Location:
        """Return the last fix, fetching one if none exists yet."""
        if self._last_fix is not None:
            return self._last_fix
        return await self.current_location()

    async def _fetch(self) -> Location:
        latitude, longitude = await self._provider.current_position()
        try:
            candidates = await self._provider.reverse_geocode(latitude, longitude)
        except PermissionDeniedError:
            raise
        except Exception:
            logger.warning("location.reverse_geocode_failed", exc_info=True)
            candidates = []
        return Location.from_coordinates(latitude, longitude, format_address(candidates))
