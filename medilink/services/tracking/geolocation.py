"""
Viewer geolocation for the emergency tracker

Provides one-shot acquisition of the viewer's coordinates with a fixed
fallback, so distance readouts keep working when location is unavailable.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import aiohttp

from medilink.core.logging import get_logger
from medilink.models.emergency import Coordinates

# Nairobi CBD
DEFAULT_FALLBACK = Coordinates(lat=-1.2921, lng=36.8219)


class GeolocationError(Exception):
    """Base class for location acquisition failures"""
    pass


class GeolocationPermissionDenied(GeolocationError):
    """The viewer refused to share their location"""
    pass


class GeolocationUnavailable(GeolocationError):
    """No location capability, or it could not produce a fix"""
    pass


Locator = Callable[[], Awaitable[Coordinates]]


class StaticLocator:
    """Locator returning configured coordinates"""

    def __init__(self, coordinates: Coordinates):
        self.coordinates = coordinates

    async def __call__(self) -> Coordinates:
        return self.coordinates


class IPGeolocationLocator:
    """Locator resolving the viewer's approximate position from their IP address"""

    def __init__(self, provider_url: str, session: Optional[aiohttp.ClientSession] = None):
        self.provider_url = provider_url
        self.session = session
        self.logger = get_logger('tracking.geolocation')

    async def __call__(self) -> Coordinates:
        try:
            if self.session is not None:
                return await self._lookup(self.session)
            async with aiohttp.ClientSession() as session:
                return await self._lookup(session)
        except (aiohttp.ClientError, ValueError) as e:
            # A non-JSON body surfaces as JSONDecodeError, a ValueError
            raise GeolocationUnavailable(f"IP geolocation lookup failed: {e}")

    async def _lookup(self, session: aiohttp.ClientSession) -> Coordinates:
        async with session.get(self.provider_url) as response:
            if response.status == 403:
                raise GeolocationPermissionDenied("IP geolocation provider refused the lookup")
            if response.status != 200:
                raise GeolocationUnavailable(f"IP geolocation provider returned status {response.status}")
            data = await response.json(content_type=None)

        try:
            return Coordinates.from_dict(data)
        except (ValueError, TypeError, AttributeError) as e:
            raise GeolocationUnavailable(f"Unusable IP geolocation response: {e}")


class GeolocationAcquirer:
    """
    Acquires the viewer's position once.

    acquire() never raises for location failures: permission denial, missing
    capability, timeouts and transport errors all resolve to the fallback.
    """

    def __init__(self, locator: Optional[Locator] = None,
                 fallback: Coordinates = DEFAULT_FALLBACK,
                 timeout: float = 10):
        self.locator = locator
        self.fallback = fallback
        self.timeout = timeout
        self.last_result_was_fallback = False
        self.logger = get_logger('tracking.geolocation')

    async def acquire(self) -> Coordinates:
        """Resolve to the viewer's coordinates, or the fallback"""
        if self.locator is None:
            self.logger.warning(f"No location capability, using fallback {self.fallback}")
            return self._use_fallback()

        try:
            coordinates = await asyncio.wait_for(self.locator(), timeout=self.timeout)
        except GeolocationPermissionDenied as e:
            self.logger.warning(f"Location permission denied ({e}), using fallback")
            return self._use_fallback()
        except GeolocationError as e:
            self.logger.warning(f"Location unavailable ({e}), using fallback")
            return self._use_fallback()
        except asyncio.TimeoutError:
            self.logger.warning(f"Location lookup timed out after {self.timeout}s, using fallback")
            return self._use_fallback()
        except Exception as e:
            self.logger.warning(f"Locator failed unexpectedly ({e!r}), using fallback")
            return self._use_fallback()

        self.last_result_was_fallback = False
        self.logger.debug(f"Acquired viewer location {coordinates}")
        return coordinates

    def _use_fallback(self) -> Coordinates:
        self.last_result_was_fallback = True
        return self.fallback
