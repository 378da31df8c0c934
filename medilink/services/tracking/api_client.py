"""
MediLink Emergency API Client

aiohttp transport for the emergency endpoints consumed by the tracker,
with retry logic and error wrapping.
"""

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp

from medilink.core.logging import get_logger
from medilink.models.emergency import EmergencySnapshot, LocationUpdate, StatusUpdate


class EmergencyAPIError(Exception):
    """Raised when an emergency endpoint cannot be reached or returns bad data"""
    pass


class EmergencyAPIClient:
    """
    Client for the MediLink emergency endpoints

    Retries 5xx responses and connection failures with exponential backoff
    (1s, 2s, 4s...) up to ``max_retries``; 4xx responses fail immediately.
    """

    def __init__(self, base_url: str, timeout: float = 10, max_retries: int = 0,
                 session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize API client.

        Args:
            base_url: Backend root, e.g. http://localhost:8080
            timeout: Per-request timeout in seconds
            max_retries: Maximum number of retry attempts
            session: Optional externally-owned session
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session
        self._owns_session = session is None
        self.logger = get_logger('tracking.api')

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        """Ensure HTTP session is created"""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={'Accept': 'application/json', 'User-Agent': 'MediLink-Tracker/1.0'}
            )
            self._owns_session = True

    def _url(self, emergency_id: str, suffix: str = "") -> str:
        return f"{self.base_url}/api/emergency/{emergency_id}{suffix}"

    async def _make_request(self, method: str, url: str,
                            data: Optional[Dict] = None,
                            retry_count: int = 0) -> Any:
        """
        Make HTTP request with retry logic.

        Returns:
            Decoded JSON body, or None for an empty body

        Raises:
            EmergencyAPIError: If request fails after all retries
        """
        await self._ensure_session()

        try:
            self.logger.debug(f"{method} {url}")
            async with self.session.request(
                method,
                url,
                json=data,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                response.raise_for_status()
                body = await response.text()
                return json.loads(body) if body.strip() else None

        except aiohttp.ClientResponseError as e:
            # Don't retry on client errors (4xx)
            if 400 <= e.status < 500:
                raise EmergencyAPIError(f"HTTP {e.status} error from {url}: {e.message}")

            if retry_count < self.max_retries:
                await asyncio.sleep(2 ** retry_count)
                return await self._make_request(method, url, data, retry_count + 1)

            raise EmergencyAPIError(f"HTTP request to {url} failed after {retry_count} retries: {e}")

        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            if retry_count < self.max_retries:
                await asyncio.sleep(2 ** retry_count)
                return await self._make_request(method, url, data, retry_count + 1)

            reason = str(e) or type(e).__name__
            raise EmergencyAPIError(f"Connection error for {url} after {retry_count} retries: {reason}")

        except aiohttp.ClientError as e:
            raise EmergencyAPIError(f"HTTP request to {url} failed: {e}")

        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise EmergencyAPIError(f"Invalid JSON response from {url}: {e}")

    async def fetch_snapshot(self, emergency_id: str) -> EmergencySnapshot:
        """GET the full emergency record"""
        data = await self._make_request("GET", self._url(emergency_id))
        try:
            return EmergencySnapshot.from_dict(data)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise EmergencyAPIError(f"Malformed snapshot for {emergency_id}: {e}")

    async def fetch_status(self, emergency_id: str) -> StatusUpdate:
        """GET the current status and ETA"""
        data = await self._make_request("GET", self._url(emergency_id, "/status"))
        try:
            return StatusUpdate.from_dict(emergency_id, data)
        except (ValueError, TypeError, AttributeError) as e:
            raise EmergencyAPIError(f"Malformed status for {emergency_id}: {e}")

    async def fetch_ambulance_location(self, emergency_id: str) -> LocationUpdate:
        """GET the responding ambulance's position"""
        data = await self._make_request("GET", self._url(emergency_id, "/ambulance/location"))
        try:
            return LocationUpdate.from_dict(emergency_id, data)
        except (ValueError, TypeError, AttributeError) as e:
            raise EmergencyAPIError(f"Malformed location for {emergency_id}: {e}")

    async def cancel_emergency(self, emergency_id: str) -> bool:
        """
        POST a cancellation request.

        Returns:
            True once the backend acknowledged the cancellation

        Raises:
            EmergencyAPIError: If the request failed or was refused
        """
        data = await self._make_request("POST", self._url(emergency_id, "/cancel"))
        if isinstance(data, dict) and data.get('success') is False:
            reason = data.get('message') or data.get('error') or "refused by server"
            raise EmergencyAPIError(f"Cancellation of {emergency_id} was not acknowledged: {reason}")
        return True

    async def close(self):
        """Close HTTP session"""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
