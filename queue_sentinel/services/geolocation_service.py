"""
IP geolocation through ipinfo.io.
Returns None after exhausting retries so classification can carry on with
an unknown country.
"""

import asyncio

import httpx

from queue_sentinel.config import Settings, settings
from queue_sentinel.infrastructure.observability.logging import get_logger
from queue_sentinel.models.domain.classification_domain import GeoLocation
from queue_sentinel.services.http_errors import transport_error_details

logger = get_logger(__name__)

IPINFO_BASE_URL = "https://ipinfo.io"
REQUEST_TIMEOUT = 10  # seconds
MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 1  # 1, 2 seconds between attempts


class GeolocationError(Exception):
    """Custom exception for geolocation lookup failures."""

    def __init__(
        self,
        message: str,
        ip: str | None = None,
        status_code: int | None = None,
        errno: int | None = None,
        code: str | None = None,
        syscall: str | None = None,
        address: str | None = None,
        port: int | None = None,
    ):
        super().__init__(message)
        self.ip = ip
        self.status_code = status_code
        self.errno = errno
        self.code = code
        self.syscall = syscall
        self.address = address
        self.port = port


class IpInfoGeoResolver:
    """Resolves an IP to country and hostname, retrying transient failures."""

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        alerts=None,
        backoff_seconds: float = BACKOFF_SECONDS,
    ):
        self.config = config or settings
        self.token = self.config.IPINFO_TOKEN
        self.alerts = alerts
        self.backoff_seconds = backoff_seconds
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

        if not self.token:
            logger.warning("IPINFO_TOKEN not configured, using anonymous rate limits")

    async def close(self) -> None:
        await self._client.aclose()

    async def _lookup(self, ip: str) -> GeoLocation:
        url = f"{IPINFO_BASE_URL}/{ip}"
        params = {"token": self.token} if self.token else None

        try:
            response = await self._client.get(url, params=params)
        except httpx.RequestError as e:
            raise GeolocationError(str(e) or type(e).__name__, ip=ip, **transport_error_details(e)) from e

        if not response.is_success:
            raise GeolocationError(
                f"Geolocation lookup failed (HTTP {response.status_code})",
                ip=ip,
                status_code=response.status_code,
                code=f"HTTP_{response.status_code}",
                address=response.request.url.host,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GeolocationError(f"Invalid geolocation response: {e}", ip=ip, code="INVALID_JSON") from e

        return GeoLocation(
            ip=ip,
            country=(data.get("country") or "unknown"),
            hostname=(data.get("hostname") or ""),
        )

    async def resolve(self, ip: str) -> GeoLocation | None:
        """
        Look up ``ip``, trying up to MAX_ATTEMPTS times.

        Returns:
            GeoLocation, or None if every attempt failed
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return await self._lookup(ip)
            except GeolocationError as e:
                logger.warning(
                    "Geolocation lookup failed",
                    ip=ip,
                    attempt=attempt,
                    max_attempts=MAX_ATTEMPTS,
                    error=str(e),
                )

                if attempt == MAX_ATTEMPTS:
                    if self.alerts is not None:
                        await self.alerts.report_error(e)
                    return None

                await asyncio.sleep(self.backoff_seconds * attempt)

        return None
