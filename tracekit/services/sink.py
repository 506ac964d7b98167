"""HTTP client for the trace server (the upload sink).

Endpoints used:
    GET  /status       — Liveness probe, returns {"status": "ok"}
    POST /dump         — Upload a batch: {"locations": [Feature, ...]}
    POST /heartbeat    — Liveness ping, no body
    GET  /coordinates  — History query for map display

Every call is bounded by the transport timeout; timeouts, connection errors
and non-2xx answers all surface as ``TransientTransportError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from tracekit.config import get_settings
from tracekit.errors import MalformedPayloadError, TransientTransportError

logger = logging.getLogger("tracekit.services.sink")


@dataclass(frozen=True)
class HistoryCoordinate:
    timestamp: str
    latitude: float
    longitude: float
    accuracy: float


@dataclass
class CoordinatesResult:
    """Parsed ``GET /coordinates`` response.

    Attributes:
        status:         Server status string ("success" on success).
        count:          Number of points the server matched.
        lookback_hours: Echo of the requested window.
        coordinates:    Well-formed rows; malformed rows are dropped.
    """

    status: str
    count: int
    lookback_hours: int | None = None
    coordinates: list[HistoryCoordinate] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> CoordinatesResult:
        if not isinstance(data, dict):
            raise MalformedPayloadError("Invalid data format from server")
        status = data.get("status")
        count = data.get("count")
        rows = data.get("coordinates")
        if not isinstance(status, str) or not isinstance(count, int) or not isinstance(rows, list):
            raise MalformedPayloadError("Invalid data format from server")

        coordinates: list[HistoryCoordinate] = []
        for row in rows:
            if not isinstance(row, (list, tuple)) or len(row) < 4:
                continue
            timestamp, lat, lon, accuracy = row[:4]
            if not isinstance(timestamp, str):
                continue
            if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (lat, lon, accuracy)):
                continue
            coordinates.append(
                HistoryCoordinate(timestamp, float(lat), float(lon), float(accuracy))
            )

        lookback = data.get("lookback_hours")
        return cls(
            status=status,
            count=count,
            lookback_hours=lookback if isinstance(lookback, int) else None,
            coordinates=coordinates,
        )


class SinkClient:
    """Async client for the trace server.

    Args:
        base_url:    Server root, e.g. ``https://trace.example.org``.
        timeout:     Transport deadline per request in seconds.
        http_client: Optional pre-configured httpx client (for testing).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings() if base_url is None or timeout is None else None
        self.base_url = (base_url or settings.server_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def check_status(self) -> dict:
        """``GET /status``.  Returns the decoded JSON (``{"status": "ok"}``)."""
        response = await self._send("GET", "/status")
        try:
            return response.json()
        except ValueError:
            return {"status": response.text}

    async def upload(self, body: bytes) -> None:
        """``POST /dump`` with an already-encoded payload.  Success is any 2xx."""
        await self._send(
            "POST",
            "/dump",
            content=body,
            headers={"Content-Type": "application/json"},
        )

    async def heartbeat(self) -> None:
        """``POST /heartbeat``."""
        await self._send("POST", "/heartbeat")

    async def fetch_coordinates(
        self, lookback_hours: int, min_accuracy: int, max_distance: int
    ) -> CoordinatesResult:
        """``GET /coordinates`` for the history display."""
        response = await self._send(
            "GET",
            "/coordinates",
            params={
                "lookback_hours": str(lookback_hours),
                "min_accuracy": str(min_accuracy),
                "max_distance": str(max_distance),
            },
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedPayloadError("Invalid data format from server") from exc
        return CoordinatesResult.from_json(data)

    # ------------------------------------------------------------------
    # Private HTTP helper
    # ------------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Issue a request and map every failure to TransientTransportError.

        Raises:
            TransientTransportError: On timeout, connection failure or non-2xx.
        """
        url = self._url(path)
        client = self._client()
        try:
            if method == "GET":
                response = await client.get(url, timeout=self.timeout, **kwargs)
            else:
                response = await client.post(url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientTransportError(f"{method} {path} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise TransientTransportError(f"{method} {path} failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise TransientTransportError(
                f"Server error: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response
