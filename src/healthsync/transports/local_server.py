"""HTTP client for the phone-side local sync server.

API base: ``http://<host>:<port>/api/v1``

Endpoints used:
    GET  /health  — Reachability probe, ``{status, version, timestamp}``
    GET  /data    — Records since a watermark, paged via ``hasMore`` / ``nextCursor``
    POST /data    — Upload one serialized Batch

Status mapping:
    GET /data    200 → Batch, 404 → empty Batch (nothing new), 400 / 5xx → error
    POST /data   2xx → receipt, 409 → duplicate receipt, 400 / 5xx → error

Every public operation returns a ``Result``; network faults never escape.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Iterable

import httpx

from src.healthsync.config_loader import LocalServerConfig, get_sync_config
from src.healthsync.errors import (
    BadRequestError,
    DecodingError,
    EncodingError,
    InvalidAddressError,
    NetworkError,
    Result,
    ServerError,
    TransportError,
    TransportUnavailableError,
    UnexpectedStatusError,
)
from src.healthsync.models import Batch, DataType
from src.healthsync.schemas import (
    UploadAckPayload,
    decode_batch_page,
    encode_batch,
    format_timestamp,
)
from src.healthsync.transports.base import Transport, UploadReceipt

logger = logging.getLogger("healthsync.transports.local_server")

SYNC_FORMAT_HEADER = "X-Sync-Format"
SYNC_FORMAT = "batch-v1"


class LocalServerClient(Transport):
    """Request/response transport against the local sync server.

    The connection flag is the server's liveness: it turns on after a
    successful probe or request and off after a network fault or when the
    host reports the network is gone.
    """

    NAME = "Local Server"

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        config: LocalServerConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        device_id: str | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            host:        Server host; defaults to the configured host.
            port:        Server port; defaults to the configured port.
            config:      Local server settings (sync_config.yaml by default).
            http_client: Optional pre-configured httpx client (for testing).
            device_id:   Sent as ``X-Device-Id`` on uploads when set.
        """
        super().__init__()
        self._config = config or get_sync_config().local_server
        self._host = host or self._config.host
        self._port = port or self._config.port
        self._http_client = http_client
        self._device_id = device_id
        self._network_available = True

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def base_url(self) -> str:
        return self._config.base_url(self._host, self._port)

    @property
    def network_available(self) -> bool:
        return self._network_available

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def set_network_available(self, available: bool) -> None:
        """Record a change of the host's network path (wifi up / down)."""
        if available == self._network_available:
            return
        logger.info("Local Server: network %s", "available" if available else "unavailable")
        self._network_available = available
        if not available:
            self._set_connected(False)

    async def update_server_address(self, host: str, port: int) -> bool:
        """Point the client at a new server and probe it.

        A malformed address is rejected and the current one is kept.

        Returns:
            True if the new address answered the health check.
        """
        try:
            self._url(host, port)
        except InvalidAddressError as exc:
            logger.warning("Local Server: rejected address %s:%s: %s", host, port, exc)
            self._set_error(exc)
            return False
        logger.info("Local Server: address changed to %s:%d", host, port)
        self._host = host
        self._port = port
        self._set_connected(False)
        return await self.test_reachable()

    async def test_reachable(self) -> bool:
        if not self._network_available:
            self._set_connected(False)
            return False
        reachable = await self._probe(self._host, self._port)
        self._set_connected(reachable)
        return reachable

    async def discover(self, hosts: Iterable[str] | None = None) -> list[str]:
        """Probe candidate LAN hosts in parallel on the configured port.

        Best effort: every probe runs to completion (or its timeout) and the
        hosts that answered are returned in candidate order.  The configured
        address is left untouched.
        """
        candidates = list(hosts if hosts is not None else self._config.discovery_hosts)
        if not candidates or not self._network_available:
            return []
        logger.info("Local Server: probing %d candidate host(s)", len(candidates))
        results = await asyncio.gather(*(self._probe(h, self._port) for h in candidates))
        found = [host for host, ok in zip(candidates, results) if ok]
        logger.info("Local Server: discovery found %s", found or "nothing")
        return found

    # ------------------------------------------------------------------
    # Transport interface
    # ------------------------------------------------------------------

    async def fetch(
        self,
        since: datetime,
        limit: int | None = None,
        types: Iterable[DataType] | None = None,
    ) -> Result[Batch]:
        """Fetch every record newer than ``since``, following pagination.

        Pages are merged into one Batch (first occurrence of an id wins).
        At most ``max_pages`` pages are read per call; anything beyond is
        picked up by the next cycle from the advanced watermark.
        """
        if not self._network_available:
            return self._fail(TransportUnavailableError("Network unavailable"))

        params: dict[str, str | int] = {
            "since": format_timestamp(since),
            "limit": limit or self._config.page_limit,
        }
        if types:
            params["types"] = ",".join(t.value for t in types)

        merged: Batch | None = None
        for page_number in range(1, self._config.max_pages + 1):
            try:
                response = await self._request("GET", "/data", params=params)
            except httpx.HTTPError as exc:
                return self._fail(NetworkError(_describe(exc)), disconnect=True)
            except InvalidAddressError as exc:
                return self._fail(exc, disconnect=True)

            if response.status_code == 404:
                logger.debug("Local Server: no data since %s", params["since"])
                break
            if not response.is_success:
                return self._fail(_status_error(response))

            try:
                page = decode_batch_page(response.content)
            except DecodingError as exc:
                return self._fail(exc)

            batch = page.to_domain()
            merged = batch if merged is None else merged.merge(batch)
            logger.debug(
                "Local Server: page %d held %d record(s)", page_number, batch.total_count
            )
            if not page.has_more or not page.next_cursor:
                break
            params["cursor"] = page.next_cursor
        else:
            logger.warning(
                "Local Server: stopped after %d pages; remaining data left for next cycle",
                self._config.max_pages,
            )

        self._set_connected(True)
        result = merged if merged is not None else Batch()
        logger.info("Local Server: fetched %d record(s)", result.total_count)
        return Result.success(result)

    async def send(self, batch: Batch) -> Result[UploadReceipt]:
        if not self._network_available:
            return self._fail(TransportUnavailableError("Network unavailable"))
        try:
            body = encode_batch(batch)
        except EncodingError as exc:
            return self._fail(exc)

        headers = {"Content-Type": "application/json", SYNC_FORMAT_HEADER: SYNC_FORMAT}
        if self._device_id:
            headers["X-Device-Id"] = self._device_id

        try:
            response = await self._request("POST", "/data", content=body, headers=headers)
        except httpx.HTTPError as exc:
            return self._fail(NetworkError(_describe(exc)), disconnect=True)
        except InvalidAddressError as exc:
            return self._fail(exc, disconnect=True)

        if response.status_code == 409:
            logger.info("Local Server: batch %s already present (409)", batch.id)
            self._set_connected(True)
            return Result.success(UploadReceipt(duplicate=True))
        if not response.is_success:
            return self._fail(_status_error(response))

        processed = batch.total_count
        if response.content:
            try:
                processed = UploadAckPayload.model_validate_json(response.content).processed_count
            except ValueError:
                logger.debug("Local Server: upload ack body not understood; assuming all processed")
        self._set_connected(True)
        logger.info("Local Server: uploaded batch %s (%d processed)", batch.id, processed)
        return Result.success(UploadReceipt(processed_count=processed))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _probe(self, host: str, port: int) -> bool:
        try:
            response = await self._request(
                "GET", "/health", host=host, port=port, timeout=self._config.probe_timeout_s
            )
        except httpx.HTTPError as exc:
            logger.debug("Local Server: %s:%d unreachable (%s)", host, port, _describe(exc))
            return False
        except InvalidAddressError as exc:
            logger.warning("Local Server: %s", exc)
            return False
        return response.status_code == 200

    async def _request(
        self,
        method: str,
        path: str,
        *,
        host: str | None = None,
        port: int | None = None,
        timeout: float | None = None,
        **kwargs,
    ) -> httpx.Response:
        """Issue one request against ``/api/v1``.

        Raises:
            httpx.HTTPError: On connection failures and timeouts.
            InvalidAddressError: If host and port do not form a valid URL.
        """
        url = self._url(host or self._host, port or self._port, path)
        timeout = timeout if timeout is not None else self._config.request_timeout_s

        if self._http_client:
            return await self._http_client.request(method, url, timeout=timeout, **kwargs)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(method, url, **kwargs)

    def _url(self, host: str, port: int, path: str = "") -> httpx.URL:
        if not 0 < port <= 65535:
            raise InvalidAddressError(f"Invalid server port {port}")
        try:
            return httpx.URL(self._config.base_url(host, port) + path)
        except httpx.InvalidURL as exc:
            raise InvalidAddressError(f"Invalid server address {host}:{port}: {exc}") from exc

    def _fail(self, error: TransportError, disconnect: bool = False) -> Result:
        logger.warning("Local Server: %s error: %s", error.kind, error)
        if disconnect:
            self._set_connected(False)
        self._set_error(error)
        return Result.failure(error)


def _status_error(response: httpx.Response) -> TransportError:
    code = response.status_code
    detail = response.text[:200] if response.content else response.reason_phrase
    if code == 400:
        return BadRequestError(f"Bad request: {detail}")
    if code >= 500:
        return ServerError(f"Server error {code}: {detail}", status_code=code)
    return UnexpectedStatusError(f"Unexpected status {code}: {detail}", status_code=code)


def _describe(exc: httpx.HTTPError) -> str:
    return str(exc) or exc.__class__.__name__
