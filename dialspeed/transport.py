"""
Network probes used by the measurement phases.

``HttpTransport`` owns one ``aiohttp.ClientSession`` for a whole run and
exposes the three probe kinds the pipeline needs:

* ``latency_probe(server)`` -- async context manager yielding an object
  with ``ping() -> float`` (milliseconds).  Servers that speak the Ookla
  WebSocket protocol get a persistent PING/PONG socket::

      1. Connect to  wss://{host}:{port}/ws
      2. Receive  HELLO {version}
      3. Receive  YOURIP {ip}
      4. Receive  CAPABILITIES ...
      5. Send     PING {timestamp_ms}
      6. Receive  PONG {server_timestamp}

  everything else is probed with HTTP ``HEAD`` round-trips.
* ``download(server, size) -> int`` -- bytes received for one chunk.
* ``upload(server, payload) -> int`` -- bytes accepted by one POST.

Every probe failure is raised as ``TransientProbeFailure``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import aiohttp
import websockets
import websockets.exceptions

from .constants import COMMON_HEADERS, PING_TIMEOUT, READ_CHUNK_SIZE, UPLOAD_TIMEOUT
from .errors import TransientProbeFailure
from .servers import Server

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

_WS_CONNECT_TIMEOUT = 5.0   # seconds to establish the WS connection
_HANDSHAKE_TIMEOUT = 2.0    # max wait for HELLO/YOURIP/CAPABILITIES
_MSG_TIMEOUT = 0.5          # per-message timeout during handshake

_NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def _ok(status: int) -> bool:
    return 200 <= status < 300


# ---------------------------------------------------------------------------
# Latency probes
# ---------------------------------------------------------------------------

class HttpLatencyProbe:
    """Measure round-trips with bodiless ``HEAD`` requests."""

    def __init__(self, session: aiohttp.ClientSession, url: str, timeout: float = PING_TIMEOUT) -> None:
        self._session = session
        self.url = url
        self.timeout = timeout
        self.external_ip = ""

    async def __aenter__(self) -> HttpLatencyProbe:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        return None

    async def ping(self) -> float:
        start = time.perf_counter()
        try:
            async with self._session.head(
                self.url,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                allow_redirects=False,
            ) as resp:
                status = resp.status
        except _NETWORK_ERRORS as exc:
            raise TransientProbeFailure(f"HEAD {self.url} failed: {exc or type(exc).__name__}") from exc

        rtt = (time.perf_counter() - start) * 1000
        # Redirects still prove the host answered.
        if not 200 <= status < 400:
            raise TransientProbeFailure(f"HEAD {self.url} returned {status}")
        return rtt


def _text(msg) -> str:  # noqa: ANN001
    """Ookla control messages are text; tolerate a server sending them as bytes."""
    if isinstance(msg, str):
        return msg
    return bytes(msg).decode("utf-8", errors="replace")


class WebSocketLatencyProbe:
    """
    PING/PONG over one Ookla WebSocket connection.

    A PING that times out may still be answered later; the socket is then
    replaced before the next PING so the late PONG is never read as a reply.
    """

    def __init__(self, server: Server, timeout: float = PING_TIMEOUT) -> None:
        self.server = server
        self.timeout = timeout
        self.external_ip = ""
        self.server_version = ""
        self._cm = None
        self._ws = None
        self._stale = False

    async def __aenter__(self) -> WebSocketLatencyProbe:
        await self._connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        cm, self._cm, self._ws = self._cm, None, None
        if cm is not None:
            await cm.__aexit__(exc_type, exc_val, exc_tb)

    async def _connect(self) -> None:
        cm = websockets.connect(
            self.server.ws_url,
            additional_headers=COMMON_HEADERS,
            ping_interval=None,
            close_timeout=2,
            open_timeout=_WS_CONNECT_TIMEOUT,
        )
        self._ws = await cm.__aenter__()
        self._cm = cm
        await self._read_handshake()

    async def _reconnect(self) -> None:
        logger.debug("Reopening WebSocket to %s after a ping timeout", self.server.host)
        await self.__aexit__(None, None, None)
        await self._connect()
        self._stale = False

    async def _read_handshake(self) -> None:
        """Consume HELLO / YOURIP / CAPABILITIES messages."""
        start = time.perf_counter()
        received = 0

        while time.perf_counter() - start < _HANDSHAKE_TIMEOUT:
            try:
                msg = _text(await asyncio.wait_for(self._ws.recv(), timeout=_MSG_TIMEOUT))
            except asyncio.TimeoutError:
                break
            except (websockets.exceptions.WebSocketException, ConnectionError, OSError):
                break

            if msg.startswith("HELLO"):
                parts = msg.split()
                if len(parts) >= 2:
                    self.server_version = parts[1]
            elif msg.startswith("YOURIP"):
                parts = msg.split()
                if len(parts) >= 2:
                    self.external_ip = parts[1].strip()

            received += 1
            if received >= 3:
                break

    async def ping(self) -> float:
        """Send PING, receive PONG, measure RTT."""
        try:
            if self._stale or self._ws is None:
                await self._reconnect()
            send_time = time.perf_counter() * 1000
            # Cleared only once the reply is read; a timeout or cancellation leaves it set.
            self._stale = True
            await self._ws.send(f"PING {int(send_time)}")
            msg = _text(await asyncio.wait_for(self._ws.recv(), timeout=self.timeout))
            self._stale = False
        except asyncio.TimeoutError as exc:
            raise TransientProbeFailure("Ping timeout") from exc
        except (websockets.exceptions.WebSocketException, ConnectionError, OSError) as exc:
            raise TransientProbeFailure(str(exc)) from exc

        recv_time = time.perf_counter() * 1000
        if not msg.startswith("PONG"):
            raise TransientProbeFailure(f"Unexpected response: {msg[:50]}")
        return recv_time - send_time


class _FallbackLatencyProbe:
    """Try the WebSocket probe, use HTTP HEAD if the socket cannot be opened."""

    def __init__(self, primary: WebSocketLatencyProbe, fallback: HttpLatencyProbe) -> None:
        self._primary = primary
        self._fallback = fallback
        self._active = None

    async def __aenter__(self):  # noqa: ANN204
        try:
            self._active = await self._primary.__aenter__()
        except (websockets.exceptions.WebSocketException, asyncio.TimeoutError, OSError) as exc:
            logger.debug(
                "WebSocket ping unavailable for %s (%s); using HTTP",
                self._primary.server.host, exc or type(exc).__name__,
            )
            self._active = await self._fallback.__aenter__()
        return self._active

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._active is not None:
            await self._active.__aexit__(exc_type, exc_val, exc_tb)
            self._active = None


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class HttpTransport:
    """Async context-manager owning the session used by every probe."""

    def __init__(
        self,
        ping_timeout: float = PING_TIMEOUT,
        upload_timeout: float = UPLOAD_TIMEOUT,
    ) -> None:
        self.ping_timeout = ping_timeout
        self.upload_timeout = upload_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> HttpTransport:
        connector = aiohttp.TCPConnector(
            ssl=True,
            force_close=False,
            enable_cleanup_closed=True,
        )
        headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
        self._session = aiohttp.ClientSession(headers=headers, connector=connector)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "HttpTransport must be used as an async context manager "
                "(async with HttpTransport() as transport: ...)"
            )
        return self._session

    # -- Probes -------------------------------------------------------------

    def latency_probe(self, server: Server):  # noqa: ANN201
        http = HttpLatencyProbe(self._ensure_session(), server.ping_url, self.ping_timeout)
        if server.supports_websocket:
            return _FallbackLatencyProbe(WebSocketLatencyProbe(server, self.ping_timeout), http)
        return http

    async def download(self, server: Server, size: int) -> int:
        session = self._ensure_session()
        url = server.download_url(size)
        received = 0
        try:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=None, connect=5, sock_read=5),
            ) as resp:
                if not _ok(resp.status):
                    raise TransientProbeFailure(f"GET {url} returned {resp.status}")
                async for chunk in resp.content.iter_chunked(READ_CHUNK_SIZE):
                    received += len(chunk)
        except _NETWORK_ERRORS as exc:
            raise TransientProbeFailure(f"GET {url} failed: {exc or type(exc).__name__}") from exc
        return received

    async def upload(self, server: Server, payload: bytes) -> int:
        session = self._ensure_session()
        url = server.upload_url
        try:
            async with session.post(
                url,
                data=payload,
                headers={"Content-Type": "application/octet-stream"},
                timeout=aiohttp.ClientTimeout(total=self.upload_timeout),
            ) as resp:
                await resp.read()
                if not _ok(resp.status):
                    raise TransientProbeFailure(f"POST {url} returned {resp.status}")
        except _NETWORK_ERRORS as exc:
            raise TransientProbeFailure(f"POST {url} failed: {exc or type(exc).__name__}") from exc
        return len(payload)
