"""
Server model and server directory.

The directory owns the candidate list and the active selection.  Servers
come from the remote catalog (see ``dialspeed.catalog``) or, when that
fails for any reason, from a small built-in fallback list -- the
directory is never left empty.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

import aiohttp

from .constants import EARTH_RADIUS_KM
from .events import EventChannel

logger = logging.getLogger(__name__)

Location = Tuple[float, float]


# ---------------------------------------------------------------------------
# Tolerant parsing
# ---------------------------------------------------------------------------

def parse_number(value: Any, default: float = 0.0) -> float:
    """
    Parse a catalog numeric field.

    Catalog records carry coordinates either as numbers or as numeric
    strings; anything else resolves to *default* instead of failing the
    whole record.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    return number if math.isfinite(number) else default


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

class ServerStatus(str, Enum):
    ACTIVE = "active"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"


@dataclass(frozen=True)
class BandwidthLimits:
    download_mbps: Optional[float] = None
    upload_mbps: Optional[float] = None


@dataclass(frozen=True)
class Server:
    """A single measurement endpoint."""

    id: str
    name: str
    host: str
    provider: str = ""
    city: str = ""
    country: str = ""
    cc: str = ""
    lat: float = 0.0
    lon: float = 0.0
    port: int = 443
    distance_km: float = 0.0
    ping_ms: Optional[float] = None
    is_default: bool = False
    last_checked: Optional[datetime] = None
    status: ServerStatus = ServerStatus.ACTIVE
    protocols: FrozenSet[str] = field(default_factory=lambda: frozenset({"HTTPS"}))
    bandwidth_limits: Optional[BandwidthLimits] = None
    ping_path: str = "/"
    download_path: str = "/download?size={size}"
    upload_path: str = "/upload"

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_catalog(cls, data: Dict[str, Any]) -> Server:
        """Build a server from one Ookla ``api/js/servers`` record."""
        host_raw = str(data.get("host", ""))
        hostname, _, port_raw = host_raw.partition(":")
        try:
            port = int(port_raw) if port_raw else 8080
        except ValueError:
            port = 8080

        sponsor = str(data.get("sponsor", ""))
        return cls(
            id=str(data.get("id") or hostname),
            name=sponsor,
            host=hostname,
            port=port,
            provider=sponsor,
            city=str(data.get("name", "")),
            country=str(data.get("country", "")),
            cc=str(data.get("cc", "")),
            lat=parse_number(data.get("lat")),
            lon=parse_number(data.get("lon")),
            protocols=frozenset({"HTTPS", "WSS"}),
            ping_path="/hello",
        )

    def with_distance(self, distance_km: float) -> Server:
        return dataclasses.replace(self, distance_km=distance_km)

    # -- Derived values -----------------------------------------------------

    @property
    def netloc(self) -> str:
        return self.host if self.port == 443 else f"{self.host}:{self.port}"

    @property
    def location(self) -> str:
        return ", ".join(part for part in (self.city, self.country) if part)

    @property
    def ping_url(self) -> str:
        return f"https://{self.netloc}{self.ping_path}"

    def download_url(self, size: int) -> str:
        return f"https://{self.netloc}{self.download_path.format(size=size)}"

    @property
    def upload_url(self) -> str:
        return f"https://{self.netloc}{self.upload_path}"

    @property
    def ws_url(self) -> str:
        """WebSocket endpoint for PING/PONG latency probes."""
        return f"wss://{self.netloc}/ws?"

    @property
    def supports_websocket(self) -> bool:
        return "WSS" in self.protocols

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "provider": self.provider,
            "city": self.city,
            "country": self.country,
            "cc": self.cc,
            "lat": self.lat,
            "lon": self.lon,
            "distance_km": round(self.distance_km, 1),
            "status": self.status.value,
        }


FALLBACK_SERVERS: Tuple[Server, ...] = (
    Server(
        id="cloudflare",
        name="Cloudflare",
        host="speed.cloudflare.com",
        provider="Cloudflare",
        city="Global",
        country="Worldwide",
        cc="WW",
        is_default=True,
        download_path="/__down?bytes={size}",
        upload_path="/__up",
    ),
    Server(
        id="fast.com",
        name="Fast.com",
        host="fast.com",
        provider="Netflix",
        city="Global",
        country="Worldwide",
        cc="WW",
    ),
)


def rank_servers(servers: Sequence[Server], location: Optional[Location]) -> List[Server]:
    """Attach distances relative to *location* and sort nearest first."""
    if location is None:
        return [s.with_distance(0.0) for s in servers]
    lat, lon = location
    ranked = [s.with_distance(haversine_km(lat, lon, s.lat, s.lon)) for s in servers]
    ranked.sort(key=lambda s: s.distance_km)
    return ranked


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------

CatalogFetcher = Callable[[], Awaitable[List[Dict[str, Any]]]]

_FETCH_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    ValueError,
    TypeError,
    KeyError,
)


class ServerDirectory:
    """Candidate servers, ranked by distance, plus the active selection."""

    def __init__(
        self,
        fetch_catalog: Optional[CatalogFetcher] = None,
        fallback: Sequence[Server] = FALLBACK_SERVERS,
    ) -> None:
        if not fallback:
            raise ValueError("fallback server list must not be empty")
        self._fetch_catalog = fetch_catalog
        self._fallback = tuple(fallback)
        self._servers: List[Server] = list(self._fallback)
        self._selected: Optional[Server] = self._default_of(self._servers)
        self._location: Optional[Location] = None
        self.changes: EventChannel[ServerDirectory] = EventChannel("servers")

    # -- Read access --------------------------------------------------------

    @property
    def servers(self) -> List[Server]:
        return list(self._servers)

    @property
    def selected(self) -> Optional[Server]:
        return self._selected

    @property
    def location(self) -> Optional[Location]:
        return self._location

    def find(self, server_id: str) -> Optional[Server]:
        for server in self._servers:
            if server.id == str(server_id):
                return server
        return None

    def search(self, query: str) -> List[Server]:
        """Case-insensitive substring match on name, city, country, provider."""
        needle = query.strip().casefold()
        if not needle:
            return list(self._servers)
        return [
            s for s in self._servers
            if any(needle in text.casefold() for text in (s.name, s.city, s.country, s.provider))
        ]

    # -- Mutation -----------------------------------------------------------

    async def fetch_servers(self, user_location: Optional[Location] = None) -> List[Server]:
        """Refresh from the catalog, falling back to the built-in list."""
        if user_location is not None:
            self._location = user_location

        servers = await self._load()
        self._replace(rank_servers(servers, self._location))
        return list(self._servers)

    def update_distances(self, user_location: Location) -> None:
        self._location = user_location
        self._replace(rank_servers(self._servers, user_location))

    def select(self, server: Server) -> None:
        self._selected = server
        self.changes.publish(self)

    def select_closest(self) -> Optional[Server]:
        if not self._servers:
            return None
        self.select(self._servers[0])
        return self._selected

    # -- Internals ----------------------------------------------------------

    async def _load(self) -> List[Server]:
        if self._fetch_catalog is None:
            return list(self._fallback)
        try:
            records = await self._fetch_catalog()
            servers = [Server.from_catalog(r) for r in records if isinstance(r, dict)]
        except _FETCH_ERRORS as exc:
            logger.warning("Server catalog unavailable (%s); using fallback list", exc or type(exc).__name__)
            return list(self._fallback)

        if not servers:
            logger.warning("Server catalog returned no usable entries; using fallback list")
            return list(self._fallback)

        logger.debug("Loaded %d servers from catalog", len(servers))
        return servers

    def _replace(self, servers: List[Server]) -> None:
        self._servers = servers
        current = self._selected
        if current is not None:
            current = self.find(current.id)
        self._selected = current or self._default_of(servers)
        self.changes.publish(self)

    @staticmethod
    def _default_of(servers: Sequence[Server]) -> Optional[Server]:
        for server in servers:
            if server.is_default:
                return server
        return servers[0] if servers else None
