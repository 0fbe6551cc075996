"""
Remote server catalog and caller lookup.

``CatalogAPI`` owns one ``aiohttp.ClientSession`` for its lifetime and is
the fetch collaborator handed to ``ServerDirectory``::

    async with CatalogAPI(limit=10) as api:
        directory = ServerDirectory(fetch_catalog=api.fetch_records)
        info = await api.get_client_info()
        await directory.fetch_servers(info.location)
"""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from .constants import BASE_URL, CATALOG_TIMEOUT, COMMON_HEADERS, DEFAULT_CATALOG_LIMIT, SERVERS_URL
from .servers import Location, parse_number

# Fields embedded as JSON in the speedtest.net landing page.
_CLIENT_FIELDS = {
    "ip": re.compile(r'"ipAddress"\s*:\s*"([^"]+)"'),
    "isp": re.compile(r'"ispName"\s*:\s*"([^"]+)"'),
    "lat": re.compile(r'"latitude"\s*:\s*"?(-?[\d.]+)'),
    "lon": re.compile(r'"longitude"\s*:\s*"?(-?[\d.]+)'),
    "country": re.compile(r'"countryCode"\s*:\s*"([^"]+)"'),
}


@dataclass(frozen=True)
class ClientInfo:
    """Who and where the caller is, as seen by speedtest.net."""

    ip: str = ""
    isp: str = ""
    lat: float = 0.0
    lon: float = 0.0
    country: str = ""

    @classmethod
    def from_html(cls, html: str) -> ClientInfo:
        found = {}
        for name, pattern in _CLIENT_FIELDS.items():
            match = pattern.search(html)
            found[name] = match.group(1) if match else ""
        return cls(
            ip=found["ip"],
            isp=found["isp"],
            lat=parse_number(found["lat"]),
            lon=parse_number(found["lon"]),
            country=found["country"],
        )

    @property
    def location(self) -> Optional[Location]:
        """``None`` when the page carried no usable coordinates."""
        if (self.lat, self.lon) == (0.0, 0.0):
            return None
        return (self.lat, self.lon)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CatalogAPI:
    def __init__(self, limit: int = DEFAULT_CATALOG_LIMIT, timeout: float = CATALOG_TIMEOUT) -> None:
        self.limit = limit
        self.timeout = timeout
        self.client_info: Optional[ClientInfo] = None
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> CatalogAPI:
        self._session = aiohttp.ClientSession(
            headers=COMMON_HEADERS,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("CatalogAPI is only usable inside 'async with CatalogAPI() as api'")
        return self._session

    async def get_client_info(self) -> ClientInfo:
        """Fetch (once) and cache the caller's IP, ISP and coordinates."""
        if self.client_info is None:
            async with self._require_session().get(BASE_URL) as resp:
                resp.raise_for_status()
                self.client_info = ClientInfo.from_html(await resp.text())
        return self.client_info

    async def external_ip(self) -> str:
        return (await self.get_client_info()).ip

    async def fetch_records(self) -> List[Dict[str, Any]]:
        """Raw server records, nearest to the caller first."""
        query = {"engine": "js", "https_functional": "true", "limit": str(self.limit)}
        async with self._require_session().get(SERVERS_URL, params=query) as resp:
            resp.raise_for_status()
            records = await resp.json(content_type=None)

        if not isinstance(records, list):
            raise ValueError(f"Unexpected catalog payload: {type(records).__name__}")
        return records
