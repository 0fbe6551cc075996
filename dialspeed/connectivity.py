"""
Connectivity monitoring.

The monitor is the single writer of the current reachability state; any
number of readers may subscribe to changes.  Detection on Linux goes
through NetworkManager (``nmcli``) run as an asyncio subprocess; when
that is unavailable a UDP "route check" is used instead, which can tell
connected from disconnected but not the interface type.
"""
from __future__ import annotations

import asyncio
import logging
import socket
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional, Set

from .events import EventChannel

logger = logging.getLogger(__name__)

_PROBE_TIMEOUT = 3.0
_ROUTE_CHECK_ADDR = ("8.8.8.8", 80)


class InterfaceType(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    WIRED = "wired"
    UNKNOWN = "unknown"


_PREFERENCE = (InterfaceType.WIFI, InterfaceType.CELLULAR, InterfaceType.WIRED)

# nmcli device TYPE column -> interface kind
_NMCLI_TYPES = {
    "wifi": InterfaceType.WIFI,
    "gsm": InterfaceType.CELLULAR,
    "cdma": InterfaceType.CELLULAR,
    "modem": InterfaceType.CELLULAR,
    "ethernet": InterfaceType.WIRED,
}


@dataclass(frozen=True)
class ConnectivityState:
    connected: bool = False
    interface: InterfaceType = InterfaceType.UNKNOWN


@dataclass(frozen=True)
class PathReport:
    """Raw probe output: reachability and every active interface kind."""

    connected: bool
    interfaces: frozenset = frozenset()


PathProbe = Callable[[], Awaitable[PathReport]]
ProviderResolver = Callable[[InterfaceType], Awaitable[Optional[str]]]


def pick_interface(reported: Iterable[InterfaceType]) -> InterfaceType:
    """Choose one interface kind: wifi > cellular > wired > unknown."""
    kinds = set(reported)
    for kind in _PREFERENCE:
        if kind in kinds:
            return kind
    return InterfaceType.UNKNOWN


# ---------------------------------------------------------------------------
# nmcli helpers
# ---------------------------------------------------------------------------

async def _run_command(command: List[str]) -> subprocess.CompletedProcess:
    """Run *command* asynchronously and capture decoded output."""
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=_PROBE_TIMEOUT)
    except asyncio.TimeoutError:
        process.kill()
        raise
    return subprocess.CompletedProcess(
        args=command,
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )


def parse_nmcli_devices(output: str) -> PathReport:
    """Parse ``nmcli -t -f TYPE,STATE device`` output."""
    active: Set[InterfaceType] = set()
    for line in output.splitlines():
        kind, sep, state = line.strip().partition(":")
        if not sep:
            continue
        if state.startswith("connected") and kind in _NMCLI_TYPES:
            active.add(_NMCLI_TYPES[kind])
    return PathReport(connected=bool(active), interfaces=frozenset(active))


def parse_active_ssid(output: str) -> Optional[str]:
    """Parse ``nmcli -t -f ACTIVE,SSID dev wifi`` output."""
    for line in output.splitlines():
        active, sep, ssid = line.strip().partition(":")
        if sep and active == "yes" and ssid:
            return ssid.replace("\\:", ":")
    return None


def _route_available() -> bool:
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.settimeout(0.1)
        # No packet is sent; connect() only resolves a route.
        s.connect(_ROUTE_CHECK_ADDR)
        return True
    except OSError:
        return False
    finally:
        s.close()


def local_ip() -> str:
    """The LAN address of the interface carrying the default route."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.settimeout(0.1)
        s.connect(_ROUTE_CHECK_ADDR)
        return s.getsockname()[0]
    except OSError as exc:
        logger.debug("Could not determine local IP: %s", exc)
        return "N/A"
    finally:
        s.close()


async def nmcli_probe() -> PathReport:
    """Default path probe: nmcli, falling back to a route check."""
    try:
        result = await _run_command(["nmcli", "-t", "-f", "TYPE,STATE", "device"])
        if result.returncode == 0:
            return parse_nmcli_devices(result.stdout)
        logger.debug("nmcli exited %d: %s", result.returncode, result.stderr.strip())
    except (FileNotFoundError, PermissionError, asyncio.TimeoutError) as exc:
        logger.debug("nmcli unavailable: %s", exc)

    connected = await asyncio.get_running_loop().run_in_executor(None, _route_available)
    interfaces = frozenset({InterfaceType.UNKNOWN}) if connected else frozenset()
    return PathReport(connected=connected, interfaces=interfaces)


async def nmcli_provider(interface: InterfaceType) -> Optional[str]:
    """SSID on wifi, active connection name on cellular."""
    if interface is InterfaceType.WIFI:
        result = await _run_command(["nmcli", "-t", "-f", "ACTIVE,SSID", "dev", "wifi"])
        return parse_active_ssid(result.stdout)
    if interface is InterfaceType.CELLULAR:
        result = await _run_command(["nmcli", "-t", "-f", "TYPE,CONNECTION", "device"])
        for line in result.stdout.splitlines():
            kind, sep, name = line.strip().partition(":")
            if sep and kind in ("gsm", "cdma", "modem") and name and name != "--":
                return name
    return None


_PROVIDER_FALLBACK = {
    InterfaceType.WIFI: "Wi-Fi Network",
    InterfaceType.CELLULAR: "Unknown Carrier",
    InterfaceType.WIRED: "Ethernet",
    InterfaceType.UNKNOWN: "Unknown",
}


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------

class ConnectivityMonitor:
    """Polls the path probe and publishes reachability changes."""

    def __init__(
        self,
        probe: PathProbe = nmcli_probe,
        provider_resolver: ProviderResolver = nmcli_provider,
        interval: float = 2.0,
        initial: Optional[ConnectivityState] = None,
    ) -> None:
        self._probe = probe
        self._provider_resolver = provider_resolver
        self.interval = interval
        self._state = initial or ConnectivityState()
        self._task: Optional[asyncio.Task] = None
        self.changes: EventChannel[ConnectivityState] = EventChannel("connectivity")

    @property
    def state(self) -> ConnectivityState:
        return self._state

    def subscribe(
        self,
        callback: Callable[[ConnectivityState], None],
        *,
        weak: bool = True,
    ) -> Callable[[], None]:
        return self.changes.subscribe(callback, weak=weak)

    def update(self, state: ConnectivityState) -> None:
        if state == self._state:
            return
        logger.info(
            "Connectivity changed: %s (%s)",
            "connected" if state.connected else "disconnected",
            state.interface.value,
        )
        self._state = state
        self.changes.publish(state)

    async def refresh(self) -> ConnectivityState:
        report = await self._probe()
        interface = pick_interface(report.interfaces) if report.connected else InterfaceType.UNKNOWN
        self.update(ConnectivityState(connected=report.connected, interface=interface))
        return self._state

    async def provider_name(self) -> str:
        """Best-effort provider label; never raises."""
        interface = self._state.interface
        try:
            name = await self._provider_resolver(interface)
        except (OSError, asyncio.TimeoutError, ValueError) as exc:
            logger.debug("Provider lookup failed: %s", exc)
            name = None
        return name or _PROVIDER_FALLBACK[interface]

    # -- Background polling -------------------------------------------------

    async def start(self) -> None:
        if self._task is not None:
            return
        await self.refresh()
        self._task = asyncio.create_task(self._poll())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> ConnectivityMonitor:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.stop()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.refresh()
            except (OSError, asyncio.TimeoutError) as exc:
                logger.debug("Connectivity probe failed: %s", exc)
