#!/usr/bin/env python3
"""
dialspeed CLI -- ping, download and upload measurement from the terminal.

Usage::

    python speedtest.py                     # rich dashboard
    python speedtest.py --simple            # plain text
    python speedtest.py --json              # JSON to stdout
    python speedtest.py --unit MB/s --scale 100
    python speedtest.py --list-servers      # show the ranked server list
    python speedtest.py --search frankfurt  # test against the first match
    python speedtest.py --history           # show past results
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

import aiohttp

from dialspeed.catalog import CatalogAPI
from dialspeed.config import load_config
from dialspeed.connectivity import ConnectivityMonitor
from dialspeed.constants import (
    MAX_CONCURRENCY,
    MAX_DURATION,
    MAX_PING_COUNT,
    MIN_CONCURRENCY,
    MIN_DURATION,
    MIN_PING_COUNT,
)
from dialspeed.history import JsonlResultStore
from dialspeed.logging_setup import configure_logging
from dialspeed.pipeline import MeasurementPipeline, PipelineSettings
from dialspeed.results import MeasurementResult, ResultAssembler
from dialspeed.servers import Server, ServerDirectory
from dialspeed.transport import HttpTransport
from dialspeed.units import DialScale, DisplayUnit, format_speed
from ui.dashboard import (
    ProgressDisplay,
    console,
    print_error,
    print_header,
    print_history,
    print_result,
    print_server_list,
)

logger = logging.getLogger("dialspeed.cli")


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------

def _validate(
    ping_count: int,
    download_duration: float,
    upload_duration: float,
    concurrency: int,
) -> None:
    """Raise ``ValueError`` if any parameter is out of range."""
    if not MIN_PING_COUNT <= ping_count <= MAX_PING_COUNT:
        raise ValueError(f"Ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}")
    if not MIN_DURATION <= download_duration <= MAX_DURATION:
        raise ValueError(f"Download duration must be between {MIN_DURATION} and {MAX_DURATION} s")
    if not MIN_DURATION <= upload_duration <= MAX_DURATION:
        raise ValueError(f"Upload duration must be between {MIN_DURATION} and {MAX_DURATION} s")
    if not MIN_CONCURRENCY <= concurrency <= MAX_CONCURRENCY:
        raise ValueError(f"Concurrency must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}")


def _merge_args(args: argparse.Namespace, config: Dict[str, Any]) -> Dict[str, Any]:
    """Command-line values win over the config file."""
    merged = dict(config)
    overrides = {
        "server": args.server,
        "unit": args.unit,
        "dial_scale": args.scale,
        "ping_count": args.ping_count,
        "download_duration": args.download_duration,
        "upload_duration": args.upload_duration,
        "download_concurrency": args.concurrency,
    }
    merged.update({k: v for k, v in overrides.items() if v is not None})
    if args.verbose:
        merged["log_level"] = "DEBUG"
    return merged


# ---------------------------------------------------------------------------
# Server discovery
# ---------------------------------------------------------------------------

async def _load_directory(api: CatalogAPI) -> ServerDirectory:
    directory = ServerDirectory(fetch_catalog=api.fetch_records)
    location = None
    try:
        info = await api.get_client_info()
        location = info.location
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.warning("Could not determine client location: %s", exc)
    await directory.fetch_servers(location)
    return directory


def _choose_server(
    directory: ServerDirectory,
    server_id: Optional[str],
    query: Optional[str],
) -> Optional[Server]:
    if server_id:
        server = directory.find(str(server_id))
        if server is None:
            raise ValueError(f"Server {server_id} not found")
        directory.select(server)
    elif query:
        matches = directory.search(query)
        if not matches:
            raise ValueError(f"No server matches {query!r}")
        directory.select(matches[0])
    return directory.selected


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

async def run_speedtest(
    config: Dict[str, Any],
    *,
    query: Optional[str] = None,
    json_output: bool = False,
    simple: bool = False,
    store: Optional[JsonlResultStore] = None,
) -> Optional[MeasurementResult]:
    """Execute one full measurement and report it; ``None`` on failure."""
    unit = DisplayUnit.parse(str(config["unit"]))
    scale = DialScale.parse(config["dial_scale"])
    show_ui = not json_output and not simple

    if show_ui:
        print_header()
        console.print("[dim]Fetching server list...[/dim]")

    async with CatalogAPI(limit=int(config["catalog_limit"])) as api:
        directory = await _load_directory(api)
        server = _choose_server(directory, config.get("server"), query)
        if show_ui and server is not None:
            console.print(f"[green]Selected server:[/green] {server.name} ({server.location})\n")

        async with ConnectivityMonitor() as monitor, HttpTransport(
            ping_timeout=float(config["ping_timeout"]),
            upload_timeout=float(config["upload_timeout"]),
        ) as transport:
            assembler = ResultAssembler(
                monitor,
                store=store or JsonlResultStore(),
                external_ip_lookup=api.external_ip,
            )
            pipeline = MeasurementPipeline(
                directory,
                monitor,
                transport,
                assembler=assembler,
                settings=PipelineSettings.from_config(config),
            )

            if show_ui:
                with ProgressDisplay(unit=unit, scale=scale) as display:
                    unsubscribe = pipeline.events.subscribe(display.handle)
                    result = await pipeline.run(server)
                    unsubscribe()
            else:
                result = await pipeline.run(server)

            error = pipeline.state.error

    if result is None:
        reason = error.reason if error else "Speed test failed"
        if json_output:
            print(json.dumps({"error": reason}, indent=2))
        else:
            print_error(reason)
        return None

    if json_output:
        print(json.dumps(result.to_dict(), indent=2))
    elif simple:
        label = unit.display_name
        print(f"Server: {result.server_name} ({result.server_location})")
        print(f"Ping: {result.ping_ms} ms (jitter {result.jitter_ms} ms)")
        print(f"Download: {format_speed(result.download_mbps, unit)} {label}")
        print(f"Upload: {format_speed(result.upload_mbps, unit)} {label}")
        if result.packet_loss > 0:
            print(f"Packet Loss: {result.packet_loss}%")
    else:
        print_result(result, unit)

    return result


async def list_servers(config: Dict[str, Any], query: Optional[str] = None) -> None:
    async with CatalogAPI(limit=int(config["catalog_limit"])) as api:
        directory = await _load_directory(api)
    servers = directory.search(query) if query else directory.servers
    print_server_list(servers, directory.selected)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(
        description="dialspeed -- network speed testing on a speedometer dial",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")
    parser.add_argument("--unit", type=str, metavar="UNIT", help="Display unit: Mbit/s, MB/s or KB/s")
    parser.add_argument("--scale", type=int, choices=[s.value for s in DialScale], help="Dial scale maximum")

    # Server selection
    parser.add_argument("--server", type=str, metavar="ID", help="Use specific server by ID")
    parser.add_argument("--search", type=str, metavar="TEXT", help="Pick the first server matching TEXT")
    parser.add_argument("--list-servers", action="store_true", help="List available servers and exit")

    # Test parameters
    parser.add_argument("--ping-count", type=int, metavar="N", help="Number of ping samples (default: 10)")
    parser.add_argument("--download-duration", type=float, metavar="SECS", help="Download test duration in seconds (default: 10)")
    parser.add_argument("--upload-duration", type=float, metavar="SECS", help="Upload test duration in seconds (default: 10)")
    parser.add_argument("--concurrency", type=int, metavar="N", help="Concurrent download requests, 1-3 (default: 3)")

    # History / diagnostics
    parser.add_argument("--history", action="store_true", help="Show past test results and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args()
    config = _merge_args(args, load_config())
    configure_logging(str(config["log_level"]))

    # Validate
    try:
        _validate(
            ping_count=int(config["ping_count"]),
            download_duration=float(config["download_duration"]),
            upload_duration=float(config["upload_duration"]),
            concurrency=int(config["download_concurrency"]),
        )
        unit = DisplayUnit.parse(str(config["unit"]))
        DialScale.parse(config["dial_scale"])
    except ValueError as exc:
        print_error(str(exc))
        sys.exit(1)

    # History mode
    if args.history:
        store = JsonlResultStore()
        print_history(store.load(), unit)
        average = store.average_bandwidth()
        if average > 0:
            console.print(f"[dim]Average bandwidth: {format_speed(average, unit)} {unit.display_name}[/dim]")
        return

    try:
        if args.list_servers:
            asyncio.run(list_servers(config, args.search))
            return

        result = asyncio.run(
            run_speedtest(
                config,
                query=args.search,
                json_output=args.json,
                simple=args.simple,
            )
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(1)
    except ValueError as exc:
        print_error(str(exc))
        sys.exit(1)

    if result is None:
        sys.exit(1)


if __name__ == "__main__":
    main()
