"""
Rich-based terminal dashboard for dialspeed.

Unit conversion and dial mapping live in ``dialspeed.units`` -- this
module only does presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from dialspeed.pipeline import EventKind, MeasurementPhase, PipelineEvent
from dialspeed.results import MeasurementResult
from dialspeed.servers import Server
from dialspeed.units import DialScale, DisplayUnit, format_speed

console = Console()


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: Sequence[float]) -> str:
    """Return a single-line Unicode bar-chart scaled from zero to the peak."""
    if not values:
        return "No data"

    peak = max(values)
    if peak <= 0:
        return _BARS[0] * len(values)
    top = len(_BARS) - 1
    return "".join(_BARS[min(int(v / peak * top), top)] for v in values)


def _stars(rating: int) -> str:
    return "[yellow]" + "★" * rating + "[/yellow][dim]" + "☆" * (5 - rating) + "[/dim]"


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]dialspeed[/bold cyan]\n"
            "[dim]Ping, download and upload on a speedometer dial[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_server_list(servers: Sequence[Server], selected: Optional[Server] = None) -> None:
    table = Table(title="Servers", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Location")
    table.add_column("Provider")
    table.add_column("Distance", justify="right")

    for server in servers:
        chosen = selected is not None and server.id == selected.id
        table.add_row(
            ("> " if chosen else "  ") + server.id,
            server.name,
            server.location,
            server.provider,
            f"{server.distance_km:.0f} km" if server.distance_km else "-",
            style="green" if chosen else None,
        )

    console.print(table)


def print_result(result: MeasurementResult, unit: DisplayUnit = DisplayUnit.MBIT) -> None:
    """Print the final results panel with usage ratings."""
    label = unit.display_name
    down = [s.speed_mbps for s in result.download_history]
    up = [s.speed_mbps for s in result.upload_history]

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Server:[/bold cyan] {result.server_name} ({result.server_location})\n"
            f"[bold cyan]Connection:[/bold cyan] {result.connection_type} via {result.provider_name}\n"
            f"[dim]Internal IP: {result.internal_ip}   External IP: {result.external_ip}[/dim]\n\n"
            f"[bold white]   Ping:[/bold white]  [bold yellow]{result.ping_ms} ms[/bold yellow]  "
            f"[dim](jitter: {result.jitter_ms} ms, loss: {result.packet_loss}%)[/dim]\n"
            f"[bold white]   Download:[/bold white]  "
            f"[bold green]{format_speed(result.download_mbps, unit)} {label}[/bold green]  "
            f"[green]{create_histogram(down)}[/green]\n"
            f"[bold white]   Upload:[/bold white]  "
            f"[bold blue]{format_speed(result.upload_mbps, unit)} {label}[/bold blue]  "
            f"[blue]{create_histogram(up)}[/blue]\n\n"
            f"   Streaming {_stars(result.streaming_rating)}   "
            f"Gaming {_stars(result.gaming_rating)}   "
            f"Uploading {_stars(result.uploading_rating)}",
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


def print_error(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")


def print_history(entries: List[Dict[str, Any]], unit: DisplayUnit = DisplayUnit.MBIT) -> None:
    if not entries:
        console.print("[dim]No test history found.[/dim]")
        return

    label = unit.display_name
    table = Table(title="Test History", box=box.ROUNDED)
    table.add_column("Date", style="dim")
    table.add_column("Server")
    table.add_column("Ping", justify="right")
    table.add_column(f"Download ({label})", justify="right", style="green")
    table.add_column(f"Upload ({label})", justify="right", style="blue")
    table.add_column("Type")

    for entry in entries:
        table.add_row(
            str(entry.get("timestamp", ""))[:19].replace("T", " "),
            str(entry.get("server_name", "?")),
            f"{entry.get('ping_ms', 0)} ms",
            format_speed(float(entry.get("download_mbps", 0.0)), unit),
            format_speed(float(entry.get("upload_mbps", 0.0)), unit),
            str(entry.get("connection_type", "")),
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Live progress
# ---------------------------------------------------------------------------

_PHASE_LABELS = {
    MeasurementPhase.CONNECTING: "Connecting",
    MeasurementPhase.PING: "Ping",
    MeasurementPhase.DOWNLOAD: "Download",
    MeasurementPhase.UPLOAD: "Upload",
}


class ProgressDisplay:
    """
    Renders pipeline events as a ``rich`` progress bar shaped like a dial.

    The bar position is the dial progress of the current speed, so it
    moves the way the needle would on the chosen scale.
    """

    def __init__(
        self,
        unit: DisplayUnit = DisplayUnit.MBIT,
        scale: DialScale = DialScale.SCALE_1000,
    ) -> None:
        self.unit = unit
        self.scale = scale
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description:<10}"),
            BarColumn(bar_width=40),
            TextColumn("[bold cyan]{task.fields[reading]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None

    def __enter__(self) -> ProgressDisplay:
        self.progress.start()
        self._task_id = self.progress.add_task("Starting", total=1.0, reading="")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.progress.stop()

    def handle(self, event: PipelineEvent) -> None:
        """Pipeline event callback."""
        if self._task_id is None:
            return

        if event.kind is EventKind.PHASE:
            label = _PHASE_LABELS.get(event.phase, event.phase.value.title())
            self.progress.update(self._task_id, description=label, completed=0, reading="...")
        elif event.kind is EventKind.PROGRESS and event.latency is not None:
            lat = event.latency
            self.progress.update(
                self._task_id,
                completed=len(lat.samples) / max(lat.attempts, 1),
                reading=f"{lat.ping_ms:.0f} ms (jitter {lat.jitter_ms:.1f} ms)",
            )
        elif event.kind is EventKind.PROGRESS and event.sample is not None:
            speed = event.sample.speed_mbps
            self.progress.update(
                self._task_id,
                completed=self.scale.progress(speed),
                reading=f"{format_speed(speed, self.unit)} {self.unit.display_name}",
            )
        elif event.kind is EventKind.COMPLETE:
            self.progress.update(self._task_id, description="Done", completed=0, reading="")
        elif event.kind is EventKind.FAILED:
            self.progress.update(self._task_id, description="Failed", completed=0, reading=event.message)
