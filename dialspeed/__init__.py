"""dialspeed -- network speed measurement pipeline, server directory, and unit conversion."""

from .catalog import CatalogAPI, ClientInfo
from .connectivity import ConnectivityMonitor, ConnectivityState, InterfaceType
from .errors import (
    Aborted,
    ConnectionLost,
    MeasurementInProgress,
    NoConnectivity,
    NoServerSelected,
    ServerUnreachable,
    SpeedtestError,
    TransientProbeFailure,
)
from .events import EventChannel
from .pipeline import (
    EventKind,
    MeasurementPhase,
    MeasurementPipeline,
    PipelineEvent,
    PipelineSettings,
    PipelineState,
)
from .results import MeasurementResult, ResultAssembler
from .servers import Server, ServerDirectory, haversine_km
from .stats import LatencyStats, PhaseResult, SampleHistory, SpeedSample
from .transport import HttpTransport
from .units import DialScale, DisplayUnit, convert, format_speed

__all__ = [
    "Aborted",
    "CatalogAPI",
    "ClientInfo",
    "ConnectionLost",
    "ConnectivityMonitor",
    "ConnectivityState",
    "DialScale",
    "DisplayUnit",
    "EventChannel",
    "EventKind",
    "HttpTransport",
    "InterfaceType",
    "LatencyStats",
    "MeasurementInProgress",
    "MeasurementPhase",
    "MeasurementPipeline",
    "MeasurementResult",
    "NoConnectivity",
    "NoServerSelected",
    "PhaseResult",
    "PipelineEvent",
    "PipelineSettings",
    "PipelineState",
    "ResultAssembler",
    "SampleHistory",
    "Server",
    "ServerDirectory",
    "ServerUnreachable",
    "SpeedSample",
    "SpeedtestError",
    "TransientProbeFailure",
    "convert",
    "format_speed",
    "haversine_km",
]
