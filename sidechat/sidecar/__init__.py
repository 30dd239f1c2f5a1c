"""Sidecar supervisor, launch configuration, and diagnostic log capture."""

from .config import DEFAULT_PORT, SidecarConfig
from .log_stream import LogChunk, LogStream
from .supervisor import SidecarSupervisor, probe_health

__all__ = [
    "DEFAULT_PORT",
    "LogChunk",
    "LogStream",
    "SidecarConfig",
    "SidecarSupervisor",
    "probe_health",
]
