"""Typed launch configuration for the sidecar backend."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

__all__ = [
    "ACCESS_TOKEN_ENV",
    "DEFAULT_HEALTH_TIMEOUT",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_PORT",
    "LOG_FILTER_ENV",
    "PORT_ENV",
    "SidecarConfig",
    "UPSTREAM_URL_ENV",
    "validate_port",
]

DEFAULT_PORT = 8745
DEFAULT_HEALTH_TIMEOUT = 5.0
DEFAULT_POLL_INTERVAL = 0.2

UPSTREAM_URL_ENV = "GITLAB_URL"
ACCESS_TOKEN_ENV = "GITLAB_PAT"
PORT_ENV = "OPENDUO_PORT"
LOG_FILTER_ENV = "RUST_LOG"


def validate_port(port: int) -> int:
    port = int(port)
    if not 1 <= port <= 65535:
        raise ValueError(f"port must be within 1-65535 (received {port})")
    return port


@dataclass(frozen=True, slots=True)
class SidecarConfig:
    """Everything needed to launch one sidecar process.

    ``env`` holds free-form overrides; the named fields are injected on top of
    them so the port variable always matches ``port``.
    """

    executable: Path | str
    args: Sequence[str] = ()
    port: int = DEFAULT_PORT
    upstream_url: str | None = None
    access_token: str | None = None
    log_filter: str | None = "info"
    env: Mapping[str, str] = field(default_factory=dict)
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def __post_init__(self) -> None:
        object.__setattr__(self, "port", validate_port(self.port))
        if self.health_timeout <= 0:
            raise ValueError("health_timeout must be positive")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

    @property
    def argv(self) -> list[str]:
        return [str(self.executable), *self.args]

    def environment(self, base_env: Mapping[str, str]) -> dict[str, str]:
        """Merge ``base_env`` with the overrides and injected variables."""

        env: dict[str, str] = dict(base_env)
        env.update({k: str(v) for k, v in self.env.items()})
        if self.upstream_url is not None:
            env[UPSTREAM_URL_ENV] = self.upstream_url
        if self.access_token is not None:
            env[ACCESS_TOKEN_ENV] = self.access_token
        if self.log_filter is not None:
            env[LOG_FILTER_ENV] = self.log_filter
        env[PORT_ENV] = str(self.port)
        return env
