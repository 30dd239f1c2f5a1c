"""Configuration helpers for the sidechat CLI host."""

from __future__ import annotations

import os
import shlex
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from sidechat.chat.session import DEFAULT_CHAT_TIMEOUT
from sidechat.sidecar.config import (
    DEFAULT_HEALTH_TIMEOUT,
    DEFAULT_PORT,
    SidecarConfig,
    validate_port,
)

_CONFIG_FILENAME = "config.toml"
_DEFAULT_BINARY = "openduo-server"
_ENV_HOME = "SIDECHAT_HOME"
_ENV_BINARY = "SIDECHAT_BINARY"
_ENV_PORT = "SIDECHAT_PORT"
_ENV_UPSTREAM = "SIDECHAT_UPSTREAM_URL"
_ENV_TOKEN = "SIDECHAT_TOKEN"
_ENV_USERNAME = "SIDECHAT_USERNAME"


@dataclass(slots=True)
class ClientConfig:
    """Settings for launching the sidecar and chatting with it."""

    binary: str = _DEFAULT_BINARY
    binary_args: list[str] = field(default_factory=list)
    port: int = DEFAULT_PORT
    upstream_url: str | None = None
    access_token: str | None = None
    username: str | None = None
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT
    chat_timeout: float | None = DEFAULT_CHAT_TIMEOUT
    log_file: Path | None = None
    env: dict[str, str] = field(default_factory=dict)

    def merged(
        self,
        *,
        binary: str | None = None,
        port: int | None = None,
        upstream_url: str | None = None,
        access_token: str | None = None,
        username: str | None = None,
    ) -> ClientConfig:
        """Return a copy that applies CLI/env overrides."""

        return replace(
            self,
            binary=binary or self.binary,
            port=self.port if port is None else validate_port(port),
            upstream_url=upstream_url or self.upstream_url,
            access_token=access_token or self.access_token,
            username=username or self.username,
        )

    def sidecar_config(self) -> SidecarConfig:
        return SidecarConfig(
            executable=self.binary,
            args=tuple(self.binary_args),
            port=self.port,
            upstream_url=self.upstream_url,
            access_token=self.access_token,
            env=dict(self.env),
            health_timeout=self.health_timeout,
        )


def _config_dir() -> Path:
    custom = os.environ.get(_ENV_HOME)
    return Path(custom) if custom else Path.home() / ".sidechat"


def config_path() -> Path:
    """Return the path to the CLI configuration file."""

    return _config_dir() / _CONFIG_FILENAME


def _parse_args(value: Any) -> list[str]:
    if isinstance(value, str):
        return shlex.split(value)
    return [str(item) for item in value or []]


def load_client_config() -> ClientConfig:
    """Load configuration from disk + environment overrides."""

    data: dict[str, Any] = {}
    path = config_path()
    if path.exists():
        data = tomllib.loads(path.read_text())

    sidecar = data.get("sidecar", {})
    chat = data.get("chat", {})
    chat_timeout = chat.get("timeout", DEFAULT_CHAT_TIMEOUT)
    log_file = sidecar.get("log_file")
    config = ClientConfig(
        binary=str(sidecar.get("binary", _DEFAULT_BINARY)),
        binary_args=_parse_args(sidecar.get("args")),
        port=validate_port(sidecar.get("port", DEFAULT_PORT)),
        upstream_url=sidecar.get("upstream_url"),
        access_token=sidecar.get("access_token"),
        username=chat.get("username"),
        health_timeout=float(sidecar.get("health_timeout", DEFAULT_HEALTH_TIMEOUT)),
        chat_timeout=float(chat_timeout) if chat_timeout else None,
        log_file=Path(log_file).expanduser() if log_file else None,
        env={str(k): str(v) for k, v in sidecar.get("env", {}).items()},
    )

    env_port = os.environ.get(_ENV_PORT)
    return config.merged(
        binary=os.environ.get(_ENV_BINARY),
        port=int(env_port) if env_port else None,
        upstream_url=os.environ.get(_ENV_UPSTREAM),
        access_token=os.environ.get(_ENV_TOKEN),
        username=os.environ.get(_ENV_USERNAME),
    )
