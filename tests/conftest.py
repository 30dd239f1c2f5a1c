"""Shared pytest fixtures."""

from __future__ import annotations

import socket
import sys
import time
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from sidechat.sidecar import SidecarConfig, SidecarSupervisor

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def allocate_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture()
def free_port() -> int:
    return allocate_port()


@pytest.fixture()
def fake_sidecar_config(free_port: int) -> Callable[..., SidecarConfig]:
    def _build(**overrides: object) -> SidecarConfig:
        env = {str(k): str(v) for k, v in dict(overrides.pop("env", {})).items()}
        values: dict[str, object] = {
            "executable": sys.executable,
            "args": (str(FIXTURES / "fake_sidecar.py"),),
            "port": free_port,
            "env": env,
        }
        values.update(overrides)
        return SidecarConfig(**values)  # type: ignore[arg-type]

    return _build


@pytest.fixture()
def supervisors() -> Iterator[list[SidecarSupervisor]]:
    """Collect supervisors so every spawned child is stopped after the test."""

    created: list[SidecarSupervisor] = []
    yield created
    for supervisor in created:
        supervisor.stop()
        supervisor.wait_for_exit(timeout=5)
        supervisor.close()
