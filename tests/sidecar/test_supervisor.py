from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from urllib import request

import pytest

from sidechat.errors import SidecarStartError, SidecarStartupTimeout
from sidechat.sidecar import LogChunk, SidecarConfig, SidecarSupervisor

SLEEPER = ("-c", "import time; time.sleep(30)")


def _supervisor(
    supervisors: list[SidecarSupervisor], config: SidecarConfig, **kwargs
) -> SidecarSupervisor:
    supervisor = SidecarSupervisor(config, **kwargs)
    supervisors.append(supervisor)
    return supervisor


@pytest.mark.parametrize("port", [1, 8745, 65535])
def test_server_url_depends_only_on_port(port: int) -> None:
    supervisor = SidecarSupervisor(SidecarConfig(executable="unused", port=port))
    assert supervisor.server_url() == f"http://127.0.0.1:{port}"
    assert supervisor.server_url() == supervisor.server_url()
    assert supervisor.is_running() is False


@pytest.mark.parametrize("port", [0, 65536, -1])
def test_invalid_port_rejected(port: int) -> None:
    with pytest.raises(ValueError):
        SidecarConfig(executable="unused", port=port)


def test_start_waits_for_health_and_forwards_output(
    fake_sidecar_config, supervisors: list[SidecarSupervisor]
) -> None:
    chunks: list[LogChunk] = []
    config = fake_sidecar_config(env={"FAKE_SIDECAR_READY_AFTER": "0.4"})
    supervisor = _supervisor(supervisors, config, observers=[chunks.append])

    supervisor.start(health_timeout=5.0)

    assert supervisor.is_running() is True
    assert supervisor.pid is not None
    with request.urlopen(f"{supervisor.server_url()}/health", timeout=2) as resp:
        assert resp.status == 200
    supervisor.stop()
    assert supervisor.is_running() is False
    assert supervisor.wait_for_exit(timeout=5) is not None
    assert any(c.stream == "stdout" and "listening on" in c.text for c in chunks)
    assert any(c.stream == "stderr" and "/health" in c.text for c in chunks)


def test_health_succeeds_on_third_poll(
    monkeypatch: pytest.MonkeyPatch, free_port: int, supervisors: list[SidecarSupervisor]
) -> None:
    config = SidecarConfig(executable=sys.executable, args=SLEEPER, port=free_port)
    supervisor = _supervisor(supervisors, config)
    calls: list[float] = []

    def _probe(url: str, timeout: float) -> bool:
        calls.append(time.monotonic())
        return len(calls) >= 3

    monkeypatch.setattr(supervisor, "_probe", _probe)

    supervisor.start(health_timeout=5.0)

    assert len(calls) == 3
    assert calls[-1] - calls[0] >= 0.35
    assert supervisor.is_running() is True


def test_interrupt_during_health_wait_kills_child(
    monkeypatch: pytest.MonkeyPatch, free_port: int, supervisors: list[SidecarSupervisor]
) -> None:
    config = SidecarConfig(executable=sys.executable, args=SLEEPER, port=free_port)
    supervisor = _supervisor(supervisors, config)

    def _probe(url: str, timeout: float) -> bool:
        raise KeyboardInterrupt

    monkeypatch.setattr(supervisor, "_probe", _probe)

    with pytest.raises(KeyboardInterrupt):
        supervisor.start(health_timeout=5.0)

    assert supervisor.is_running() is False
    assert supervisor.wait_for_exit(timeout=5) is not None


def test_startup_timeout_kills_child(
    free_port: int, supervisors: list[SidecarSupervisor]
) -> None:
    chunks: list[LogChunk] = []
    config = SidecarConfig(executable=sys.executable, args=SLEEPER, port=free_port)
    supervisor = _supervisor(supervisors, config, observers=[chunks.append])

    started = time.monotonic()
    with pytest.raises(SidecarStartupTimeout):
        supervisor.start(health_timeout=1.0)

    assert 0.9 <= time.monotonic() - started < 5.0
    assert supervisor.is_running() is False
    assert supervisor.wait_for_exit(timeout=5) is not None
    assert any("exited with code" in c.text for c in chunks)


def test_unexpected_exit_is_observed_without_stop(
    fake_sidecar_config, supervisors: list[SidecarSupervisor]
) -> None:
    chunks: list[LogChunk] = []
    config = fake_sidecar_config(
        env={"FAKE_SIDECAR_EXIT_AFTER": "0.3", "FAKE_SIDECAR_EXIT_CODE": "3"}
    )
    supervisor = _supervisor(supervisors, config, observers=[chunks.append])
    supervisor.start()

    assert supervisor.wait_for_exit(timeout=5) == 3
    assert supervisor.is_running() is False
    assert supervisor.last_exit_code == 3
    assert chunks[-1].stream == "supervisor"
    assert chunks[-1].text == "sidecar exited with code 3\n"
    supervisor.stop()
    assert supervisor.is_running() is False


def test_start_is_idempotent_and_restart_respawns(
    fake_sidecar_config, supervisors: list[SidecarSupervisor]
) -> None:
    supervisor = _supervisor(supervisors, fake_sidecar_config())
    supervisor.start()
    first_pid = supervisor.pid

    supervisor.start()
    assert supervisor.pid == first_pid

    supervisor.stop()
    supervisor.stop()
    assert supervisor.wait_for_exit(timeout=5) is not None

    supervisor.start()
    assert supervisor.is_running() is True
    assert supervisor.pid != first_pid
    assert supervisor.last_exit_code is None


def test_environment_is_merged_and_port_injected(
    fake_sidecar_config, supervisors: list[SidecarSupervisor]
) -> None:
    config = fake_sidecar_config(
        upstream_url="https://gitlab.example.com",
        access_token="glpat-test",
        env={"FAKE_SIDECAR_EXTRA": "override", "OPENDUO_PORT": "1"},
    )
    base_env = {"PATH": "/usr/bin:/bin", "FAKE_SIDECAR_EXTRA": "base"}
    supervisor = _supervisor(supervisors, config, base_env=base_env)
    supervisor.start()

    with request.urlopen(f"{supervisor.server_url()}/env", timeout=2) as resp:
        reported = json.loads(resp.read().decode())

    assert reported == {
        "GITLAB_URL": "https://gitlab.example.com",
        "GITLAB_PAT": "glpat-test",
        "OPENDUO_PORT": str(config.port),
        "RUST_LOG": "info",
        "FAKE_SIDECAR_EXTRA": "override",
    }


def test_spawn_failure_raises_start_error(free_port: int) -> None:
    chunks: list[LogChunk] = []
    config = SidecarConfig(executable="/definitely/not/a/real/binary", port=free_port)
    supervisor = SidecarSupervisor(config, observers=[chunks.append])

    with pytest.raises(SidecarStartError):
        supervisor.start()

    assert supervisor.is_running() is False
    assert chunks and chunks[0].text.startswith("Failed to start sidecar")


def test_exit_before_healthy_fails_fast(
    free_port: int, supervisors: list[SidecarSupervisor]
) -> None:
    config = SidecarConfig(
        executable=sys.executable, args=("-c", "import sys; sys.exit(2)"), port=free_port
    )
    supervisor = _supervisor(supervisors, config)

    started = time.monotonic()
    with pytest.raises(SidecarStartError) as excinfo:
        supervisor.start(health_timeout=10.0)

    assert not isinstance(excinfo.value, SidecarStartupTimeout)
    assert time.monotonic() - started < 5.0
    assert supervisor.is_running() is False
    assert supervisor.wait_for_exit(timeout=5) == 2


def test_stop_and_exit_watcher_clear_once(
    fake_sidecar_config, supervisors: list[SidecarSupervisor]
) -> None:
    supervisor = _supervisor(supervisors, fake_sidecar_config())
    supervisor.start()
    process = supervisor._process  # type: ignore[attr-defined]
    assert process is not None

    supervisor.stop()
    assert supervisor.wait_for_exit(timeout=5) is not None
    assert supervisor._clear(process, kill=False) is False  # type: ignore[attr-defined]
    assert supervisor.is_running() is False


def test_context_manager_writes_log_file(
    fake_sidecar_config, supervisors: list[SidecarSupervisor], tmp_path: Path
) -> None:
    log_path = tmp_path / "logs" / "sidecar.log"
    supervisor = _supervisor(supervisors, fake_sidecar_config(), log_path=log_path)

    with supervisor:
        assert supervisor.is_running() is True

    assert supervisor.is_running() is False
    assert supervisor.wait_for_exit(timeout=5) is not None
    assert "listening on" in log_path.read_text()


def test_log_file_is_released_between_runs(
    fake_sidecar_config, supervisors: list[SidecarSupervisor], tmp_path: Path
) -> None:
    log_path = tmp_path / "sidecar.log"
    supervisor = _supervisor(supervisors, fake_sidecar_config(), log_path=log_path)

    supervisor.start()
    assert supervisor.log_stream.file_open is True
    supervisor.stop()
    assert supervisor.wait_for_exit(timeout=5) is not None
    assert supervisor.log_stream.file_open is False

    supervisor.start()
    supervisor.stop()
    assert supervisor.wait_for_exit(timeout=5) is not None
    assert supervisor.log_stream.file_open is False
    assert log_path.read_text().count("sidecar exited with code") == 2


def test_close_stops_sidecar_and_closes_log(
    fake_sidecar_config, supervisors: list[SidecarSupervisor], tmp_path: Path
) -> None:
    supervisor = _supervisor(
        supervisors, fake_sidecar_config(), log_path=tmp_path / "sidecar.log"
    )
    supervisor.start()

    supervisor.close()

    assert supervisor.is_running() is False
    assert supervisor.log_stream.closed is True
    assert supervisor.log_stream.file_open is False
    assert supervisor.wait_for_exit(timeout=5) is not None
