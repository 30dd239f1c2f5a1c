"""Sidecar supervisor: spawn, health-gate, observe and stop the backend process."""

from __future__ import annotations

import http.client
import logging
import os
import subprocess
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import TextIO
from urllib import error, request

from sidechat.errors import SidecarStartError, SidecarStartupTimeout
from sidechat.sidecar.config import SidecarConfig
from sidechat.sidecar.log_stream import LogChunk, LogStream

__all__ = ["SidecarSupervisor", "probe_health"]

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
LOOPBACK_HOST = "127.0.0.1"


def probe_health(base_url: str, *, timeout: float = 1.0) -> bool:
    """Return True when ``GET <base_url>/health`` answers with a 2xx status."""

    url = f"{base_url.rstrip('/')}{HEALTH_PATH}"
    try:
        with request.urlopen(url, timeout=timeout) as resp:  # noqa: S310 - loopback URL
            return 200 <= resp.status < 300
    except (error.URLError, http.client.HTTPException, OSError):
        # HTTPError (non-2xx) is a URLError subclass.
        return False


class SidecarSupervisor:
    """Own the lifecycle of a single sidecar process on a fixed loopback port."""

    def __init__(
        self,
        config: SidecarConfig,
        *,
        base_env: Mapping[str, str] | None = None,
        log_path: Path | None = None,
        observers: Iterable[Callable[[LogChunk], None]] | None = None,
    ) -> None:
        self.config = config
        self.base_env = dict(os.environ if base_env is None else base_env)
        self.log_stream = LogStream(log_path)
        for observer in observers or []:
            self.log_stream.add_listener(observer)
        self._lock = threading.Lock()
        self._process: subprocess.Popen[str] | None = None
        self._exited = threading.Event()
        self._exited.set()
        self._last_exit_code: int | None = None

    def __enter__(self) -> SidecarSupervisor:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def pid(self) -> int | None:
        process = self._process
        return process.pid if process is not None else None

    @property
    def last_exit_code(self) -> int | None:
        return self._last_exit_code

    def server_url(self) -> str:
        return f"http://{LOOPBACK_HOST}:{self.config.port}"

    def is_running(self) -> bool:
        process = self._process
        return process is not None and process.returncode is None

    def start(self, health_timeout: float | None = None) -> None:
        """Spawn the sidecar and block until ``/health`` succeeds.

        Raises ``SidecarStartupTimeout`` when the endpoint never becomes
        healthy in time. On any failure, interrupts included, the child is
        killed before the exception propagates.
        """

        if self.is_running():
            return
        timeout = self.config.health_timeout if health_timeout is None else health_timeout
        process, exited = self._spawn()
        started = time.monotonic()
        try:
            self._wait_for_health(process, exited, timeout)
        except BaseException:
            self._clear(process, kill=True)
            raise
        logger.info(
            "sidecar.ready",
            extra={
                "pid": process.pid,
                "url": self.server_url(),
                "elapsed_ms": round((time.monotonic() - started) * 1000, 3),
            },
        )

    def stop(self) -> None:
        """Send SIGTERM to the running sidecar without waiting for it to exit."""

        process = self._process
        if process is None:
            return
        if self._clear(process, kill=False):
            logger.info("sidecar.stop", extra={"pid": process.pid})

    def close(self) -> None:
        """Stop the sidecar and close the diagnostic log for good."""

        self.stop()
        self.log_stream.close()

    def wait_for_exit(self, timeout: float | None = None) -> int | None:
        """Block until the exit watcher has observed the child exiting."""

        if not self._exited.wait(timeout):
            return None
        return self._last_exit_code

    # ------------------------------------------------------------------ helpers
    def _spawn(self) -> tuple[subprocess.Popen[str], threading.Event]:
        argv = self.config.argv
        env = self._build_env()
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            self.log_stream.write(f"Failed to start sidecar: {exc}\n", stream="stderr")
            self.log_stream.release()
            raise SidecarStartError(f"failed to spawn {argv[0]}: {exc}") from exc

        logger.info("sidecar.spawn", extra={"pid": process.pid, "argv": argv})
        exited = threading.Event()
        with self._lock:
            self._process = process
            self._exited = exited
            self._last_exit_code = None

        pumps: list[threading.Thread] = []
        if process.stdout is not None:
            pumps.append(self._start_pump(process.stdout, "stdout"))
        if process.stderr is not None:
            pumps.append(self._start_pump(process.stderr, "stderr"))
        watcher = threading.Thread(
            target=self._watch,
            args=(process, exited, pumps),
            name=f"sidecar-exit-{process.pid}",
            daemon=True,
        )
        watcher.start()
        return process, exited

    def _start_pump(self, pipe: TextIO, label: str) -> threading.Thread:
        def _pump() -> None:
            with pipe:
                for line in iter(pipe.readline, ""):
                    self.log_stream.write(line, stream=label)

        thread = threading.Thread(target=_pump, name=f"sidecar-{label}", daemon=True)
        thread.start()
        return thread

    def _watch(
        self,
        process: subprocess.Popen[str],
        exited: threading.Event,
        pumps: list[threading.Thread],
    ) -> None:
        exit_code = process.wait()
        self._clear(process, kill=False)
        for thread in pumps:
            thread.join(timeout=1.0)
        with self._lock:
            # A newer spawn owns the exit state once the slot was reused.
            current = self._exited is exited
            if current:
                self._last_exit_code = exit_code
        self.log_stream.write(f"sidecar exited with code {exit_code}\n", stream="supervisor")
        if current:
            self.log_stream.release()
        logger.info("sidecar.exit", extra={"pid": process.pid, "exit_code": exit_code})
        exited.set()

    def _clear(self, process: subprocess.Popen[str], *, kill: bool) -> bool:
        """Release the slot if it still holds ``process``; signal it when alive.

        Returns False when another caller already cleared it.
        """

        with self._lock:
            if self._process is not process:
                return False
            self._process = None
        if process.returncode is None:
            try:
                if kill:
                    process.kill()
                else:
                    process.terminate()
            except ProcessLookupError:  # pragma: no cover - exited in between
                pass
        return True

    def _wait_for_health(
        self,
        process: subprocess.Popen[str],
        exited: threading.Event,
        timeout: float,
    ) -> None:
        deadline = time.monotonic() + timeout
        interval = self.config.poll_interval
        url = self.server_url()
        while True:
            remaining = deadline - time.monotonic()
            if self._probe(url, max(min(remaining, 1.0), 0.05)):
                return
            if process.returncode is not None:
                raise SidecarStartError(
                    f"sidecar exited with code {process.returncode} before becoming healthy"
                )
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("sidecar.startup_timeout", extra={"timeout": timeout})
                raise SidecarStartupTimeout(timeout)
            # Wakes early when the exit watcher fires.
            exited.wait(min(interval, remaining))

    def _probe(self, url: str, timeout: float) -> bool:
        return probe_health(url, timeout=timeout)

    def _build_env(self) -> dict[str, str]:
        env = self.config.environment(self.base_env)
        env.setdefault("PYTHONUNBUFFERED", "1")
        return env
