"""Serve the stub backend: ``python -m sidechat.stub``."""

from __future__ import annotations

import argparse
import os

import uvicorn

from sidechat.sidecar.config import DEFAULT_PORT, LOG_FILTER_ENV, PORT_ENV
from sidechat.stub.app import StubSettings, create_app

_UVICORN_LEVELS = {"critical", "error", "warning", "info", "debug", "trace"}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the sidechat stub backend")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get(PORT_ENV, DEFAULT_PORT)),
        help=f"Port to bind on 127.0.0.1 (defaults to ${PORT_ENV} or {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--token-delay",
        type=float,
        default=float(os.environ.get("SIDECHAT_STUB_TOKEN_DELAY", "0")),
        help="Seconds to wait between streamed tokens",
    )
    return parser.parse_args(argv)


def log_level_from_env() -> str:
    level = os.environ.get(LOG_FILTER_ENV, "info").strip().lower()
    return level if level in _UVICORN_LEVELS else "info"


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = StubSettings(token_delay=args.token_delay)
    uvicorn.run(
        create_app(settings),
        host="127.0.0.1",
        port=args.port,
        log_level=log_level_from_env(),
    )


if __name__ == "__main__":
    main()
