"""Stub backend implementing the sidecar's external HTTP contract."""

from .app import StubSettings, create_app

__all__ = ["StubSettings", "create_app"]
