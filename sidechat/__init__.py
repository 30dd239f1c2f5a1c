"""Sidecar process supervision and streaming chat client."""

from .version import __version__  # noqa: F401
