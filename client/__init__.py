"""Command-line host for the sidechat sidecar and chat client."""

from sidechat.version import __version__

__all__ = ["__version__"]
