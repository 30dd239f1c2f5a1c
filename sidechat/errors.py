"""Exception types shared by the sidecar and chat packages."""

from __future__ import annotations

__all__ = [
    "ChatMessageFinalized",
    "ChatTurnInProgress",
    "SidecarStartError",
    "SidecarStartupTimeout",
    "SidechatError",
]


class SidechatError(RuntimeError):
    """Base class for errors raised by sidechat."""


class SidecarStartError(SidechatError):
    """Raised when the sidecar cannot be spawned or dies before becoming healthy."""


class SidecarStartupTimeout(SidecarStartError):
    """Raised when the health endpoint never succeeds within the allotted window."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"sidecar failed to start within {timeout:g}s")
        self.timeout = timeout


class ChatTurnInProgress(SidechatError):
    """Raised when a turn is started while another is still awaiting a response."""


class ChatMessageFinalized(SidechatError):
    """Raised when appending to a message whose stream has already finished."""
