"""Conversation state for the streaming chat client."""

from __future__ import annotations

import enum
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from typing import Any

from sidechat.errors import ChatMessageFinalized, ChatTurnInProgress

__all__ = [
    "ChatEvent",
    "ChatEventKind",
    "ChatMessage",
    "ChatRequest",
    "ChatSessionState",
    "MessageRole",
    "create_message",
]


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ChatMessage:
    """One entry of the transcript.

    ``content`` only grows while ``streaming`` is true; ``finalize`` freezes it.
    """

    role: MessageRole
    content: str = ""
    streaming: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("ChatMessage.id is immutable")
        super().__setattr__(name, value)

    def append(self, token: str) -> None:
        if not self.streaming:
            raise ChatMessageFinalized(f"message {self.id} is no longer streaming")
        self.content += token

    def finalize(self, content: str | None = None) -> None:
        if content is not None:
            self.content = content
        self.streaming = False

    def snapshot(self) -> ChatMessage:
        return replace(self)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "streaming": self.streaming,
        }


def create_message(role: MessageRole | str, content: str = "") -> ChatMessage:
    return ChatMessage(role=MessageRole(role), content=content)


@dataclass
class ChatRequest:
    message: str
    username: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message}
        if self.username:
            payload["username"] = self.username
        return payload


class ChatEventKind(str, enum.Enum):
    CREATED = "created"
    DELTA = "delta"
    FINALIZED = "finalized"


@dataclass(frozen=True, slots=True)
class ChatEvent:
    """Incremental update delivered to a chat sink.

    ``message`` is a snapshot taken when the event was emitted; ``delta`` is
    the text appended by a ``DELTA`` event and empty otherwise.
    """

    kind: ChatEventKind
    message: ChatMessage
    delta: str = ""


class ChatSessionState:
    """Ordered transcript plus the single in-flight turn flag."""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self.awaiting_response = False

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(list(self._messages))

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def find(self, message_id: str) -> ChatMessage | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def begin_turn(self, text: str) -> tuple[ChatMessage, ChatMessage]:
        if self.awaiting_response:
            raise ChatTurnInProgress("a chat turn is already awaiting a response")
        user = create_message(MessageRole.USER, text)
        assistant = create_message(MessageRole.ASSISTANT)
        assistant.streaming = True
        self._messages.extend((user, assistant))
        self.awaiting_response = True
        return user, assistant

    def end_turn(self) -> None:
        self.awaiting_response = False

    def clear(self) -> None:
        if self.awaiting_response:
            raise ChatTurnInProgress("cannot clear the transcript while a turn is pending")
        self._messages.clear()
