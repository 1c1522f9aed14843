"""Conversation message types and their chat-completions wire format."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Union

ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class TextBlock:
    value: str

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.value}


@dataclass(frozen=True)
class ImageBlock:
    mime_type: str
    data: str  # base64, no data: prefix

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def to_wire(self) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.data_url}}


ContentBlock = Union[TextBlock, ImageBlock]


@dataclass(frozen=True)
class Message:
    """A single conversation message.

    ``content`` is either plain text or an ordered sequence of content blocks.
    """

    role: str
    content: Union[str, Sequence[ContentBlock]]

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if not isinstance(self.content, str):
            object.__setattr__(self, "content", tuple(self.content))

    def to_wire(self) -> Dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [b.to_wire() for b in self.content]}


def system(text: str) -> Message:
    return Message("system", text)


def user(content: Union[str, Sequence[ContentBlock]]) -> Message:
    return Message("user", content)


def assistant(text: str) -> Message:
    return Message("assistant", text)


def to_wire(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    """Render messages for the ``messages`` field of a completion request."""
    return [m.to_wire() for m in messages]
