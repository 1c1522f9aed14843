"""Domain exception hierarchy for the Malan chat server."""

from __future__ import annotations


class MalanChatError(RuntimeError):
    """Base class for all domain-level chat errors."""


class InferenceError(MalanChatError):
    """Raised when the chat-completion call fails or returns a malformed payload."""


class ImageAnalysisError(MalanChatError):
    """Raised when a vision request cannot produce a description."""


class AttachmentDecodeError(MalanChatError):
    """Raised when an uploaded text attachment is not valid UTF-8."""

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"Could not decode {filename!r} as UTF-8: {reason}")
        self.filename = filename


class DiagnosticResourceError(MalanChatError):
    """Raised when a configured diagnostic resource cannot be read."""


class ConfigError(MalanChatError):
    """Raised when configuration cannot be parsed."""
