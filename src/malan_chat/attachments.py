"""Uploaded attachments: classification and text decoding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .errors import AttachmentDecodeError


@dataclass(frozen=True)
class Attachment:
    filename: str
    mime_type: str
    data: bytes

    @property
    def is_image(self) -> bool:
        return (self.mime_type or "").startswith("image/")


def classify_attachments(files: Iterable[Attachment]) -> Tuple[List[Attachment], List[Attachment]]:
    """Split attachments into ``(images, text_files)`` by MIME type prefix."""
    images: List[Attachment] = []
    text_files: List[Attachment] = []
    for f in files:
        (images if f.is_image else text_files).append(f)
    return images, text_files


def decode_text(attachment: Attachment) -> str:
    """Decode attachment bytes as UTF-8.

    Raises
    ------
    AttachmentDecodeError
        If the bytes are not valid UTF-8. Callers that want to carry on can
        use :func:`decode_text_lossy`.
    """
    try:
        return attachment.data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise AttachmentDecodeError(attachment.filename, str(e)) from e


def decode_text_lossy(attachment: Attachment) -> str:
    return attachment.data.decode("utf-8", errors="replace")
