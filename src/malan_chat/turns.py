"""Turn assembly: everything a user sends in one request, appended to the
conversation in a fixed order, then handed to the completion step."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from fastapi.concurrency import run_in_threadpool

from . import messages as msg
from .attachments import Attachment, classify_attachments, decode_text, decode_text_lossy
from .diagnostics import DiagnosticResources
from .errors import AttachmentDecodeError, DiagnosticResourceError
from .formatting import format_reply
from .llm import CompletionInvoker
from .memory import HistoryStore
from .vision import ImageDescriber

logger = logging.getLogger(__name__)


def image_entry(filename: str, description: str) -> str:
    return f"[Image file: {filename}]\n{description}"


def file_entry(filename: str, content: str) -> str:
    return f"[File uploaded: {filename}]\nContent:\n{content}"


def diagnostic_entry(name: str, content: str) -> str:
    return f"[Diagnostic resource: {name}]\n{content}"


class TurnAssembler:
    """Append one user turn to a conversation.

    Order of appended user messages:
      1. the raw text
      2. the diagnostic resource, if requested and readable
      3. one combined message with every image description
      4. one message per text attachment
    """

    def __init__(
        self,
        store: HistoryStore,
        describer: ImageDescriber,
        diagnostics: Optional[DiagnosticResources] = None,
        *,
        system_prompt: str = "You are a helpful AI assistant.",
    ) -> None:
        self.store = store
        self.describer = describer
        self.diagnostics = diagnostics
        self.system_prompt = system_prompt

    async def assemble(
        self,
        conversation_id: str,
        text: str,
        images: Sequence[Attachment] = (),
        text_files: Sequence[Attachment] = (),
        *,
        include_diagnostic: bool = False,
    ) -> None:
        # Vision calls happen before any mutation so the appends stay contiguous.
        descriptions = await self.describer.describe_all(images)

        self.store.get_or_create(conversation_id, self.system_prompt)
        self.store.append(conversation_id, msg.user(text))

        if include_diagnostic:
            await self._append_diagnostic(conversation_id)

        if images:
            combined = "\n\n".join(
                image_entry(att.filename, desc) for att, desc in zip(images, descriptions)
            )
            self.store.append(conversation_id, msg.user(combined))

        for att in text_files:
            self.store.append(conversation_id, msg.user(file_entry(att.filename, self._decode(att))))

    async def _append_diagnostic(self, conversation_id: str) -> None:
        if self.diagnostics is None:
            logger.warning("Diagnostic include requested but no resources are configured")
            return
        try:
            content = await run_in_threadpool(self.diagnostics.read)
        except DiagnosticResourceError as e:
            logger.error("Skipping diagnostic include: %s", e)
            return
        self.store.append(conversation_id, msg.user(diagnostic_entry(self.diagnostics.default, content)))

    @staticmethod
    def _decode(att: Attachment) -> str:
        try:
            return decode_text(att)
        except AttachmentDecodeError as e:
            logger.warning("%s; undecodable bytes replaced", e)
            return decode_text_lossy(att)


@dataclass
class TurnResult:
    raw: str
    formatted: str
    conversation_id: str


class ChatService:
    """Run a full turn: assemble, complete, format."""

    def __init__(self, store: HistoryStore, assembler: TurnAssembler, invoker: CompletionInvoker) -> None:
        self.store = store
        self.assembler = assembler
        self.invoker = invoker

    async def run_turn(
        self,
        conversation_id: str,
        text: str,
        attachments: Sequence[Attachment] = (),
        *,
        include_diagnostic: bool = False,
    ) -> TurnResult:
        images, text_files = classify_attachments(attachments)
        async with self.store.lock(conversation_id):
            await self.assembler.assemble(
                conversation_id,
                text,
                images,
                text_files,
                include_diagnostic=include_diagnostic,
            )
            raw = await self.invoker.complete(conversation_id)
        return TurnResult(raw=raw, formatted=format_reply(raw), conversation_id=conversation_id)
