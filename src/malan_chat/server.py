"""FastAPI application forwarding chat turns to a hosted LLM."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel

from . import diagnostics as diagnostics_mod
from . import downloads as downloads_mod
from . import llm as llm_mod
from . import vision as vision_mod
from .attachments import Attachment
from .config import get_api_key, load_config
from .errors import InferenceError
from .llm import ChatCompletionsClient, CompletionInvoker, GenerationConfig, preview
from .memory import HistoryStore, InMemoryHistoryStore
from .turns import ChatService, TurnAssembler

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic response models
# -----------------------------
class ChatResponse(BaseModel):
    reply: str


class FileInfo(BaseModel):
    name: str
    url: str


class FileResponseBody(BaseModel):
    file: FileInfo


# -----------------------------
# Utilities
# -----------------------------
def _truthy(value: Optional[str]) -> bool:
    return value in ("true", "1")


def _get_system_prompt(cfg: Dict[str, Any]) -> str:
    sys_prompt = cfg.get("identity", {}).get("system_prompt") or "You are a helpful AI assistant."
    return str(sys_prompt).strip()


def _make_store(cfg: Dict[str, Any]) -> InMemoryHistoryStore:
    max_idle = cfg.get("history", {}).get("max_idle_seconds")
    return InMemoryHistoryStore(max_idle_seconds=float(max_idle) if max_idle else None)


async def _read_uploads(files: List[UploadFile]) -> List[Attachment]:
    out: List[Attachment] = []
    for f in files or []:
        data = await f.read()
        out.append(Attachment(filename=f.filename or "file", mime_type=f.content_type or "", data=data))
    return out


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    client: Optional[ChatCompletionsClient] = None,
    store: Optional[HistoryStore] = None,
) -> FastAPI:
    cfg = load_config(config_path)

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])
    default_conversation = str(cfg.get("history", {}).get("default_conversation_id") or "default")

    # Services
    owns_client = client is None
    client = client if client is not None else llm_mod.create_from_config(cfg, get_api_key(cfg))
    store = store if store is not None else _make_store(cfg)
    describer = vision_mod.create_from_config(cfg, client)
    assembler = TurnAssembler(
        store,
        describer,
        diagnostics_mod.create_from_config(cfg),
        system_prompt=_get_system_prompt(cfg),
    )
    invoker = CompletionInvoker(client, store, GenerationConfig.from_config(cfg))
    service = ChatService(store, assembler, invoker)
    download_mode, downloads = downloads_mod.create_from_config(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_client:
            await client.aclose()

    app = FastAPI(title="Malan-Ai Chat Server", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = service
    app.state.store = store

    @app.exception_handler(InferenceError)
    async def inference_error_handler(request: Request, exc: InferenceError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"error": "AI request failed"})

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "model": getattr(client, "model", None),
            "conversations": len(store.list_conversations()),
        }

    @app.get("/config")
    def get_config() -> JSONResponse:
        # Only the env var name for the key is in cfg, never the key itself.
        return JSONResponse(dict(cfg))

    @app.post("/api/chat")
    async def chat(
        message: str = Form(""),
        createfile: Optional[str] = Form(None),
        includeServerFile: Optional[str] = Form(None),
        conversationId: Optional[str] = Form(None),
        file: List[UploadFile] = File(default=[]),
    ):
        attachments = await _read_uploads(file)
        result = await service.run_turn(
            conversationId or default_conversation,
            message or "",
            attachments,
            include_diagnostic=_truthy(includeServerFile),
        )
        reply = result.formatted
        logger.info("AI Reply: %s", preview(reply))

        if _truthy(createfile) and reply:
            if download_mode == downloads_mod.STORED:
                name = await run_in_threadpool(downloads.save, reply)
                return FileResponseBody(file=FileInfo(name=name, url=f"/download/{name}"))
            return PlainTextResponse(
                reply,
                headers={"Content-Disposition": downloads_mod.content_disposition(downloads.filename)},
            )

        return ChatResponse(reply=reply)

    @app.get("/download/{filename}")
    def download(filename: str):
        path = downloads.resolve(filename)
        if path is None:
            return JSONResponse(status_code=404, content={"error": "File not found"})
        return FileResponse(path, media_type="text/plain", filename=path.name)

    return app
