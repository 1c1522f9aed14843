"""Image descriptions through a vision-capable chat-completions model."""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional, Sequence

from . import messages as msg
from .attachments import Attachment
from .errors import ImageAnalysisError
from .llm import ChatCompletionsClient
from .messages import ImageBlock, TextBlock

logger = logging.getLogger(__name__)


def guess_image_mime(filename: str) -> str:
    """Pick the data-URL MIME type from the file extension alone."""
    name = filename.lower()
    if name.endswith(".jpg") or name.endswith(".jpeg"):
        return "image/jpeg"
    return "image/png"


def failure_placeholder(filename: str) -> str:
    return f"[Image analysis failed for {filename}]"


def empty_placeholder(filename: str) -> str:
    return f"[No description returned for {filename}]"


class ImageDescriber:
    """Describe uploaded images, one vision request per image.

    Failures never escape :meth:`describe`; they turn into a placeholder so
    a single bad image cannot fail the turn.
    """

    def __init__(
        self,
        client: ChatCompletionsClient,
        *,
        model: Optional[str] = None,
        max_concurrency: int = 4,
        timeout: Optional[float] = 60.0,
    ) -> None:
        self.client = client
        self.model = model
        self.max_concurrency = max(1, int(max_concurrency))
        self.timeout = timeout

    async def describe(self, data: bytes, filename: str) -> str:
        try:
            text = await asyncio.wait_for(self._request(data, filename), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Image analysis timed out after %ss: %s", self.timeout, filename)
            return failure_placeholder(filename)
        except Exception:
            logger.exception("Image analysis failed: %s", filename)
            return failure_placeholder(filename)

        text = text.strip()
        logger.info("Image analyzed: %s", filename)
        return text or empty_placeholder(filename)

    async def describe_all(self, images: Sequence[Attachment]) -> List[str]:
        """Describe every image concurrently; results keep the input order."""
        if not images:
            return []
        sem = asyncio.Semaphore(self.max_concurrency)

        async def _one(att: Attachment) -> str:
            async with sem:
                return await self.describe(att.data, att.filename)

        return list(await asyncio.gather(*(_one(a) for a in images)))

    async def _request(self, data: bytes, filename: str) -> str:
        encoded = base64.b64encode(data).decode("ascii")
        content = [
            TextBlock(f"Describe this image ({filename}) in detail."),
            ImageBlock(guess_image_mime(filename), encoded),
        ]
        result = await self.client.create([msg.user(content)], model=self.model)
        if not isinstance(result, str):
            raise ImageAnalysisError(f"Vision response for {filename} was not text")
        return result


def create_from_config(cfg: Dict[str, Any], client: ChatCompletionsClient) -> ImageDescriber:
    vis = (cfg or {}).get("vision", {}) or {}
    inf = (cfg or {}).get("inference", {}) or {}
    timeout = vis.get("timeout_seconds")
    return ImageDescriber(
        client,
        model=inf.get("vision_model") or None,
        max_concurrency=int(vis.get("max_concurrency") or 4),
        timeout=float(timeout) if timeout else None,
    )
