from __future__ import annotations

import asyncio
import base64

from malan_chat.attachments import Attachment
from malan_chat.errors import InferenceError
from malan_chat.messages import ImageBlock, TextBlock
from malan_chat.vision import ImageDescriber, guess_image_mime

from conftest import DummyClient


class SlowClient:
    """Vision client whose latency depends on the file name; tracks concurrency."""

    def __init__(self, delays):
        self.delays = delays
        self.active = 0
        self.peak = 0

    async def create(self, messages, *, model=None, **params):
        text = messages[0].content[0].value
        name = text[text.index("(") + 1 : text.index(")")]
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays[name])
        finally:
            self.active -= 1
        return f"desc of {name}"


def test_mime_is_chosen_from_extension():
    assert guess_image_mime("pic.jpg") == "image/jpeg"
    assert guess_image_mime("pic.JPEG") == "image/jpeg"
    assert guess_image_mime("pic.png") == "image/png"
    assert guess_image_mime("pic.gif") == "image/png"


def test_describe_sends_instruction_and_image():
    client = DummyClient(describe="  a red square  ")
    describer = ImageDescriber(client, model="vision")

    out = asyncio.run(describer.describe(b"\x89PNG", "square.jpg"))

    assert out == "a red square"
    call = client.calls[0]
    assert call["model"] == "vision"
    (message,) = call["messages"]
    assert message.role == "user"
    assert message.content == (
        TextBlock("Describe this image (square.jpg) in detail."),
        ImageBlock("image/jpeg", base64.b64encode(b"\x89PNG").decode("ascii")),
    )


def test_failure_becomes_placeholder():
    client = DummyClient()
    client.fail_images = InferenceError("vision down")
    describer = ImageDescriber(client)

    assert asyncio.run(describer.describe(b"x", "pic.png")) == "[Image analysis failed for pic.png]"


def test_unexpected_exception_becomes_placeholder():
    client = DummyClient()
    client.fail_images = RuntimeError("socket closed")
    describer = ImageDescriber(client)

    assert asyncio.run(describer.describe(b"x", "pic.png")) == "[Image analysis failed for pic.png]"


def test_empty_description_placeholder():
    describer = ImageDescriber(DummyClient(describe="   "))
    assert asyncio.run(describer.describe(b"x", "a.png")) == "[No description returned for a.png]"


def test_timeout_becomes_placeholder():
    describer = ImageDescriber(SlowClient({"slow.png": 1.0}), timeout=0.01)
    assert asyncio.run(describer.describe(b"x", "slow.png")) == "[Image analysis failed for slow.png]"


def test_describe_all_keeps_input_order():
    client = SlowClient({"a.png": 0.05, "b.png": 0.0, "c.png": 0.02})
    describer = ImageDescriber(client)
    images = [Attachment(n, "image/png", b"x") for n in ("a.png", "b.png", "c.png")]

    out = asyncio.run(describer.describe_all(images))

    assert out == ["desc of a.png", "desc of b.png", "desc of c.png"]
    assert client.peak == 3


def test_describe_all_respects_concurrency_limit():
    names = [f"{i}.png" for i in range(6)]
    client = SlowClient({n: 0.01 for n in names})
    describer = ImageDescriber(client, max_concurrency=2)

    out = asyncio.run(describer.describe_all([Attachment(n, "image/png", b"x") for n in names]))

    assert len(out) == 6
    assert client.peak == 2


def test_one_failure_does_not_cancel_siblings():
    class HalfBroken(SlowClient):
        async def create(self, messages, *, model=None, **params):
            text = messages[0].content[0].value
            if "bad.png" in text:
                raise InferenceError("nope")
            return await super().create(messages, model=model, **params)

    describer = ImageDescriber(HalfBroken({"good.png": 0.01}))
    images = [Attachment("bad.png", "image/png", b"x"), Attachment("good.png", "image/png", b"y")]

    out = asyncio.run(describer.describe_all(images))

    assert out == ["[Image analysis failed for bad.png]", "desc of good.png"]


def test_describe_all_empty():
    assert asyncio.run(ImageDescriber(DummyClient()).describe_all([])) == []
