from __future__ import annotations

import asyncio

import pytest

from malan_chat import messages as msg
from malan_chat.memory import HistoryStore, InMemoryHistoryStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_new_conversation_is_seeded_with_system_prompt_once():
    store = InMemoryHistoryStore()
    store.get_or_create("u1", "be nice")
    store.get_or_create("u1", "ignored on second call")

    history = store.messages("u1")
    assert history == [msg.system("be nice")]


def test_append_keeps_order():
    store = InMemoryHistoryStore()
    store.get_or_create("u1", "sys")
    store.append("u1", msg.user("hi"))
    store.append("u1", msg.assistant("hello"))

    assert [m.role for m in store.messages("u1")] == ["system", "user", "assistant"]


def test_messages_returns_a_copy():
    store = InMemoryHistoryStore()
    store.get_or_create("u1", "sys")
    snapshot = store.messages("u1")
    snapshot.append(msg.user("sneaky"))
    assert len(store.messages("u1")) == 1


def test_append_to_unknown_conversation_fails():
    store = InMemoryHistoryStore()
    with pytest.raises(KeyError):
        store.append("nope", msg.user("hi"))


def test_second_system_message_is_rejected():
    store = InMemoryHistoryStore()
    store.get_or_create("u1", "sys")
    with pytest.raises(ValueError):
        store.append("u1", msg.system("again"))


def test_conversations_are_isolated():
    store = InMemoryHistoryStore()
    store.get_or_create("a", "sys")
    store.get_or_create("b", "sys")
    store.append("a", msg.user("only in a"))

    assert len(store.messages("a")) == 2
    assert len(store.messages("b")) == 1
    assert store.list_conversations() == ["a", "b"]
    assert store.messages("missing") == []


def test_idle_conversations_expire():
    clock = FakeClock()
    store = InMemoryHistoryStore(max_idle_seconds=10, clock=clock)
    store.get_or_create("old", "sys")
    clock.now = 5
    store.get_or_create("fresh", "sys")

    clock.now = 12
    assert store.list_conversations() == ["fresh"]

    # Re-created from scratch after expiry
    conv = store.get_or_create("old", "sys")
    assert len(conv.messages) == 1


def test_no_expiry_by_default():
    clock = FakeClock()
    store = InMemoryHistoryStore(clock=clock)
    store.get_or_create("a", "sys")
    clock.now = 10**9
    assert store.list_conversations() == ["a"]


def test_lock_serializes_turns_on_one_conversation():
    store = InMemoryHistoryStore()
    store.get_or_create("u1", "sys")

    async def turn(label: str) -> None:
        async with store.lock("u1"):
            store.append("u1", msg.user(f"{label}-question"))
            await asyncio.sleep(0.01)
            store.append("u1", msg.assistant(f"{label}-answer"))

    async def main() -> None:
        await asyncio.gather(turn("a"), turn("b"))

    asyncio.run(main())

    contents = [m.content for m in store.messages("u1")[1:]]
    assert contents in (
        ["a-question", "a-answer", "b-question", "b-answer"],
        ["b-question", "b-answer", "a-question", "a-answer"],
    )


def test_lock_is_per_conversation():
    store = InMemoryHistoryStore()
    assert store.lock("a") is store.lock("a")
    assert store.lock("a") is not store.lock("b")


def test_clear_drops_the_lock_too():
    store = InMemoryHistoryStore()
    store.get_or_create("a", "sys")
    first = store.lock("a")

    assert store.clear("a") is True
    assert "a" not in store._locks
    assert store.lock("a") is not first
    assert store.clear("missing") is False


def test_clear_keeps_a_held_lock():
    store = InMemoryHistoryStore()
    store.get_or_create("a", "sys")

    async def main() -> None:
        async with store.lock("a"):
            store.clear("a")
            assert store.lock("a").locked()

    asyncio.run(main())


def test_history_store_requires_every_method():
    class Partial(HistoryStore):
        def get_or_create(self, conversation_id, system_prompt):
            return None

    with pytest.raises(TypeError):
        Partial()
