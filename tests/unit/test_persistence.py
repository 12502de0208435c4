import asyncio
import logging

import pytest

from finchat.persistence import InMemoryChatStore, StoredMessage, guarded, run_in_background


class FailingStore(InMemoryChatStore):
    async def save_messages(self, messages):
        raise ConnectionError("database unavailable")


@pytest.mark.asyncio
async def test_in_memory_round_trip():
    store = InMemoryChatStore()
    await store.save_chat("c1", "u1", "Apple news")
    await store.save_messages([StoredMessage(id="m1", chat_id="c1", role="user", content="hi")])

    chat = await store.get_chat("c1")
    assert (chat.user_id, chat.title) == ("u1", "Apple news")

    await store.delete_chat("c1")
    assert await store.get_chat("c1") is None
    assert store.messages == []


@pytest.mark.asyncio
async def test_guarded_returns_value():
    store = InMemoryChatStore()
    await store.save_chat("c1", "u1", "t")

    chat = await guarded(store.get_chat("c1"), "get_chat")
    assert chat.id == "c1"


@pytest.mark.asyncio
async def test_guarded_swallows_and_logs(caplog):
    store = FailingStore()

    with caplog.at_level(logging.WARNING, logger="finchat.persistence"):
        result = await guarded(store.save_messages([]), "save_messages")

    assert result is None
    assert any(
        "save_messages failed: database unavailable" in r.message
        for r in caplog.records
    )


@pytest.mark.asyncio
async def test_run_in_background_completes():
    store = InMemoryChatStore()
    message = StoredMessage(id="m1", chat_id="c1", role="assistant", content="done")

    task = run_in_background(store.save_messages([message]), "save_messages")
    await asyncio.wait_for(task, timeout=1)

    assert store.messages == [message]


@pytest.mark.asyncio
async def test_run_in_background_failure_is_contained():
    task = run_in_background(FailingStore().save_messages([]), "save_messages")
    assert await task is None
