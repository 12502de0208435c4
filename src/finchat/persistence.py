"""Chat persistence boundary.

The orchestration core only needs four operations from storage. Every
call goes through :func:`guarded` so a storage failure is logged and
never reaches the client stream.
"""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Protocol, TypeVar

from pydantic import BaseModel, Field

from finchat.errors import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Chat(BaseModel):
    id: str
    user_id: str
    title: str
    created_at: datetime = Field(default_factory=_now)


class StoredMessage(BaseModel):
    id: str
    chat_id: str
    role: str
    content: str
    created_at: datetime = Field(default_factory=_now)


class ChatStore(Protocol):
    async def get_chat(self, chat_id: str) -> Chat | None: ...

    async def save_chat(self, chat_id: str, user_id: str, title: str) -> None: ...

    async def save_messages(self, messages: list[StoredMessage]) -> None: ...

    async def delete_chat(self, chat_id: str) -> None: ...


class InMemoryChatStore:
    """Process-local store, used by default and in tests."""

    def __init__(self) -> None:
        self.chats: dict[str, Chat] = {}
        self.messages: list[StoredMessage] = []

    async def get_chat(self, chat_id: str) -> Chat | None:
        return self.chats.get(chat_id)

    async def save_chat(self, chat_id: str, user_id: str, title: str) -> None:
        self.chats[chat_id] = Chat(id=chat_id, user_id=user_id, title=title)

    async def save_messages(self, messages: list[StoredMessage]) -> None:
        self.messages.extend(messages)

    async def delete_chat(self, chat_id: str) -> None:
        self.chats.pop(chat_id, None)
        self.messages = [m for m in self.messages if m.chat_id != chat_id]


async def guarded(operation: Awaitable[T], description: str) -> T | None:
    """Await a store call, logging and swallowing any failure."""
    try:
        return await operation
    except Exception as e:
        error = PersistenceError(f"{description} failed: {e}")
        logger.warning(str(error))
        return None


_background_tasks: set[asyncio.Task] = set()


def run_in_background(operation: Awaitable, description: str) -> asyncio.Task:
    """Detach a store call from the response lifecycle.

    The task is kept referenced until it finishes; its failures are only
    logged.
    """
    task = asyncio.ensure_future(guarded(operation, description))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
