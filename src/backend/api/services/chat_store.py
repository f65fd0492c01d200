"""
Chat persistence collaborator.

The chat path only needs to save a finished conversation and read one back;
storage internals live behind the ``ChatStore`` protocol.
"""

from __future__ import annotations

import asyncio

from collections.abc import Sequence
from typing import Protocol

from models.chat_models import ChatMessage
from models.schemas.chat import StoredChat
from utils.logger import logger


class ChatStore(Protocol):
    async def save_chat(
        self,
        chat_id: str,
        messages: Sequence[ChatMessage],
        user_id: str | None = None,
        model: str | None = None,
    ) -> None: ...

    async def get_chat(self, chat_id: str) -> StoredChat | None: ...


class InMemoryChatStore:
    """Process-local ``ChatStore``. Conversations are lost on restart."""

    def __init__(self) -> None:
        self._chats: dict[str, StoredChat] = {}
        self._lock = asyncio.Lock()

    async def save_chat(
        self,
        chat_id: str,
        messages: Sequence[ChatMessage],
        user_id: str | None = None,
        model: str | None = None,
    ) -> None:
        """Replace the stored message sequence of ``chat_id``."""
        async with self._lock:
            existing = self._chats.get(chat_id)
            self._chats[chat_id] = StoredChat(
                chat_id=chat_id,
                user_id=user_id or (existing.user_id if existing else None),
                model=model or (existing.model if existing else None),
                messages=list(messages),
            )
        logger.debug(f"Saved chat {chat_id} ({len(messages)} messages)", chat_id=chat_id)

    async def get_chat(self, chat_id: str) -> StoredChat | None:
        return self._chats.get(chat_id)

    def __len__(self) -> int:
        return len(self._chats)
