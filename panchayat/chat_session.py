"""
Chat Session Manager: the client-side view of the user's conversations.

Sending a message is optimistic. The user's text is shown immediately as a
provisional entry, replaced by the server's canonical pair (user + assistant)
once the exchange is confirmed. On failure the provisional entry is dropped and
the chat is re-fetched from the server before the error is re-raised.

Each chat runs its own send state machine:

    IDLE -> SENDING -> CONFIRMED -> SENDING -> ...
               \\
                -> ROLLING_BACK -> IDLE

A per-chat lock queues a second send until the first one has settled.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional

from .errors import NoActiveChatError, PortalError, ValidationError
from .models import (Chat, ChatCategory, ChatSummary, Language, Message, MessageExchange,
                     Role)

logger = logging.getLogger(__name__)


class ChatSendState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    CONFIRMED = "confirmed"
    ROLLING_BACK = "rolling_back"


TRANSITIONS = {
    ChatSendState.IDLE: {ChatSendState.SENDING},
    ChatSendState.SENDING: {ChatSendState.CONFIRMED, ChatSendState.ROLLING_BACK},
    ChatSendState.CONFIRMED: {ChatSendState.SENDING},
    ChatSendState.ROLLING_BACK: {ChatSendState.IDLE},
}


class IllegalTransitionError(RuntimeError):
    pass


def _summary(chat: Chat) -> ChatSummary:
    return ChatSummary.model_validate(chat.model_dump(exclude={"messages"}))


def _coerce(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unsupported {field}: {value}")


class ChatSessionManager:
    def __init__(self, api):
        self.api = api
        self.chats: List[ChatSummary] = []
        self.active_chat: Optional[Chat] = None
        self.error: Optional[str] = None
        self._locks: Dict[str, asyncio.Lock] = {}
        self._states: Dict[str, ChatSendState] = {}

    # -- state machine -------------------------------------------------------
    def state_of(self, chat_id: str) -> ChatSendState:
        return self._states.get(chat_id, ChatSendState.IDLE)

    def _transition(self, chat_id: str, new: ChatSendState) -> None:
        current = self.state_of(chat_id)
        if new not in TRANSITIONS[current]:
            raise IllegalTransitionError(f"Chat {chat_id}: {current.value} -> {new.value}")
        self._states[chat_id] = new

    def _lock_for(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    def _view(self, chat_id: str) -> Optional[Chat]:
        if self.active_chat is not None and self.active_chat.id == chat_id:
            return self.active_chat
        return None

    async def _call(self, coro, fallback: str):
        self.error = None
        try:
            return await coro
        except PortalError as e:
            self.error = e.message or fallback
            raise

    # -- operations ----------------------------------------------------------
    async def create_chat(self, title: str, category: str = "general", language: str = "en") -> Chat:
        if not title or not title.strip():
            raise ValidationError("Please provide a chat title")
        category = _coerce(ChatCategory, category, "category")
        language = _coerce(Language, language, "language")

        chat = await self._call(self.api.create_chat(title.strip(), category.value, language.value),
                                "Failed to create chat")
        self.chats = [_summary(chat)] + [c for c in self.chats if c.id != chat.id]
        self.active_chat = chat
        logger.info("Chat created: %s (%s)", chat.id, category.value)
        return chat

    async def list_chats(self) -> List[ChatSummary]:
        self.chats = await self._call(self.api.list_chats(), "Failed to fetch chats")
        return self.chats

    async def open_chat(self, chat_id: str) -> Chat:
        chat = await self._call(self.api.get_chat(chat_id), "Failed to fetch chat")
        self.active_chat = chat
        return chat

    async def send_message(self, content: str) -> MessageExchange:
        chat = self.active_chat
        if chat is None:
            raise NoActiveChatError()
        if not content or not content.strip():
            raise ValidationError("Please provide message content")
        chat_id = chat.id

        async with self._lock_for(chat_id):
            self._transition(chat_id, ChatSendState.SENDING)
            self.error = None
            provisional = Message(content=content, role=Role.USER)
            view = self._view(chat_id)
            if view is not None:
                view.messages.append(provisional)

            try:
                exchange = await self.api.post_message(chat_id, content)
            except Exception as e:
                self.error = getattr(e, "message", None) or "Failed to send message"
                self._transition(chat_id, ChatSendState.ROLLING_BACK)
                try:
                    await self._rollback(chat_id, provisional)
                finally:
                    self._transition(chat_id, ChatSendState.IDLE)
                raise
            except asyncio.CancelledError:
                self._discard(chat_id, provisional)
                self._states[chat_id] = ChatSendState.IDLE
                raise

            current = self._view(chat_id)
            if current is not None and current is view:
                view.messages = [m for m in view.messages if m is not provisional]
                view.messages.extend([exchange.user_message, exchange.assistant_message])
                view.updated_at = exchange.assistant_message.timestamp
            elif current is not None:
                # Chat was re-opened mid-send; that copy may already hold part of the exchange
                await self._reload(chat_id, exchange)
            self._touch(chat_id, exchange.assistant_message.timestamp)
            self._transition(chat_id, ChatSendState.CONFIRMED)
            return exchange

    async def _reload(self, chat_id: str, exchange: MessageExchange) -> None:
        try:
            fresh = await self.api.get_chat(chat_id)
        except PortalError as e:
            logger.warning("Could not reload chat %s after a send: %s", chat_id, e.message)
            view = self._view(chat_id)
            if view is not None:
                known = {(m.role, m.content, m.timestamp) for m in view.messages}
                view.messages.extend(m for m in (exchange.user_message, exchange.assistant_message)
                                     if (m.role, m.content, m.timestamp) not in known)
            return
        if self._view(chat_id) is not None:
            self.active_chat = fresh

    def _discard(self, chat_id: str, provisional: Message) -> None:
        view = self._view(chat_id)
        if view is not None:
            view.messages = [m for m in view.messages if m is not provisional]

    async def _rollback(self, chat_id: str, provisional: Message) -> None:
        self._discard(chat_id, provisional)
        try:
            fresh = await self.api.get_chat(chat_id)
        except PortalError as e:
            logger.warning("Could not reload chat %s after a failed send: %s", chat_id, e.message)
            return
        if self._view(chat_id) is not None:
            self.active_chat = fresh

    def _touch(self, chat_id: str, when) -> None:
        for i, summary in enumerate(self.chats):
            if summary.id == chat_id:
                updated = summary.model_copy(update={"updated_at": when})
                self.chats = [updated] + self.chats[:i] + self.chats[i + 1:]
                return

    async def delete_chat(self, chat_id: str) -> None:
        await self._call(self.api.delete_chat(chat_id), "Failed to delete chat")
        self.chats = [c for c in self.chats if c.id != chat_id]
        if self.active_chat is not None and self.active_chat.id == chat_id:
            self.active_chat = None
        lock = self._locks.get(chat_id)
        if lock is not None and not lock.locked():
            del self._locks[chat_id]
            self._states.pop(chat_id, None)

    def reset(self) -> None:
        self.chats = []
        self.active_chat = None
        self.error = None
        self._locks.clear()
        self._states.clear()
