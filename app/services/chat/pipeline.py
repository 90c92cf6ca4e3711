# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Message pipeline: the async path from a socket event to persisted,
broadcast chat messages.

Ordering within a room follows persistence order. The user message is
always broadcast before any assistant reply, and the assistant path is best
effort: its failures are logged and never fail the send.
"""

import asyncio
import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from app.api.ws.events import ServerEvents, scoped
from app.core.exceptions import ValidationFailed
from app.db.session import SessionLocal
from app.models.chat import AI_SENDER_ID
from app.services.chat.ai.responder import AIResponder
from app.services.chat.ai.trigger import extract_ai_query, is_message_for_ai
from app.services.chat.cache import ChatCacheService
from app.services.chat.chat_service import DEFAULT_HISTORY_LIMIT, ChatService
from app.services.chat.task_chat import TaskChatService
from app.services.notification import builders
from app.services.notification.dispatcher import NotificationDispatcher
from app.services.presence import PresenceRegistry
from app.services.room_router import RoomRouter, chat_room

logger = logging.getLogger(__name__)

CHAT_SCOPE = "chat"
CHATBOT_SCOPE = "chatbot"
TASK_CHAT_SCOPE = "taskChat"


class MessagePipeline:
    def __init__(
        self,
        router: RoomRouter,
        presence: PresenceRegistry,
        chat_service: ChatService,
        chat_cache: ChatCacheService,
        responder: Optional[AIResponder],
        dispatcher: Optional[NotificationDispatcher] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.router = router
        self.presence = presence
        self.chat_service = chat_service
        self.task_chat = TaskChatService(chat_service)
        self.chat_cache = chat_cache
        self.responder = responder
        self.dispatcher = dispatcher
        self.session_factory = session_factory

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        def work():
            db = self.session_factory()
            try:
                return fn(db, *args)
            finally:
                db.close()

        return await asyncio.to_thread(work)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(
        self,
        room_id: str,
        sender_id: Optional[int],
        content: str,
        scope: str = CHAT_SCOPE,
        notify_offline: bool = False,
    ) -> dict:
        """
        Persist and broadcast a user message, then run the assistant when
        the message is addressed to it. Returns the persisted message.
        """
        text = (content or "").strip()
        if not text:
            raise ValidationFailed("Message content cannot be empty")
        if sender_id is None:
            raise ValidationFailed("Message sender is required")

        ai_directed = (
            self.responder is not None
            and self.responder.enabled
            and is_message_for_ai(text)
        )
        history: list[dict] = []
        if ai_directed:
            try:
                history = await self._run(
                    self.chat_service.get_recent_context,
                    room_id,
                    self.responder.config.context_window_size,
                )
            except Exception as e:
                logger.warning(f"[ChatService] Could not load AI history for {room_id}: {e}")

        message, participant_ids = await self._run(
            self.chat_service.append_message, room_id, sender_id, text
        )
        await self.chat_cache.invalidate_after_write(room_id, participant_ids)
        await self.router.broadcast(
            chat_room(room_id), scoped(scope, ServerEvents.MESSAGE), message
        )
        logger.info(
            f"[ChatService] Message {message['id']} from user {sender_id} in {room_id}"
        )

        if notify_offline:
            await self._notify_offline(room_id, sender_id, text, participant_ids)

        if ai_directed:
            await self._reply_with_ai(room_id, scope, text, history, participant_ids)

        return message

    async def _reply_with_ai(
        self,
        room_id: str,
        scope: str,
        text: str,
        history: list[dict],
        participant_ids: list[int],
    ) -> Optional[dict]:
        query = extract_ai_query(text) or text
        typing_event = scoped(scope, ServerEvents.TYPING)
        await self._broadcast_quietly(
            chat_room(room_id),
            typing_event,
            {"roomId": room_id, "userId": AI_SENDER_ID, "isTyping": True},
        )
        try:
            result = await self.responder.respond(room_id, query, history)
            if not result.ok:
                logger.info(f"[AIResponder] Skipping reply in {room_id}: {result.error}")
                return None
            try:
                reply, _ = await self._run(
                    self.chat_service.append_message,
                    room_id,
                    None,
                    result.value["content"],
                    True,
                )
            except Exception as e:
                logger.error(
                    f"[AIResponder] Failed to persist reply in {room_id}: {e}",
                    exc_info=True,
                )
                return None
            await self.chat_cache.invalidate_after_write(room_id, participant_ids)
            await self._broadcast_quietly(
                chat_room(room_id), scoped(scope, ServerEvents.MESSAGE), reply
            )
            return reply
        finally:
            await self._broadcast_quietly(
                chat_room(room_id),
                typing_event,
                {"roomId": room_id, "userId": AI_SENDER_ID, "isTyping": False},
            )

    async def _broadcast_quietly(self, room: str, event: str, payload: Any) -> None:
        try:
            await self.router.broadcast(room, event, payload)
        except Exception as e:
            logger.warning(f"[WS] Broadcast {event} to {room} failed: {e}")

    async def _notify_offline(
        self, room_id: str, sender_id: int, text: str, participant_ids: Iterable[int]
    ) -> None:
        if self.dispatcher is None:
            return
        online = set(self.presence.filter_online(participant_ids))
        offline = [uid for uid in participant_ids if uid not in online]
        if not offline:
            return
        try:
            sender_name = await self._run(self.chat_service.get_user_name, sender_id)
            await self.dispatcher.create(
                builders.chat_message_for_offline(
                    sender_id, sender_name, offline, room_id, text
                )
            )
        except Exception as e:
            logger.warning(f"[Notification] Offline chat notice for {room_id} failed: {e}")

    async def send_task_message(
        self, task_id: int, sender_id: Optional[int], content: str
    ) -> dict:
        """Send into a task's room, creating it on first use, and notify participants."""
        text = (content or "").strip()
        if not text:
            raise ValidationFailed("Message content cannot be empty")
        room, task = await self.get_task_room(task_id)
        room_id = room["roomId"]
        message = await self.send_message(room_id, sender_id, text, scope=TASK_CHAT_SCOPE)

        if self.dispatcher is not None:
            try:
                sender_name = await self._run(self.chat_service.get_user_name, sender_id)
                await self.dispatcher.create(
                    builders.task_chat_message(
                        sender_id,
                        sender_name,
                        task,
                        room["participants"],
                        room_id,
                        message.get("id"),
                    )
                )
            except Exception as e:
                logger.warning(f"[Notification] Task chat notice for task {task_id} failed: {e}")
        return message

    # ------------------------------------------------------------------
    # Read receipts and typing
    # ------------------------------------------------------------------

    async def mark_read(
        self,
        room_id: str,
        message_ids: Iterable[int],
        user_id: int,
        scope: str = CHAT_SCOPE,
        exclude_sid: Optional[str] = None,
    ) -> list[int]:
        """Mark messages read and send a receipt to the rest of the room."""
        if user_id is None:
            raise ValidationFailed("userId is required")
        ids = [int(mid) for mid in message_ids]
        marked = await self._run(
            self.chat_service.mark_messages_as_read, room_id, ids, user_id
        )
        if marked:
            await self.chat_cache.invalidate_chat_room(room_id)
        await self.router.broadcast(
            chat_room(room_id),
            scoped(scope, ServerEvents.MESSAGE_READ),
            {"roomId": room_id, "messageIds": ids, "userId": user_id},
            exclude=exclude_sid,
        )
        return marked

    async def typing(
        self,
        room_id: str,
        user_id: Any,
        is_typing: bool,
        scope: str = CHAT_SCOPE,
        exclude_sid: Optional[str] = None,
    ) -> None:
        """Ephemeral typing indicator; nothing is persisted."""
        await self.router.broadcast(
            chat_room(room_id),
            scoped(scope, ServerEvents.TYPING),
            {"roomId": room_id, "userId": user_id, "isTyping": is_typing},
            exclude=exclude_sid,
        )

    # ------------------------------------------------------------------
    # Rooms and history
    # ------------------------------------------------------------------

    async def get_or_create_direct_chat(self, user_a: int, user_b: int) -> dict:
        def work(db: Session) -> tuple[dict, bool]:
            room, created = self.chat_service.get_or_create_direct_chat(db, user_a, user_b)
            return room.to_dict(), created

        room, created = await self._run(work)
        if created:
            await self.chat_cache.invalidate_user_chat_rooms([user_a, user_b])
        return room

    async def create_chat(
        self,
        creator_id: int,
        participants: Iterable[int],
        room_type: str,
        name: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        members = [creator_id, *participants]

        def work(db: Session) -> dict:
            return self.chat_service.create_chat_room(
                db, members, room_type, name, metadata
            ).to_dict()

        room = await self._run(work)
        await self.chat_cache.invalidate_user_chat_rooms(room["participants"])
        return room

    async def get_task_room(self, task_id: int) -> tuple[dict, dict]:
        """Return (room dict, task dict) for a task, creating its room if needed."""

        def work(db: Session) -> tuple[dict, dict]:
            room, task = self.task_chat.get_or_create_task_room(db, task_id)
            return room.to_dict(), task

        return await self._run(work)

    async def get_chat_history(
        self, room_id: str, limit: int = DEFAULT_HISTORY_LIMIT, skip: int = 0
    ) -> dict:
        """
        Room plus one page of messages. The latest default-size page is
        served from the cache when present.
        """
        cacheable = skip == 0 and limit == DEFAULT_HISTORY_LIMIT
        if cacheable:
            cached_room = await self.chat_cache.get_chat_room(room_id)
            cached_messages = await self.chat_cache.get_recent_messages(room_id)
            if (
                cached_room.ok
                and cached_room.value
                and cached_messages.ok
                and cached_messages.value is not None
            ):
                return {**cached_room.value, "messages": cached_messages.value}

        history = await self._run(self.chat_service.get_chat_history, room_id, limit, skip)
        if cacheable:
            room = {k: v for k, v in history.items() if k != "messages"}
            await self.chat_cache.set_chat_room(room_id, room)
            await self.chat_cache.set_recent_messages(room_id, history["messages"])
        return history

    async def get_user_chats(self, user_id: int) -> list[dict]:
        cached = await self.chat_cache.get_user_chat_rooms(user_id)
        if cached.ok and cached.value is not None:
            return cached.value
        rooms = await self._run(self.chat_service.get_user_chats, user_id)
        await self.chat_cache.set_user_chat_rooms(user_id, rooms)
        return rooms

    async def get_room(self, room_id: str) -> dict:
        cached = await self.chat_cache.get_chat_room(room_id)
        if cached.ok and cached.value:
            return cached.value
        data = await self._run(
            lambda db: self.chat_service.get_room(db, room_id).to_dict()
        )
        await self.chat_cache.set_chat_room(room_id, data)
        return data

    async def online_participants(self, room_id: str) -> list[int]:
        room = await self.get_room(room_id)
        return self.presence.filter_online(room.get("participants", []))

    async def suggest(self, room_id: str, draft: str) -> Optional[str]:
        if self.responder is None:
            return None
        result = await self.responder.suggest(room_id, draft)
        if not result.ok:
            logger.info(f"[AIResponder] No suggestion for {room_id}: {result.error}")
            return None
        return result.value
