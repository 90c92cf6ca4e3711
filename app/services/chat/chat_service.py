# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Chat persistence: rooms, direct chats, message append and read receipts.

All methods are synchronous and take an open Session; the async message
pipeline runs them in a worker thread. Every write that must be race-safe
relies on a database constraint rather than read-then-write in memory:

- direct rooms are unique by `direct_key` (sorted participant pair)
- read receipts are unique by (message_id, user_id)
- appending is a single INSERT plus an UPDATE of `last_activity`
"""

import logging
import time
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import NotFound, PermissionDenied, ValidationFailed
from app.db.base import utcnow
from app.models.chat import (
    ChatMessage,
    ChatParticipant,
    ChatRoom,
    ChatRoomType,
    MessageRead,
)
from app.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def direct_key_for(user_a: int, user_b: int) -> str:
    low, high = sorted((int(user_a), int(user_b)))
    return f"{low}:{high}"


class ChatService:
    """Persistence operations for chat rooms and messages."""

    def create_chat_room(
        self,
        db: Session,
        participants: Iterable[int],
        room_type: str = ChatRoomType.GROUP.value,
        name: Optional[str] = None,
        metadata: Optional[dict] = None,
        room_id: Optional[str] = None,
    ) -> ChatRoom:
        """Create a room with de-duplicated participants, preserving order."""
        if room_type not in {t.value for t in ChatRoomType}:
            raise ValidationFailed(f"Invalid chat room type: {room_type}")

        ordered: list[int] = []
        for uid in participants:
            if uid is not None and int(uid) not in ordered:
                ordered.append(int(uid))
        if not ordered:
            raise ValidationFailed("A chat room needs at least one participant")

        room = ChatRoom(
            room_id=room_id or f"{room_type}_{int(time.time() * 1000)}",
            name=name,
            type=room_type,
            meta=metadata or {},
            last_activity=utcnow(),
        )
        room.participants = [ChatParticipant(user_id=uid) for uid in ordered]
        db.add(room)
        db.commit()
        db.refresh(room)
        logger.info(
            f"[ChatService] Created {room_type} room {room.room_id} "
            f"with {len(ordered)} participants"
        )
        return room

    def get_or_create_direct_chat(
        self, db: Session, user_a: int, user_b: int
    ) -> tuple[ChatRoom, bool]:
        """
        Find or create the unique direct room between two users.

        Concurrent callers race on the unique `direct_key`; the loser's INSERT
        fails with IntegrityError, is rolled back, and the winner's row is
        returned. Returns (room, created).
        """
        if int(user_a) == int(user_b):
            raise ValidationFailed("Cannot open a direct chat with yourself")

        key = direct_key_for(user_a, user_b)
        existing = self._find_direct(db, key)
        if existing is not None:
            return existing, False

        low, high = key.split(":")
        room = ChatRoom(
            room_id=f"direct_{key.replace(':', '_')}",
            type=ChatRoomType.DIRECT.value,
            direct_key=key,
            meta={},
            last_activity=utcnow(),
        )
        room.participants = [
            ChatParticipant(user_id=int(low)),
            ChatParticipant(user_id=int(high)),
        ]
        db.add(room)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            winner = self._find_direct(db, key)
            if winner is None:
                raise
            logger.info(f"[ChatService] Direct room {key} created concurrently, reusing")
            return winner, False

        db.refresh(room)
        logger.info(f"[ChatService] Created direct room {room.room_id}")
        return room, True

    def _find_direct(self, db: Session, key: str) -> Optional[ChatRoom]:
        return db.execute(
            select(ChatRoom).where(ChatRoom.direct_key == key)
        ).scalar_one_or_none()

    def find_room(self, db: Session, room_id: str) -> Optional[ChatRoom]:
        return db.execute(
            select(ChatRoom).where(ChatRoom.room_id == room_id)
        ).scalar_one_or_none()

    def get_room(self, db: Session, room_id: str) -> ChatRoom:
        room = self.find_room(db, room_id)
        if room is None:
            raise NotFound("Chat room not found")
        return room

    def append_message(
        self,
        db: Session,
        room_id: str,
        sender_id: Optional[int],
        content: str,
        is_ai: bool = False,
    ) -> tuple[dict, list[int]]:
        """
        Append a message and bump `last_activity`.

        The sender is recorded in the read set at creation; assistant replies
        start with an empty read set. Returns (message dict, participant ids).
        """
        text = (content or "").strip()
        if not text:
            raise ValidationFailed("Message content cannot be empty")

        room = self.get_room(db, room_id)
        participant_ids = room.participant_ids
        if not is_ai:
            if sender_id is None:
                raise ValidationFailed("Message sender is required")
            if int(sender_id) not in participant_ids:
                raise PermissionDenied("You are not a participant of this chat room")

        now = utcnow()
        message = ChatMessage(
            chat_room_id=room.id,
            sender_id=None if is_ai else int(sender_id),
            is_ai=is_ai,
            content=text,
            created_at=now,
        )
        if not is_ai:
            message.reads = [MessageRead(user_id=int(sender_id), read_at=now)]
        db.add(message)
        db.execute(
            update(ChatRoom).where(ChatRoom.id == room.id).values(last_activity=now)
        )
        db.commit()
        db.refresh(message)
        return message.to_dict(room_id=room_id), participant_ids

    def mark_messages_as_read(
        self, db: Session, room_id: str, message_ids: Iterable[int], user_id: int
    ) -> list[int]:
        """
        Add user_id to the read set of each named message in the room.

        Ids that do not belong to the room, or are already read by the user,
        are skipped. Returns the ids that were newly marked.
        """
        room = self.get_room(db, room_id)
        wanted = {int(mid) for mid in message_ids}
        if not wanted:
            return []

        try:
            return self._insert_reads(db, room.id, wanted, int(user_id))
        except IntegrityError:
            # Another request marked some of the same messages; recompute once
            db.rollback()
            return self._insert_reads(db, room.id, wanted, int(user_id))

    def _insert_reads(
        self, db: Session, room_pk: int, wanted: set[int], user_id: int
    ) -> list[int]:
        in_room = set(
            db.execute(
                select(ChatMessage.id).where(
                    ChatMessage.chat_room_id == room_pk, ChatMessage.id.in_(wanted)
                )
            ).scalars()
        )
        already = set(
            db.execute(
                select(MessageRead.message_id).where(
                    MessageRead.user_id == user_id,
                    MessageRead.message_id.in_(in_room),
                )
            ).scalars()
        )

        marked = sorted(in_room - already)
        now = utcnow()
        for mid in marked:
            db.add(MessageRead(message_id=mid, user_id=user_id, read_at=now))
        db.commit()
        return marked

    def get_chat_history(
        self,
        db: Session,
        room_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        skip: int = 0,
    ) -> dict[str, Any]:
        """
        Return the room with one page of messages in chronological order.

        `skip` counts back from the newest message, so skip=0 is the latest
        page.
        """
        room = self.get_room(db, room_id)
        rows = (
            db.execute(
                select(ChatMessage)
                .where(ChatMessage.chat_room_id == room.id)
                .order_by(ChatMessage.id.desc())
                .offset(skip)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        data = room.to_dict()
        data["messages"] = [m.to_dict() for m in reversed(rows)]
        return data

    def get_recent_context(self, db: Session, room_id: str, size: int) -> list[dict]:
        """Last `size` messages as AI context entries, oldest first."""
        room = self.get_room(db, room_id)
        rows = (
            db.execute(
                select(ChatMessage)
                .where(ChatMessage.chat_room_id == room.id)
                .order_by(ChatMessage.id.desc())
                .limit(size)
            )
            .scalars()
            .all()
        )
        return [
            {
                "content": m.content,
                "isAI": bool(m.is_ai),
                "timestamp": m.created_at.isoformat() if m.created_at else None,
            }
            for m in reversed(rows)
        ]

    def get_user_chats(self, db: Session, user_id: int) -> list[dict]:
        """Rooms the user participates in, most recently active first."""
        rooms = (
            db.execute(
                select(ChatRoom)
                .join(ChatParticipant, ChatParticipant.chat_room_id == ChatRoom.id)
                .where(ChatParticipant.user_id == int(user_id))
                .order_by(ChatRoom.last_activity.desc(), ChatRoom.id.desc())
            )
            .scalars()
            .all()
        )
        return [r.to_dict() for r in rooms]

    def get_user_name(self, db: Session, user_id: Optional[int]) -> str:
        if user_id is None:
            return "Someone"
        user = db.get(User, int(user_id))
        return user.name if user is not None else f"User {user_id}"
