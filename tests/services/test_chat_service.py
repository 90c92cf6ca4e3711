# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from app.core.exceptions import NotFound, PermissionDenied, ValidationFailed
from app.db.base import utcnow
from app.models.chat import ChatRoom
from app.services.chat.chat_service import ChatService, direct_key_for


@pytest.fixture
def service():
    return ChatService()


@pytest.fixture
def users(factory):
    return factory.user("alice"), factory.user("bob"), factory.user("carol")


@pytest.mark.unit
class TestChatRooms:
    def test_create_room_deduplicates_participants(self, db, service, users):
        alice, bob, _ = users

        room = service.create_chat_room(db, [alice.id, bob.id, alice.id], "group", "Team")

        assert room.participant_ids == [alice.id, bob.id]
        assert room.to_dict()["type"] == "group"

    def test_create_room_rejects_unknown_type(self, db, service, users):
        with pytest.raises(ValidationFailed):
            service.create_chat_room(db, [users[0].id], "channel")

    def test_create_room_requires_participants(self, db, service):
        with pytest.raises(ValidationFailed):
            service.create_chat_room(db, [None], "group")

    def test_direct_chat_is_unique_per_pair(self, db, service, users):
        alice, bob, _ = users

        first, created = service.get_or_create_direct_chat(db, alice.id, bob.id)
        second, created_again = service.get_or_create_direct_chat(db, bob.id, alice.id)

        assert created is True
        assert created_again is False
        assert first.room_id == second.room_id
        assert first.direct_key == direct_key_for(bob.id, alice.id)

    def test_direct_chat_with_self_is_rejected(self, db, service, users):
        with pytest.raises(ValidationFailed):
            service.get_or_create_direct_chat(db, users[0].id, users[0].id)

    def test_direct_chat_race_loser_reuses_winner(self, session_factory, service, users):
        alice, bob, _ = users
        winner_db = session_factory()
        loser_db = session_factory()
        try:
            winner, _ = service.get_or_create_direct_chat(winner_db, alice.id, bob.id)

            real_find = service._find_direct
            calls = []

            def find_after_race(db, key):
                calls.append(key)
                # The loser's first lookup ran before the winner committed
                return None if len(calls) == 1 else real_find(db, key)

            with patch.object(service, "_find_direct", side_effect=find_after_race):
                room, created = service.get_or_create_direct_chat(loser_db, bob.id, alice.id)

            assert created is False
            assert room.room_id == winner.room_id
            count = loser_db.execute(
                select(func.count(ChatRoom.id)).where(ChatRoom.type == "direct")
            ).scalar_one()
            assert count == 1
        finally:
            winner_db.close()
            loser_db.close()

    def test_get_room_missing(self, db, service):
        with pytest.raises(NotFound):
            service.get_room(db, "nope")


@pytest.mark.unit
class TestMessages:
    @pytest.fixture
    def room(self, db, service, users):
        alice, bob, _ = users
        return service.create_chat_room(db, [alice.id, bob.id], "group", room_id="room-1")

    def test_append_records_sender_as_reader(self, db, service, room, users):
        alice = users[0]

        message, participants = service.append_message(db, "room-1", alice.id, "  hi  ")

        assert message["content"] == "hi"
        assert message["sender"] == alice.id
        assert message["read"] == [alice.id]
        assert message["isAI"] is False
        assert participants == room.participant_ids

    def test_append_ai_message_starts_unread(self, db, service, room):
        message, _ = service.append_message(db, "room-1", None, "Hello!", True)

        assert message["sender"] == "ai-assistant"
        assert message["read"] == []

    def test_append_rejects_empty_content(self, db, service, room, users):
        with pytest.raises(ValidationFailed):
            service.append_message(db, "room-1", users[0].id, "   ")

    def test_append_rejects_non_participant(self, db, service, room, users):
        with pytest.raises(PermissionDenied):
            service.append_message(db, "room-1", users[2].id, "let me in")

    def test_append_bumps_last_activity(self, db, service, room, users):
        before = room.last_activity

        service.append_message(db, "room-1", users[0].id, "ping")

        db.expire_all()
        assert service.get_room(db, "room-1").last_activity >= before

    def test_mark_read_is_idempotent_and_scoped_to_room(self, db, service, room, users):
        alice, bob, _ = users
        m1, _ = service.append_message(db, "room-1", alice.id, "one")
        m2, _ = service.append_message(db, "room-1", alice.id, "two")
        other = service.create_chat_room(db, [alice.id], "group", room_id="room-2")
        foreign, _ = service.append_message(db, other.room_id, alice.id, "elsewhere")

        first = service.mark_messages_as_read(
            db, "room-1", [m1["id"], m2["id"], foreign["id"]], bob.id
        )
        second = service.mark_messages_as_read(db, "room-1", [m1["id"]], bob.id)

        assert first == sorted([m1["id"], m2["id"]])
        assert second == []
        history = service.get_chat_history(db, "room-1")
        assert all(bob.id in m["read"] for m in history["messages"])

    def test_history_returns_newest_page_oldest_first(self, db, service, room, users):
        for i in range(5):
            service.append_message(db, "room-1", users[0].id, f"m{i}")

        latest = service.get_chat_history(db, "room-1", limit=2)
        older = service.get_chat_history(db, "room-1", limit=2, skip=2)

        assert [m["content"] for m in latest["messages"]] == ["m3", "m4"]
        assert [m["content"] for m in older["messages"]] == ["m1", "m2"]
        assert latest["roomId"] == "room-1"

    def test_recent_context_entries(self, db, service, room, users):
        service.append_message(db, "room-1", users[0].id, "question")
        service.append_message(db, "room-1", None, "answer", True)

        context = service.get_recent_context(db, "room-1", 10)

        assert [(c["content"], c["isAI"]) for c in context] == [
            ("question", False),
            ("answer", True),
        ]

    def test_user_chats_most_recent_first(self, db, service, users):
        alice, bob, carol = users
        old = service.create_chat_room(db, [alice.id, bob.id], "group", room_id="old")
        new = service.create_chat_room(db, [alice.id, carol.id], "group", room_id="new")
        old.last_activity = utcnow() - timedelta(hours=1)
        db.commit()

        rooms = service.get_user_chats(db, alice.id)

        assert [r["roomId"] for r in rooms] == [new.room_id, old.room_id]
        assert [r["roomId"] for r in service.get_user_chats(db, bob.id)] == ["old"]

    def test_user_name(self, db, service, factory):
        dave = factory.user("dave", display_name="Dave D")

        assert service.get_user_name(db, dave.id) == "Dave D"
        assert service.get_user_name(db, 999) == "User 999"
        assert service.get_user_name(db, None) == "Someone"
