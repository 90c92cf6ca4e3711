# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import json
from datetime import datetime
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.core.exceptions import UpstreamUnavailable
from app.db.base import Base
from app.models.project import Project, ProjectMember
from app.models.task import Task
from app.models.user import User
from app.services.presence import PresenceRegistry
from app.services.room_router import RoomRouter


@pytest.fixture
def engine(tmp_path):
    # File-backed so that worker-thread sessions get their own connections
    engine = create_engine(
        f"sqlite:///{tmp_path / 'realtime.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class FakeCache:
    """In-memory stand-in for CacheManager with the same async surface."""

    def __init__(self):
        self.store: dict[str, Any] = {}
        self.expiry: dict[str, Optional[int]] = {}
        self.hits: dict[str, list[float]] = {}
        self.now = 0.0
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise UpstreamUnavailable("Cache is down")

    async def get(self, key: str) -> Any:
        self._check()
        value = self.store.get(key)
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        self._check()
        self.store[key] = json.dumps(value, default=str)
        self.expiry[key] = expire
        return True

    async def setnx(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        self._check()
        if key in self.store:
            return False
        return await self.set(key, value, expire)

    async def delete(self, *keys: str) -> bool:
        self._check()
        for key in keys:
            self.store.pop(key, None)
        return True

    async def hit_sliding_window(
        self, key: str, window_seconds: int, limit: Optional[int] = None
    ) -> int:
        self._check()
        window = [t for t in self.hits.get(key, []) if t > self.now - window_seconds]
        window.append(self.now)
        count = len(window)
        if limit is not None and count > limit:
            window.pop()
        self.hits[key] = window
        return count


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def sio():
    server = MagicMock()
    server.emit = AsyncMock()
    server.enter_room = AsyncMock()
    server.leave_room = AsyncMock()
    server.rooms = MagicMock(return_value=[])
    return server


@pytest.fixture
def router(sio):
    return RoomRouter(sio, "/")


@pytest.fixture
def presence(router):
    return PresenceRegistry(router)


@pytest.fixture
def emitted(sio):
    """Return the emits for an event as (payload, kwargs) pairs."""

    def _emitted(event: str) -> list[tuple[Any, dict]]:
        return [
            (c.args[1], c.kwargs) for c in sio.emit.call_args_list if c.args[0] == event
        ]

    return _emitted


class Factory:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _save(self, obj):
        db = self.session_factory()
        try:
            db.add(obj)
            db.commit()
            db.refresh(obj)
            db.expunge(obj)
            return obj
        finally:
            db.close()

    def user(self, name: str = "alice", display_name: Optional[str] = None) -> User:
        return self._save(User(user_name=name, display_name=display_name))

    def project(
        self, owner: User, members: tuple = (), name: str = "Apollo"
    ) -> Project:
        project = Project(name=name, owner_id=owner.id)
        project.members = [ProjectMember(user_id=m.id) for m in members]
        saved = self._save(project)
        return saved

    def task(
        self,
        creator: User,
        title: str = "Write docs",
        project: Optional[Project] = None,
        assignee: Optional[User] = None,
        status: str = "todo",
        due_date: Optional[datetime] = None,
    ) -> Task:
        return self._save(
            Task(
                title=title,
                status=status,
                created_by=creator.id,
                assigned_to=assignee.id if assignee else None,
                project_id=project.id if project else None,
                due_date=due_date,
            )
        )


@pytest.fixture
def factory(session_factory):
    return Factory(session_factory)
