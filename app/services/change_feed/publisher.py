# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Publishes Task and Project mutations to the change feed.

Hooks SQLAlchemy session events: `after_flush` snapshots every tracked
insert, update and delete while the data is still loaded, `after_commit`
publishes the snapshots to Redis pub/sub, and `after_rollback` drops them.
Membership rows are not a collection of their own; adding or removing a
member is published as a project update of the "members" field.

Publishing runs after the commit and only logs its failures: a lost event
costs a missed live update, never a failed write.
"""

import logging
from typing import Any, Callable, Optional

import redis
from pydantic.alias_generators import to_camel
from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.redis_factory import RedisClientFactory
from app.models.project import Project, ProjectMember
from app.models.task import Task
from app.services.change_feed.events import (
    PROJECTS,
    TASKS,
    ChangeEvent,
    OperationType,
)

logger = logging.getLogger(__name__)

PENDING_KEY = "change_feed_pending"

TRACKED_MODELS = {Task: TASKS, Project: PROJECTS}

# Column names whose document field is not plain camelCase
FIELD_ALIASES = {"project_id": "project", "owner_id": "owner"}

IGNORED_FIELDS = {"updatedAt", "createdAt"}


def document_field(column_key: str) -> str:
    return FIELD_ALIASES.get(column_key, to_camel(column_key))


def changed_fields(obj: Any) -> tuple[list[str], dict[str, Any]]:
    """Document field names changed on obj in this flush, and their old values."""
    state = inspect(obj)
    fields: list[str] = []
    previous: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        name = document_field(attr.key)
        if name in IGNORED_FIELDS:
            continue
        fields.append(name)
        previous[name] = history.deleted[0] if history.deleted else None
    return fields, previous


def project_document(session: Session, project: Project) -> dict:
    """Project dict with members read from the database, not the loaded collection."""
    doc = project.to_dict()
    rows = session.execute(
        select(ProjectMember.user_id, ProjectMember.role)
        .where(ProjectMember.project_id == project.id)
        .order_by(ProjectMember.id)
    ).all()
    doc["members"] = [{"user": user_id, "role": role} for user_id, role in rows]
    return doc


class ChangeFeedPublisher:
    def __init__(
        self,
        client_factory: Callable[[], Optional[redis.Redis]] = RedisClientFactory.get_sync_client,
        channel_prefix: Optional[str] = None,
    ):
        self._client_factory = client_factory
        self.channel_prefix = (
            channel_prefix
            if channel_prefix is not None
            else settings.CHANGE_FEED_CHANNEL_PREFIX
        )
        self._targets: list[Any] = []

    def channel(self, collection: str) -> str:
        return f"{self.channel_prefix}{collection}"

    def install(self, target: Any) -> None:
        """Listen on a Session class or sessionmaker."""
        event.listen(target, "after_flush", self._after_flush)
        event.listen(target, "after_commit", self._after_commit)
        event.listen(target, "after_rollback", self._after_rollback)
        self._targets.append(target)
        logger.info("[ChangeFeed] Publisher installed")

    def uninstall(self) -> None:
        for target in self._targets:
            event.remove(target, "after_flush", self._after_flush)
            event.remove(target, "after_commit", self._after_commit)
            event.remove(target, "after_rollback", self._after_rollback)
        self._targets.clear()

    def _after_flush(self, session: Session, flush_context: Any) -> None:
        pending: list[ChangeEvent] = session.info.setdefault(PENDING_KEY, [])
        inserted_projects: set[int] = {
            e.document_id
            for e in pending
            if e.collection == PROJECTS and e.operation_type == OperationType.INSERT
        }
        member_changes: set[int] = set()

        for obj in session.new:
            collection = TRACKED_MODELS.get(type(obj))
            if collection == TASKS:
                pending.append(
                    ChangeEvent(TASKS, OperationType.INSERT, obj.id, obj.to_dict())
                )
            elif collection == PROJECTS:
                inserted_projects.add(obj.id)
                pending.append(
                    ChangeEvent(
                        PROJECTS,
                        OperationType.INSERT,
                        obj.id,
                        project_document(session, obj),
                    )
                )
            elif isinstance(obj, ProjectMember):
                member_changes.add(obj.project_id)

        for obj in session.dirty:
            collection = TRACKED_MODELS.get(type(obj))
            if collection is None or not session.is_modified(obj):
                continue
            fields, previous = changed_fields(obj)
            if not fields:
                continue
            document = (
                obj.to_dict() if collection == TASKS else project_document(session, obj)
            )
            pending.append(
                ChangeEvent(
                    collection, OperationType.UPDATE, obj.id, document, fields, previous
                )
            )

        for obj in session.deleted:
            collection = TRACKED_MODELS.get(type(obj))
            if collection is not None:
                pending.append(ChangeEvent(collection, OperationType.DELETE, obj.id))
            elif isinstance(obj, ProjectMember):
                member_changes.add(obj.project_id)

        for project_id in member_changes - inserted_projects:
            project = session.get(Project, project_id)
            if project is None:
                continue
            pending.append(
                ChangeEvent(
                    PROJECTS,
                    OperationType.UPDATE,
                    project_id,
                    project_document(session, project),
                    ["members"],
                )
            )

    def _after_commit(self, session: Session) -> None:
        pending = session.info.pop(PENDING_KEY, [])
        if pending:
            self.publish(pending)

    def _after_rollback(self, session: Session) -> None:
        session.info.pop(PENDING_KEY, None)

    def publish(self, events: list[ChangeEvent]) -> int:
        """Publish events in order. Returns how many were sent."""
        client = self._client_factory()
        if client is None:
            logger.warning(f"[ChangeFeed] No Redis client, dropped {len(events)} events")
            return 0
        sent = 0
        for change in events:
            try:
                client.publish(self.channel(change.collection), change.to_json())
                sent += 1
            except redis.RedisError as e:
                logger.warning(
                    f"[ChangeFeed] Failed to publish {change.collection} "
                    f"{change.operation_type.value} {change.document_id}: {e}"
                )
        return sent
