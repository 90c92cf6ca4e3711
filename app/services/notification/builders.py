# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Derived notification builders.

Each builder turns a domain change into a NotificationDraft, or None when
nobody is left to notify. Builders are pure: they work on the camelCase
document dicts carried by change events plus the ids the caller resolved,
so the same code serves the change-feed watcher and the socket handlers.
"""

import math
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.notification import NotificationType
from app.models.project import ProjectMember
from app.models.task import TaskStatus
from app.services.notification.dispatcher import NotificationDraft

URGENT_HOURS = 2
TOMORROW_HOURS = 24


def load_project_member_ids(db: Session, project_id: Optional[int]) -> list[int]:
    if project_id is None:
        return []
    return list(
        db.execute(
            select(ProjectMember.user_id)
            .where(ProjectMember.project_id == int(project_id))
            .order_by(ProjectMember.id)
        ).scalars()
    )


def resolve_recipients(*groups: Iterable[Any], exclude: Any = None) -> list[int]:
    """Flatten id groups in order, dropping duplicates, None and the actor."""
    excluded = int(exclude) if exclude is not None else None
    recipients: list[int] = []
    for group in groups:
        for uid in group:
            if uid is None:
                continue
            value = int(uid)
            if value != excluded and value not in recipients:
                recipients.append(value)
    return recipients


def _draft(
    notification_type: NotificationType,
    recipients: list[int],
    content: str,
    **kwargs: Any,
) -> Optional[NotificationDraft]:
    if not recipients:
        return None
    return NotificationDraft(
        type=notification_type.value,
        recipients=recipients,
        content=content,
        **kwargs,
    )


def _status_label(status: Optional[str]) -> str:
    return (status or "").replace("_", " ")


def task_created(task: dict, member_ids: Iterable[int]) -> Optional[NotificationDraft]:
    actor = task.get("createdBy")
    recipients = resolve_recipients([task.get("assignedTo")], member_ids, exclude=actor)
    return _draft(
        NotificationType.TASK,
        recipients,
        f"New task created: {task.get('title')}",
        sender_id=actor,
        related_project_id=task.get("project"),
        related_task_id=task.get("id"),
        metadata={"event": "created"},
    )


def status_changed(
    task: dict,
    member_ids: Iterable[int],
    previous_status: Optional[str] = None,
    actor: Optional[int] = None,
) -> Optional[NotificationDraft]:
    actor = actor if actor is not None else task.get("updatedBy")
    status = task.get("status")
    title = task.get("title")
    if status == TaskStatus.COMPLETED.value:
        content = f'Task "{title}" has been marked as completed'
    else:
        content = f'Task "{title}" status changed to {_status_label(status)}'

    recipients = resolve_recipients(
        [task.get("assignedTo"), task.get("createdBy")], member_ids, exclude=actor
    )
    return _draft(
        NotificationType.TASK,
        recipients,
        content,
        sender_id=actor,
        related_project_id=task.get("project"),
        related_task_id=task.get("id"),
        metadata={"event": "status", "from": previous_status, "to": status},
    )


def assignment_changed(
    task: dict,
    member_ids: Iterable[int],
    previous_assignee: Optional[int] = None,
    actor: Optional[int] = None,
) -> Optional[NotificationDraft]:
    """
    New assignment goes to the new assignee only, an unassignment to the
    previous one only; a hand-over between two users goes to both plus the
    creator and project members.
    """
    actor = actor if actor is not None else task.get("updatedBy")
    assignee = task.get("assignedTo")
    title = task.get("title")

    if assignee is not None and previous_assignee is None:
        content = f'Task "{title}" has been assigned to you'
        recipients = resolve_recipients([assignee], exclude=actor)
    elif assignee is None and previous_assignee is not None:
        content = f'Task "{title}" is no longer assigned to you'
        recipients = resolve_recipients([previous_assignee], exclude=actor)
    elif assignee is not None and int(assignee) != int(previous_assignee):
        content = f'Task "{title}" has been reassigned'
        recipients = resolve_recipients(
            [assignee, previous_assignee, task.get("createdBy")],
            member_ids,
            exclude=actor,
        )
    else:
        return None

    return _draft(
        NotificationType.TASK,
        recipients,
        content,
        sender_id=actor,
        related_project_id=task.get("project"),
        related_task_id=task.get("id"),
        metadata={"event": "assignment", "from": previous_assignee, "to": assignee},
    )


def task_field_updated(
    task: dict,
    member_ids: Iterable[int],
    changed_fields: Iterable[str],
    actor: Optional[int] = None,
) -> Optional[NotificationDraft]:
    """Due date, priority, title and description edits, folded into one notification."""
    actor = actor if actor is not None else task.get("updatedBy")
    title = task.get("title")
    changed = set(changed_fields)

    notification_type = NotificationType.TASK
    if "dueDate" in changed:
        notification_type = NotificationType.DEADLINE
        content = f'Due date for task "{title}" has been updated'
    elif "priority" in changed:
        content = f'Priority for task "{title}" has changed to {task.get("priority")}'
    elif "title" in changed:
        content = f'Task title has been updated to "{title}"'
    elif "description" in changed:
        content = f'Description for task "{title}" has been updated'
    else:
        return None

    recipients = resolve_recipients(
        [task.get("assignedTo"), task.get("createdBy")], member_ids, exclude=actor
    )
    return _draft(
        notification_type,
        recipients,
        content,
        sender_id=actor,
        related_project_id=task.get("project"),
        related_task_id=task.get("id"),
        metadata={"event": "updated", "fields": sorted(changed)},
    )


def deadline_approaching(
    task: dict, hours_remaining: float
) -> Optional[NotificationDraft]:
    """Severity-scaled reminder for the assignee, or the creator when unassigned."""
    title = task.get("title")
    if hours_remaining <= URGENT_HOURS:
        severity = "urgent"
        content = f'Reminder: Task "{title}" is due in less than {URGENT_HOURS} hours!'
    elif hours_remaining <= TOMORROW_HOURS:
        severity = "tomorrow"
        content = f'Reminder: Task "{title}" is due tomorrow'
    else:
        severity = "upcoming"
        days = math.ceil(hours_remaining / 24)
        content = f'Reminder: Task "{title}" is due in {days} days'

    owner = task.get("assignedTo") or task.get("createdBy")
    return _draft(
        NotificationType.DEADLINE,
        resolve_recipients([owner]),
        content,
        related_project_id=task.get("project"),
        related_task_id=task.get("id"),
        metadata={
            "severity": severity,
            "hoursRemaining": round(hours_remaining, 2),
            "dueDate": task.get("dueDate"),
        },
    )


def project_created(project: dict) -> Optional[NotificationDraft]:
    actor = project.get("owner")
    member_ids = [m.get("user") for m in project.get("members") or []]
    return _draft(
        NotificationType.PROJECT,
        resolve_recipients(member_ids, exclude=actor),
        f"New project created: {project.get('name')}",
        sender_id=actor,
        related_project_id=project.get("id"),
        metadata={"event": "created"},
    )


def project_updated(
    project: dict, changed_fields: Iterable[str], actor: Optional[int] = None
) -> Optional[NotificationDraft]:
    actor = actor if actor is not None else project.get("updatedBy")
    changed = set(changed_fields)
    name = project.get("name")
    if "members" in changed:
        content = f'Members of project "{name}" have been updated'
    elif "status" in changed:
        content = f'Project "{name}" status changed to {_status_label(project.get("status"))}'
    else:
        return None

    member_ids = [m.get("user") for m in project.get("members") or []]
    return _draft(
        NotificationType.PROJECT,
        resolve_recipients([project.get("owner")], member_ids, exclude=actor),
        content,
        sender_id=actor,
        related_project_id=project.get("id"),
        metadata={"event": "updated", "fields": sorted(changed)},
    )


def custom_notification(
    sender_id: Optional[int],
    content: str,
    member_ids: Iterable[int] = (),
    recipients: Optional[Iterable[int]] = None,
    project_id: Optional[int] = None,
    notification_type: NotificationType = NotificationType.SYSTEM,
    channels: Iterable[str] = (),
    metadata: Optional[dict] = None,
) -> Optional[NotificationDraft]:
    """Explicit recipients when given, otherwise the project's members."""
    targets = recipients if recipients is not None else member_ids
    channel_list = [c for c in channels if c]
    resolved = resolve_recipients(targets, exclude=sender_id)
    if not resolved and not channel_list:
        return None
    return NotificationDraft(
        type=notification_type.value,
        recipients=resolved,
        content=content,
        sender_id=sender_id,
        related_project_id=project_id,
        metadata=metadata or {},
        channels=channel_list,
    )


def task_chat_message(
    sender_id: int,
    sender_name: str,
    task: dict,
    participant_ids: Iterable[int],
    room_id: str,
    message_id: Optional[int] = None,
) -> Optional[NotificationDraft]:
    return _draft(
        NotificationType.CHAT,
        resolve_recipients(participant_ids, exclude=sender_id),
        f"{sender_name} commented on task: {task.get('title')}",
        sender_id=sender_id,
        related_project_id=task.get("project"),
        related_task_id=task.get("id"),
        metadata={"roomId": room_id, "messageId": message_id},
    )


def chat_message_for_offline(
    sender_id: int,
    sender_name: str,
    offline_ids: Iterable[int],
    room_id: str,
    preview: str,
) -> Optional[NotificationDraft]:
    text = preview if len(preview) <= 100 else preview[:97] + "..."
    return _draft(
        NotificationType.CHAT,
        resolve_recipients(offline_ids, exclude=sender_id),
        f"New message from {sender_name}: {text}",
        sender_id=sender_id,
        metadata={"roomId": room_id},
    )
