# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Change event records carried on the change feed.

Events are transient: published once after a commit, consumed once by each
watcher, never stored.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

TASKS = "tasks"
PROJECTS = "projects"
WATCHED_COLLECTIONS = (TASKS, PROJECTS)


class OperationType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"


@dataclass
class ChangeEvent:
    collection: str
    operation_type: OperationType
    document_id: int
    full_document: Optional[dict] = None
    updated_fields: list[str] = field(default_factory=list)
    # Field values before the change, for the updated fields only
    previous_values: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {
                "collection": self.collection,
                "operationType": self.operation_type.value,
                "documentKey": {"id": self.document_id},
                "fullDocument": self.full_document,
                "updateDescription": {
                    "updatedFields": self.updated_fields,
                    "previousValues": self.previous_values,
                },
            },
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str) -> "ChangeEvent":
        """Parse a published event. Raises ValueError on malformed input."""
        try:
            data = json.loads(raw)
            description = data.get("updateDescription") or {}
            operation = OperationType(data["operationType"])
            full_document = data.get("fullDocument")
            if operation == OperationType.DELETE:
                full_document = None
            return cls(
                collection=data["collection"],
                operation_type=operation,
                document_id=int(data["documentKey"]["id"]),
                full_document=full_document,
                updated_fields=list(description.get("updatedFields") or []),
                previous_values=dict(description.get("previousValues") or {}),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed change event: {e}") from e
