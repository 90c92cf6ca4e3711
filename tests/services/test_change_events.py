# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import json

import pytest

from app.services.change_feed.events import ChangeEvent, OperationType


@pytest.mark.unit
class TestChangeEvent:
    def test_wire_shape(self):
        event = ChangeEvent(
            "tasks",
            OperationType.UPDATE,
            7,
            {"id": 7, "status": "completed"},
            ["status"],
            {"status": "todo"},
        )

        assert json.loads(event.to_json()) == {
            "collection": "tasks",
            "operationType": "update",
            "documentKey": {"id": 7},
            "fullDocument": {"id": 7, "status": "completed"},
            "updateDescription": {
                "updatedFields": ["status"],
                "previousValues": {"status": "todo"},
            },
        }

    def test_parse_update(self):
        event = ChangeEvent.from_json(
            json.dumps(
                {
                    "collection": "projects",
                    "operationType": "update",
                    "documentKey": {"id": "3"},
                    "fullDocument": {"id": 3},
                    "updateDescription": {"updatedFields": ["members"]},
                }
            )
        )

        assert event.operation_type == OperationType.UPDATE
        assert event.document_id == 3
        assert event.updated_fields == ["members"]
        assert event.previous_values == {}

    def test_delete_carries_no_document(self):
        event = ChangeEvent.from_json(
            json.dumps(
                {
                    "collection": "tasks",
                    "operationType": "delete",
                    "documentKey": {"id": 1},
                    "fullDocument": {"id": 1, "title": "stale"},
                }
            )
        )

        assert event.full_document is None

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            json.dumps({"collection": "tasks"}),
            json.dumps({"collection": "tasks", "operationType": "drop", "documentKey": {"id": 1}}),
            json.dumps(["tasks"]),
        ],
    )
    def test_malformed_input_is_value_error(self, raw):
        with pytest.raises(ValueError):
            ChangeEvent.from_json(raw)
