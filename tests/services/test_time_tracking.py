# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import NotFound
from app.models.time_tracking import TimeTrackingSession
from app.services.time_tracking import TimeTracker, TimeTrackingService


@pytest.fixture
def tracker(router, session_factory):
    return TimeTracker(router, session_factory=session_factory)


@pytest.fixture
def work(factory):
    user = factory.user("worker")
    project = factory.project(user, members=(user,))
    first = factory.task(user, title="First", project=project)
    second = factory.task(user, title="Second", project=project)
    return user, project, first, second


@pytest.mark.unit
class TestTimeTracker:
    @pytest.mark.asyncio
    async def test_start_announces_to_project_room(self, tracker, emitted, work):
        user, project, task, _ = work

        session = await tracker.start(user.id, task.id, description="docs", exclude_sid="sid-1")

        assert session["isActive"] is True
        assert session["projectId"] == project.id
        assert session["description"] == "docs"
        [(payload, kwargs)] = emitted("timeTracking:memberStarted")
        assert payload["id"] == session["id"]
        assert kwargs["room"] == f"project:{project.id}"
        assert kwargs["skip_sid"] == "sid-1"

    @pytest.mark.asyncio
    async def test_starting_again_stops_the_previous_session(self, tracker, emitted, work):
        user, project, first, second = work

        previous = await tracker.start(user.id, first.id)
        current = await tracker.start(user.id, second.id)

        active = await tracker.active_sessions()
        assert [s["id"] for s in active] == [current["id"]]
        [(stopped, _)] = emitted("timeTracking:memberStopped")
        assert stopped["id"] == previous["id"]
        assert stopped["isActive"] is False
        assert stopped["duration"] >= 0

    @pytest.mark.asyncio
    async def test_stop(self, tracker, emitted, work):
        user, _, task, _ = work
        started = await tracker.start(user.id, task.id)

        stopped = await tracker.stop(user.id)

        assert stopped["id"] == started["id"]
        assert stopped["endTime"] is not None
        assert await tracker.active_sessions() == []
        assert len(emitted("timeTracking:memberStopped")) == 1

    @pytest.mark.asyncio
    async def test_stop_without_active_session(self, tracker, work):
        user, *_ = work

        with pytest.raises(NotFound):
            await tracker.stop(user.id)

    @pytest.mark.asyncio
    async def test_unknown_task(self, tracker, work):
        user, *_ = work

        with pytest.raises(NotFound):
            await tracker.start(user.id, 999)

    @pytest.mark.asyncio
    async def test_heartbeat(self, tracker, work):
        user, _, task, _ = work

        assert await tracker.heartbeat(user.id) is False
        await tracker.start(user.id, task.id)
        assert await tracker.heartbeat(user.id) is True

    @pytest.mark.asyncio
    async def test_active_sessions_by_project(self, tracker, factory, work):
        user, project, task, _ = work
        other_user = factory.user("other")
        other_task = factory.task(other_user, title="Elsewhere")
        await tracker.start(user.id, task.id)
        await tracker.start(other_user.id, other_task.id)

        in_project = await tracker.active_sessions(project.id)

        assert [s["userId"] for s in in_project] == [user.id]
        assert len(await tracker.active_sessions()) == 2

    @pytest.mark.asyncio
    async def test_task_without_project_is_not_announced(self, tracker, sio, factory):
        user = factory.user("solo")
        task = factory.task(user)

        await tracker.start(user.id, task.id)

        sio.emit.assert_not_called()


@pytest.mark.unit
class TestTimeTrackingService:
    def test_second_open_session_for_user_is_rejected(self, session_factory, work):
        user, _, task, _ = work
        service = TimeTrackingService()
        db = session_factory()
        try:
            service.start(db, user.id, task.id)
            db.add(TimeTrackingSession(user_id=user.id, active_user_id=user.id, task_id=task.id))
            with pytest.raises(IntegrityError):
                db.commit()
        finally:
            db.close()

    def test_concurrent_start_leaves_one_active_session(self, session_factory, work, mocker):
        user, _, first, second = work
        service = TimeTrackingService()
        db_a, db_b = session_factory(), session_factory()
        try:
            winner, _ = service.start(db_a, user.id, first.id)

            # db_b read the open sessions before db_a committed
            real_lookup = service._active_for_user
            calls = []

            def stale_then_real(db, user_id):
                calls.append(user_id)
                return [] if len(calls) == 1 else real_lookup(db, user_id)

            mocker.patch.object(service, "_active_for_user", side_effect=stale_then_real)

            current, stopped = service.start(db_b, user.id, second.id)

            assert len(calls) == 2
            assert [s["id"] for s in stopped] == [winner["id"]]
            active = service.get_active(db_b)
            assert [s["id"] for s in active] == [current["id"]]
        finally:
            db_a.close()
            db_b.close()
