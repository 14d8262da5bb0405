"""
Tests for the drag reconciliation engine: optimistic moves, commit, resync.

Coroutines run under asyncio.run; the engine must be driven from a running
loop because it schedules commits as tasks.
"""
import asyncio

import pytest

from companyos.board.drag import DragEvent, DragPhase, DropLocation
from companyos.board.events import NOTIFY
from companyos.board.schema import TaskDraft
from companyos.board.session import BoardSession

from conftest import FlakyBackend


def _open_session(backend):
    """Session with defaults seeded, plus recorded notifications and events."""
    session = BoardSession(backend)
    session.notes = []
    session.moved = []
    session.failed = []
    session.events.subscribe(NOTIFY, lambda level, message: session.notes.append((level, message)))
    session.events.subscribe("task_moved", lambda **kw: session.moved.append(kw))
    session.events.subscribe("move_failed", lambda **kw: session.failed.append(kw))
    return session


async def _with_task(session, category_id, title="Fix login"):
    await session.open(seed_defaults=True)
    return await session.create_task(TaskDraft(title=title, category_id=category_id))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Successful moves
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_drop_shows_move_before_commit_settles(backend, category):
    """The board reflects the drop immediately; the backend follows."""

    async def scenario():
        session = _open_session(backend)
        task = await _with_task(session, category["id"])

        commit = session.drag.handle(
            DragEvent(task.id, DropLocation("todo"), DropLocation("in_progress"))
        )
        assert commit is not None
        # Optimistic state, before the commit has run
        assert [t.id for t in session.board["in_progress"]] == [task.id]
        assert session.board["todo"] == []
        assert session.drag.phase is DragPhase.IDLE

        result = await commit
        assert result.ok
        assert backend.select("tasks", {"id": task.id})[0]["status"] == "in_progress"
        assert session.moved == [
            {"task_id": task.id, "from_status": "todo", "to_status": "in_progress"}
        ]

    asyncio.run(scenario())


def test_begin_then_drop(backend, category):
    async def scenario():
        session = _open_session(backend)
        task = await _with_task(session, category["id"])

        session.drag.begin(task.id)
        assert session.drag.phase is DragPhase.DRAGGING
        result = await session.drag.drop(DropLocation("done"))
        assert result.ok
        assert session.drag.outcome is DragPhase.DROPPED
        assert backend.select("tasks", {"id": task.id})[0]["status"] == "done"

    asyncio.run(scenario())


def test_drop_on_column_id_stores_value(backend, category):
    """Dropping onto a column by id still writes the column's value."""

    async def scenario():
        session = _open_session(backend)
        task = await _with_task(session, category["id"])
        done = session.registry.find("done")

        commit = session.drag.handle(DragEvent(task.id, DropLocation("todo"), DropLocation(done.id)))
        await commit
        assert backend.select("tasks", {"id": task.id})[0]["status"] == "done"

    asyncio.run(scenario())


def test_move_waits_for_commit(backend, category):
    async def scenario():
        session = _open_session(backend)
        task = await _with_task(session, category["id"])
        result = await session.move_task(task.id, "done")
        assert result.ok
        assert result.delta.from_status == "todo"
        assert session.find_task(task.id).status == "done"

    asyncio.run(scenario())


def test_handle_outside_loop_changes_nothing(backend, category):
    """Without a running loop the drop is refused before the board changes."""
    session = _open_session(backend)
    task = asyncio.run(_with_task(session, category["id"]))

    with pytest.raises(RuntimeError):
        session.drag.handle(DragEvent(task.id, DropLocation("todo"), DropLocation("done")))

    assert session.find_task(task.id).status == "todo"
    assert session.drag.pending == set()
    assert session.drag.phase is DragPhase.IDLE
    assert backend.select("tasks", {"id": task.id})[0]["status"] == "todo"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Failed moves
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_failed_commit_notifies_and_resyncs(backend, category):
    """A rejected write reports an error and the resync puts the task back."""
    flaky = FlakyBackend(backend)

    async def scenario():
        session = _open_session(flaky)
        task = await _with_task(session, category["id"])
        flaky.fail("update", "tasks")

        commit = session.drag.handle(DragEvent(task.id, DropLocation("todo"), DropLocation("done")))
        assert session.find_task(task.id).status == "done"

        result = await commit
        assert not result.ok
        assert result.error is not None
        assert session.find_task(task.id).status == "todo"
        assert [t.id for t in session.board["todo"]] == [task.id]
        assert any(level == "error" and "Could not move task" in msg for level, msg in session.notes)
        assert session.failed and session.failed[0]["task_id"] == task.id
        assert session.moved == []

    asyncio.run(scenario())


def test_failed_resync_leaves_warning(backend, category):
    """If the resync fails too, the user is told the board may be stale."""
    flaky = FlakyBackend(backend)

    async def scenario():
        session = _open_session(flaky)
        task = await _with_task(session, category["id"])
        flaky.fail("update", "tasks")
        flaky.fail("select", "tasks")

        result = await session.move_task(task.id, "done")
        assert not result.ok
        messages = [msg for _, msg in session.notes]
        assert "Board may be out of date; refresh to reload it." in messages
        # Local state keeps the optimistic move
        assert session.find_task(task.id).status == "done"

    asyncio.run(scenario())


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# No-op drops
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_noop_drops_write_nothing(backend, category):
    """Outside-board, same-column, unknown-column and unknown-task drops are no-ops."""
    flaky = FlakyBackend(backend)

    async def scenario():
        session = _open_session(flaky)
        task = await _with_task(session, category["id"])
        engine = session.drag

        assert engine.handle(DragEvent(task.id, DropLocation("todo"), None)) is None
        assert engine.outcome is DragPhase.CANCELLED

        assert engine.handle(DragEvent(task.id, DropLocation("todo", 0), DropLocation("todo", 3))) is None
        assert engine.outcome is DragPhase.DROPPED

        assert engine.handle(DragEvent(task.id, DropLocation("todo"), DropLocation("ghost"))) is None
        assert engine.outcome is DragPhase.CANCELLED

        assert engine.handle(DragEvent("nope", DropLocation("todo"), DropLocation("done"))) is None
        assert engine.outcome is DragPhase.CANCELLED

        # Stale source: the task is already where it is dropped
        assert engine.handle(DragEvent(task.id, DropLocation("done"), DropLocation("todo"))) is None

        assert "update" not in flaky.verbs("tasks")
        assert session.find_task(task.id).status == "todo"
        assert engine.pending == set()

    asyncio.run(scenario())


def test_cancel_resets_gesture(backend, category):
    async def scenario():
        session = _open_session(backend)
        task = await _with_task(session, category["id"])
        session.drag.begin(task.id)
        session.drag.cancel()
        assert session.drag.phase is DragPhase.IDLE
        assert session.drag.outcome is DragPhase.CANCELLED
        assert session.drag.drop(DropLocation("done")) is None
        assert session.find_task(task.id).status == "todo"

    asyncio.run(scenario())


def test_close_drains_in_flight_moves(backend, category):
    """Closing the session waits for scheduled commits."""

    async def scenario():
        session = _open_session(backend)
        task = await _with_task(session, category["id"])
        session.drag.handle(DragEvent(task.id, DropLocation("todo"), DropLocation("done")))
        await session.close()
        assert not session.is_open
        assert session.tasks == []

    asyncio.run(scenario())
    assert backend.select("tasks")[0]["status"] == "done"
