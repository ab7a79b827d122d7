"""Tests for the concurrent operation tracker."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

import pytest

from vpsm.actionstore import COMMAND_START, COMMAND_STOP, ActionRecord
from vpsm.config import PollSettings, TrackerSettings
from vpsm.domain.errors import ConflictError, OperationCancelled, RateLimitedError
from vpsm.domain.types import ACTION_ERROR, ACTION_RUNNING, ACTION_SUCCESS, ActionStatus
from vpsm.tracker import (
    EVENT_COMPLETED,
    EVENT_DISMISSED,
    OP_ACTIVE,
    OP_FAILED,
    OP_SUCCEEDED,
    Operation,
    OperationTracker,
    render_operations,
    toggle_plan,
)

FAST = PollSettings(interval=0, max_attempts=20, max_transient_errors=3)


def _tracker(provider, repo=None, dismiss_delay=60.0, poll=FAST):
    return OperationTracker(provider, "fake", repo, TrackerSettings(dismiss_delay=dismiss_delay), poll)


async def _completed(tracker, n=1, timeout=5.0):
    """Collect the next *n* completion events."""
    events = []

    async def collect():
        while len(events) < n:
            event = await tracker.events.get()
            if event.kind == EVENT_COMPLETED:
                events.append(event)

    await asyncio.wait_for(collect(), timeout)
    return events


def _backdate(repo, record_id, age):
    ts = (datetime.now(UTC) - age).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")
    with repo._conn:
        repo._conn.execute("UPDATE actions SET updated_at = ? WHERE id = ?", (ts, record_id))


class _BrokenRepo:
    def list_pending(self):
        raise OSError("database is locked")

    def save(self, record):
        raise OSError("database is locked")


# ── toggle_plan ──────────────────────────────────────────────────


@pytest.mark.parametrize(
    "status, expected",
    [
        ("running", (COMMAND_STOP, "off")),
        ("off", (COMMAND_START, "running")),
        ("stopped", (COMMAND_START, "running")),
        ("starting", None),
        ("deleting", None),
    ],
)
def test_toggle_plan(status, expected):
    assert toggle_plan(status) == expected


# ── Single operation ─────────────────────────────────────────────


async def test_stop_by_action_then_confirm(make_provider, make_server, repo):
    provider = make_provider(poller=True, servers=[make_server("off")])
    provider.action_results = [
        ActionStatus(id="a1", status=ACTION_RUNNING, progress=50),
        ActionStatus(id="a1", status=ACTION_SUCCESS, progress=100),
    ]
    tracker = _tracker(provider, repo)
    await tracker.start()

    op = tracker.start_toggle(make_server("running"))
    assert op.command == COMMAND_STOP
    assert op.target_status == "off"
    assert op.status == OP_ACTIVE

    [event] = await _completed(tracker)
    await tracker.close()

    assert event.success
    assert event.message == "Server 'web-1' stopped"
    assert event.operation.status == OP_SUCCEEDED
    assert provider.count("poll_action") == 2
    assert provider.calls[-1] == ("get_server", "1")

    [record] = repo.list_recent(5)
    assert record.status == ACTION_SUCCESS
    assert record.progress == 100
    assert record.action_id == "a1"
    assert record.command == COMMAND_STOP


async def test_start_without_poller_uses_server_status(make_provider, make_server):
    provider = make_provider()
    provider.start_result = ActionStatus(status=ACTION_RUNNING)
    provider.server_results = [make_server("starting"), make_server("running")]
    tracker = _tracker(provider)

    tracker.start_toggle(make_server("off"))
    [event] = await _completed(tracker)
    await tracker.close()

    assert event.success
    assert provider.count("get_server") == 2


async def test_untoggleable_status_is_ignored(make_provider, make_server):
    tracker = _tracker(make_provider())
    assert tracker.start_toggle(make_server("starting")) is None
    assert tracker.operations == []
    await tracker.close()


async def test_second_toggle_for_same_server_is_refused(make_provider, make_server):
    provider = make_provider()
    provider.server_results = [make_server("starting")] * 50
    tracker = _tracker(provider, poll=PollSettings(interval=30))

    assert tracker.start_toggle(make_server("off")) is not None
    assert tracker.start_toggle(make_server("off")) is None
    assert len(tracker.operations) == 1
    await tracker.close()


# ── Failures ─────────────────────────────────────────────────────


async def test_rate_limit_fails_operation(make_provider, make_server, repo):
    provider = make_provider(poller=True)
    provider.action_results = [RateLimitedError("429")]
    tracker = _tracker(provider, repo)

    tracker.start_toggle(make_server("off"))
    [event] = await _completed(tracker)
    await tracker.close()

    assert not event.success
    assert "polling stopped" in event.message
    assert event.operation.status == OP_FAILED
    assert event.operation.status_text == "Rate limited"
    assert provider.count("poll_action") == 1
    [record] = repo.list_recent(1)
    assert record.status == ACTION_ERROR


async def test_initiate_failure_reports_and_records_error(make_provider, make_server, repo):
    provider = make_provider()
    provider.start_result = ConflictError("server is locked")
    tracker = _tracker(provider, repo)

    tracker.start_toggle(make_server("off"))
    [event] = await _completed(tracker)
    await tracker.close()

    assert not event.success
    assert event.message == "Failed to start server 'web-1': server is locked"
    [record] = repo.list_recent(1)
    assert record.status == ACTION_ERROR
    assert "server is locked" in record.error_message


async def test_consecutive_poll_errors_fail_operation(make_provider, make_server, repo):
    provider = make_provider(poller=True)
    provider.action_results = [ConnectionError("reset")] * 3
    tracker = _tracker(provider, repo)

    tracker.start_toggle(make_server("off"))
    [event] = await _completed(tracker)
    await tracker.close()

    assert not event.success
    assert "3 consecutive failures" in event.message
    assert event.operation.status == OP_FAILED
    assert provider.count("poll_action") == 3
    [record] = repo.list_recent(1)
    assert record.status == ACTION_ERROR
    assert "consecutive failures" in record.error_message


async def test_attempt_budget_exhausted_fails_operation(make_provider, make_server, repo):
    provider = make_provider(servers=[make_server("starting")])
    provider.start_result = ActionStatus(status=ACTION_RUNNING)
    tracker = _tracker(provider, repo, poll=PollSettings(interval=0, max_attempts=2, max_transient_errors=3))

    tracker.start_toggle(make_server("off"))
    [event] = await _completed(tracker)
    await tracker.close()

    assert not event.success
    assert "timed out" in event.message
    assert provider.count("get_server") == 2
    [record] = repo.list_recent(1)
    assert record.status == ACTION_ERROR


async def test_explicit_action_error_fails_operation(make_provider, make_server, repo):
    provider = make_provider(poller=True)
    provider.action_results = [ActionStatus(id="a1", status=ACTION_ERROR, error_message="disk full")]
    tracker = _tracker(provider, repo)

    tracker.start_toggle(make_server("off"))
    [event] = await _completed(tracker)
    await tracker.close()

    assert not event.success
    assert event.message == "Failed to start server 'web-1': disk full"
    assert event.operation.status_text == "Failed: action failed: disk full"
    [record] = repo.list_recent(1)
    assert record.status == ACTION_ERROR
    assert "disk full" in record.error_message


async def test_cancelled_poll_leaves_operation_running(make_provider, make_server, repo):
    provider = make_provider(poller=True)
    provider.action_results = [ConnectionError("reset"), ConnectionError("reset"), OperationCancelled()]
    tracker = _tracker(provider, repo)

    tracker.start_toggle(make_server("off"))

    async def until_third_poll():
        while provider.count("poll_action") < 3:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(until_third_poll(), 5)
    await asyncio.sleep(0.05)

    assert [op.status for op in tracker.operations] == [OP_ACTIVE]
    await tracker.close()

    [record] = repo.list_recent(1)
    assert record.status == ACTION_RUNNING
    assert record.action_id == "a1"


async def test_transient_errors_then_success(make_provider, make_server):
    provider = make_provider(poller=True, servers=[make_server("running")])
    provider.action_results = [
        ConnectionError("reset"),
        ConnectionError("reset"),
        ActionStatus(id="a1", status=ACTION_SUCCESS),
    ]
    tracker = _tracker(provider)

    tracker.start_toggle(make_server("off"))
    [event] = await _completed(tracker)
    await tracker.close()

    assert event.success


# ── Concurrency ──────────────────────────────────────────────────


async def test_slow_operation_does_not_block_another(make_provider, make_server):
    provider = make_provider(servers=[make_server("running", "1", "slow"), make_server("running", "2", "fast")])
    provider.start_result = ActionStatus(status=ACTION_SUCCESS)
    gate = asyncio.Event()
    original = provider.get_server

    async def get_server(server_id):
        if server_id == "1":
            await gate.wait()
        return await original(server_id)

    provider.get_server = get_server
    tracker = _tracker(provider)

    tracker.start_toggle(make_server("off", "1", "slow"))
    tracker.start_toggle(make_server("off", "2", "fast"))

    [first] = await _completed(tracker)
    assert first.operation.server_id == "2"
    assert {op.server_id: op.status for op in tracker.operations} == {"1": OP_ACTIVE, "2": OP_SUCCEEDED}

    gate.set()
    [second] = await _completed(tracker)
    assert second.operation.server_id == "1"
    await tracker.close()


# ── Dismissal and shutdown ───────────────────────────────────────


async def test_completed_operation_is_dismissed_but_record_kept(make_provider, make_server, repo):
    provider = make_provider(servers=[make_server("running")])
    provider.start_result = ActionStatus(status=ACTION_SUCCESS)
    tracker = _tracker(provider, repo, dismiss_delay=0)

    tracker.start_toggle(make_server("off"))
    await asyncio.wait_for(tracker.wait_idle(), 5)

    kinds = []
    while not tracker.events.empty():
        kinds.append(tracker.events.get_nowait().kind)
    await tracker.close()

    assert kinds[-1] == EVENT_DISMISSED
    assert tracker.operations == []
    assert repo.list_recent(1)[0].status == ACTION_SUCCESS


async def test_close_leaves_record_running(make_provider, make_server, repo):
    provider = make_provider(poller=True)
    tracker = _tracker(provider, repo, poll=PollSettings(interval=30))

    tracker.start_toggle(make_server("off"))

    async def until_polling():
        while True:
            event = await tracker.events.get()
            if event.operation.mode is not None:
                return

    await asyncio.wait_for(until_polling(), 5)
    await tracker.close()

    [record] = repo.list_pending()
    assert record.status == ACTION_RUNNING
    assert record.action_id == "a1"


# ── Reload ───────────────────────────────────────────────────────


async def test_start_reloads_only_fresh_records_for_this_provider(make_provider, make_server, repo):
    fresh = repo.save(ActionRecord(provider="fake", server_id="1", action_id="a1", command=COMMAND_START, target_status="running"))
    stale = repo.save(ActionRecord(provider="fake", server_id="2", action_id="a2", command=COMMAND_START, target_status="running"))
    repo.save(ActionRecord(provider="other", server_id="3", action_id="a3", target_status="running"))
    repo.save(ActionRecord(provider="fake", server_id="4", status=ACTION_SUCCESS))
    _backdate(repo, stale.id, timedelta(minutes=10))

    provider = make_provider(poller=True, servers=[make_server("running")])
    provider.action_results = [ActionStatus(id="a1", status=ACTION_SUCCESS)]
    tracker = _tracker(provider, repo)

    reloaded = await tracker.start()
    assert [op.record_id for op in reloaded] == [fresh.id]

    [event] = await _completed(tracker)
    await tracker.close()

    assert event.success
    assert provider.calls[0] == ("poll_action", "a1")
    assert repo.get(fresh.id).status == ACTION_SUCCESS
    assert repo.get(stale.id).status == ACTION_RUNNING


async def test_storage_failure_is_not_fatal(make_provider, make_server, caplog):
    provider = make_provider(servers=[make_server("running")])
    provider.start_result = ActionStatus(status=ACTION_SUCCESS)
    tracker = _tracker(provider, _BrokenRepo())

    with caplog.at_level(logging.WARNING):
        assert await tracker.start() == []
        tracker.start_toggle(make_server("off"))
        [event] = await _completed(tracker)
    await tracker.close()

    assert event.success
    assert "could not load pending actions" in caplog.text
    assert "could not persist operation" in caplog.text


# ── render_operations ────────────────────────────────────────────


def test_render_operations():
    ops = [
        Operation(id=1, server_id="1", status=OP_ACTIVE, status_text="Starting 'web-1' (40%)"),
        Operation(id=2, server_id="2", status=OP_SUCCEEDED, status_text="Server 'db' stopped"),
        Operation(id=3, server_id="3", status=OP_FAILED, status_text="Rate limited"),
    ]
    assert render_operations(ops) == [
        "… Starting 'web-1' (40%)",
        "✓ Server 'db' stopped",
        "✗ Rate limited",
    ]
