"""Tests for dispatch selection and worker records."""

from __future__ import annotations

from parbuild.dispatch import active_count, free_slots, select_targets
from parbuild.models import BuildOutcome, RunState, WorkerRecord


def _records(**states) -> list[WorkerRecord]:
    """Build records from ``name="ready|active|finished|new"`` keywords."""
    records = []
    for name, state in states.items():
        record = WorkerRecord(target=name)
        if state in ("ready", "active", "finished"):
            record.ready = True
        if state == "active":
            record.active = True
        if state == "finished":
            record.finished = True
        records.append(record)
    return records


# ── WorkerRecord ─────────────────────────────────────────────────────────


class TestWorkerRecord:
    def test_defaults(self):
        record = WorkerRecord(target="a")
        assert not record.ready
        assert not record.active
        assert not record.finished
        assert record.builds == 0
        assert not record.eligible

    def test_eligible_only_when_ready_idle_unfinished(self):
        ready, active, finished, new = _records(a="ready", b="active", c="finished", d="new")
        assert ready.eligible
        assert not active.eligible
        assert not finished.eligible
        assert not new.eligible

    def test_complete(self):
        record = WorkerRecord(target="a", ready=True, active=True)
        record.complete(BuildOutcome.failed("nope"))
        assert not record.active
        assert record.finished
        assert record.builds == 1
        assert record.last_outcome.success is False
        assert record.last_outcome.payload == "nope"

    def test_to_dict(self):
        record = WorkerRecord(target="a", ready=True)
        record.complete(BuildOutcome.succeeded("done"))
        assert record.to_dict() == {
            "target": "a",
            "pid": None,
            "ready": True,
            "active": False,
            "finished": True,
            "builds": 1,
            "success": True,
        }


class TestRunState:
    def test_terminal_states(self):
        assert RunState.SUCCEEDED.is_terminal
        assert RunState.FAILED.is_terminal
        assert not RunState.AWAITING_READY.is_terminal
        assert not RunState.RUNNING.is_terminal


# ── Selection ────────────────────────────────────────────────────────────


class TestSelectTargets:
    def test_fills_free_slots_in_order(self):
        records = _records(a="ready", b="ready", c="ready")
        assert select_targets(records, 2) == ["a", "b"]

    def test_no_slots_when_saturated(self):
        records = _records(a="active", b="active", c="ready")
        assert free_slots(records, 2) == 0
        assert select_targets(records, 2) == []

    def test_free_slots_never_negative(self):
        records = _records(a="active", b="active", c="active")
        assert free_slots(records, 1) == 0

    def test_skips_active_and_finished(self):
        records = _records(a="finished", b="active", c="ready", d="ready")
        assert active_count(records) == 1
        assert select_targets(records, 3) == ["c", "d"]

    def test_skips_not_ready(self):
        records = _records(a="new", b="ready")
        assert select_targets(records, 2) == ["b"]

    def test_nothing_eligible(self):
        records = _records(a="finished", b="finished")
        assert select_targets(records, 4) == []

    def test_empty(self):
        assert select_targets([], 3) == []
