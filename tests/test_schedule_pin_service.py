"""Tests for services.feedback_api.schedule_pin_service."""
from __future__ import annotations

from dataclasses import replace

import pytest

from services.feedback_api.assignment_state_machine import new_pending_assignment
from services.feedback_api.feedback_errors import FeedbackConflictError, FeedbackNotFoundError
from services.feedback_api.feedback_store import schedule_lock_key
from services.feedback_api.form_registry_service import DEFAULT_FORM_SCHEMA, create_form_version
from services.feedback_api.schedule_pin_service import (
    SchedulePinDeps,
    count_protected_assignments,
    get_pin,
    resolve_pin,
    set_pin,
)


@pytest.fixture
def pin_deps(feedback_store):
    return SchedulePinDeps(store=feedback_store)


@pytest.fixture
def newer_form(form_deps, default_form):
    return create_form_version(
        key=default_form.key,
        title="Student Feedback Form v2",
        description=None,
        schema=DEFAULT_FORM_SCHEMA,
        activate=True,
        deps=form_deps,
    )


def _add_assignment(store, schedule_id, student_id, form_id, status="pending"):
    row = new_pending_assignment(
        assignment_id=f"a-{student_id}",
        schedule_id=schedule_id,
        student_id=student_id,
        form_id=form_id,
        answers=None,
        now_iso="2026-03-01T09:00:00+00:00",
    )
    if status != "pending":
        row = replace(row, status=status, submitted_at="2026-03-01T09:05:00+00:00")
    with store.transaction(schedule_lock_key(schedule_id)) as tx:
        tx.insert_assignment(row)


def _resolve(store, schedule_id, form, force=False):
    with store.transaction(schedule_lock_key(schedule_id)) as tx:
        schedule = tx.get_schedule(schedule_id)
        return resolve_pin(tx, schedule, form, force=force)


def test_get_pin_unknown_schedule_is_not_found(pin_deps):
    with pytest.raises(FeedbackNotFoundError) as excinfo:
        get_pin("sched-missing", deps=pin_deps)
    assert excinfo.value.error == "schedule_not_found"


def test_set_pin_requires_existing_form(pin_deps, feedback_store, default_form):
    feedback_store.register_schedule("sched-1")
    with pytest.raises(FeedbackNotFoundError):
        set_pin("sched-1", "no-such-form", deps=pin_deps)
    set_pin("sched-1", default_form.id, deps=pin_deps)
    assert get_pin("sched-1", deps=pin_deps) == default_form.id


def test_first_resolution_pins_without_repinned_flag(pin_deps, feedback_store, default_form):
    feedback_store.register_schedule("sched-1")
    decision = _resolve(feedback_store, "sched-1", default_form)
    assert decision.form_id == default_form.id
    assert decision.repinned is False
    assert decision.previous_form_id is None
    assert get_pin("sched-1", deps=pin_deps) == default_form.id


def test_same_form_is_unchanged(pin_deps, feedback_store, default_form):
    feedback_store.register_schedule("sched-1")
    _resolve(feedback_store, "sched-1", default_form)
    decision = _resolve(feedback_store, "sched-1", default_form, force=True)
    assert decision.repinned is False
    assert decision.warning is None


def test_repin_allowed_with_zero_protected_assignments(pin_deps, feedback_store, default_form, newer_form):
    feedback_store.register_schedule("sched-1")
    set_pin("sched-1", default_form.id, deps=pin_deps)
    _add_assignment(feedback_store, "sched-1", "stu-1", default_form.id, status="pending")

    decision = _resolve(feedback_store, "sched-1", newer_form)
    assert decision.repinned is True
    assert decision.previous_form_id == default_form.id
    assert get_pin("sched-1", deps=pin_deps) == newer_form.id


def test_repin_skipped_with_one_protected_assignment(pin_deps, feedback_store, default_form, newer_form):
    feedback_store.register_schedule("sched-1")
    set_pin("sched-1", default_form.id, deps=pin_deps)
    _add_assignment(feedback_store, "sched-1", "stu-1", default_form.id, status="submitted")

    decision = _resolve(feedback_store, "sched-1", newer_form)
    assert decision.repinned is False
    assert decision.form_id == default_form.id
    assert "1 assignment(s)" in decision.warning
    assert get_pin("sched-1", deps=pin_deps) == default_form.id


def test_forced_unsafe_repin_conflicts_and_keeps_pin(pin_deps, feedback_store, default_form, newer_form):
    feedback_store.register_schedule("sched-1")
    set_pin("sched-1", default_form.id, deps=pin_deps)
    _add_assignment(feedback_store, "sched-1", "stu-1", default_form.id, status="locked")

    with pytest.raises(FeedbackConflictError) as excinfo:
        _resolve(feedback_store, "sched-1", newer_form, force=True)

    detail = excinfo.value.detail
    assert excinfo.value.status_code == 409
    assert detail["error"] == "repin_blocked"
    assert detail["kind"] == "blocked"
    assert detail["pinned_form_id"] == default_form.id
    assert detail["pinned_form_version"] == 1
    assert detail["requested_form_version"] == 2
    assert detail["protected_count"] == 1
    assert get_pin("sched-1", deps=pin_deps) == default_form.id


def test_count_protected_assignments(feedback_store, default_form):
    feedback_store.register_schedule("sched-1")
    _add_assignment(feedback_store, "sched-1", "stu-1", default_form.id, status="pending")
    _add_assignment(feedback_store, "sched-1", "stu-2", default_form.id, status="submitted")
    _add_assignment(feedback_store, "sched-1", "stu-3", default_form.id, status="locked")
    with feedback_store.session() as session:
        assert count_protected_assignments(session, "sched-1") == 2
