"""Tests for services.feedback_api.feedback_assignment_service."""
from __future__ import annotations

import threading
from dataclasses import replace

import pytest
import requests

from services.feedback_api.assignment_transition_service import (
    AssignmentTransitionDeps,
    patch_answers,
    transition_assignment,
)
from services.feedback_api.collaborator_models import RosterMember
from services.feedback_api.feedback_assignment_service import FeedbackAssignmentDeps, assign_feedback
from services.feedback_api.feedback_errors import (
    FeedbackConflictError,
    FeedbackNotFoundError,
    FeedbackValidationError,
    UpstreamUnavailableError,
)
from services.feedback_api.feedback_records import AssignOptions
from services.feedback_api.feedback_store import schedule_lock_key
from services.feedback_api.form_registry_service import DEFAULT_FORM_SCHEMA, activate_form, create_form_version
from services.feedback_api.status_summary_store import MemoryStatusSummaryStore


def _new_version(form_deps, *, activate=True):
    return create_form_version(
        key="student-feedback-v1",
        title="Student Feedback Form",
        description=None,
        schema=DEFAULT_FORM_SCHEMA,
        activate=activate,
        deps=form_deps,
    )


@pytest.fixture
def summary_store():
    return MemoryStatusSummaryStore(ttl_sec=0)


@pytest.fixture
def assign_deps(feedback_store, clock, make_ids, roster, summary_store):
    return FeedbackAssignmentDeps(
        store=feedback_store,
        fetch_roster=roster,
        now_iso=clock,
        new_id=make_ids("asg"),
        summary_store=summary_store,
    )


@pytest.fixture
def schedule(feedback_store, roster):
    feedback_store.register_schedule("sched-s", group_id="group-1")
    roster.set("sched-s", ["stu-a", "stu-b", "stu-c"])
    return "sched-s"


@pytest.fixture
def f1_v2(form_deps, default_form):
    return _new_version(form_deps)


def _set_status(store, schedule_id, student_id, status):
    with store.transaction(schedule_lock_key(schedule_id)) as tx:
        row = tx.find_assignment(schedule_id, student_id)
        tx.update_assignment(replace(row, status=status, submitted_at="2026-03-01T10:00:00+00:00"))


def _rows(store, schedule_id):
    with store.session() as session:
        return {a.student_id: a for a in session.list_assignments(schedule_id)}


def test_first_assignment_creates_pending_rows_and_pins(assign_deps, schedule, f1_v2, feedback_store):
    result = assign_feedback(schedule, None, AssignOptions(use_active_form=True), deps=assign_deps)

    assert (result.created, result.updated, result.existing) == (3, 0, 0)
    assert result.used_form_id == f1_v2.id
    assert result.used_form_version == 2
    assert result.used_form_title == "Student Feedback Form"
    assert result.repinned is False
    assert result.targeted_student_ids == ["stu-a", "stu-b", "stu-c"]
    with feedback_store.session() as session:
        assert session.get_schedule(schedule).pinned_form_id == f1_v2.id
    rows = _rows(feedback_store, schedule)
    assert {r.status for r in rows.values()} == {"pending"}
    assert {r.form_id for r in rows.values()} == {f1_v2.id}
    assert all(r.submitted_at is None and r.locked_at is None for r in rows.values())


def test_newer_active_form_does_not_repin_over_submitted(assign_deps, schedule, f1_v2, form_deps, feedback_store):
    assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    _set_status(feedback_store, schedule, "stu-a", "submitted")
    v3 = _new_version(form_deps)

    result = assign_feedback(schedule, None, AssignOptions(force_active_form=False), deps=assign_deps)

    assert result.repinned is False
    assert result.warning
    assert (result.created, result.updated, result.existing) == (0, 0, 3)
    assert result.used_form_id == f1_v2.id
    assert result.used_form_version == 2
    with feedback_store.session() as session:
        assert session.get_schedule(schedule).pinned_form_id == f1_v2.id
    assert v3.id not in {r.form_id for r in _rows(feedback_store, schedule).values()}


def test_overwrite_pending_keeps_pinned_form_and_submitted_rows(
    assign_deps, schedule, f1_v2, form_deps, feedback_store
):
    assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    _set_status(feedback_store, schedule, "stu-a", "submitted")
    before = _rows(feedback_store, schedule)
    _new_version(form_deps)

    result = assign_feedback(
        schedule,
        None,
        AssignOptions(overwrite_pending=True, seed_answers={"overall_satisfaction": None}),
        deps=assign_deps,
    )

    assert (result.created, result.updated, result.existing) == (0, 2, 1)
    rows = _rows(feedback_store, schedule)
    assert rows["stu-a"] == before["stu-a"]
    for sid in ("stu-b", "stu-c"):
        assert rows[sid].status == "pending"
        assert rows[sid].form_id == f1_v2.id
        assert rows[sid].answers == {"overall_satisfaction": None}


def test_assignment_is_idempotent(assign_deps, schedule, default_form, feedback_store):
    first = assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    snapshot = _rows(feedback_store, schedule)
    second = assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)

    assert first.created == 3
    assert (second.created, second.updated, second.existing) == (0, 0, 3)
    assert _rows(feedback_store, schedule) == snapshot


def test_repins_when_nothing_is_submitted(assign_deps, schedule, default_form, form_deps, feedback_store):
    assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    v2 = _new_version(form_deps)

    result = assign_feedback(schedule, None, AssignOptions(force_active_form=True), deps=assign_deps)

    assert result.repinned is True
    assert result.used_form_id == v2.id
    # pending rows keep their form unless overwrite is requested
    assert {r.form_id for r in _rows(feedback_store, schedule).values()} == {default_form.id}


def test_forced_repin_over_submitted_conflicts_without_writes(
    assign_deps, schedule, default_form, form_deps, feedback_store, roster
):
    assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    _set_status(feedback_store, schedule, "stu-a", "locked")
    roster.set(schedule, ["stu-a", "stu-b", "stu-c", "stu-d"])
    _new_version(form_deps)

    with pytest.raises(FeedbackConflictError) as excinfo:
        assign_feedback(schedule, None, AssignOptions(force_active_form=True), deps=assign_deps)

    assert excinfo.value.detail["pinned_form_id"] == default_form.id
    assert "stu-d" not in _rows(feedback_store, schedule)
    with feedback_store.session() as session:
        assert session.get_schedule(schedule).pinned_form_id == default_form.id


def test_use_pinned_form_when_not_using_active(assign_deps, schedule, default_form, form_deps, feedback_store):
    assign_feedback(schedule, ["stu-a"], AssignOptions(), deps=assign_deps)
    _new_version(form_deps)

    result = assign_feedback(schedule, ["stu-b"], AssignOptions(use_active_form=False), deps=assign_deps)

    assert result.used_form_id == default_form.id
    assert result.repinned is False
    assert result.warning is None
    assert _rows(feedback_store, schedule)["stu-b"].form_id == default_form.id


def test_subset_selection_is_case_insensitive(assign_deps, schedule, default_form, feedback_store):
    result = assign_feedback(schedule, ["STU-B", "stu-b", " stu-c "], AssignOptions(), deps=assign_deps)

    assert result.targeted_student_ids == ["stu-b", "stu-c"]
    assert result.created == 2
    assert sorted(_rows(feedback_store, schedule)) == ["stu-b", "stu-c"]


def test_students_not_on_roster_are_rejected(assign_deps, schedule, default_form, feedback_store):
    with pytest.raises(FeedbackValidationError) as excinfo:
        assign_feedback(schedule, ["stu-a", "stranger"], AssignOptions(), deps=assign_deps)
    assert excinfo.value.error == "students_not_on_roster"
    assert excinfo.value.detail["student_ids"] == ["stranger"]
    assert _rows(feedback_store, schedule) == {}


def test_inactive_members_are_skipped(assign_deps, schedule, default_form, roster):
    roster.set(
        schedule,
        [RosterMember(student_id="stu-a"), RosterMember(student_id="stu-b", status="withdrawn")],
    )
    result = assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    assert result.targeted_student_ids == ["stu-a"]


def test_empty_roster_is_validation_error(assign_deps, schedule, default_form, roster):
    roster.set(schedule, [])
    with pytest.raises(FeedbackValidationError) as excinfo:
        assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    assert excinfo.value.error == "schedule_has_no_students"


def test_unknown_schedule_is_not_found_before_roster_lookup(assign_deps, default_form, roster):
    with pytest.raises(FeedbackNotFoundError):
        assign_feedback("sched-unknown", None, AssignOptions(), deps=assign_deps)
    assert roster.calls == []


def test_no_active_form_fails_fast(assign_deps, schedule, form_deps, feedback_store):
    with pytest.raises(FeedbackNotFoundError) as excinfo:
        assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    assert excinfo.value.error == "no_active_form"
    assert _rows(feedback_store, schedule) == {}


def test_roster_failure_is_upstream_unavailable_and_not_retried(assign_deps, schedule, default_form, roster):
    roster.error = requests.ConnectionError("down")
    with pytest.raises(UpstreamUnavailableError) as excinfo:
        assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    assert excinfo.value.detail["kind"] == "unverified"
    assert roster.calls == [schedule]


def test_invalid_schedule_identifier(assign_deps):
    with pytest.raises(FeedbackValidationError) as excinfo:
        assign_feedback("../etc", None, AssignOptions(), deps=assign_deps)
    assert excinfo.value.error == "invalid_identifier"


def test_assignment_refreshes_status_summary(assign_deps, schedule, default_form, summary_store):
    assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    cached = summary_store.load(schedule)
    assert (cached.total, cached.pending) == (3, 3)


def test_activation_between_runs_does_not_touch_existing_rows(
    assign_deps, schedule, default_form, form_deps, feedback_store
):
    assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    v2 = _new_version(form_deps, activate=False)
    activate_form(v2.id, deps=form_deps)
    result = assign_feedback(schedule, None, AssignOptions(), deps=assign_deps)
    assert result.existing == 3
    assert result.repinned is True
    assert {r.form_id for r in _rows(feedback_store, schedule).values()} == {default_form.id}


def _run_together(*targets):
    barrier = threading.Barrier(len(targets))
    errors = []

    def _wrap(target):
        def _run():
            barrier.wait(timeout=5)
            try:
                target()
            except Exception as exc:
                errors.append(exc)

        return _run

    threads = [threading.Thread(target=_wrap(t)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return errors


def test_concurrent_assignment_of_one_schedule_creates_each_student_once(
    assign_deps, default_form, feedback_store, roster
):
    feedback_store.register_schedule("sched-many")
    students = [f"stu-{n:02d}" for n in range(40)]
    roster.set("sched-many", students)
    results = []

    def _assign():
        results.append(assign_feedback("sched-many", None, AssignOptions(), deps=assign_deps))

    errors = _run_together(*[_assign] * 8)

    assert errors == []
    assert len(results) == 8
    assert sum(r.created for r in results) == 40
    assert sum(r.existing for r in results) == 7 * 40
    assert sorted(_rows(feedback_store, "sched-many")) == students
    assert {r.used_form_id for r in results} == {default_form.id}


@pytest.mark.parametrize("round_no", range(5))
def test_submit_racing_forced_repin_never_repins_over_submitted(
    round_no, assign_deps, schedule, default_form, form_deps, feedback_store, clock, summary_store
):
    pinned = assign_feedback(schedule, None, AssignOptions(), deps=assign_deps).used_form_id
    transition_deps = AssignmentTransitionDeps(store=feedback_store, now_iso=clock, summary_store=summary_store)
    target = _rows(feedback_store, schedule)["stu-a"]
    required = {
        q["id"]: 5
        for section in DEFAULT_FORM_SCHEMA["sections"]
        for q in section["questions"]
        if q.get("required")
    }
    patch_answers(target.id, required, deps=transition_deps)
    newer = _new_version(form_deps)
    outcome = {}

    def _submit():
        transition_assignment(target.id, "submit", deps=transition_deps)

    def _force():
        outcome["result"] = assign_feedback(schedule, None, AssignOptions(force_active_form=True), deps=assign_deps)

    errors = _run_together(_submit, _force)

    assert all(isinstance(e, FeedbackConflictError) for e in errors)
    assert _rows(feedback_store, schedule)["stu-a"].status == "submitted"
    with feedback_store.session() as session:
        pin = session.get_schedule(schedule).pinned_form_id
    if errors:
        assert "result" not in outcome
        assert pin == pinned
    else:
        assert outcome["result"].repinned is True
        assert pin == newer.id
