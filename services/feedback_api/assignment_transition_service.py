from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from .assignment_state_machine import (
    ACTION_SUBMIT,
    STATUS_PENDING,
    InvalidAssignmentTransition,
    LockedResetPolicy,
    apply_assignment_transition,
    normalize_assignment_status,
    normalize_transition_action,
)
from .feedback_errors import (
    FeedbackConflictError,
    FeedbackNotFoundError,
    FeedbackValidationError,
    require_identifier,
)
from .feedback_records import EvaluationAssignment
from .feedback_store import FeedbackStore, FeedbackStoreSession, assignment_lock_key
from .form_registry_service import has_answers, validate_required_answers
from .schedule_pin_service import require_schedule
from .status_counts_service import refresh_status_summary
from .status_summary_store import StatusSummaryStore

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignmentTransitionDeps:
    store: FeedbackStore
    now_iso: Callable[[], str]
    policy: LockedResetPolicy = LockedResetPolicy.FORBID
    summary_store: Optional[StatusSummaryStore] = None


def _require_assignment(tx: FeedbackStoreSession, assignment_id: str) -> EvaluationAssignment:
    assignment = tx.get_assignment(assignment_id)
    if assignment is None:
        raise FeedbackNotFoundError(
            "assignment_not_found",
            "Feedback assignment not found.",
            assignment_id=assignment_id,
        )
    return assignment


def _check_submittable(tx: FeedbackStoreSession, assignment: EvaluationAssignment) -> None:
    if not has_answers(assignment.answers):
        raise FeedbackValidationError(
            "answers_required",
            "Answer the feedback form before submitting.",
            assignment_id=assignment.id,
        )
    form = tx.get_form(assignment.form_id) if assignment.form_id else None
    if form is None:
        return
    missing = validate_required_answers(assignment.answers, form.schema)
    if missing:
        raise FeedbackValidationError(
            "required_answers_missing",
            "Some required questions are not answered.",
            assignment_id=assignment.id,
            form_id=form.id,
            missing=missing,
        )


def _refresh_summary(schedule_id: str, deps: AssignmentTransitionDeps) -> None:
    if deps.summary_store is not None:
        refresh_status_summary(schedule_id, store=deps.store, summary_store=deps.summary_store)


def get_assignment(assignment_id: str, *, deps: AssignmentTransitionDeps) -> EvaluationAssignment:
    aid = require_identifier(assignment_id, "assignment_id")
    with deps.store.session() as session:
        return _require_assignment(session, aid)


def list_schedule_assignments(schedule_id: str, *, deps: AssignmentTransitionDeps) -> List[EvaluationAssignment]:
    sid = require_identifier(schedule_id, "schedule_id")
    with deps.store.session() as session:
        require_schedule(session, sid)
        return session.list_assignments(sid)


def transition_assignment(
    assignment_id: str,
    action: str,
    *,
    elevated: bool = False,
    deps: AssignmentTransitionDeps,
) -> EvaluationAssignment:
    aid = require_identifier(assignment_id, "assignment_id")
    try:
        act = normalize_transition_action(action)
    except ValueError:
        raise FeedbackValidationError(
            "invalid_action",
            "action must be one of submit, lock, set-pending, unlock.",
            assignment_id=aid,
            action=str(action or ""),
        )

    with deps.store.transaction(assignment_lock_key(aid)) as tx:
        current = _require_assignment(tx, aid)
        if act == ACTION_SUBMIT and normalize_assignment_status(current.status) == STATUS_PENDING:
            _check_submittable(tx, current)
        try:
            moved = apply_assignment_transition(
                current,
                act,
                now_iso=deps.now_iso(),
                policy=deps.policy,
                elevated=elevated,
            )
        except InvalidAssignmentTransition as exc:
            raise FeedbackConflictError(
                "invalid_transition",
                f"Cannot {act} an assignment that is {exc.current}.",
                assignment_id=aid,
                current_status=exc.current,
                action=act,
                reason=exc.reason,
            ) from exc
        if moved is not current:
            tx.update_assignment(moved)

    if moved is current:
        return current
    _log.info(
        "assignment transition id=%s action=%s %s->%s",
        aid,
        act,
        current.status,
        moved.status,
        extra={"assignment_id": aid, "schedule_id": moved.schedule_id},
    )
    _refresh_summary(moved.schedule_id, deps)
    return moved


def patch_answers(
    assignment_id: str,
    answers: Dict[str, Any],
    *,
    deps: AssignmentTransitionDeps,
) -> EvaluationAssignment:
    """Merge ``answers`` into a pending assignment; submitted or locked answers are frozen."""
    aid = require_identifier(assignment_id, "assignment_id")
    if not isinstance(answers, dict):
        raise FeedbackValidationError("invalid_answers", "answers must be an object.", assignment_id=aid)

    with deps.store.transaction(assignment_lock_key(aid)) as tx:
        current = _require_assignment(tx, aid)
        status = normalize_assignment_status(current.status)
        if status != STATUS_PENDING:
            raise FeedbackConflictError(
                "answers_frozen",
                f"Answers cannot change once the assignment is {status}.",
                assignment_id=aid,
                current_status=status,
            )
        merged = dict(current.answers or {})
        merged.update({str(k): v for k, v in answers.items()})
        updated = replace(current, answers=merged, updated_at=deps.now_iso())
        tx.update_assignment(updated)

    _log.info("assignment answers updated id=%s keys=%s", aid, len(answers), extra={"assignment_id": aid})
    return updated
