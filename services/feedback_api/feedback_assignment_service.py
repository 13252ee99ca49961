from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .assignment_state_machine import STATUS_PENDING, new_pending_assignment
from .collaborator_models import RosterMember, identity_key
from .feedback_errors import (
    FeedbackNotFoundError,
    FeedbackValidationError,
    UpstreamUnavailableError,
    require_identifier,
)
from .feedback_records import AssignmentResult, AssignOptions, DefenseSchedule, FeedbackForm
from .feedback_store import FeedbackStore, FeedbackStoreSession, schedule_lock_key
from .form_registry_service import require_active_form
from .schedule_pin_service import require_schedule, resolve_pin
from .status_counts_service import refresh_status_summary
from .status_summary_store import StatusSummaryStore

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackAssignmentDeps:
    store: FeedbackStore
    fetch_roster: Callable[[str], List[RosterMember]]
    now_iso: Callable[[], str]
    new_id: Callable[[], str]
    summary_store: Optional[StatusSummaryStore] = None


def _unique_ids(values: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for value in values:
        key = identity_key(value)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(str(value).strip())
    return out


def _load_roster(schedule_id: str, deps: FeedbackAssignmentDeps) -> List[str]:
    # No retry here: a failed roster read must not turn into a second write attempt.
    try:
        members = deps.fetch_roster(schedule_id)
    except UpstreamUnavailableError:
        raise
    except Exception as exc:
        _log.warning("roster lookup failed schedule=%s error=%s", schedule_id, exc)
        raise UpstreamUnavailableError(
            "upstream_unavailable",
            "Could not load the schedule roster; no assignments were written.",
            collaborator="roster",
            schedule_id=schedule_id,
        ) from exc
    return _unique_ids(m.student_id for m in members or [] if m.is_active)


def _target_students(schedule_id: str, roster: List[str], requested: Optional[List[str]]) -> List[str]:
    if not roster:
        raise FeedbackValidationError(
            "schedule_has_no_students",
            "This schedule has no active student members to assign.",
            schedule_id=schedule_id,
        )
    if not requested:
        return roster
    by_key = {identity_key(sid): sid for sid in roster}
    unknown = [sid for sid in requested if identity_key(sid) not in by_key]
    if unknown:
        raise FeedbackValidationError(
            "students_not_on_roster",
            "Some students are not active members of this schedule.",
            schedule_id=schedule_id,
            student_ids=unknown,
        )
    return [by_key[identity_key(sid)] for sid in requested]


def _resolve_form(tx: FeedbackStoreSession, schedule: DefenseSchedule, options: AssignOptions) -> FeedbackForm:
    if not options.use_active_form and schedule.pinned_form_id:
        pinned = tx.get_form(schedule.pinned_form_id)
        if pinned is not None:
            return pinned
        _log.warning("pinned form %s missing for schedule=%s", schedule.pinned_form_id, schedule.id)
    return require_active_form(tx)


def _seed(options: AssignOptions) -> Optional[Dict[str, Any]]:
    if options.seed_answers is None:
        return None
    if not isinstance(options.seed_answers, dict):
        raise FeedbackValidationError("invalid_seed_answers", "seed_answers must be an object.")
    return dict(options.seed_answers)


def assign_feedback(
    schedule_id: str,
    student_ids: Optional[List[str]] = None,
    options: Optional[AssignOptions] = None,
    *,
    deps: FeedbackAssignmentDeps,
) -> AssignmentResult:
    sid = require_identifier(schedule_id, "schedule_id")
    opts = options or AssignOptions()
    requested = _unique_ids(require_identifier(s, "student_ids") for s in (student_ids or []))
    seed = _seed(opts)

    with deps.store.session() as session:
        require_schedule(session, sid)
    targets = _target_students(sid, _load_roster(sid, deps), requested)

    result = AssignmentResult(schedule_id=sid, targeted_student_ids=list(targets))
    with deps.store.transaction(schedule_lock_key(sid)) as tx:
        schedule = require_schedule(tx, sid)
        form = _resolve_form(tx, schedule, opts)
        decision = resolve_pin(tx, schedule, form, force=opts.force_active_form)
        pinned = form if decision.form_id == form.id else tx.get_form(decision.form_id)
        if pinned is None:
            raise FeedbackNotFoundError(
                "form_not_found",
                "The schedule's pinned feedback form no longer exists.",
                schedule_id=sid,
                form_id=decision.form_id,
            )

        now = deps.now_iso()
        for student_id in targets:
            row = tx.find_assignment(sid, student_id)
            if row is None:
                tx.insert_assignment(
                    new_pending_assignment(
                        assignment_id=deps.new_id(),
                        schedule_id=sid,
                        student_id=student_id,
                        form_id=pinned.id,
                        answers=seed,
                        now_iso=now,
                    )
                )
                result.created += 1
            elif row.status == STATUS_PENDING and opts.overwrite_pending:
                tx.update_assignment(replace(row, form_id=pinned.id, answers=seed, updated_at=now))
                result.updated += 1
            else:
                result.existing += 1

        result.used_form_id = pinned.id
        result.used_form_title = pinned.title
        result.used_form_version = pinned.version
        result.repinned = decision.repinned
        result.warning = decision.warning

    _log.info(
        "feedback assigned schedule=%s form=%s v%s created=%s updated=%s existing=%s repinned=%s",
        sid,
        result.used_form_id,
        result.used_form_version,
        result.created,
        result.updated,
        result.existing,
        result.repinned,
        extra={"schedule_id": sid},
    )
    if deps.summary_store is not None:
        refresh_status_summary(sid, store=deps.store, summary_store=deps.summary_store)
    return result
