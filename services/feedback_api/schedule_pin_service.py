from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .assignment_state_machine import is_protected_status
from .feedback_errors import FeedbackConflictError, FeedbackNotFoundError, require_identifier
from .feedback_records import DefenseSchedule, FeedbackForm, PinDecision
from .feedback_store import FeedbackStore, FeedbackStoreSession, schedule_lock_key

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulePinDeps:
    store: FeedbackStore


def require_schedule(tx: FeedbackStoreSession, schedule_id: str) -> DefenseSchedule:
    schedule = tx.get_schedule(schedule_id)
    if schedule is None:
        raise FeedbackNotFoundError("schedule_not_found", "Defense schedule not found.", schedule_id=schedule_id)
    return schedule


def get_pin(schedule_id: str, *, deps: SchedulePinDeps) -> Optional[str]:
    sid = require_identifier(schedule_id, "schedule_id")
    with deps.store.session() as session:
        return require_schedule(session, sid).pinned_form_id


def set_pin(schedule_id: str, form_id: str, *, deps: SchedulePinDeps) -> DefenseSchedule:
    """Unconditional pin write; repin policy lives in ``resolve_pin``."""
    sid = require_identifier(schedule_id, "schedule_id")
    fid = require_identifier(form_id, "form_id")
    with deps.store.transaction(schedule_lock_key(sid)) as tx:
        require_schedule(tx, sid)
        if tx.get_form(fid) is None:
            raise FeedbackNotFoundError("form_not_found", "Feedback form not found.", form_id=fid)
        tx.set_schedule_pin(sid, fid)
        return require_schedule(tx, sid)


def count_protected_assignments(tx: FeedbackStoreSession, schedule_id: str) -> int:
    counts = tx.count_assignments_by_status(schedule_id)
    return sum(int(n) for status, n in counts.items() if is_protected_status(status))


def resolve_pin(
    tx: FeedbackStoreSession,
    schedule: DefenseSchedule,
    requested: FeedbackForm,
    *,
    force: bool,
) -> PinDecision:
    """Pin ``schedule`` to ``requested`` unless that would mix form versions.

    Must run inside the caller's schedule transaction so the protected-count
    check and the pin write see the same data.
    """
    current = schedule.pinned_form_id
    if not current:
        tx.set_schedule_pin(schedule.id, requested.id)
        _log.info(
            "schedule pinned schedule=%s form=%s version=%s",
            schedule.id,
            requested.id,
            requested.version,
            extra={"schedule_id": schedule.id},
        )
        return PinDecision(form_id=requested.id, previous_form_id=None, repinned=False)

    if current == requested.id:
        return PinDecision(form_id=current, previous_form_id=current, repinned=False)

    protected = count_protected_assignments(tx, schedule.id)
    if protected == 0:
        tx.set_schedule_pin(schedule.id, requested.id)
        _log.info(
            "schedule repinned schedule=%s from=%s to=%s",
            schedule.id,
            current,
            requested.id,
            extra={"schedule_id": schedule.id},
        )
        return PinDecision(form_id=requested.id, previous_form_id=current, repinned=True)

    pinned = tx.get_form(current)
    if force:
        raise FeedbackConflictError(
            "repin_blocked",
            "This schedule already has submitted or locked feedback on its pinned form; "
            "switching it to the active form would mix form versions.",
            schedule_id=schedule.id,
            pinned_form_id=current,
            pinned_form_version=pinned.version if pinned else None,
            requested_form_id=requested.id,
            requested_form_version=requested.version,
            protected_count=protected,
        )

    warning = (
        f"Schedule stays pinned to form version {pinned.version if pinned else '?'}: "
        f"{protected} assignment(s) already submitted or locked; active version {requested.version} not applied."
    )
    _log.warning(
        "repin skipped schedule=%s pinned=%s requested=%s protected=%s",
        schedule.id,
        current,
        requested.id,
        protected,
        extra={"schedule_id": schedule.id},
    )
    return PinDecision(form_id=current, previous_form_id=current, repinned=False, warning=warning)
