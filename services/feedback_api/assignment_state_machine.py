from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional

from .feedback_records import EvaluationAssignment

STATUS_PENDING = "pending"
STATUS_SUBMITTED = "submitted"
STATUS_LOCKED = "locked"

ACTION_SUBMIT = "submit"
ACTION_LOCK = "lock"
ACTION_SET_PENDING = "set-pending"
ACTION_UNLOCK = "unlock"

_STATUSES = {STATUS_PENDING, STATUS_SUBMITTED, STATUS_LOCKED}
_PROTECTED_STATUSES = {STATUS_SUBMITTED, STATUS_LOCKED}

_ACTION_ALIASES = {
    "submit": ACTION_SUBMIT,
    "lock": ACTION_LOCK,
    "set-pending": ACTION_SET_PENDING,
    "set_pending": ACTION_SET_PENDING,
    "setpending": ACTION_SET_PENDING,
    "pending": ACTION_SET_PENDING,
    "unlock": ACTION_UNLOCK,
}

# action -> {from_status: to_status}; unlock's target depends on submitted_at.
_TRANSITIONS: Dict[str, Dict[str, str]] = {
    ACTION_SUBMIT: {STATUS_PENDING: STATUS_SUBMITTED},
    ACTION_LOCK: {STATUS_PENDING: STATUS_LOCKED, STATUS_SUBMITTED: STATUS_LOCKED},
    ACTION_SET_PENDING: {STATUS_PENDING: STATUS_PENDING, STATUS_SUBMITTED: STATUS_PENDING},
    ACTION_UNLOCK: {STATUS_LOCKED: STATUS_PENDING},
}


class LockedResetPolicy(str, Enum):
    """Whether ``set-pending`` may leave ``locked``.

    FORBID keeps ``locked`` final for ordinary admin actions; only the
    elevated ``unlock`` action leaves it. ALLOW lets ``set-pending`` reset a
    locked assignment directly.
    """

    FORBID = "forbid"
    ALLOW = "allow"

    @classmethod
    def parse(cls, value: object) -> "LockedResetPolicy":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower() or cls.FORBID.value
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"invalid_locked_reset_policy:{text}")


class InvalidAssignmentTransition(ValueError):
    def __init__(self, current: str, action: str, reason: str):
        super().__init__(f"invalid_assignment_transition:{current}->{action}:{reason}")
        self.current = current
        self.action = action
        self.reason = reason


def normalize_assignment_status(status: object) -> str:
    text = str(status or "").strip().lower() or STATUS_PENDING
    if text not in _STATUSES:
        raise ValueError(f"invalid_assignment_status:{text}")
    return text


def normalize_transition_action(action: object) -> str:
    text = str(action or "").strip().lower()
    normalized = _ACTION_ALIASES.get(text)
    if normalized is None:
        raise ValueError(f"invalid_assignment_action:{text}")
    return normalized


def is_protected_status(status: object) -> bool:
    return normalize_assignment_status(status) in _PROTECTED_STATUSES


@dataclass
class AssignmentStateMachine:
    status: str
    policy: LockedResetPolicy = LockedResetPolicy.FORBID

    def __post_init__(self) -> None:
        self.status = normalize_assignment_status(self.status)
        self.policy = LockedResetPolicy.parse(self.policy)

    def target_for(self, action: object, *, elevated: bool = False, was_submitted: bool = False) -> str:
        act = normalize_transition_action(action)
        if act == ACTION_UNLOCK:
            if self.status != STATUS_LOCKED:
                raise InvalidAssignmentTransition(self.status, act, "not_locked")
            if not elevated:
                raise InvalidAssignmentTransition(self.status, act, "elevated_privilege_required")
            return STATUS_SUBMITTED if was_submitted else STATUS_PENDING
        if act == ACTION_SET_PENDING and self.status == STATUS_LOCKED:
            if self.policy is LockedResetPolicy.ALLOW:
                return STATUS_PENDING
            raise InvalidAssignmentTransition(self.status, act, "locked_reset_forbidden")
        allowed = _TRANSITIONS.get(act) or {}
        target = allowed.get(self.status)
        if target is None:
            raise InvalidAssignmentTransition(self.status, act, "not_permitted")
        return target

    def transition(self, action: object, *, elevated: bool = False, was_submitted: bool = False) -> str:
        self.status = self.target_for(action, elevated=elevated, was_submitted=was_submitted)
        return self.status


def apply_assignment_transition(
    assignment: EvaluationAssignment,
    action: object,
    *,
    now_iso: str,
    policy: LockedResetPolicy = LockedResetPolicy.FORBID,
    elevated: bool = False,
) -> EvaluationAssignment:
    """Return ``assignment`` moved by ``action`` with timestamps matching the new status."""
    act = normalize_transition_action(action)
    sm = AssignmentStateMachine(assignment.status, policy=policy)
    current = sm.status
    target = sm.transition(act, elevated=elevated, was_submitted=bool(assignment.submitted_at))
    if target == current:
        return assignment

    submitted_at: Optional[str] = assignment.submitted_at
    locked_at: Optional[str] = assignment.locked_at
    if target == STATUS_PENDING:
        submitted_at = None
        locked_at = None
    elif target == STATUS_SUBMITTED:
        submitted_at = submitted_at if current == STATUS_LOCKED and submitted_at else now_iso
        locked_at = None
    elif target == STATUS_LOCKED:
        locked_at = now_iso

    return replace(
        assignment,
        status=target,
        submitted_at=submitted_at,
        locked_at=locked_at,
        updated_at=now_iso,
    )


def new_pending_assignment(
    *,
    assignment_id: str,
    schedule_id: str,
    student_id: str,
    form_id: Optional[str],
    answers: Optional[Dict[str, object]],
    now_iso: str,
) -> EvaluationAssignment:
    return EvaluationAssignment(
        id=assignment_id,
        schedule_id=schedule_id,
        student_id=student_id,
        form_id=form_id,
        status=STATUS_PENDING,
        answers=dict(answers) if isinstance(answers, dict) else None,
        created_at=now_iso,
        updated_at=now_iso,
        submitted_at=None,
        locked_at=None,
    )
