"""Boundary schemas for roster, preview and status-summary payloads.

Upstream services name identity fields inconsistently; everything past this
module works on the normalized models only. Alias lists are tried in order and
the first one holding a usable value wins, so a null or blank ``assignment_id``
does not hide a populated ``id``.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

_log = logging.getLogger(__name__)

_ACTIVE_MEMBER_STATUSES = {"", "active", "enrolled"}

_ROSTER_ID_KEYS = ("student_id", "studentId", "user_id", "userId", "id")
_ASSIGNMENT_ID_KEYS = (
    "assignment_id",
    "assignmentId",
    "student_evaluation_id",
    "studentEvaluationId",
    "evaluation_id",
    "evaluationId",
    "id",
)
_STUDENT_ID_KEYS = ("student_id", "studentId", "user_id", "userId")
_EVALUATOR_ID_KEYS = ("evaluator_id", "evaluatorId", "staff_id", "staffId", "panelist_id")
_STUDENT_LIST_KEYS = ("student_answers", "studentAnswers", "student_evaluations", "studentEvaluations", "students")
_PANELIST_LIST_KEYS = ("panelist_scores", "panelistScores", "evaluations", "panelists")


def identity_key(value: object) -> str:
    return str(value or "").strip().lower()


def _identity_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, tuple, bool)):
        return None
    text = str(value).strip()
    return text or None


def _first_usable(data: Dict[str, Any], keys: Sequence[str], usable: Callable[[Any], bool]) -> Any:
    for key in keys:
        value = data.get(key)
        if usable(value):
            return value
    return None


def _first_identity(data: Dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    return _first_usable(data, keys, lambda v: _identity_text(v) is not None)


def _first_list(data: Dict[str, Any], keys: Sequence[str]) -> Optional[List[Any]]:
    return _first_usable(data, keys, lambda v: isinstance(v, list))


class RosterMember(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    student_id: str
    status: str = ""

    @model_validator(mode="before")
    @classmethod
    def _coalesce_aliases(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {"student_id": _first_identity(data, _ROSTER_ID_KEYS), "status": data.get("status")}
        return data

    @field_validator("student_id", mode="before")
    @classmethod
    def _student_id_text(cls, value: Any) -> str:
        text = _identity_text(value)
        if not text:
            raise ValueError("student_id is empty")
        return text

    @field_validator("status", mode="before")
    @classmethod
    def _status_text(cls, value: Any) -> str:
        return str(value or "").strip().lower()

    @property
    def is_active(self) -> bool:
        return self.status in _ACTIVE_MEMBER_STATUSES


def parse_roster(payload: Any) -> List[RosterMember]:
    items: Any = payload
    if isinstance(payload, dict):
        for key in ("students", "members", "roster", "items"):
            if isinstance(payload.get(key), list):
                items = payload[key]
                break
        else:
            items = []
    if not isinstance(items, list):
        return []
    out: List[RosterMember] = []
    for item in items:
        if isinstance(item, str):
            item = {"student_id": item}
        try:
            out.append(RosterMember.model_validate(item))
        except ValidationError:
            _log.debug("dropping malformed roster entry %r", item)
    return out


class PreviewCandidate(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    assignment_id: Optional[str] = None
    student_id: Optional[str] = None
    evaluator_id: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _coalesce_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "assignment_id": _first_identity(data, _ASSIGNMENT_ID_KEYS),
            "student_id": _first_identity(data, _STUDENT_ID_KEYS),
            "evaluator_id": _first_identity(data, _EVALUATOR_ID_KEYS),
            "raw": dict(data),
        }

    @field_validator("assignment_id", "student_id", "evaluator_id", mode="before")
    @classmethod
    def _identity(cls, value: Any) -> Optional[str]:
        return _identity_text(value)

    @property
    def assignment_key(self) -> str:
        return identity_key(self.assignment_id)

    @property
    def student_key(self) -> str:
        return identity_key(self.student_id)

    def has_identity(self) -> bool:
        return bool(self.assignment_id or self.student_id or self.evaluator_id)


def _candidate_list(value: Any, *, side: str) -> List[PreviewCandidate]:
    if not isinstance(value, list):
        return []
    out: List[PreviewCandidate] = []
    dropped = 0
    for item in value:
        if not isinstance(item, dict):
            dropped += 1
            continue
        candidate = PreviewCandidate.model_validate(item)
        if not candidate.has_identity():
            dropped += 1
            continue
        out.append(candidate)
    if dropped:
        _log.debug("dropped %s %s preview entries without identity", dropped, side)
    return out


class PreviewPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    student_candidates: List[PreviewCandidate] = Field(default_factory=list)
    panelist_candidates: List[PreviewCandidate] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _coalesce_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "student_candidates": _first_list(data, _STUDENT_LIST_KEYS),
            "panelist_candidates": _first_list(data, _PANELIST_LIST_KEYS),
        }

    @field_validator("student_candidates", mode="before")
    @classmethod
    def _students(cls, value: Any) -> List[PreviewCandidate]:
        return _candidate_list(value, side="student")

    @field_validator("panelist_candidates", mode="before")
    @classmethod
    def _panelists(cls, value: Any) -> List[PreviewCandidate]:
        return _candidate_list(value, side="panelist")


class StatusSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total: int = Field(default=0, ge=0)
    pending: int = Field(default=0, ge=0)
    submitted: int = Field(default=0, ge=0)
    locked: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("counts", "summary"):
                if isinstance(data.get(key), dict):
                    return data[key]
        return data
