from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class FeedbackForm:
    id: str
    key: str
    version: int
    title: str
    description: Optional[str]
    schema: Dict[str, Any]
    active: bool
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self, *, include_schema: bool = True) -> Dict[str, Any]:
        out = asdict(self)
        if not include_schema:
            out.pop("schema", None)
        return out


@dataclass(frozen=True)
class DefenseSchedule:
    id: str
    group_id: Optional[str]
    pinned_form_id: Optional[str]


@dataclass(frozen=True)
class EvaluationAssignment:
    id: str
    schedule_id: str
    student_id: str
    form_id: Optional[str]
    status: str
    answers: Optional[Dict[str, Any]]
    created_at: str
    updated_at: str
    submitted_at: Optional[str] = None
    locked_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StatusCounts:
    total: int = 0
    pending: int = 0
    submitted: int = 0
    locked: int = 0
    source: str = "direct"
    summary_mismatch: bool = False

    def same_numbers(self, other: "StatusCounts") -> bool:
        return (self.total, self.pending, self.submitted, self.locked) == (
            other.total,
            other.pending,
            other.submitted,
            other.locked,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AssignOptions:
    use_active_form: bool = True
    force_active_form: bool = False
    overwrite_pending: bool = False
    seed_answers: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class PinDecision:
    form_id: str
    previous_form_id: Optional[str]
    repinned: bool
    warning: Optional[str] = None


@dataclass
class AssignmentResult:
    schedule_id: str
    targeted_student_ids: List[str] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    existing: int = 0
    used_form_id: Optional[str] = None
    used_form_title: Optional[str] = None
    used_form_version: Optional[int] = None
    repinned: bool = False
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["counts"] = {
            "targeted": len(self.targeted_student_ids),
            "created": self.created,
            "updated": self.updated,
            "existing": self.existing,
        }
        return out
