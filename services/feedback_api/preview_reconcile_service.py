from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from .collaborator_models import PreviewCandidate, PreviewPayload, identity_key
from .feedback_errors import FeedbackNotFoundError, FeedbackValidationError, optional_identifier, require_identifier

_log = logging.getLogger(__name__)

KIND_STUDENT = "student"
KIND_PANELIST = "panelist"
_KINDS = {KIND_STUDENT, KIND_PANELIST}


def find_student_preview(
    candidates: Iterable[PreviewCandidate],
    selected_assignment_id: Optional[str],
    selected_student_id: Optional[str],
) -> Optional[PreviewCandidate]:
    """One pass: an exact assignment id wins outright, else the first student-id match."""
    want_assignment = identity_key(selected_assignment_id)
    want_student = identity_key(selected_student_id)
    fallback: Optional[PreviewCandidate] = None
    for candidate in candidates:
        if want_assignment and candidate.assignment_key == want_assignment:
            return candidate
        if fallback is None and want_student and candidate.student_key == want_student:
            fallback = candidate
    return fallback


def find_panelist_preview(
    candidates: Iterable[PreviewCandidate],
    selected_assignment_id: Optional[str],
) -> Optional[PreviewCandidate]:
    want = identity_key(selected_assignment_id)
    if not want:
        return None
    for candidate in candidates:
        if candidate.assignment_key == want:
            return candidate
    return None


@dataclass(frozen=True)
class PreviewSelection:
    kind: str
    assignment_id: Optional[str] = None
    student_id: Optional[str] = None

    @classmethod
    def parse(cls, kind: object, assignment_id: object = None, student_id: object = None) -> "PreviewSelection":
        text = str(kind or "").strip().lower()
        if text not in _KINDS:
            raise FeedbackValidationError("invalid_preview_kind", "kind must be student or panelist.", kind=text)
        selection = cls(
            kind=text,
            assignment_id=optional_identifier(assignment_id, "assignment_id"),
            student_id=optional_identifier(student_id, "student_id"),
        )
        if text == KIND_PANELIST and not selection.assignment_id:
            raise FeedbackValidationError("invalid_selection", "assignment_id is required for panelist previews.")
        if text == KIND_STUDENT and not (selection.assignment_id or selection.student_id):
            raise FeedbackValidationError(
                "invalid_selection", "assignment_id or student_id is required for student previews."
            )
        return selection


@dataclass(frozen=True)
class PreviewDeps:
    fetch_preview: Callable[[str], PreviewPayload]


def reconcile_preview(schedule_id: str, selection: PreviewSelection, *, deps: PreviewDeps) -> PreviewCandidate:
    sid = require_identifier(schedule_id, "schedule_id")
    payload = deps.fetch_preview(sid)
    if selection.kind == KIND_PANELIST:
        match = find_panelist_preview(payload.panelist_candidates, selection.assignment_id)
    else:
        match = find_student_preview(payload.student_candidates, selection.assignment_id, selection.student_id)
    if match is None:
        raise FeedbackNotFoundError(
            "preview_not_found",
            "No preview entry matches the selection.",
            schedule_id=sid,
            kind=selection.kind,
            assignment_id=selection.assignment_id,
            student_id=selection.student_id,
        )
    return match


@dataclass(frozen=True)
class PreviewFetchOutcome:
    key: str
    generation: int
    value: Any = None
    superseded: bool = False


class PreviewFetchCoordinator:
    """Latest-selection-wins guard for preview fetches sharing a view key.

    A key is tracked only while at least one fetch for it is in flight.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generations: Dict[str, int] = {}
        self._in_flight: Dict[str, int] = {}

    def _begin(self, key: str) -> int:
        with self._lock:
            generation = self._generations.get(key, 0) + 1
            self._generations[key] = generation
            self._in_flight[key] = self._in_flight.get(key, 0) + 1
            return generation

    def _finish(self, key: str) -> None:
        with self._lock:
            remaining = self._in_flight.get(key, 0) - 1
            if remaining > 0:
                self._in_flight[key] = remaining
                return
            self._in_flight.pop(key, None)
            self._generations.pop(key, None)

    def is_current(self, key: str, generation: int) -> bool:
        with self._lock:
            return self._generations.get(key) == generation

    def cancel(self, key: str) -> bool:
        """Supersede fetches in flight for ``key``; False when none are running."""
        with self._lock:
            if key not in self._in_flight:
                return False
            self._generations[key] += 1
            return True

    def fetch(self, key: str, fn: Callable[[], Any]) -> PreviewFetchOutcome:
        generation = self._begin(key)
        try:
            try:
                value = fn()
            except Exception:
                if not self.is_current(key, generation):
                    _log.debug("superseded preview fetch failed key=%s generation=%s", key, generation, exc_info=True)
                    return PreviewFetchOutcome(key=key, generation=generation, superseded=True)
                raise
            if not self.is_current(key, generation):
                _log.debug("discarding superseded preview key=%s generation=%s", key, generation)
                return PreviewFetchOutcome(key=key, generation=generation, superseded=True)
            return PreviewFetchOutcome(key=key, generation=generation, value=value)
        finally:
            self._finish(key)
