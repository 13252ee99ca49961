from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .feedback_errors import FeedbackNotFoundError, FeedbackValidationError, require_identifier
from .feedback_records import FeedbackForm
from .feedback_store import FORMS_LOCK_KEY, FeedbackStore, FeedbackStoreSession

_log = logging.getLogger(__name__)

DEFAULT_FORM_KEY = "student-feedback-v1"
DEFAULT_FORM_TITLE = "Student Feedback Form"
DEFAULT_FORM_DESCRIPTION = (
    "Your feedback helps improve the thesis defense experience. Please answer honestly."
)


def _rating(qid: str, label: str, min_label: str, max_label: str, *, required: bool = True) -> Dict[str, Any]:
    return {
        "id": qid,
        "type": "rating",
        "label": label,
        "scale": {"min": 1, "max": 5, "minLabel": min_label, "maxLabel": max_label},
        "required": required,
    }


def _text(qid: str, label: str, placeholder: str) -> Dict[str, Any]:
    return {
        "id": qid,
        "type": "text",
        "label": label,
        "placeholder": placeholder,
        "required": False,
        "maxLength": 1000,
    }


DEFAULT_FORM_SCHEMA: Dict[str, Any] = {
    "sections": [
        {
            "id": "overall",
            "title": "Overall Experience",
            "questions": [
                _rating("overall_satisfaction", "Overall satisfaction with the defense process", "Poor", "Excellent"),
                _rating("schedule_clarity", "Clarity of schedule, venue, and instructions", "Unclear", "Very clear"),
                _rating("time_management", "Time management during the defense", "Poor", "Excellent"),
            ],
        },
        {
            "id": "panel",
            "title": "Panel & Feedback Quality",
            "questions": [
                _rating("feedback_helpfulness", "Helpfulness of panel feedback", "Not helpful", "Very helpful"),
                _rating("feedback_fairness", "Fairness and professionalism of evaluation", "Unfair", "Very fair"),
                _rating("feedback_clarity", "Clarity of comments and recommendations", "Unclear", "Very clear"),
            ],
        },
        {
            "id": "open_ended",
            "title": "Suggestions",
            "questions": [
                _text("what_went_well", "What went well during the defense?", "Share what worked best..."),
                _text("what_to_improve", "What should be improved?", "Share suggestions..."),
            ],
        },
    ],
}


@dataclass(frozen=True)
class FormRegistryDeps:
    store: FeedbackStore
    now_iso: Callable[[], str]
    new_id: Callable[[], str]


def _questions(schema: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    sections = (schema or {}).get("sections")
    if not isinstance(sections, list):
        return out
    for section in sections:
        if not isinstance(section, dict):
            continue
        for question in section.get("questions") or []:
            if isinstance(question, dict) and str(question.get("id") or "").strip():
                out.append(question)
    return out


def is_answered(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def has_answers(answers: Optional[Dict[str, Any]]) -> bool:
    if not isinstance(answers, dict):
        return False
    return any(is_answered(v) for v in answers.values())


def seed_answers_template(form: FeedbackForm) -> Dict[str, Any]:
    return {str(q["id"]).strip(): None for q in _questions(form.schema)}


def validate_required_answers(answers: Optional[Dict[str, Any]], schema: Optional[Dict[str, Any]]) -> List[str]:
    """Return the ids of required questions without an answer."""
    answers = answers if isinstance(answers, dict) else {}
    missing: List[str] = []
    for question in _questions(schema):
        if not question.get("required"):
            continue
        qid = str(question["id"]).strip()
        if not is_answered(answers.get(qid)):
            missing.append(qid)
    return missing


def require_active_form(tx: FeedbackStoreSession) -> FeedbackForm:
    form = tx.get_active_form()
    if form is None:
        raise FeedbackNotFoundError("no_active_form", "No feedback form is currently active.")
    return form


def get_active_form(*, deps: FormRegistryDeps) -> FeedbackForm:
    with deps.store.session() as session:
        return require_active_form(session)


def list_forms(*, deps: FormRegistryDeps) -> List[FeedbackForm]:
    with deps.store.session() as session:
        return session.list_forms()


def get_form(form_id: str, *, deps: FormRegistryDeps) -> FeedbackForm:
    fid = require_identifier(form_id, "form_id")
    with deps.store.session() as session:
        form = session.get_form(fid)
    if form is None:
        raise FeedbackNotFoundError("form_not_found", "Feedback form not found.", form_id=fid)
    return form


def activate_form(form_id: str, *, deps: FormRegistryDeps) -> FeedbackForm:
    fid = require_identifier(form_id, "form_id")
    with deps.store.transaction(FORMS_LOCK_KEY) as tx:
        form = tx.get_form(fid)
        if form is None:
            raise FeedbackNotFoundError("form_not_found", "Feedback form not found.", form_id=fid)
        previous = tx.get_active_form()
        if previous is not None and previous.id == fid:
            return form
        tx.activate_form(fid, deps.now_iso())
        activated = tx.get_form(fid)
    _log.info(
        "feedback form activated id=%s key=%s version=%s previous=%s",
        fid,
        form.key,
        form.version,
        previous.id if previous else None,
        extra={"form_id": fid},
    )
    return activated or form


def create_form_version(
    *,
    key: str,
    title: str,
    description: Optional[str],
    schema: Dict[str, Any],
    activate: bool = False,
    deps: FormRegistryDeps,
) -> FeedbackForm:
    form_key = require_identifier(key, "key")
    form_title = str(title or "").strip()
    if not form_title:
        raise FeedbackValidationError("invalid_title", "title is required.")
    if not isinstance(schema, dict) or not _questions(schema):
        raise FeedbackValidationError("invalid_schema", "schema must define at least one question.")

    with deps.store.transaction(FORMS_LOCK_KEY) as tx:
        form = _insert_form_version(
            tx,
            key=form_key,
            title=form_title,
            description=description,
            schema=schema,
            activate=activate,
            deps=deps,
        )
    _log.info("feedback form created id=%s key=%s version=%s active=%s", form.id, form.key, form.version, activate)
    return form


def _insert_form_version(
    tx: FeedbackStoreSession,
    *,
    key: str,
    title: str,
    description: Optional[str],
    schema: Dict[str, Any],
    activate: bool,
    deps: FormRegistryDeps,
) -> FeedbackForm:
    now = deps.now_iso()
    form = FeedbackForm(
        id=deps.new_id(),
        key=key,
        version=tx.max_form_version(key) + 1,
        title=title,
        description=(str(description).strip() or None) if description is not None else None,
        schema=schema,
        active=False,
        created_at=now,
        updated_at=now,
    )
    tx.insert_form(form)
    if activate:
        tx.activate_form(form.id, now)
    return tx.get_form(form.id) or form


def ensure_default_form(*, deps: FormRegistryDeps) -> Optional[FeedbackForm]:
    """Seed the default form as active when the registry is empty."""
    with deps.store.transaction(FORMS_LOCK_KEY) as tx:
        if tx.count_forms() > 0:
            return None
        form = _insert_form_version(
            tx,
            key=DEFAULT_FORM_KEY,
            title=DEFAULT_FORM_TITLE,
            description=DEFAULT_FORM_DESCRIPTION,
            schema=DEFAULT_FORM_SCHEMA,
            activate=True,
            deps=deps,
        )
    _log.info("seeded default feedback form id=%s", form.id)
    return form
