"""Tests for services.feedback_api.form_registry_service."""
from __future__ import annotations

import threading

import pytest

from services.feedback_api.feedback_errors import FeedbackNotFoundError, FeedbackValidationError
from services.feedback_api.form_registry_service import (
    DEFAULT_FORM_KEY,
    DEFAULT_FORM_SCHEMA,
    activate_form,
    create_form_version,
    ensure_default_form,
    get_active_form,
    get_form,
    has_answers,
    is_answered,
    list_forms,
    seed_answers_template,
    validate_required_answers,
)

_SMALL_SCHEMA = {
    "sections": [
        {
            "id": "s1",
            "title": "Only",
            "questions": [
                {"id": "q1", "type": "rating", "label": "Q1", "required": True},
                {"id": "q2", "type": "text", "label": "Q2", "required": False},
            ],
        }
    ]
}


def _create(form_deps, key="custom-form", activate=False, title="Custom"):
    return create_form_version(
        key=key,
        title=title,
        description=None,
        schema=_SMALL_SCHEMA,
        activate=activate,
        deps=form_deps,
    )


def test_ensure_default_form_seeds_once(form_deps):
    form = ensure_default_form(deps=form_deps)
    assert form is not None
    assert form.key == DEFAULT_FORM_KEY
    assert form.version == 1
    assert form.active is True
    assert ensure_default_form(deps=form_deps) is None
    assert len(list_forms(deps=form_deps)) == 1


def test_get_active_form_without_any_form_is_not_found(form_deps):
    with pytest.raises(FeedbackNotFoundError) as excinfo:
        get_active_form(deps=form_deps)
    assert excinfo.value.error == "no_active_form"
    assert excinfo.value.status_code == 404


def test_create_form_version_allocates_next_version_per_key(form_deps, default_form):
    v2 = create_form_version(
        key=DEFAULT_FORM_KEY,
        title="Student Feedback Form",
        description="  ",
        schema=DEFAULT_FORM_SCHEMA,
        deps=form_deps,
    )
    other = _create(form_deps, key="panel-form")
    assert v2.version == 2
    assert v2.description is None
    assert v2.active is False
    assert other.version == 1
    assert get_active_form(deps=form_deps).id == default_form.id


def test_create_form_version_with_activate_switches_active(form_deps, default_form):
    created = _create(form_deps, activate=True)
    assert created.active is True
    assert get_active_form(deps=form_deps).id == created.id
    assert get_form(default_form.id, deps=form_deps).active is False


@pytest.mark.parametrize(
    "title,schema,error",
    [
        ("", _SMALL_SCHEMA, "invalid_title"),
        ("Title", {}, "invalid_schema"),
        ("Title", {"sections": [{"id": "s", "questions": []}]}, "invalid_schema"),
    ],
)
def test_create_form_version_rejects_bad_input(form_deps, title, schema, error):
    with pytest.raises(FeedbackValidationError) as excinfo:
        create_form_version(key="k1", title=title, description=None, schema=schema, deps=form_deps)
    assert excinfo.value.error == error
    assert list_forms(deps=form_deps) == []


def test_list_forms_orders_by_key_then_version_desc(form_deps, default_form):
    _create(form_deps, key="a-form")
    create_form_version(
        key=DEFAULT_FORM_KEY, title="v2", description=None, schema=DEFAULT_FORM_SCHEMA, deps=form_deps
    )
    listed = [(f.key, f.version) for f in list_forms(deps=form_deps)]
    assert listed == [("a-form", 1), (DEFAULT_FORM_KEY, 2), (DEFAULT_FORM_KEY, 1)]


def test_activate_form_deactivates_previous(form_deps, default_form):
    other = _create(form_deps)
    activated = activate_form(other.id, deps=form_deps)
    assert activated.active is True
    assert get_form(default_form.id, deps=form_deps).active is False
    with form_deps.store.session() as session:
        assert session.count_active_forms() == 1


def test_activate_already_active_form_is_noop(form_deps, default_form):
    again = activate_form(default_form.id, deps=form_deps)
    assert again.id == default_form.id
    assert again.updated_at == default_form.updated_at


def test_activate_unknown_form_is_not_found(form_deps, default_form):
    with pytest.raises(FeedbackNotFoundError) as excinfo:
        activate_form("missing-form", deps=form_deps)
    assert excinfo.value.error == "form_not_found"
    assert get_active_form(deps=form_deps).id == default_form.id


def test_concurrent_activation_never_shows_zero_or_two_active(form_deps, default_form):
    forms = [default_form] + [_create(form_deps, key=f"form-{i}") for i in range(6)]
    observed = []
    stop = threading.Event()

    def _watch():
        while not stop.is_set():
            with form_deps.store.session() as session:
                observed.append(session.count_active_forms())

    def _activate(form_id):
        for _ in range(5):
            activate_form(form_id, deps=form_deps)

    watcher = threading.Thread(target=_watch)
    watcher.start()
    workers = [threading.Thread(target=_activate, args=(f.id,)) for f in forms]
    for t in workers:
        t.start()
    for t in workers:
        t.join(timeout=30)
    stop.set()
    watcher.join(timeout=10)

    assert observed
    assert set(observed) == {1}
    active = get_active_form(deps=form_deps)
    assert active.id in {f.id for f in forms}


def test_seed_answers_template_maps_every_question_to_none(default_form):
    template = seed_answers_template(default_form)
    assert template == {
        "overall_satisfaction": None,
        "schedule_clarity": None,
        "time_management": None,
        "feedback_helpfulness": None,
        "feedback_fairness": None,
        "feedback_clarity": None,
        "what_went_well": None,
        "what_to_improve": None,
    }


def test_validate_required_answers_lists_unanswered_required_ids():
    missing = validate_required_answers({"q1": "  ", "q2": "fine"}, _SMALL_SCHEMA)
    assert missing == ["q1"]
    assert validate_required_answers({"q1": 0}, _SMALL_SCHEMA) == []
    assert validate_required_answers(None, _SMALL_SCHEMA) == ["q1"]


def test_is_answered_and_has_answers():
    assert is_answered(0) is True
    assert is_answered(False) is True
    assert is_answered("") is False
    assert is_answered([]) is False
    assert is_answered({}) is False
    assert is_answered(None) is False
    assert has_answers({"a": None, "b": ""}) is False
    assert has_answers({"a": None, "b": 3}) is True
    assert has_answers(None) is False
