from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict

from fastapi import HTTPException
from starlette.concurrency import run_in_threadpool

from ..api_models import (
    AnswersPatchRequest,
    AssignFeedbackRequest,
    FormCreateRequest,
    PreviewRequest,
    ScheduleRegisterRequest,
    TransitionRequest,
)
from ..assignment_transition_service import (
    AssignmentTransitionDeps,
    list_schedule_assignments,
    patch_answers,
    transition_assignment,
)
from ..feedback_assignment_service import FeedbackAssignmentDeps, assign_feedback
from ..feedback_errors import FeedbackError, optional_identifier, require_identifier
from ..feedback_records import AssignOptions
from ..form_registry_service import (
    FormRegistryDeps,
    activate_form,
    create_form_version,
    get_active_form,
    list_forms,
    seed_answers_template,
)
from ..preview_reconcile_service import PreviewDeps, PreviewFetchCoordinator, PreviewSelection, reconcile_preview
from ..schedule_pin_service import SchedulePinDeps, get_pin
from ..status_counts_service import StatusCountsDeps, get_status_counts


@dataclass
class FeedbackHandlerDeps:
    forms: FormRegistryDeps
    pins: SchedulePinDeps
    assignments: FeedbackAssignmentDeps
    transitions: AssignmentTransitionDeps
    counts: StatusCountsDeps
    preview: PreviewDeps
    preview_coordinator: PreviewFetchCoordinator


async def _call(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    # service calls block on SQLite and HTTP collaborators
    try:
        return await run_in_threadpool(fn, *args, **kwargs)
    except FeedbackError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail)


async def active_form(*, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    form = await _call(get_active_form, deps=deps.forms)
    return {"ok": True, "form": form.to_dict()}


async def forms(*, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    items = await _call(list_forms, deps=deps.forms)
    return {"ok": True, "forms": [f.to_dict(include_schema=False) for f in items]}


async def create_form(req: FormCreateRequest, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    form = await _call(
        create_form_version,
        key=req.key,
        title=req.title,
        description=req.description,
        schema=req.form_schema,
        activate=req.activate,
        deps=deps.forms,
    )
    return {"ok": True, "form": form.to_dict()}


async def activate(form_id: str, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    form = await _call(activate_form, form_id, deps=deps.forms)
    return {"ok": True, "form": form.to_dict(include_schema=False)}


async def active_seed_answers(*, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    form = await _call(get_active_form, deps=deps.forms)
    return {"ok": True, "form_id": form.id, "version": form.version, "answers": seed_answers_template(form)}


def _register_schedule(schedule_id: str, group_id: Any, *, deps: FeedbackHandlerDeps):
    sid = require_identifier(schedule_id, "schedule_id")
    gid = optional_identifier(group_id, "group_id")
    return deps.pins.store.register_schedule(sid, group_id=gid)


async def register_schedule(
    schedule_id: str, req: ScheduleRegisterRequest, *, deps: FeedbackHandlerDeps
) -> Dict[str, Any]:
    schedule = await _call(_register_schedule, schedule_id, req.group_id, deps=deps)
    return {
        "ok": True,
        "schedule": {"id": schedule.id, "group_id": schedule.group_id, "pinned_form_id": schedule.pinned_form_id},
    }


async def schedule_pin(schedule_id: str, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    pinned = await _call(get_pin, schedule_id, deps=deps.pins)
    return {"ok": True, "schedule_id": schedule_id, "pinned_form_id": pinned}


async def assign(schedule_id: str, req: AssignFeedbackRequest, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    options = AssignOptions(
        use_active_form=req.use_active_form,
        force_active_form=req.force_active_form,
        overwrite_pending=req.overwrite_pending,
        seed_answers=req.seed_answers,
    )
    result = await _call(assign_feedback, schedule_id, req.student_ids, options, deps=deps.assignments)
    return {"ok": True, **result.to_dict()}


async def status_counts(schedule_id: str, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    counts = await _call(get_status_counts, schedule_id, deps=deps.counts)
    return {"ok": True, "schedule_id": schedule_id, **counts.to_dict()}


async def schedule_assignments(schedule_id: str, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    items = await _call(list_schedule_assignments, schedule_id, deps=deps.transitions)
    return {"ok": True, "schedule_id": schedule_id, "assignments": [a.to_dict() for a in items]}


async def transition(assignment_id: str, req: TransitionRequest, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    assignment = await _call(
        transition_assignment,
        assignment_id,
        req.action,
        elevated=req.elevated,
        deps=deps.transitions,
    )
    return {"ok": True, "assignment": assignment.to_dict()}


async def answers(assignment_id: str, req: AnswersPatchRequest, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    assignment = await _call(patch_answers, assignment_id, req.answers, deps=deps.transitions)
    return {"ok": True, "assignment": assignment.to_dict()}


def _view_key(schedule_id: str, view_key: str) -> str:
    return f"{schedule_id}:{view_key}"


def _preview(schedule_id: str, req: PreviewRequest, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    selection = PreviewSelection.parse(req.kind, req.assignment_id, req.student_id)
    view_key = optional_identifier(req.view_key, "view_key")
    if view_key is None:
        match = reconcile_preview(schedule_id, selection, deps=deps.preview)
        return {"ok": True, "superseded": False, "candidate": match.model_dump()}
    outcome = deps.preview_coordinator.fetch(
        _view_key(require_identifier(schedule_id, "schedule_id"), view_key),
        lambda: reconcile_preview(schedule_id, selection, deps=deps.preview),
    )
    if outcome.superseded:
        return {"ok": True, "superseded": True, "candidate": None}
    return {"ok": True, "superseded": False, "candidate": outcome.value.model_dump()}


async def preview(schedule_id: str, req: PreviewRequest, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    return await _call(_preview, schedule_id, req, deps=deps)


def _cancel_preview(schedule_id: str, view_key: str, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    sid = require_identifier(schedule_id, "schedule_id")
    key = require_identifier(view_key, "view_key")
    return {"ok": True, "cancelled": deps.preview_coordinator.cancel(_view_key(sid, key))}


async def cancel_preview(schedule_id: str, view_key: str, *, deps: FeedbackHandlerDeps) -> Dict[str, Any]:
    return await _call(_cancel_preview, schedule_id, view_key, deps=deps)
