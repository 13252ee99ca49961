from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from ..api_models import (
    AnswersPatchRequest,
    AssignFeedbackRequest,
    FormCreateRequest,
    PreviewRequest,
    ScheduleRegisterRequest,
    TransitionRequest,
)
from ..handlers import feedback_handlers as handlers
from ..wiring.feedback_wiring import feedback_handler_deps


def build_router(core) -> APIRouter:
    router = APIRouter(prefix="/feedback")
    deps = feedback_handler_deps(core)

    @router.get("/forms/active")
    async def feedback_active_form() -> Any:
        return await handlers.active_form(deps=deps)

    @router.get("/forms/active/seed-answers")
    async def feedback_active_seed_answers() -> Any:
        return await handlers.active_seed_answers(deps=deps)

    @router.get("/forms")
    async def feedback_forms() -> Any:
        return await handlers.forms(deps=deps)

    @router.post("/forms")
    async def feedback_create_form(req: FormCreateRequest) -> Any:
        return await handlers.create_form(req, deps=deps)

    @router.post("/forms/{form_id}/activate")
    async def feedback_activate_form(form_id: str) -> Any:
        return await handlers.activate(form_id, deps=deps)

    @router.put("/schedules/{schedule_id}")
    async def feedback_register_schedule(schedule_id: str, req: ScheduleRegisterRequest) -> Any:
        return await handlers.register_schedule(schedule_id, req, deps=deps)

    @router.get("/schedules/{schedule_id}/pin")
    async def feedback_schedule_pin(schedule_id: str) -> Any:
        return await handlers.schedule_pin(schedule_id, deps=deps)

    @router.post("/schedules/{schedule_id}/assign")
    async def feedback_assign(schedule_id: str, req: AssignFeedbackRequest) -> Any:
        return await handlers.assign(schedule_id, req, deps=deps)

    @router.get("/schedules/{schedule_id}/status-counts")
    async def feedback_status_counts(schedule_id: str) -> Any:
        return await handlers.status_counts(schedule_id, deps=deps)

    @router.get("/schedules/{schedule_id}/assignments")
    async def feedback_schedule_assignments(schedule_id: str) -> Any:
        return await handlers.schedule_assignments(schedule_id, deps=deps)

    @router.post("/schedules/{schedule_id}/preview")
    async def feedback_preview(schedule_id: str, req: PreviewRequest) -> Any:
        return await handlers.preview(schedule_id, req, deps=deps)

    @router.delete("/schedules/{schedule_id}/preview/{view_key}")
    async def feedback_cancel_preview(schedule_id: str, view_key: str) -> Any:
        return await handlers.cancel_preview(schedule_id, view_key, deps=deps)

    @router.post("/assignments/{assignment_id}/transition")
    async def feedback_transition(assignment_id: str, req: TransitionRequest) -> Any:
        return await handlers.transition(assignment_id, req, deps=deps)

    @router.patch("/assignments/{assignment_id}/answers")
    async def feedback_answers(assignment_id: str, req: AnswersPatchRequest) -> Any:
        return await handlers.answers(assignment_id, req, deps=deps)

    return router
