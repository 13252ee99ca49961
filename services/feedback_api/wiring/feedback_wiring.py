"""Feedback domain deps builders."""
from __future__ import annotations

__all__ = [
    "form_registry_deps",
    "schedule_pin_deps",
    "feedback_assignment_deps",
    "assignment_transition_deps",
    "status_counts_deps",
    "preview_deps",
    "feedback_handler_deps",
]

from ..assignment_transition_service import AssignmentTransitionDeps
from ..container import AppContainer
from ..feedback_assignment_service import FeedbackAssignmentDeps
from ..form_registry_service import FormRegistryDeps
from ..handlers.feedback_handlers import FeedbackHandlerDeps
from ..preview_reconcile_service import PreviewDeps
from ..schedule_pin_service import SchedulePinDeps
from ..status_counts_service import StatusCountsDeps


def form_registry_deps(container: AppContainer) -> FormRegistryDeps:
    return FormRegistryDeps(store=container.store, now_iso=container.now_iso, new_id=container.new_id)


def schedule_pin_deps(container: AppContainer) -> SchedulePinDeps:
    return SchedulePinDeps(store=container.store)


def feedback_assignment_deps(container: AppContainer) -> FeedbackAssignmentDeps:
    return FeedbackAssignmentDeps(
        store=container.store,
        fetch_roster=container.read_client.fetch_roster,
        now_iso=container.now_iso,
        new_id=container.new_id,
        summary_store=container.summary_store,
    )


def assignment_transition_deps(container: AppContainer) -> AssignmentTransitionDeps:
    return AssignmentTransitionDeps(
        store=container.store,
        now_iso=container.now_iso,
        policy=container.policy,
        summary_store=container.summary_store,
    )


def status_counts_deps(container: AppContainer) -> StatusCountsDeps:
    return StatusCountsDeps(
        store=container.store,
        summary_store=container.summary_store,
        fetch_external_summary=container.read_client.fetch_status_summary,
    )


def preview_deps(container: AppContainer) -> PreviewDeps:
    return PreviewDeps(fetch_preview=container.read_client.fetch_preview)


def feedback_handler_deps(container: AppContainer) -> FeedbackHandlerDeps:
    return FeedbackHandlerDeps(
        forms=form_registry_deps(container),
        pins=schedule_pin_deps(container),
        assignments=feedback_assignment_deps(container),
        transitions=assignment_transition_deps(container),
        counts=status_counts_deps(container),
        preview=preview_deps(container),
        preview_coordinator=container.preview_coordinator,
    )
