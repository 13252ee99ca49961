from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

from .assignment_state_machine import STATUS_LOCKED, STATUS_PENDING, STATUS_SUBMITTED
from .collaborator_models import StatusSummary
from .feedback_errors import UpstreamUnavailableError, require_identifier
from .feedback_records import StatusCounts
from .feedback_store import FeedbackStore, FeedbackStoreSession
from .schedule_pin_service import require_schedule
from .status_summary_store import StatusSummaryStore

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusCountsDeps:
    store: FeedbackStore
    summary_store: StatusSummaryStore
    fetch_external_summary: Optional[Callable[[str], Optional[StatusSummary]]] = None


def direct_status_counts(session: FeedbackStoreSession, schedule_id: str) -> StatusCounts:
    by_status = session.count_assignments_by_status(schedule_id)
    pending = int(by_status.get(STATUS_PENDING, 0))
    submitted = int(by_status.get(STATUS_SUBMITTED, 0))
    locked = int(by_status.get(STATUS_LOCKED, 0))
    return StatusCounts(
        total=pending + submitted + locked,
        pending=pending,
        submitted=submitted,
        locked=locked,
        source="direct",
    )


def reconcile_status_counts(direct: StatusCounts, advisory: Optional[StatusCounts]) -> StatusCounts:
    """Direct counts always win; ``summary_mismatch`` flags a stale advisory summary."""
    if advisory is None or advisory.same_numbers(direct):
        return direct
    if advisory.total == 0 and direct.total > 0:
        _log.warning(
            "placeholder status summary ignored source=%s direct_total=%s",
            advisory.source,
            direct.total,
        )
    else:
        _log.warning(
            "stale status summary ignored source=%s summary=%s direct=%s",
            advisory.source,
            (advisory.total, advisory.pending, advisory.submitted, advisory.locked),
            (direct.total, direct.pending, direct.submitted, direct.locked),
        )
    return replace(direct, summary_mismatch=True)


def _external_summary(schedule_id: str, deps: StatusCountsDeps) -> Optional[StatusCounts]:
    if deps.fetch_external_summary is None:
        return None
    try:
        summary = deps.fetch_external_summary(schedule_id)
    except UpstreamUnavailableError:
        _log.info("status summary service unavailable for schedule=%s; using direct counts", schedule_id)
        return None
    if summary is None:
        return None
    return StatusCounts(
        total=summary.total,
        pending=summary.pending,
        submitted=summary.submitted,
        locked=summary.locked,
        source="external",
    )


def get_status_counts(schedule_id: str, *, deps: StatusCountsDeps) -> StatusCounts:
    sid = require_identifier(schedule_id, "schedule_id")
    with deps.store.session() as session:
        require_schedule(session, sid)
        direct = direct_status_counts(session, sid)

    try:
        advisory = deps.summary_store.load(sid)
    except Exception:
        _log.warning("status summary projection unreadable for schedule=%s", sid, exc_info=True)
        advisory = None
    if advisory is None:
        advisory = _external_summary(sid, deps)
    result = reconcile_status_counts(direct, advisory)
    if advisory is None or result.summary_mismatch:
        try:
            deps.summary_store.save(sid, direct)
        except Exception:
            _log.warning("failed to refresh status summary for schedule=%s", sid, exc_info=True)
    return result


def refresh_status_summary(schedule_id: str, *, store: FeedbackStore, summary_store: StatusSummaryStore) -> StatusCounts:
    """Recompute the projection after a committed write."""
    with store.session() as session:
        counts = direct_status_counts(session, schedule_id)
    try:
        summary_store.save(schedule_id, counts)
    except Exception:
        _log.warning("failed to refresh status summary for schedule=%s", schedule_id, exc_info=True)
    return counts
