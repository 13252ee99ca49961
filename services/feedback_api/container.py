from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from . import config
from .assignment_state_machine import LockedResetPolicy
from .feedback_store import FeedbackStore
from .preview_reconcile_service import PreviewFetchCoordinator
from .read_service_client import ReadServiceClient, resolve_collaborator_base_url
from .status_summary_store import StatusSummaryStore
from .status_summary_store_factory import get_status_summary_store


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class AppContainer:
    store: FeedbackStore
    read_client: ReadServiceClient
    summary_store: StatusSummaryStore
    policy: LockedResetPolicy = LockedResetPolicy.FORBID
    now_iso: Callable[[], str] = now_iso
    new_id: Callable[[], str] = new_id
    preview_coordinator: PreviewFetchCoordinator = field(default_factory=PreviewFetchCoordinator)
    seed_default_form: bool = True


def build_app_container(
    *,
    db_path: Optional[Path] = None,
    read_client: Optional[ReadServiceClient] = None,
    summary_store: Optional[StatusSummaryStore] = None,
    policy: Optional[str] = None,
) -> AppContainer:
    """Assemble the runtime from ``config``; explicit arguments win."""
    if read_client is None:
        read_client = ReadServiceClient(
            resolve_collaborator_base_url(config.READ_SERVICE_URLS),
            timeout_sec=config.HTTP_TIMEOUT_SEC,
            read_retry=config.READ_RETRY,
        )
    if summary_store is None:
        summary_store = get_status_summary_store(
            backend=config.SUMMARY_BACKEND,
            redis_url=config.REDIS_URL,
            ttl_sec=config.SUMMARY_TTL_SEC,
        )
    return AppContainer(
        store=FeedbackStore(db_path or config.FEEDBACK_DB_PATH),
        read_client=read_client,
        summary_store=summary_store,
        policy=LockedResetPolicy.parse(policy if policy is not None else config.LOCKED_RESET_POLICY),
        seed_default_form=config.SEED_DEFAULT_FORM,
    )
