from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Iterable, List, Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError

from .collaborator_models import PreviewPayload, RosterMember, StatusSummary, parse_roster
from .feedback_errors import UpstreamUnavailableError

_log = logging.getLogger(__name__)


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    if isinstance(exc, requests.HTTPError):
        code = getattr(getattr(exc, "response", None), "status_code", None)
        if code in {408, 425, 429}:
            return True
        if isinstance(code, int) and code >= 500:
            return True
    return False


def resolve_collaborator_base_url(
    candidates: Iterable[str],
    *,
    session: Optional[requests.Session] = None,
    timeout_sec: float = 3.0,
    health_path: str = "/health",
) -> str:
    """Pick the first candidate base URL whose health endpoint answers.

    Called once while wiring the app; business code only ever sees the chosen
    client. Falls back to the first candidate when none answers so that
    requests fail later with a clear upstream error instead of at startup.
    """
    ordered = [str(c).strip().rstrip("/") for c in candidates if str(c or "").strip()]
    if not ordered:
        return ""
    http = session or requests.Session()
    for base in ordered:
        try:
            resp = http.get(f"{base}{health_path}", timeout=timeout_sec)
            if resp.status_code < 500:
                _log.info("read service resolved to %s", base)
                return base
        except requests.RequestException:
            _log.debug("read service candidate %s not reachable", base, exc_info=True)
    _log.warning("no read service candidate answered; using %s", ordered[0])
    return ordered[0]


class ReadServiceClient:
    """HTTP client for the roster, preview and status-summary collaborators."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = 10.0,
        read_retry: int = 2,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = str(base_url or "").strip().rstrip("/")
        self.timeout_sec = float(timeout_sec)
        self.read_retry = max(1, int(read_retry or 1))
        self._session = session or requests.Session()
        self._sleep = sleep

    def _url(self, schedule_id: str, suffix: str) -> str:
        return f"{self.base_url}/schedules/{quote(schedule_id, safe='')}/{suffix}"

    def _get_json(self, url: str, *, collaborator: str, attempts: int, allow_missing: bool = False) -> Any:
        if not self.base_url:
            raise UpstreamUnavailableError(
                "collaborator_not_configured",
                f"The {collaborator} service is not configured.",
                collaborator=collaborator,
            )
        last_exc: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                resp = self._session.get(url, timeout=(min(5.0, self.timeout_sec), self.timeout_sec))
                if allow_missing and resp.status_code == 404:
                    return None
                resp.raise_for_status()
                return resp.json()
            except (requests.RequestException, ValueError) as exc:
                last_exc = exc
                if attempt < attempts - 1 and _is_retryable(exc):
                    delay = min(2.0, 0.2 * (2**attempt) + random.random() * 0.1)
                    self._sleep(delay)
                    continue
                break
        _log.warning("%s call failed url=%s attempts=%s error=%s", collaborator, url, attempts, last_exc)
        raise UpstreamUnavailableError(
            "upstream_unavailable",
            f"Could not reach the {collaborator} service; the result could not be verified.",
            collaborator=collaborator,
            attempts=attempts,
        ) from last_exc

    def fetch_roster(self, schedule_id: str) -> List[RosterMember]:
        # write path: a single attempt, never retried
        payload = self._get_json(self._url(schedule_id, "roster"), collaborator="roster", attempts=1)
        return parse_roster(payload)

    def fetch_preview(self, schedule_id: str) -> PreviewPayload:
        payload = self._get_json(
            self._url(schedule_id, "preview"),
            collaborator="preview",
            attempts=self.read_retry,
        )
        if not isinstance(payload, dict):
            raise UpstreamUnavailableError(
                "malformed_preview_payload",
                "The preview service returned an unexpected payload.",
                collaborator="preview",
            )
        return PreviewPayload.model_validate(payload)

    def fetch_status_summary(self, schedule_id: str) -> Optional[StatusSummary]:
        payload = self._get_json(
            self._url(schedule_id, "status-summary"),
            collaborator="status-summary",
            attempts=self.read_retry,
            allow_missing=True,
        )
        if payload is None:
            return None
        try:
            return StatusSummary.model_validate(payload)
        except ValidationError:
            _log.warning("ignoring malformed status summary for schedule=%s", schedule_id)
            return None
