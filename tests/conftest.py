from __future__ import annotations

import itertools
import threading
from typing import List, Optional

import pytest

from services.feedback_api.collaborator_models import RosterMember
from services.feedback_api.feedback_store import FeedbackStore
from services.feedback_api.form_registry_service import FormRegistryDeps, ensure_default_form


class FakeClock:
    def __init__(self) -> None:
        self._n = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            n = next(self._n)
        return f"2026-03-01T09:{n // 60 % 60:02d}:{n % 60:02d}+00:00"


class FakeIds:
    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix
        self._n = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            return f"{self.prefix}-{next(self._n)}"


class FakeRoster:
    """Roster collaborator double; records calls so tests can assert no retries."""

    def __init__(self, members=None, error: Optional[Exception] = None) -> None:
        self.members = {}
        self.error = error
        self.calls: List[str] = []
        for schedule_id, ids in (members or {}).items():
            self.set(schedule_id, ids)

    def set(self, schedule_id: str, ids) -> None:
        self.members[schedule_id] = [
            m if isinstance(m, RosterMember) else RosterMember(student_id=m) for m in ids
        ]

    def __call__(self, schedule_id: str) -> List[RosterMember]:
        self.calls.append(schedule_id)
        if self.error is not None:
            raise self.error
        return list(self.members.get(schedule_id, []))


@pytest.fixture
def feedback_store(tmp_path):
    return FeedbackStore(tmp_path / "feedback.sqlite3")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def form_deps(feedback_store, clock):
    return FormRegistryDeps(store=feedback_store, now_iso=clock, new_id=FakeIds("form"))


@pytest.fixture
def default_form(form_deps):
    return ensure_default_form(deps=form_deps)


@pytest.fixture
def roster():
    return FakeRoster()


@pytest.fixture
def make_ids():
    return FakeIds
