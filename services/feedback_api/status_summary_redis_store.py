from __future__ import annotations

import json
import logging
from typing import Optional

import redis

from .feedback_records import StatusCounts

_log = logging.getLogger(__name__)


class RedisStatusSummaryStore:
    def __init__(self, redis_client: redis.Redis, *, namespace: str = "feedback", ttl_sec: int = 0):
        self.redis = redis_client
        safe_ns = str(namespace or "feedback").strip() or "feedback"
        self.prefix = f"{safe_ns}:status-summary"
        self.ttl_sec = max(0, int(ttl_sec or 0))

    def _key(self, schedule_id: str) -> str:
        return f"{self.prefix}:{schedule_id}"

    def load(self, schedule_id: str) -> Optional[StatusCounts]:
        raw = self.redis.get(self._key(schedule_id))
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return StatusCounts(
                total=int(data.get("total") or 0),
                pending=int(data.get("pending") or 0),
                submitted=int(data.get("submitted") or 0),
                locked=int(data.get("locked") or 0),
                source="projection",
            )
        except Exception:
            _log.warning("corrupt status summary projection for %s", schedule_id, exc_info=True)
            return None

    def save(self, schedule_id: str, counts: StatusCounts) -> None:
        payload = json.dumps(
            {
                "total": counts.total,
                "pending": counts.pending,
                "submitted": counts.submitted,
                "locked": counts.locked,
            }
        )
        if self.ttl_sec > 0:
            self.redis.set(self._key(schedule_id), payload, ex=self.ttl_sec)
        else:
            self.redis.set(self._key(schedule_id), payload)
