from __future__ import annotations

import logging
import threading
from typing import Dict

from .status_summary_store import MemoryStatusSummaryStore, StatusSummaryStore

_log = logging.getLogger(__name__)

_SUMMARY_STORES: Dict[str, StatusSummaryStore] = {}
_STORE_LOCK = threading.Lock()


def get_status_summary_store(
    *,
    backend: str,
    redis_url: str,
    ttl_sec: int,
    namespace: str = "feedback",
) -> StatusSummaryStore:
    key = f"{str(backend or 'memory').strip().lower()}:{namespace}"
    with _STORE_LOCK:
        store = _SUMMARY_STORES.get(key)
        if store is None:
            if key.startswith("redis:"):
                try:
                    from .redis_clients import summary_redis_client
                    from .status_summary_redis_store import RedisStatusSummaryStore

                    client = summary_redis_client(redis_url)
                    client.ping()
                    store = RedisStatusSummaryStore(client, namespace=namespace, ttl_sec=ttl_sec)
                except Exception:
                    _log.warning("Redis unavailable for status summary store; using in-memory fallback")
                    store = MemoryStatusSummaryStore(ttl_sec=ttl_sec)
            else:
                store = MemoryStatusSummaryStore(ttl_sec=ttl_sec)
            _SUMMARY_STORES[key] = store
    return store


def reset_status_summary_stores() -> None:
    with _STORE_LOCK:
        _SUMMARY_STORES.clear()
