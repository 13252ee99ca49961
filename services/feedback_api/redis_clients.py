"""Shared Redis connections for the status summary projection, one per URL."""
from __future__ import annotations

import threading
from typing import Dict, Optional

import redis

from . import config

_SUMMARY_CLIENTS: Dict[str, redis.Redis] = {}
_SUMMARY_CLIENTS_LOCK = threading.Lock()


def summary_redis_client(url: Optional[str] = None) -> redis.Redis:
    redis_url = str(url or "").strip() or config.REDIS_URL
    with _SUMMARY_CLIENTS_LOCK:
        client = _SUMMARY_CLIENTS.get(redis_url)
        if client is None:
            # projection payloads are JSON text
            client = redis.Redis.from_url(redis_url, decode_responses=True)
            _SUMMARY_CLIENTS[redis_url] = client
        return client


def reset_summary_redis_clients() -> None:
    with _SUMMARY_CLIENTS_LOCK:
        _SUMMARY_CLIENTS.clear()
