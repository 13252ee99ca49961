from __future__ import annotations

import logging
import os
from typing import List

_log = logging.getLogger(__name__)


def truthy(value: str) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default)


def env_int(name: str, default: int) -> int:
    try:
        return int(env_str(name, str(default)) or default)
    except Exception:
        _log.debug("numeric conversion failed", exc_info=True)
        return int(default)


def env_float(name: str, default: float) -> float:
    try:
        return float(env_str(name, str(default)) or default)
    except Exception:
        _log.debug("numeric conversion failed", exc_info=True)
        return float(default)


def env_bool(name: str, default: str = "") -> bool:
    return truthy(env_str(name, default))


def env_list(name: str) -> List[str]:
    return [part.strip() for part in env_str(name, "").split(",") if part.strip()]


def data_dir() -> str:
    return env_str("DATA_DIR", "")


def feedback_db_path() -> str:
    return env_str("FEEDBACK_DB_PATH", "")


def read_service_urls() -> List[str]:
    return env_list("FEEDBACK_READ_SERVICE_URLS")


def http_timeout_sec() -> float:
    return max(1.0, env_float("FEEDBACK_HTTP_TIMEOUT_SEC", 10.0))


def read_retry() -> int:
    return max(1, env_int("FEEDBACK_READ_RETRY", 2))


def locked_reset_policy() -> str:
    return env_str("FEEDBACK_LOCKED_RESET_POLICY", "forbid").strip().lower() or "forbid"


def summary_backend() -> str:
    return env_str("FEEDBACK_SUMMARY_BACKEND", "memory").strip().lower() or "memory"


def summary_ttl_sec() -> int:
    return max(0, env_int("FEEDBACK_SUMMARY_TTL_SEC", 300))


def redis_url() -> str:
    return env_str("REDIS_URL", "redis://localhost:6379/0")


def cors_origins() -> List[str]:
    return env_list("CORS_ORIGINS") or ["*"]


def seed_default_form() -> bool:
    return env_bool("FEEDBACK_SEED_DEFAULT_FORM", "1")


def listen_host() -> str:
    return env_str("FEEDBACK_HOST", "0.0.0.0")


def listen_port() -> int:
    return env_int("FEEDBACK_PORT", 8000)
