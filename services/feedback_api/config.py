from __future__ import annotations

from pathlib import Path

from . import settings as _settings

APP_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = Path(_settings.data_dir() or (APP_ROOT / "data"))
FEEDBACK_DB_PATH = Path(_settings.feedback_db_path() or (DATA_DIR / "feedback.sqlite3"))

READ_SERVICE_URLS = _settings.read_service_urls()
HTTP_TIMEOUT_SEC = _settings.http_timeout_sec()
READ_RETRY = _settings.read_retry()

LOCKED_RESET_POLICY = _settings.locked_reset_policy()
SEED_DEFAULT_FORM = _settings.seed_default_form()

SUMMARY_BACKEND = _settings.summary_backend()
SUMMARY_TTL_SEC = _settings.summary_ttl_sec()
REDIS_URL = _settings.redis_url()

CORS_ORIGINS = _settings.cors_origins()
