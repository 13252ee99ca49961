from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

_log = logging.getLogger(__name__)


def _check_store(core: Any) -> dict:
    try:
        with core.store.session() as session:
            session.count_forms()
        return {"status": "ok"}
    except Exception as exc:
        _log.warning("health: feedback store check failed", exc_info=True)
        return {"status": "error", "detail": str(exc)}


def _check_summary(core: Any) -> dict:
    redis_client = getattr(core.summary_store, "redis", None)
    if redis_client is None:
        return {"status": "skipped", "reason": "memory_backend"}
    try:
        redis_client.ping()
        return {"status": "ok"}
    except Exception as exc:
        # the projection is advisory; counts still come from the store
        _log.warning("health: Redis ping failed", exc_info=True)
        return {"status": "degraded", "detail": str(exc)}


def build_router(core) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health():
        checks = {
            "store": _check_store(core),
            "summary": _check_summary(core),
            "read_service": {"status": "ok" if core.read_client.base_url else "unconfigured"},
        }
        failed = checks["store"]["status"] != "ok"
        degraded = any(c.get("status") not in ("ok", "skipped") for c in checks.values())
        status = "error" if failed else ("degraded" if degraded else "ok")
        return JSONResponse(content={"status": status, "checks": checks}, status_code=503 if failed else 200)

    return router
