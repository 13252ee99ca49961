from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config, settings
from .container import AppContainer, build_app_container
from .form_registry_service import ensure_default_form
from .logging_config import configure_logging
from .request_context import request_id_middleware
from .routes import feedback_routes, health_routes
from .wiring.feedback_wiring import form_registry_deps

_log = logging.getLogger(__name__)


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    configure_logging()
    core = container or build_app_container()

    app = FastAPI(title="Defense Feedback API", version="0.1.0")
    app.state.container = core
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_id_middleware)

    @app.on_event("startup")
    def _seed_default_form() -> None:
        if not core.seed_default_form:
            return
        form = ensure_default_form(deps=form_registry_deps(core))
        if form is None:
            _log.info("feedback forms already present; default form not seeded")

    app.include_router(health_routes.build_router(core))
    app.include_router(feedback_routes.build_router(core))
    return app


def main() -> None:
    import uvicorn

    uvicorn.run(
        "services.feedback_api.app:create_app",
        factory=True,
        host=settings.listen_host(),
        port=settings.listen_port(),
    )


if __name__ == "__main__":
    main()
