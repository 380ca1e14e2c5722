# reciply/app/main.py
from __future__ import annotations

import logging
import sys
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reciply import __version__
from reciply.app.config import settings
from reciply.app.container import Container, build_container
from reciply.app.routers.billing import router as billing_router
from reciply.app.routers.extract import router as extract_router
from reciply.app.routers.jobs import router as jobs_router

# stdout logging for dev and containers
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def create_app(container: Optional[Container] = None) -> FastAPI:
    app = FastAPI(title="Reciply Extraction API", version=__version__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.FRONTEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(extract_router)
    app.include_router(jobs_router)
    app.include_router(billing_router)

    if container is not None:
        app.state.container = container

    @app.on_event("startup")
    async def startup() -> None:
        if getattr(app.state, "container", None) is None:
            app.state.container = build_container(settings)
        await app.state.container.start()
        logger.info("app.started env=%s backend=%s", settings.APP_ENV, settings.STORAGE_BACKEND)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        current = getattr(app.state, "container", None)
        if current is not None:
            await current.stop()

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()
