from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import AppComponents, build_components, get_config
from api.routes.assessments import router as assessments_router
from api.routes.jobs import router as jobs_router
from api.routes.knowledge import router as knowledge_router
from api.routes.templates import router as templates_router
from presales_assistant.config import configure_logging


def create_app(components: Optional[AppComponents] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        comps = components
        if comps is None:
            config = get_config()
            configure_logging(config.log_level, config.log_dir)
            comps = build_components(config)
        app.state.components = comps
        await comps.pool.start()
        try:
            yield
        finally:
            await comps.pool.stop()

    app = FastAPI(title="Presales Assistant API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(assessments_router)
    app.include_router(jobs_router)
    app.include_router(templates_router)
    app.include_router(knowledge_router)

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
