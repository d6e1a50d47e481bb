"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import APIRouter
from fastapi.middleware.cors import CORSMiddleware

from carenet.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _build_lifespan(settings: Settings):
    """Create the lifespan handler bound to ``settings``.

    Args:
        settings: Application settings.

    Returns:
        Async context manager factory for FastAPI.
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Build the job store and orchestrator; close the store on shutdown.

        Args:
            app: FastAPI application instance.

        Yields:
            Control to the running application.
        """
        # agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
        from agents import set_default_openai_key

        from carenet.agents.executor import AgentStepExecutor
        from carenet.agents.pipeline import build_step_agents
        from carenet.api.event_bus import PipelineEventBus
        from carenet.services.job_store import JobStore
        from carenet.services.pipeline_service import PipelineOrchestrator
        from carenet.services.step_runner import StepRunner

        if settings.openai_api_key:
            set_default_openai_key(settings.openai_api_key)

        store = JobStore(settings.pipeline_ttl, settings.max_stored_pipelines)
        event_bus = PipelineEventBus()
        executor = AgentStepExecutor(
            build_step_agents(settings.agent_model),
            max_turns=settings.agent_max_turns,
        )
        app.state.job_store = store
        app.state.event_bus = event_bus
        app.state.orchestrator = PipelineOrchestrator(
            store,
            StepRunner(executor),
            step_timeout_ms=settings.step_timeout_ms,
            critical_steps=settings.critical_step_set,
            on_event=event_bus.broadcast,
        )
        logger.info(
            "orchestrator_started",
            extra={
                "max_stored_pipelines": settings.max_stored_pipelines,
                "step_timeout_ms": settings.step_timeout_ms,
                "critical_steps": sorted(settings.critical_steps),
            },
        )
        try:
            yield
        finally:
            store.close()

    return _lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use. Loaded from the environment when None.

    Returns:
        Configured FastAPI instance.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(
        title="CARENET",
        description="Clinical agent pipeline orchestrator",
        version="0.1.0",
        lifespan=_build_lifespan(settings),
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(_health_router())

    from carenet.api.pipeline_routes import router as pipeline_router
    from carenet.api.pipeline_routes import ws_router

    app.include_router(pipeline_router)
    app.include_router(ws_router)

    return app


def _health_router() -> APIRouter:
    """Create health check router.

    Returns:
        Router with health endpoints.
    """
    from fastapi import APIRouter

    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Return application health status.

        Returns:
            Dict with status key.
        """
        return {"status": "ok"}

    return router


app = create_app()
