"""
Prioritizer API Server
======================

Application factories wiring the prioritization router to a service.

Usage:
    provider = StaticContextProvider()
    provider.register("outcome-1", context, tasks)
    app = create_default_app(provider)
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from prioritizer.agents.evaluator import LLMQualityEvaluator
from prioritizer.agents.generator import LLMCandidateGenerator
from prioritizer.api.routers.prioritization import router, set_service
from prioritizer.config import PrioritizerSettings, get_settings
from prioritizer.llm.client import LLMClient, Provider
from prioritizer.logging_config import setup_logging
from prioritizer.orchestrator.loop import HybridLoopController
from prioritizer.service import PrioritizationService, TaskContextProvider
from prioritizer.storage.session_store import SessionStore

logger = logging.getLogger(__name__)


def create_app(
    service: PrioritizationService,
    *,
    manage_store: bool = False,
    llm_client: Optional[LLMClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Service handling prioritization requests
        manage_store: Open and close the session store with the app lifespan
        llm_client: Reasoning service client to open and close with the app

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if llm_client is not None:
            await llm_client.initialize()
        if manage_store:
            await service.store.initialize()
            purged = await service.purge_expired()
            logger.info(f"Startup purge removed {purged} expired sessions")

        yield

        await service.shutdown()
        if manage_store:
            await service.store.close()
        if llm_client is not None:
            await llm_client.close()

    app = FastAPI(
        title="Prioritizer API",
        description="Outcome-driven task prioritization with an evaluator-optimizer loop",
        version="1.0.0",
        lifespan=lifespan,
    )
    set_service(service)
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    return app


def create_default_app(
    context_provider: TaskContextProvider,
    settings: Optional[PrioritizerSettings] = None,
) -> FastAPI:
    """Wire the reasoning-service-backed stages, the SQLite store and the API."""
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    client = LLMClient(provider=Provider(settings.llm_provider), settings=settings)
    controller = HybridLoopController(
        LLMCandidateGenerator(client, settings),
        LLMQualityEvaluator(client, settings),
        settings,
    )
    service = PrioritizationService(
        controller,
        SessionStore(settings.session_db_path),
        context_provider,
        settings,
    )
    return create_app(service, manage_store=True, llm_client=client)


def serve(
    context_provider: TaskContextProvider,
    host: str = "127.0.0.1",
    port: int = 8000,
    settings: Optional[PrioritizerSettings] = None,
) -> None:
    """Run the default app under uvicorn (blocking)."""
    uvicorn.run(create_default_app(context_provider, settings), host=host, port=port)
