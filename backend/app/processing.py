"""Orchestrator wiring for the backend."""

import logging
from typing import Annotated, Any, Dict

from fastapi import Depends

from mindnote.orchestrator import ThoughtOrchestrator
from mindnote.protocols import AIProvider, InternalError
from mindnote.types import ProviderResult

from .config import Settings, get_settings
from .database import get_document_store

logger = logging.getLogger("mindnote.api")

_orchestrator: ThoughtOrchestrator | None = None


class UnconfiguredProvider:
    """Provider used when no AI backend is configured; every call fails the job."""

    async def propose(self, thought_text: str, context: Dict[str, Any], tool_guidance: str) -> ProviderResult:
        raise InternalError("AI provider is not configured")


def build_provider(settings: Settings) -> AIProvider:
    if settings.openai_api_key:
        from mindnote.providers.openai import OpenAIProvider

        return OpenAIProvider(settings.openai_model, api_key=settings.openai_api_key)
    logger.warning("OPENAI_API_KEY not set; AI processing jobs will fail")
    return UnconfiguredProvider()


def get_orchestrator(settings: Annotated[Settings, Depends(get_settings)]) -> ThoughtOrchestrator:
    """FastAPI dependency for the shared orchestrator.

    Jobs run through FastAPI background tasks, so the orchestrator does
    not schedule them itself.
    """
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ThoughtOrchestrator(
            get_document_store(settings),
            build_provider(settings),
            config=settings.processing_config(),
            schedule_jobs=False,
        )
    return _orchestrator


Orchestrator = Annotated[ThoughtOrchestrator, Depends(get_orchestrator)]
