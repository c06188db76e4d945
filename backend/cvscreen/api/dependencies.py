"""
Composed FastAPI Dependencies

Route handlers import service objects from here, never from the container
module directly. The container itself is built once in the lifespan and
stored on app.state.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from cvscreen.core.container import ServiceContainer
from cvscreen.llm.scoring import CvScorer
from cvscreen.services.job_store import DocumentJobStore
from cvscreen.services.orchestrator import UploadOrchestrator


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_orchestrator(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> UploadOrchestrator:
    return container.orchestrator


def get_job_store(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> DocumentJobStore:
    return container.store


def get_scorer(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> CvScorer:
    return container.scorer


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Orchestrator = Annotated[UploadOrchestrator, Depends(get_orchestrator)]
JobStore     = Annotated[DocumentJobStore,   Depends(get_job_store)]
Scorer       = Annotated[CvScorer,           Depends(get_scorer)]
