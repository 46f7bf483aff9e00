"""Journey API routes: bootstrap, stage progress and task completion.

Every route identifies the caller through the ``X-User-Id`` header and
returns cache-disabling headers (see NoCacheMiddleware).
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from ..deps import get_current_user_id, get_journey_service, get_stage_catalog
from ..middleware.rate_limit import RATE_LIMIT_WRITE, limiter
from ...models.journey import (
    BootstrapRequest,
    BootstrapResponse,
    CompleteTaskRequest,
    CompleteTaskResponse,
    JourneyStagesResponse,
    StageTemplate,
    to_camel,
)
from ...services.catalog import StageCatalog
from ...services.journey_service import JourneyService


router = APIRouter()


class CatalogResponse(BaseModel):
    """Templates a persona would be seeded with."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    requested_persona: str = Field(..., description="Persona key from the request")
    persona: str = Field(..., description="Persona actually used after fallback")
    version: str = Field(..., description="Catalog version")
    stages: List[StageTemplate]


@router.post("/bootstrap", response_model=BootstrapResponse)
@limiter.limit(RATE_LIMIT_WRITE)
def bootstrap_journey(
    request: Request,
    body: Optional[BootstrapRequest] = None,
    user_id: str = Depends(get_current_user_id),
    service: JourneyService = Depends(get_journey_service),
):
    """
    Create the user's stages from the catalog.

    Idempotent: if the user already has stages nothing is written and
    ``existing`` is true.
    """
    persona = body.persona if body else None
    return service.bootstrap(user_id, persona)


@router.get("/stages", response_model=JourneyStagesResponse)
def get_stages(
    user_id: str = Depends(get_current_user_id),
    service: JourneyService = Depends(get_journey_service),
):
    """
    Get the user's journey with live progress.

    Each task carries its evaluated progress and ``lockedByStage``; each
    stage carries its derived status. Stages that reached completion are
    finalized as part of this read.
    """
    return service.get_stages(user_id)


@router.post("/stages/complete", response_model=CompleteTaskResponse)
@limiter.limit(RATE_LIMIT_WRITE)
def complete_task(
    request: Request,
    body: CompleteTaskRequest,
    user_id: str = Depends(get_current_user_id),
    service: JourneyService = Depends(get_journey_service),
):
    """
    Complete a task and award its points.

    Returns 403 if the stage is locked and 400 if the task's condition is
    not satisfied yet. Completing an already completed task is a no-op.
    """
    return service.complete_task(user_id, body.stage_id, body.task_id)


@router.get("/catalog/{persona}", response_model=CatalogResponse)
def get_catalog(
    persona: str,
    user_id: str = Depends(get_current_user_id),
    catalog: StageCatalog = Depends(get_stage_catalog),
):
    """Show the stage templates selected for a persona."""
    resolved = catalog.resolve_persona(persona)
    return CatalogResponse(
        requested_persona=persona,
        persona=resolved,
        version=catalog.version,
        stages=catalog.select_templates(resolved),
    )
