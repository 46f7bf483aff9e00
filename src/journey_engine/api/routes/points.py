"""Points API routes: ledger summary and feed."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..deps import get_current_user_id, get_journey_service
from ...models.journey import PointsFeed, PointsSummary
from ...services.journey_service import JourneyService
from ...services.ledger import DEFAULT_FEED_LIMIT, MAX_FEED_LIMIT


router = APIRouter()


@router.get("/summary", response_model=PointsSummary)
def get_points_summary(
    user_id: str = Depends(get_current_user_id),
    service: JourneyService = Depends(get_journey_service),
):
    """Total points and the per-stage breakdown."""
    return service.points_summary(user_id)


@router.get("/feed", response_model=PointsFeed)
def get_points_feed(
    stage_id: Optional[str] = Query(None, alias="stageId"),
    cursor: Optional[str] = Query(None, description="createdAt of the last item of the previous page"),
    limit: int = Query(DEFAULT_FEED_LIMIT, ge=1, le=MAX_FEED_LIMIT),
    user_id: str = Depends(get_current_user_id),
    service: JourneyService = Depends(get_journey_service),
):
    """
    Points entries, newest first.

    Pass ``nextCursor`` from the previous page as ``cursor`` to continue.
    """
    return service.points_feed(user_id, stage_id=stage_id, cursor=cursor, limit=limit)
