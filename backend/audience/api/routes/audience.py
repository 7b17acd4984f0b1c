from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from audience.core.db import get_session
from audience.core.deps import Operator, get_current_operator
from audience.domain.audience import AudienceAggregator
from audience.schemas.audience import AudienceCountOut, AudienceCountRequest
from audience.services.evaluator import HttpPredicateEvaluator, get_evaluator
from audience.services.identity_keys import get_primary_key_field
from audience.services.segments import SqlSegmentSource

router = APIRouter(prefix="/audience", tags=["audience"])


@router.post("/count", response_model=AudienceCountOut)
async def count_audience(
    payload: AudienceCountRequest,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
    evaluator: HttpPredicateEvaluator = Depends(get_evaluator),
):
    """Deduplicated recipient count for the segments attached to a campaign.

    The result is a snapshot; re-fetch it before acting on it. When the
    evaluator fails the whole request fails with 503 "count unavailable".
    """

    identity_key = await get_primary_key_field(session, operator.company_id)
    aggregator = AudienceAggregator(evaluator, SqlSegmentSource(session, operator.company_id))
    result = await aggregator.compute_audience(payload.segment_ids, identity_key=identity_key)
    logger.bind(
        segment_count=len(result.per_segment),
        total=result.total_number_of_contacts,
        stale=len(result.stale_segment_ids),
    ).info("audience_counted")
    return result
