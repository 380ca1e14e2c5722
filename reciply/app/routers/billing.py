# reciply/app/routers/billing.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from starlette.concurrency import run_in_threadpool

from reciply.app.container import Container
from reciply.app.deps import CurrentUser, get_container, get_current_user, require_internal_token
from reciply.app.domain.errors import JobRepositoryError
from reciply.app.schemas.extract import ResetUsageRequest, UsageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    current_user: CurrentUser = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    check = await run_in_threadpool(container.quota.check, current_user.id)
    return UsageResponse(
        used=check.used,
        limit=check.limit,
        remaining=max(0, check.limit - check.used),
        planTier=check.plan_tier.value,
        currentPeriodEnd=check.current_period_end,
    )


@router.post("/reset", response_model=UsageResponse, dependencies=[Depends(require_internal_token)])
async def reset_usage(
    payload: ResetUsageRequest,
    container: Container = Depends(get_container),
):
    """Called by the billing webhook handler when a paid cycle renews."""
    try:
        subscription = await run_in_threadpool(
            container.quota.reset_for_billing_cycle,
            payload.userId,
            payload.currentPeriodEnd,
        )
    except JobRepositoryError as exc:
        logger.error("billing.reset_failed user=%s error=%s", payload.userId, exc)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Subscription not found"})

    limit = container.quota.limit_for(subscription)
    return UsageResponse(
        used=subscription.extractions_used,
        limit=limit,
        remaining=subscription.remaining,
        planTier=subscription.plan_tier.value,
        currentPeriodEnd=subscription.current_period_end,
    )
