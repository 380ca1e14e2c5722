# reciply/app/services/quota_service.py
"""
Quota management service.
Handles per-period extraction limits.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from reciply.app.domain.errors import QuotaExceededError
from reciply.app.domain.models import PlanTier, QuotaCheck, Subscription
from reciply.app.infra.db.base import SubscriptionRepository

logger = logging.getLogger(__name__)

PERIOD_LENGTH = timedelta(days=30)
PLAN_LIMITS: dict[PlanTier, int] = {
    PlanTier.FREE: 10,
    PlanTier.PRO: 100,
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class QuotaService:
    """
    Service for managing extraction quotas.

    Responsibilities:
    - Read (or create) the user's subscription, rolling free-tier periods
    - Decide whether a new extraction may start
    - Count successful extractions
    - Reset usage when the billing cycle renews
    """

    def __init__(
        self,
        repository: Optional[SubscriptionRepository] = None,
        free_limit: int = PLAN_LIMITS[PlanTier.FREE],
        pro_limit: int = PLAN_LIMITS[PlanTier.PRO],
        clock: Callable[[], datetime] = _now_utc,
    ):
        if repository is None:
            from reciply.app.infra.db.supabase_repos import SupabaseSubscriptionRepository

            repository = SupabaseSubscriptionRepository()
        self._repo = repository
        self._limits = {PlanTier.FREE: free_limit, PlanTier.PRO: pro_limit}
        self._clock = clock

    def limit_for(self, subscription: Subscription) -> int:
        return subscription.extractions_limit or self._limits[subscription.plan_tier]

    def get_subscription(self, user_id: str) -> Subscription:
        """
        Read-or-create the subscription and roll an expired free-tier period.

        The roll is a conditional write on the previous period end, so two
        concurrent readers reset usage once.
        """
        subscription = self._repo.get_or_create(user_id, self._limits[PlanTier.FREE])
        if subscription.plan_tier != PlanTier.FREE:
            return subscription

        now = self._clock()
        period_end = subscription.current_period_end

        if period_end is None:
            rolled = self._repo.roll_period(user_id, None, now + PERIOD_LENGTH, reset_usage=False)
        elif now >= period_end:
            new_end = period_end
            while new_end <= now:
                new_end += PERIOD_LENGTH
            rolled = self._repo.roll_period(user_id, period_end, new_end, reset_usage=True)
            if rolled is not None:
                logger.info(
                    "quota.period_rolled user=%s previous_end=%s new_end=%s",
                    user_id, period_end.isoformat(), new_end.isoformat(),
                )
        else:
            return subscription

        if rolled is None:
            return self._repo.get_or_create(user_id, self._limits[PlanTier.FREE])
        return rolled

    def check(self, user_id: str) -> QuotaCheck:
        subscription = self.get_subscription(user_id)
        limit = self.limit_for(subscription)
        return QuotaCheck(
            allowed=subscription.extractions_used < limit,
            used=subscription.extractions_used,
            limit=limit,
            plan_tier=subscription.plan_tier,
            current_period_end=subscription.current_period_end,
        )

    def can_extract(self, user_id: str) -> bool:
        return self.check(user_id).allowed

    def ensure_can_extract(self, user_id: str) -> QuotaCheck:
        """
        Raises:
            QuotaExceededError: with the current usage figures
        """
        result = self.check(user_id)
        if not result.allowed:
            logger.info(
                "quota.exceeded user=%s used=%d limit=%d plan=%s",
                user_id, result.used, result.limit, result.plan_tier.value,
            )
            raise QuotaExceededError(
                used=result.used,
                limit=result.limit,
                plan_tier=result.plan_tier.value,
            )
        return result

    def record_successful_extraction(self, user_id: str) -> int:
        used = self._repo.increment_used(user_id)
        logger.info("quota.incremented user=%s used=%d", user_id, used)
        return used

    def reset_for_billing_cycle(
        self,
        user_id: str,
        current_period_end: Optional[datetime] = None,
    ) -> Subscription:
        subscription = self._repo.reset_usage(user_id, current_period_end)
        logger.info("quota.reset user=%s period_end=%s", user_id, subscription.current_period_end)
        return subscription
