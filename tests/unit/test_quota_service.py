from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from reciply.app.domain.errors import QuotaExceededError
from reciply.app.domain.models import PlanTier, Subscription
from reciply.app.infra.db.memory_repos import InMemorySubscriptionRepository
from reciply.app.services.quota_service import PERIOD_LENGTH, QuotaService

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def create_service(repo: InMemorySubscriptionRepository, now: datetime = NOW) -> QuotaService:
    return QuotaService(repo, free_limit=10, pro_limit=100, clock=lambda: now)


class TestQuotaCheck:
    def test_new_user_gets_free_subscription(self) -> None:
        repo = InMemorySubscriptionRepository()
        service = create_service(repo)

        result = service.check("user-1")

        assert result.allowed is True
        assert result.used == 0
        assert result.limit == 10
        assert result.plan_tier == PlanTier.FREE
        assert result.current_period_end == NOW + PERIOD_LENGTH

    def test_first_period_start_keeps_usage(self) -> None:
        repo = InMemorySubscriptionRepository()
        repo.add(Subscription(user_id="user-1", extractions_used=4, extractions_limit=10))
        service = create_service(repo)

        result = service.check("user-1")

        assert result.used == 4
        assert result.current_period_end == NOW + PERIOD_LENGTH

    def test_free_user_at_limit_is_rejected(self) -> None:
        repo = InMemorySubscriptionRepository()
        repo.add(Subscription(
            user_id="user-1",
            extractions_used=10,
            extractions_limit=10,
            current_period_end=NOW + timedelta(days=3),
        ))
        service = create_service(repo)

        with pytest.raises(QuotaExceededError) as exc_info:
            service.ensure_can_extract("user-1")

        assert exc_info.value.used == 10
        assert exc_info.value.limit == 10
        assert exc_info.value.plan_tier == "free"
        assert service.can_extract("user-1") is False

    def test_pro_user_uses_pro_limit(self) -> None:
        repo = InMemorySubscriptionRepository()
        repo.add(Subscription(
            user_id="user-1",
            plan_tier=PlanTier.PRO,
            extractions_used=50,
            extractions_limit=100,
            current_period_end=NOW + timedelta(days=3),
        ))
        service = create_service(repo)

        result = service.ensure_can_extract("user-1")

        assert result.allowed is True
        assert result.limit == 100
        assert result.plan_tier == PlanTier.PRO


class TestFreeTierRollover:
    def test_expired_period_resets_usage(self) -> None:
        repo = InMemorySubscriptionRepository()
        previous_end = NOW - timedelta(days=1)
        repo.add(Subscription(
            user_id="user-1",
            extractions_used=10,
            extractions_limit=10,
            current_period_end=previous_end,
        ))
        service = create_service(repo)

        result = service.check("user-1")

        assert result.allowed is True
        assert result.used == 0
        assert result.current_period_end == previous_end + PERIOD_LENGTH

    def test_long_expired_period_advances_past_now(self) -> None:
        repo = InMemorySubscriptionRepository()
        previous_end = NOW - timedelta(days=95)
        repo.add(Subscription(
            user_id="user-1",
            extractions_used=3,
            extractions_limit=10,
            current_period_end=previous_end,
        ))
        service = create_service(repo)

        subscription = service.get_subscription("user-1")

        assert subscription.current_period_end > NOW
        assert subscription.current_period_end == previous_end + 4 * PERIOD_LENGTH
        assert subscription.extractions_used == 0

    def test_pro_period_is_never_rolled_here(self) -> None:
        repo = InMemorySubscriptionRepository()
        previous_end = NOW - timedelta(days=1)
        repo.add(Subscription(
            user_id="user-1",
            plan_tier=PlanTier.PRO,
            extractions_used=100,
            extractions_limit=100,
            current_period_end=previous_end,
        ))
        service = create_service(repo)

        result = service.check("user-1")

        assert result.allowed is False
        assert result.current_period_end == previous_end

    def test_concurrent_roll_resets_once(self) -> None:
        repo = InMemorySubscriptionRepository()
        previous_end = NOW - timedelta(days=1)
        repo.add(Subscription(
            user_id="user-1",
            extractions_used=10,
            extractions_limit=10,
            current_period_end=previous_end,
        ))
        service = create_service(repo)
        service.get_subscription("user-1")
        service.record_successful_extraction("user-1")

        # a stale reader that still saw the old period end loses the conditional write
        stale = repo.roll_period("user-1", previous_end, previous_end + PERIOD_LENGTH, reset_usage=True)

        assert stale is None
        assert service.check("user-1").used == 1


class TestUsageRecording:
    def test_record_successful_extraction_increments(self) -> None:
        repo = InMemorySubscriptionRepository()
        service = create_service(repo)
        service.check("user-1")

        assert service.record_successful_extraction("user-1") == 1
        assert service.record_successful_extraction("user-1") == 2
        assert service.check("user-1").used == 2

    def test_reset_for_billing_cycle(self) -> None:
        repo = InMemorySubscriptionRepository()
        repo.add(Subscription(
            user_id="user-1",
            plan_tier=PlanTier.PRO,
            extractions_used=77,
            extractions_limit=100,
            current_period_end=NOW,
        ))
        service = create_service(repo)
        new_end = NOW + timedelta(days=30)

        subscription = service.reset_for_billing_cycle("user-1", new_end)

        assert subscription.extractions_used == 0
        assert subscription.current_period_end == new_end
        assert service.check("user-1").used == 0
