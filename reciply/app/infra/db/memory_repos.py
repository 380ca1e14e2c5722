# reciply/app/infra/db/memory_repos.py
"""
Process-local repositories.

Used when STORAGE_BACKEND=memory and throughout the test suite. A single lock
per repository gives the same atomicity the Postgres implementation gets from
conditional updates and the increment function.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from reciply.app.domain.models import (
    ACTIVE_STATUSES,
    ExtractionJob,
    ExtractionStatus,
    RawExtraction,
    Subscription,
    TargetLanguage,
    VideoMetadataCacheEntry,
)
from reciply.app.domain.recipe import Recipe
from reciply.app.infra.db.base import (
    ExtractionJobRepository,
    RawExtractionRepository,
    RecipeRepository,
    SubscriptionRepository,
    VideoMetadataCacheRepository,
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryExtractionJobRepository(ExtractionJobRepository):
    def __init__(self) -> None:
        self._jobs: dict[str, ExtractionJob] = {}
        self._lock = threading.Lock()

    def create(self, job: ExtractionJob) -> ExtractionJob:
        now = _now_utc()
        stored = replace(job, created_at=job.created_at or now, updated_at=now)
        with self._lock:
            self._jobs[stored.id] = stored
        return replace(stored)

    def get(self, job_id: str) -> Optional[ExtractionJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def find_active_by_url(self, user_id: str, normalized_url: str) -> Optional[ExtractionJob]:
        with self._lock:
            matches = [
                job for job in self._jobs.values()
                if job.user_id == user_id
                and job.normalized_url == normalized_url
                and job.status in ACTIVE_STATUSES
            ]
        if not matches:
            return None
        newest = max(matches, key=lambda job: job.created_at or datetime.min.replace(tzinfo=timezone.utc))
        return replace(newest)

    def _update_if(self, job_id: str, allowed: tuple[ExtractionStatus, ...], **changes) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in allowed:
                return False
            self._jobs[job_id] = replace(job, updated_at=_now_utc(), **changes)
            return True

    def transition(
        self,
        job_id: str,
        expected: ExtractionStatus,
        target: ExtractionStatus,
        progress: int,
        status_message: Optional[str] = None,
    ) -> bool:
        return self._update_if(
            job_id,
            (expected,),
            status=target,
            progress=progress,
            status_message=status_message,
        )

    def complete(self, job_id: str, recipe_id: str, status_message: Optional[str] = None) -> bool:
        return self._update_if(
            job_id,
            (ExtractionStatus.ANALYZING,),
            status=ExtractionStatus.COMPLETED,
            progress=100,
            recipe_id=recipe_id,
            error=None,
            status_message=status_message,
        )

    def fail(self, job_id: str, error: str) -> bool:
        return self._update_if(
            job_id,
            ACTIVE_STATUSES,
            status=ExtractionStatus.FAILED,
            error=error,
            recipe_id=None,
            status_message=None,
        )


class InMemoryRecipeRepository(RecipeRepository):
    def __init__(self) -> None:
        self._recipes: dict[str, Recipe] = {}
        self._lock = threading.Lock()

    def create(self, recipe: Recipe) -> Recipe:
        stored = replace(recipe, id=recipe.id or str(uuid.uuid4()), created_at=recipe.created_at or _now_utc())
        with self._lock:
            self._recipes[stored.id] = stored
        return replace(stored)

    def get(self, recipe_id: str) -> Optional[Recipe]:
        with self._lock:
            recipe = self._recipes.get(recipe_id)
            return replace(recipe) if recipe else None

    def find_by_source_url(self, user_id: str, normalized_url: str) -> Optional[Recipe]:
        with self._lock:
            for recipe in self._recipes.values():
                if recipe.user_id == user_id and recipe.source.url == normalized_url:
                    return replace(recipe)
        return None

    def delete(self, recipe_id: str) -> None:
        with self._lock:
            self._recipes.pop(recipe_id, None)

    def count_for_user(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for recipe in self._recipes.values() if recipe.user_id == user_id)


class InMemoryVideoMetadataCacheRepository(VideoMetadataCacheRepository):
    def __init__(self) -> None:
        self._entries: dict[str, VideoMetadataCacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, normalized_url: str) -> Optional[VideoMetadataCacheEntry]:
        with self._lock:
            entry = self._entries.get(normalized_url)
            return replace(entry) if entry else None

    def upsert(self, entry: VideoMetadataCacheEntry) -> None:
        now = _now_utc()
        with self._lock:
            existing = self._entries.get(entry.normalized_url)
            fetched_at = entry.fetched_at or now
            self._entries[entry.normalized_url] = replace(
                entry,
                fetched_at=fetched_at,
                updated_at=now if existing else fetched_at,
            )


class InMemoryRawExtractionRepository(RawExtractionRepository):
    def __init__(self) -> None:
        self._entries: dict[tuple[str, TargetLanguage], RawExtraction] = {}
        self._lock = threading.Lock()

    def get(self, normalized_url: str, target_language: TargetLanguage) -> Optional[RawExtraction]:
        with self._lock:
            extraction = self._entries.get((normalized_url, TargetLanguage(target_language)))
            return replace(extraction) if extraction else None

    def upsert(self, extraction: RawExtraction) -> None:
        key = (extraction.normalized_url, TargetLanguage(extraction.target_language))
        with self._lock:
            self._entries[key] = replace(extraction, created_at=extraction.created_at or _now_utc())


class InMemorySubscriptionRepository(SubscriptionRepository):
    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def add(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions[subscription.user_id] = replace(subscription)

    def get_or_create(self, user_id: str, default_limit: int) -> Subscription:
        with self._lock:
            subscription = self._subscriptions.get(user_id)
            if subscription is None:
                now = _now_utc()
                subscription = Subscription(
                    user_id=user_id,
                    extractions_limit=default_limit,
                    created_at=now,
                    updated_at=now,
                )
                self._subscriptions[user_id] = subscription
            return replace(subscription)

    def roll_period(
        self,
        user_id: str,
        previous_period_end: Optional[datetime],
        new_period_end: datetime,
        reset_usage: bool,
    ) -> Optional[Subscription]:
        with self._lock:
            subscription = self._subscriptions.get(user_id)
            if subscription is None or subscription.current_period_end != previous_period_end:
                return None
            changes: dict = {"current_period_end": new_period_end, "updated_at": _now_utc()}
            if reset_usage:
                changes["extractions_used"] = 0
            subscription = replace(subscription, **changes)
            self._subscriptions[user_id] = subscription
            return replace(subscription)

    def increment_used(self, user_id: str) -> int:
        with self._lock:
            subscription = self._subscriptions.get(user_id)
            if subscription is None:
                subscription = Subscription(user_id=user_id, created_at=_now_utc())
            subscription = replace(
                subscription,
                extractions_used=subscription.extractions_used + 1,
                updated_at=_now_utc(),
            )
            self._subscriptions[user_id] = subscription
            return subscription.extractions_used

    def reset_usage(self, user_id: str, current_period_end: Optional[datetime] = None) -> Subscription:
        with self._lock:
            subscription = self._subscriptions.get(user_id) or Subscription(user_id=user_id, created_at=_now_utc())
            changes: dict = {"extractions_used": 0, "updated_at": _now_utc()}
            if current_period_end is not None:
                changes["current_period_end"] = current_period_end
            subscription = replace(subscription, **changes)
            self._subscriptions[user_id] = subscription
            return replace(subscription)
