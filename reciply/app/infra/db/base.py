# reciply/app/infra/db/base.py
"""
Abstract repositories for the extraction pipeline.
This interface allows easy swapping between storage backends.

Implementations:
- Supabase*Repository: Postgres tables through the Supabase client
- InMemory*Repository: process-local dicts for local runs and tests
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from reciply.app.domain.models import (
    ExtractionJob,
    ExtractionStatus,
    RawExtraction,
    Subscription,
    TargetLanguage,
    VideoMetadataCacheEntry,
)
from reciply.app.domain.recipe import Recipe


class ExtractionJobRepository(ABC):
    """
    Job records. Every status change is a conditional update on the
    current status, so a job that already moved on is never overwritten.
    """

    @abstractmethod
    def create(self, job: ExtractionJob) -> ExtractionJob:
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[ExtractionJob]:
        pass

    @abstractmethod
    def find_active_by_url(self, user_id: str, normalized_url: str) -> Optional[ExtractionJob]:
        """Newest non-terminal job of this user for the URL, if any."""
        pass

    @abstractmethod
    def transition(
        self,
        job_id: str,
        expected: ExtractionStatus,
        target: ExtractionStatus,
        progress: int,
        status_message: Optional[str] = None,
    ) -> bool:
        """
        Move the job from ``expected`` to ``target``.

        Returns:
            False when the job was not in ``expected`` (nothing written)
        """
        pass

    @abstractmethod
    def complete(self, job_id: str, recipe_id: str, status_message: Optional[str] = None) -> bool:
        """analyzing -> completed with recipe_id and progress 100."""
        pass

    @abstractmethod
    def fail(self, job_id: str, error: str) -> bool:
        """Any non-terminal status -> failed; progress is left as is."""
        pass


class RecipeRepository(ABC):
    @abstractmethod
    def create(self, recipe: Recipe) -> Recipe:
        pass

    @abstractmethod
    def get(self, recipe_id: str) -> Optional[Recipe]:
        pass

    @abstractmethod
    def find_by_source_url(self, user_id: str, normalized_url: str) -> Optional[Recipe]:
        pass

    @abstractmethod
    def delete(self, recipe_id: str) -> None:
        pass


class VideoMetadataCacheRepository(ABC):
    @abstractmethod
    def get(self, normalized_url: str) -> Optional[VideoMetadataCacheEntry]:
        pass

    @abstractmethod
    def upsert(self, entry: VideoMetadataCacheEntry) -> None:
        """Insert or overwrite by normalized_url."""
        pass


class RawExtractionRepository(ABC):
    @abstractmethod
    def get(self, normalized_url: str, target_language: TargetLanguage) -> Optional[RawExtraction]:
        pass

    @abstractmethod
    def upsert(self, extraction: RawExtraction) -> None:
        """Insert or overwrite by (normalized_url, target_language); last write wins."""
        pass


class SubscriptionRepository(ABC):
    @abstractmethod
    def get_or_create(self, user_id: str, default_limit: int) -> Subscription:
        pass

    @abstractmethod
    def roll_period(
        self,
        user_id: str,
        previous_period_end: Optional[datetime],
        new_period_end: datetime,
        reset_usage: bool,
    ) -> Optional[Subscription]:
        """
        Advance ``current_period_end`` only if it still equals
        ``previous_period_end``.

        Returns:
            The updated subscription, or None when another reader rolled it first
        """
        pass

    @abstractmethod
    def increment_used(self, user_id: str) -> int:
        """Single atomic ``extractions_used + 1``; returns the new value."""
        pass

    @abstractmethod
    def reset_usage(self, user_id: str, current_period_end: Optional[datetime] = None) -> Subscription:
        pass
