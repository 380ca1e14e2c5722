from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import Client, create_client

from reciply.app.domain.errors import JobRepositoryError, PersistenceError
from reciply.app.domain.models import (
    ACTIVE_STATUSES,
    ExtractionJob,
    ExtractionStatus,
    Platform,
    PlanTier,
    RawExtraction,
    Subscription,
    TargetLanguage,
    VideoMetadata,
    VideoMetadataCacheEntry,
)
from reciply.app.domain.recipe import ExtractionMetadata, Recipe, RecipeDraft, RecipeSource
from reciply.app.infra.db.base import (
    ExtractionJobRepository,
    RawExtractionRepository,
    RecipeRepository,
    SubscriptionRepository,
    VideoMetadataCacheRepository,
)

logger = logging.getLogger(__name__)

NETWORK_ERRORS = (ConnectionError, TimeoutError)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None

    try:
        normalized = value.replace("Z", "+00:00") if value.endswith("Z") else value
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _safe_int(value: object, default: int = 0) -> int:
    return int(value) if value else default


def _safe_str(value: object) -> str | None:
    return str(value) if value else None


def _create_supabase_client() -> Client:
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
    return create_client(url, key)


def _row_to_job(row: dict[str, Any]) -> ExtractionJob:
    chat_id = row.get("telegram_chat_id")
    return ExtractionJob(
        id=str(row["job_id"]),
        user_id=str(row["user_id"]),
        source_url=str(row["source_url"]),
        normalized_url=str(row["normalized_url"]),
        platform=Platform(str(row.get("platform") or Platform.OTHER.value)),
        status=ExtractionStatus(str(row["status"])),
        progress=_safe_int(row.get("progress")),
        status_message=_safe_str(row.get("status_message")),
        recipe_id=_safe_str(row.get("recipe_id")),
        error=_safe_str(row.get("error")),
        telegram_chat_id=int(chat_id) if chat_id is not None else None,
        target_language=TargetLanguage(str(row.get("target_language") or TargetLanguage.ORIGINAL.value)),
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


def _row_to_recipe(row: dict[str, Any]) -> Recipe:
    meta = row.get("extraction_metadata") or {}
    return Recipe(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        draft=RecipeDraft.from_dict(row.get("recipe") or {}),
        source=RecipeSource.from_dict(row.get("source") or {"url": row.get("source_url")}),
        extraction_metadata=ExtractionMetadata(
            extracted_at=_parse_datetime(meta.get("extracted_at")) or _now_utc(),
            confidence_score=float(meta.get("confidence_score") or 0.0),
            detected_language=str(meta.get("detected_language") or "unknown"),
            target_language=str(meta.get("target_language") or TargetLanguage.ORIGINAL.value),
        ),
        created_at=_parse_datetime(row.get("created_at")),
    )


def _row_to_subscription(row: dict[str, Any]) -> Subscription:
    return Subscription(
        user_id=str(row["user_id"]),
        plan_tier=PlanTier(str(row.get("plan_tier") or PlanTier.FREE.value)),
        extractions_used=_safe_int(row.get("extractions_used")),
        extractions_limit=_safe_int(row.get("extractions_limit")),
        current_period_end=_parse_datetime(row.get("current_period_end")),
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


class SupabaseExtractionJobRepository(ExtractionJobRepository):
    TABLE_NAME = "extraction_jobs"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()
        logger.info("SupabaseExtractionJobRepository initialized")

    def create(self, job: ExtractionJob) -> ExtractionJob:
        data = {
            "job_id": job.id,
            "user_id": job.user_id,
            "source_url": job.source_url,
            "normalized_url": job.normalized_url,
            "platform": job.platform.value,
            "status": job.status.value,
            "progress": job.progress,
            "status_message": job.status_message,
            "telegram_chat_id": job.telegram_chat_id,
            "target_language": job.target_language.value,
        }

        try:
            result = self._client.table(self.TABLE_NAME).insert(data).execute()
        except NETWORK_ERRORS as error:
            logger.error("Network error creating extraction job: %s", error)
            raise JobRepositoryError("create", str(error)) from error

        if not result.data:
            raise JobRepositoryError("create", "insert returned no rows")

        created = _row_to_job(result.data[0])
        logger.info("Created extraction job: id=%s, user=%s, url=%s", created.id, created.user_id, created.normalized_url)
        return created

    def get(self, job_id: str) -> Optional[ExtractionJob]:
        result = (
            self._client.table(self.TABLE_NAME)
            .select("*")
            .eq("job_id", job_id)
            .limit(1)
            .execute()
        )
        return _row_to_job(result.data[0]) if result.data else None

    def find_active_by_url(self, user_id: str, normalized_url: str) -> Optional[ExtractionJob]:
        result = (
            self._client.table(self.TABLE_NAME)
            .select("*")
            .eq("user_id", user_id)
            .eq("normalized_url", normalized_url)
            .in_("status", [status.value for status in ACTIVE_STATUSES])
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return _row_to_job(result.data[0]) if result.data else None

    def _conditional_update(
        self,
        job_id: str,
        allowed: tuple[ExtractionStatus, ...],
        update_data: dict[str, Any],
        operation: str,
    ) -> bool:
        update_data = {**update_data, "updated_at": _now_utc().isoformat()}
        query = self._client.table(self.TABLE_NAME).update(update_data).eq("job_id", job_id)
        if len(allowed) == 1:
            query = query.eq("status", allowed[0].value)
        else:
            query = query.in_("status", [status.value for status in allowed])

        try:
            result = query.execute()
        except NETWORK_ERRORS as error:
            logger.error("Network error during %s: job=%s error=%s", operation, job_id, error)
            raise JobRepositoryError(operation, str(error)) from error

        return bool(result.data)

    def transition(
        self,
        job_id: str,
        expected: ExtractionStatus,
        target: ExtractionStatus,
        progress: int,
        status_message: Optional[str] = None,
    ) -> bool:
        return self._conditional_update(
            job_id,
            (expected,),
            {"status": target.value, "progress": progress, "status_message": status_message},
            "transition",
        )

    def complete(self, job_id: str, recipe_id: str, status_message: Optional[str] = None) -> bool:
        try:
            return self._conditional_update(
                job_id,
                (ExtractionStatus.ANALYZING,),
                {
                    "status": ExtractionStatus.COMPLETED.value,
                    "progress": 100,
                    "recipe_id": recipe_id,
                    "error": None,
                    "status_message": status_message,
                },
                "complete",
            )
        except JobRepositoryError as error:
            raise PersistenceError(error.operation, error.reason) from error

    def fail(self, job_id: str, error: str) -> bool:
        return self._conditional_update(
            job_id,
            ACTIVE_STATUSES,
            {
                "status": ExtractionStatus.FAILED.value,
                "error": error,
                "recipe_id": None,
                "status_message": None,
            },
            "fail",
        )


class SupabaseRecipeRepository(RecipeRepository):
    TABLE_NAME = "recipes"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()

    def create(self, recipe: Recipe) -> Recipe:
        meta = recipe.extraction_metadata
        data = {
            "user_id": recipe.user_id,
            "title": recipe.draft.title,
            "source_url": recipe.source.url,
            "platform": recipe.source.platform,
            "thumbnail_url": recipe.source.thumbnail_url,
            "recipe": recipe.draft.to_dict(),
            "source": {
                "url": recipe.source.url,
                "platform": recipe.source.platform,
                "author_username": recipe.source.author_username,
                "author_display_name": recipe.source.author_display_name,
                "thumbnail_url": recipe.source.thumbnail_url,
            },
            "extraction_metadata": {
                "extracted_at": _iso(meta.extracted_at),
                "confidence_score": meta.confidence_score,
                "detected_language": meta.detected_language,
                "target_language": meta.target_language,
            },
        }
        if recipe.id:
            data["id"] = recipe.id

        try:
            result = self._client.table(self.TABLE_NAME).insert(data).execute()
        except NETWORK_ERRORS as error:
            logger.error("Network error creating recipe: %s", error)
            raise PersistenceError("create_recipe", str(error)) from error

        if not result.data:
            raise PersistenceError("create_recipe", "insert returned no rows")
        return _row_to_recipe(result.data[0])

    def get(self, recipe_id: str) -> Optional[Recipe]:
        result = self._client.table(self.TABLE_NAME).select("*").eq("id", recipe_id).limit(1).execute()
        return _row_to_recipe(result.data[0]) if result.data else None

    def find_by_source_url(self, user_id: str, normalized_url: str) -> Optional[Recipe]:
        result = (
            self._client.table(self.TABLE_NAME)
            .select("*")
            .eq("user_id", user_id)
            .eq("source_url", normalized_url)
            .limit(1)
            .execute()
        )
        return _row_to_recipe(result.data[0]) if result.data else None

    def delete(self, recipe_id: str) -> None:
        self._client.table(self.TABLE_NAME).delete().eq("id", recipe_id).execute()
        logger.info("Deleted recipe: id=%s", recipe_id)


class SupabaseVideoMetadataCacheRepository(VideoMetadataCacheRepository):
    TABLE_NAME = "video_metadata_cache"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()

    def get(self, normalized_url: str) -> Optional[VideoMetadataCacheEntry]:
        result = (
            self._client.table(self.TABLE_NAME)
            .select("*")
            .eq("normalized_url", normalized_url)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None

        row = result.data[0]
        return VideoMetadataCacheEntry(
            normalized_url=str(row["normalized_url"]),
            platform=Platform(str(row.get("platform") or Platform.OTHER.value)),
            metadata=VideoMetadata.from_dict(row.get("metadata")),
            fetched_at=_parse_datetime(row.get("fetched_at")),
            updated_at=_parse_datetime(row.get("updated_at")),
        )

    def upsert(self, entry: VideoMetadataCacheEntry) -> None:
        now = _now_utc().isoformat()
        data = {
            "normalized_url": entry.normalized_url,
            "platform": entry.platform.value,
            "metadata": entry.metadata.to_dict(),
            "fetched_at": _iso(entry.fetched_at) or now,
            "updated_at": now,
        }
        self._client.table(self.TABLE_NAME).upsert(data, on_conflict="normalized_url").execute()


class SupabaseRawExtractionRepository(RawExtractionRepository):
    TABLE_NAME = "raw_extractions"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()

    def get(self, normalized_url: str, target_language: TargetLanguage) -> Optional[RawExtraction]:
        result = (
            self._client.table(self.TABLE_NAME)
            .select("*")
            .eq("normalized_url", normalized_url)
            .eq("target_language", TargetLanguage(target_language).value)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None

        row = result.data[0]
        return RawExtraction(
            normalized_url=str(row["normalized_url"]),
            target_language=TargetLanguage(str(row["target_language"])),
            draft=RecipeDraft.from_dict(row.get("recipe") or {}),
            detected_language=str(row.get("detected_language") or "unknown"),
            confidence=float(row.get("confidence") or 0.0),
            created_at=_parse_datetime(row.get("created_at")),
        )

    def upsert(self, extraction: RawExtraction) -> None:
        data = {
            "normalized_url": extraction.normalized_url,
            "target_language": TargetLanguage(extraction.target_language).value,
            "recipe": extraction.draft.to_dict(),
            "detected_language": extraction.detected_language,
            "confidence": extraction.confidence,
            "created_at": _iso(extraction.created_at) or _now_utc().isoformat(),
        }
        self._client.table(self.TABLE_NAME).upsert(
            data, on_conflict="normalized_url,target_language"
        ).execute()


class SupabaseSubscriptionRepository(SubscriptionRepository):
    TABLE_NAME = "subscriptions"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()

    def _select(self, user_id: str) -> Optional[Subscription]:
        result = self._client.table(self.TABLE_NAME).select("*").eq("user_id", user_id).limit(1).execute()
        return _row_to_subscription(result.data[0]) if result.data else None

    def get_or_create(self, user_id: str, default_limit: int) -> Subscription:
        subscription = self._select(user_id)
        if subscription is not None:
            return subscription

        self._client.table(self.TABLE_NAME).upsert(
            {
                "user_id": user_id,
                "plan_tier": PlanTier.FREE.value,
                "extractions_used": 0,
                "extractions_limit": default_limit,
            },
            on_conflict="user_id",
            ignore_duplicates=True,
        ).execute()
        logger.info("Created free subscription: user=%s", user_id)

        subscription = self._select(user_id)
        if subscription is None:
            raise JobRepositoryError("get_or_create_subscription", f"no subscription row for {user_id}")
        return subscription

    def roll_period(
        self,
        user_id: str,
        previous_period_end: Optional[datetime],
        new_period_end: datetime,
        reset_usage: bool,
    ) -> Optional[Subscription]:
        update_data: dict[str, Any] = {
            "current_period_end": new_period_end.isoformat(),
            "updated_at": _now_utc().isoformat(),
        }
        if reset_usage:
            update_data["extractions_used"] = 0

        query = self._client.table(self.TABLE_NAME).update(update_data).eq("user_id", user_id)
        if previous_period_end is None:
            query = query.is_("current_period_end", "null")
        else:
            query = query.eq("current_period_end", previous_period_end.isoformat())

        result = query.execute()
        return _row_to_subscription(result.data[0]) if result.data else None

    def increment_used(self, user_id: str) -> int:
        try:
            result = self._client.rpc("increment_extractions_used", {"p_user_id": user_id}).execute()
        except NETWORK_ERRORS as error:
            logger.error("Network error incrementing usage: %s", error)
            raise JobRepositoryError("increment_used", str(error)) from error

        data = result.data
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = data.get("increment_extractions_used")
        return _safe_int(data)

    def reset_usage(self, user_id: str, current_period_end: Optional[datetime] = None) -> Subscription:
        update_data: dict[str, Any] = {"extractions_used": 0, "updated_at": _now_utc().isoformat()}
        if current_period_end is not None:
            update_data["current_period_end"] = current_period_end.isoformat()

        result = self._client.table(self.TABLE_NAME).update(update_data).eq("user_id", user_id).execute()
        if not result.data:
            raise JobRepositoryError("reset_usage", f"no subscription row for {user_id}")
        return _row_to_subscription(result.data[0])
