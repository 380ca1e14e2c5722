# reciply/app/services/extraction_orchestrator.py
"""
Drives one extraction job through its stages:

    pending -> fetching_transcript -> analyzing -> completed
                       \\                  \\
                        +-> failed         +-> failed

``process_extraction`` never raises. Every failure ends with a caller-safe
message written to the job; raw provider errors only reach the log.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from starlette.concurrency import run_in_threadpool

from reciply.app.domain.errors import PersistenceError, StageFailedError
from reciply.app.domain.models import (
    STAGE_PROGRESS,
    ExtractionJob,
    ExtractionResult,
    ExtractionStatus,
    Platform,
    RawExtraction,
    Transcript,
    VideoMetadata,
    VideoMetadataCacheEntry,
)
from reciply.app.domain.recipe import ExtractionMetadata, Recipe, RecipeSource
from reciply.app.infra.db.base import (
    ExtractionJobRepository,
    RawExtractionRepository,
    RecipeRepository,
    VideoMetadataCacheRepository,
)
from reciply.app.services.quota_service import QuotaService
from reciply.services.errors import (
    NetworkTimeoutError,
    NotARecipeError,
    PrivateOrUnavailableError,
    RateLimitedError,
    ServiceError,
    TranscriptUnavailableError,
    UnsupportedPlatformError,
)
from reciply.services.fetcher import FetcherRegistry, metadata_is_empty
from reciply.services.recipe_extractor import RecipeExtractor

logger = logging.getLogger(__name__)

STAGE_FETCH = "fetch"
STAGE_ANALYZE = "analyze"
STAGE_PERSIST = "persist"

FETCHING_STATUS_MESSAGE = "Fetching video transcript..."
ANALYZING_STATUS_MESSAGE = "Analyzing recipe with AI..."
COMPLETED_STATUS_MESSAGE = "Recipe extracted successfully"

NOT_A_RECIPE_MESSAGE = "This video does not appear to contain a recipe."
AI_BUSY_MESSAGE = "Our recipe analyzer is busy right now. Please try again in a few minutes."
AI_TIMEOUT_MESSAGE = "Recipe analysis timed out. Please try again."
AI_FAILED_MESSAGE = "We couldn't extract a recipe from this video. Please try again later."
PERSIST_FAILED_MESSAGE = "We extracted the recipe but couldn't save it. Please try again."
JOB_TIMEOUT_MESSAGE = "Extraction took too long and was stopped. Please try again."
UNEXPECTED_MESSAGE = "An unexpected error occurred while extracting this recipe."


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def fetch_failure_message(error: BaseException, platform: Platform) -> str:
    label = platform.label
    if isinstance(error, TranscriptUnavailableError):
        return (
            f"Transcript unavailable: could not find a transcript for this {label} video. "
            "Captions may be disabled or the video may have no speech."
        )
    if isinstance(error, PrivateOrUnavailableError):
        return f"This {label} video is private, deleted, or not available in your region."
    if isinstance(error, RateLimitedError):
        return f"{label} is rate limiting requests right now. Please try again in a few minutes."
    if isinstance(error, UnsupportedPlatformError):
        return f"Videos from {label} are not supported yet."
    if isinstance(error, (NetworkTimeoutError, asyncio.TimeoutError)):
        return f"Timed out fetching the {label} video. Please try again."
    return f"Could not reach {label} to fetch this video. Please try again later."


def analyze_failure_message(error: BaseException) -> str:
    if isinstance(error, NotARecipeError):
        return NOT_A_RECIPE_MESSAGE
    if isinstance(error, RateLimitedError):
        return AI_BUSY_MESSAGE
    if isinstance(error, asyncio.TimeoutError):
        return AI_TIMEOUT_MESSAGE
    return AI_FAILED_MESSAGE


@dataclass
class _Run:
    recipe_id: Optional[str] = None
    completed: bool = False


class ExtractionOrchestrator:
    def __init__(
        self,
        jobs: ExtractionJobRepository,
        recipes: RecipeRepository,
        metadata_cache: VideoMetadataCacheRepository,
        raw_extractions: RawExtractionRepository,
        fetchers: FetcherRegistry,
        extractor: RecipeExtractor,
        quota: QuotaService,
        fetch_timeout: float = 60.0,
        analyze_timeout: float = 90.0,
        job_timeout: float = 240.0,
    ):
        self._jobs = jobs
        self._recipes = recipes
        self._metadata_cache = metadata_cache
        self._raw_extractions = raw_extractions
        self._fetchers = fetchers
        self._extractor = extractor
        self._quota = quota
        self.fetch_timeout = fetch_timeout
        self.analyze_timeout = analyze_timeout
        self.job_timeout = job_timeout

    async def process_extraction(self, job: ExtractionJob) -> None:
        if job.status != ExtractionStatus.PENDING:
            logger.info("orchestrator.skip job=%s status=%s", job.id, job.status.value)
            return

        try:
            claimed = await run_in_threadpool(
                self._jobs.transition,
                job.id,
                ExtractionStatus.PENDING,
                ExtractionStatus.FETCHING_TRANSCRIPT,
                STAGE_PROGRESS[ExtractionStatus.FETCHING_TRANSCRIPT],
                FETCHING_STATUS_MESSAGE,
            )
        except Exception:
            logger.exception("orchestrator.claim_failed job=%s", job.id)
            await self._abort(job, _Run(), UNEXPECTED_MESSAGE)
            return

        if not claimed:
            logger.info("orchestrator.already_claimed job=%s", job.id)
            return

        logger.info(
            "orchestrator.start job=%s user=%s platform=%s url=%s lang=%s",
            job.id, job.user_id, job.platform.value, job.normalized_url, job.target_language.value,
        )

        run = _Run()
        try:
            metadata, result = await asyncio.wait_for(self._run_stages(job), timeout=self.job_timeout)
            # the job timeout covers fetch and analyze only, writes always run to the end
            await self._finish(job, run, metadata, result)
        except StageFailedError as error:
            logger.warning("orchestrator.stage_failed job=%s stage=%s message=%s", job.id, error.stage, error.user_message)
            await self._abort(job, run, error.user_message)
        except asyncio.TimeoutError:
            logger.warning("orchestrator.job_timeout job=%s after=%.0fs", job.id, self.job_timeout)
            await self._abort(job, run, JOB_TIMEOUT_MESSAGE)
        except Exception:
            logger.exception("orchestrator.unexpected_error job=%s", job.id)
            await self._abort(job, run, UNEXPECTED_MESSAGE)

        if run.completed:
            await self._record_quota(job)

    async def _run_stages(self, job: ExtractionJob) -> tuple[VideoMetadata, ExtractionResult]:
        metadata, transcript, cached = await self._fetch_stage(job)

        moved = await run_in_threadpool(
            self._jobs.transition,
            job.id,
            ExtractionStatus.FETCHING_TRANSCRIPT,
            ExtractionStatus.ANALYZING,
            STAGE_PROGRESS[ExtractionStatus.ANALYZING],
            ANALYZING_STATUS_MESSAGE,
        )
        if not moved:
            raise StageFailedError(STAGE_FETCH, UNEXPECTED_MESSAGE)

        result = await self._analyze_stage(job, metadata, transcript, cached)
        return metadata, result

    async def _finish(
        self,
        job: ExtractionJob,
        run: _Run,
        metadata: VideoMetadata,
        result: ExtractionResult,
    ) -> None:
        recipe = await self._persist_recipe(job, result, metadata, str(uuid.uuid4()))
        # only a recipe that is known to exist gets rolled back
        run.recipe_id = recipe.id

        try:
            completed = await run_in_threadpool(self._jobs.complete, job.id, recipe.id, COMPLETED_STATUS_MESSAGE)
        except PersistenceError as error:
            logger.error("orchestrator.complete_write_failed job=%s error=%s", job.id, error)
            raise StageFailedError(STAGE_PERSIST, PERSIST_FAILED_MESSAGE) from error
        if not completed:
            raise StageFailedError(STAGE_PERSIST, PERSIST_FAILED_MESSAGE)

        run.completed = True
        logger.info("orchestrator.completed job=%s recipe=%s", job.id, recipe.id)

    async def _fetch_stage(
        self,
        job: ExtractionJob,
    ) -> tuple[VideoMetadata, Optional[Transcript], Optional[RawExtraction]]:
        try:
            fetcher = self._fetchers.get(job.platform)
        except UnsupportedPlatformError as error:
            raise StageFailedError(STAGE_FETCH, fetch_failure_message(error, job.platform)) from error

        metadata = await self._load_metadata(job, fetcher)

        # the transcript is only needed when the AI stage will actually run
        cached = await run_in_threadpool(self._raw_extractions.get, job.normalized_url, job.target_language)
        if cached is not None:
            logger.info("orchestrator.raw_cache_hit job=%s url=%s", job.id, job.normalized_url)
            return metadata, None, cached

        try:
            transcript = await asyncio.wait_for(
                fetcher.fetch_transcript(job.normalized_url),
                timeout=self.fetch_timeout,
            )
        except (ServiceError, asyncio.TimeoutError) as error:
            logger.warning(
                "orchestrator.transcript_failed job=%s error_type=%s error=%s",
                job.id, type(error).__name__, error,
            )
            raise StageFailedError(STAGE_FETCH, fetch_failure_message(error, job.platform)) from error

        return metadata, transcript, None

    async def _load_metadata(self, job: ExtractionJob, fetcher) -> VideoMetadata:
        entry = await run_in_threadpool(self._metadata_cache.get, job.normalized_url)
        if entry is not None:
            logger.info("orchestrator.metadata_cache_hit job=%s", job.id)
            return entry.metadata

        try:
            metadata = await asyncio.wait_for(
                fetcher.fetch_metadata(job.normalized_url),
                timeout=self.fetch_timeout,
            )
        except PrivateOrUnavailableError as error:
            raise StageFailedError(STAGE_FETCH, fetch_failure_message(error, job.platform)) from error
        except (ServiceError, asyncio.TimeoutError) as error:
            # the transcript alone is enough to extract a recipe
            logger.warning("orchestrator.metadata_failed job=%s error=%s", job.id, error)
            return VideoMetadata()

        if metadata_is_empty(metadata):
            return metadata

        try:
            await run_in_threadpool(
                self._metadata_cache.upsert,
                VideoMetadataCacheEntry(
                    normalized_url=job.normalized_url,
                    platform=job.platform,
                    metadata=metadata,
                    fetched_at=_now_utc(),
                ),
            )
        except Exception as error:
            logger.warning("orchestrator.metadata_cache_write_failed job=%s error=%s", job.id, error)
        return metadata

    async def _analyze_stage(
        self,
        job: ExtractionJob,
        metadata: VideoMetadata,
        transcript: Optional[Transcript],
        cached: Optional[RawExtraction],
    ) -> ExtractionResult:
        if cached is not None:
            return cached.to_result()
        if transcript is None:
            raise StageFailedError(STAGE_ANALYZE, AI_FAILED_MESSAGE)

        try:
            result = await asyncio.wait_for(
                self._extractor.extract(transcript, metadata, job.target_language),
                timeout=self.analyze_timeout,
            )
        except (ServiceError, asyncio.TimeoutError) as error:
            logger.warning(
                "orchestrator.analyze_failed job=%s error_type=%s error=%s",
                job.id, type(error).__name__, error,
            )
            raise StageFailedError(STAGE_ANALYZE, analyze_failure_message(error)) from error

        try:
            await run_in_threadpool(
                self._raw_extractions.upsert,
                RawExtraction(
                    normalized_url=job.normalized_url,
                    target_language=job.target_language,
                    draft=result.draft,
                    detected_language=result.detected_language,
                    confidence=result.confidence,
                    created_at=_now_utc(),
                ),
            )
        except Exception as error:
            logger.warning("orchestrator.raw_cache_write_failed job=%s error=%s", job.id, error)

        return result

    async def _persist_recipe(
        self,
        job: ExtractionJob,
        result: ExtractionResult,
        metadata: VideoMetadata,
        recipe_id: str,
    ) -> Recipe:
        author = metadata.author
        recipe = Recipe(
            id=recipe_id,
            user_id=job.user_id,
            draft=result.draft,
            source=RecipeSource(
                url=job.normalized_url,
                platform=job.platform.value,
                author_username=author.username if author else None,
                author_display_name=author.display_name if author else None,
                thumbnail_url=metadata.thumbnail_url,
            ),
            extraction_metadata=ExtractionMetadata(
                extracted_at=_now_utc(),
                confidence_score=result.confidence,
                detected_language=result.detected_language,
                target_language=job.target_language.value,
            ),
        )

        try:
            return await run_in_threadpool(self._recipes.create, recipe)
        except Exception as error:
            logger.error("orchestrator.recipe_write_failed job=%s error=%s", job.id, error)
            raise StageFailedError(STAGE_PERSIST, PERSIST_FAILED_MESSAGE) from error

    async def _abort(self, job: ExtractionJob, run: _Run, message: str) -> None:
        if run.recipe_id and not run.completed:
            try:
                await run_in_threadpool(self._recipes.delete, run.recipe_id)
                logger.info("orchestrator.recipe_rolled_back job=%s recipe=%s", job.id, run.recipe_id)
            except Exception:
                logger.exception("orchestrator.recipe_rollback_failed job=%s recipe=%s", job.id, run.recipe_id)

        try:
            updated = await run_in_threadpool(self._jobs.fail, job.id, message)
        except Exception:
            logger.exception("orchestrator.fail_write_failed job=%s", job.id)
            return

        if updated:
            logger.info("orchestrator.failed job=%s error=%s", job.id, message)
        else:
            logger.warning("orchestrator.fail_skipped job=%s (already terminal)", job.id)

    async def _record_quota(self, job: ExtractionJob) -> None:
        try:
            await run_in_threadpool(self._quota.record_successful_extraction, job.user_id)
        except Exception:
            # the recipe is already delivered; the count is lost for this job only
            logger.exception("orchestrator.quota_increment_failed job=%s user=%s", job.id, job.user_id)
