# reciply/app/services/extraction_service.py
"""
Submission path: validates a URL, enforces the quota, short-circuits
duplicates and hands new jobs to the background dispatcher.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from starlette.concurrency import run_in_threadpool

from reciply.app.domain.errors import (
    InvalidUrlError,
    JobAccessDeniedError,
    JobNotFoundError,
    JobNotPendingError,
)
from reciply.app.domain.models import ExtractionJob, ExtractionStatus, TargetLanguage
from reciply.app.infra.db.base import ExtractionJobRepository, RecipeRepository
from reciply.app.services.extraction_orchestrator import ExtractionOrchestrator
from reciply.app.services.quota_service import QuotaService
from reciply.services.ids import new_job_id
from reciply.services.platform_detector import detect_platform, resolve_url

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048

Dispatch = Callable[[ExtractionJob], None]
Resolver = Callable[..., Awaitable[str]]


@dataclass
class SubmissionResult:
    job: Optional[ExtractionJob] = None
    existing_recipe_id: Optional[str] = None
    reused_active_job: bool = False


class ExtractionService:
    def __init__(
        self,
        jobs: ExtractionJobRepository,
        recipes: RecipeRepository,
        quota: QuotaService,
        orchestrator: ExtractionOrchestrator,
        dispatch: Dispatch,
        resolver: Resolver = resolve_url,
        resolve_timeout: float = 5.0,
    ):
        self._jobs = jobs
        self._recipes = recipes
        self._quota = quota
        self._orchestrator = orchestrator
        self._dispatch = dispatch
        self._resolver = resolver
        self._resolve_timeout = resolve_timeout

    async def submit(
        self,
        user_id: str,
        url: str,
        target_language: TargetLanguage = TargetLanguage.ORIGINAL,
        telegram_chat_id: Optional[int] = None,
    ) -> SubmissionResult:
        """
        Raises:
            QuotaExceededError: the user has no extractions left this period
            InvalidUrlError: empty, oversized, malformed or unsupported URL
        """
        await run_in_threadpool(self._quota.ensure_can_extract, user_id)

        submitted = (url or "").strip()
        if not submitted:
            raise InvalidUrlError("URL is required")
        if len(submitted) > MAX_URL_LENGTH:
            raise InvalidUrlError(f"URL is too long (max {MAX_URL_LENGTH} characters)")

        resolved = await self._resolver(submitted, timeout=self._resolve_timeout)
        detection = detect_platform(resolved)
        if not detection.is_valid or not detection.normalized_form:
            logger.info("extract.rejected user=%s url=%s reason=%s", user_id, submitted, detection.error)
            raise InvalidUrlError(detection.error or "Invalid URL")

        normalized_url = detection.normalized_form

        existing = await run_in_threadpool(self._recipes.find_by_source_url, user_id, normalized_url)
        if existing is not None:
            logger.info("extract.duplicate_recipe user=%s url=%s recipe=%s", user_id, normalized_url, existing.id)
            return SubmissionResult(existing_recipe_id=existing.id)

        active = await run_in_threadpool(self._jobs.find_active_by_url, user_id, normalized_url)
        if active is not None and TargetLanguage(active.target_language) == TargetLanguage(target_language):
            logger.info("extract.active_job_reused user=%s url=%s job=%s", user_id, normalized_url, active.id)
            return SubmissionResult(job=active, reused_active_job=True)

        job = await run_in_threadpool(
            self._jobs.create,
            ExtractionJob(
                id=new_job_id(),
                user_id=user_id,
                source_url=submitted,
                normalized_url=normalized_url,
                platform=detection.platform,
                status=ExtractionStatus.PENDING,
                progress=0,
                status_message="Waiting to start...",
                telegram_chat_id=telegram_chat_id,
                target_language=TargetLanguage(target_language),
            ),
        )
        logger.info(
            "extract.submit user=%s job=%s platform=%s url=%s",
            user_id, job.id, job.platform.value, normalized_url,
        )

        self._dispatch(job)
        return SubmissionResult(job=job)

    async def get_job_for_user(self, job_id: str, user_id: str) -> ExtractionJob:
        job = await run_in_threadpool(self._jobs.get, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.user_id != user_id:
            raise JobAccessDeniedError(job_id, user_id)
        return job

    async def run_job(self, job_id: str) -> ExtractionJob:
        """
        Run the orchestrator for one job and wait for it (worker trigger).

        Raises:
            JobNotFoundError: unknown job id
            JobNotPendingError: the job was already picked up
        """
        job = await run_in_threadpool(self._jobs.get, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != ExtractionStatus.PENDING:
            raise JobNotPendingError(job_id, job.status.value)

        await self._orchestrator.process_extraction(job)

        finished = await run_in_threadpool(self._jobs.get, job_id)
        if finished is None:
            raise JobNotFoundError(job_id)
        return finished
