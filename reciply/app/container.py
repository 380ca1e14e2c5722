# reciply/app/container.py
"""
Explicit wiring of repositories, providers and services.

Everything the pipeline talks to is constructed here once at startup and
handed down; nothing below reaches for module-level clients.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from reciply.app.config import Settings
from reciply.app.domain.models import Platform
from reciply.app.infra.db.base import (
    ExtractionJobRepository,
    RawExtractionRepository,
    RecipeRepository,
    SubscriptionRepository,
    VideoMetadataCacheRepository,
)
from reciply.app.services.extraction_orchestrator import ExtractionOrchestrator
from reciply.app.services.extraction_queue import ExtractionQueue
from reciply.app.services.extraction_service import ExtractionService
from reciply.app.services.quota_service import QuotaService
from reciply.services.fetcher import FetcherRegistry, YouTubeFetcher
from reciply.services.gemini_client import GeminiClient
from reciply.services.recipe_extractor import RecipeExtractor
from reciply.services.supadata import SupadataFetcher

logger = logging.getLogger(__name__)


@dataclass
class Repositories:
    jobs: ExtractionJobRepository
    recipes: RecipeRepository
    metadata_cache: VideoMetadataCacheRepository
    raw_extractions: RawExtractionRepository
    subscriptions: SubscriptionRepository


@dataclass
class Container:
    repositories: Repositories
    quota: QuotaService
    orchestrator: ExtractionOrchestrator
    extraction: ExtractionService
    queue: ExtractionQueue
    internal_api_token: Optional[str] = None

    async def start(self) -> None:
        await self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()


def build_memory_repositories() -> Repositories:
    from reciply.app.infra.db.memory_repos import (
        InMemoryExtractionJobRepository,
        InMemoryRawExtractionRepository,
        InMemoryRecipeRepository,
        InMemorySubscriptionRepository,
        InMemoryVideoMetadataCacheRepository,
    )

    return Repositories(
        jobs=InMemoryExtractionJobRepository(),
        recipes=InMemoryRecipeRepository(),
        metadata_cache=InMemoryVideoMetadataCacheRepository(),
        raw_extractions=InMemoryRawExtractionRepository(),
        subscriptions=InMemorySubscriptionRepository(),
    )


def build_supabase_repositories(settings: Settings) -> Repositories:
    from supabase import create_client

    from reciply.app.infra.db.supabase_repos import (
        SupabaseExtractionJobRepository,
        SupabaseRawExtractionRepository,
        SupabaseRecipeRepository,
        SupabaseSubscriptionRepository,
        SupabaseVideoMetadataCacheRepository,
    )

    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required when STORAGE_BACKEND=supabase")

    client = create_client(str(settings.SUPABASE_URL), settings.SUPABASE_SERVICE_ROLE_KEY)
    return Repositories(
        jobs=SupabaseExtractionJobRepository(client),
        recipes=SupabaseRecipeRepository(client),
        metadata_cache=SupabaseVideoMetadataCacheRepository(client),
        raw_extractions=SupabaseRawExtractionRepository(client),
        subscriptions=SupabaseSubscriptionRepository(client),
    )


def build_fetchers(settings: Settings) -> FetcherRegistry:
    def supadata(platform: Platform) -> SupadataFetcher:
        return SupadataFetcher(
            platform=platform,
            api_key=settings.SUPADATA_API_KEY,
            base_url=settings.SUPADATA_BASE_URL,
            timeout_seconds=settings.FETCH_TIMEOUT_SECONDS,
        )

    return FetcherRegistry({
        Platform.YOUTUBE: YouTubeFetcher(timeout_seconds=settings.FETCH_TIMEOUT_SECONDS),
        Platform.TIKTOK: supadata(Platform.TIKTOK),
        Platform.INSTAGRAM: supadata(Platform.INSTAGRAM),
    })


def build_extractor(settings: Settings) -> RecipeExtractor:
    model = None
    if settings.GEMINI_API_KEY:
        model = GeminiClient(api_key=settings.GEMINI_API_KEY, model_name=settings.GEMINI_MODEL)
    else:
        logger.warning("GEMINI_API_KEY not set; every analysis stage will fail")
    return RecipeExtractor(model, min_confidence=settings.MIN_RECIPE_CONFIDENCE)


def build_container(
    settings: Settings,
    *,
    repositories: Optional[Repositories] = None,
    fetchers: Optional[FetcherRegistry] = None,
    extractor: Optional[RecipeExtractor] = None,
    resolver=None,
) -> Container:
    if repositories is None:
        if settings.STORAGE_BACKEND == "memory":
            repositories = build_memory_repositories()
        else:
            repositories = build_supabase_repositories(settings)

    quota = QuotaService(
        repositories.subscriptions,
        free_limit=settings.FREE_PLAN_LIMIT,
        pro_limit=settings.PRO_PLAN_LIMIT,
    )
    orchestrator = ExtractionOrchestrator(
        jobs=repositories.jobs,
        recipes=repositories.recipes,
        metadata_cache=repositories.metadata_cache,
        raw_extractions=repositories.raw_extractions,
        fetchers=fetchers or build_fetchers(settings),
        extractor=extractor or build_extractor(settings),
        quota=quota,
        fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
        analyze_timeout=settings.ANALYZE_TIMEOUT_SECONDS,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
    )
    queue = ExtractionQueue(orchestrator.process_extraction, workers=settings.EXTRACTION_WORKERS)

    service_kwargs = {"resolve_timeout": settings.URL_RESOLVE_TIMEOUT_SECONDS}
    if resolver is not None:
        service_kwargs["resolver"] = resolver
    extraction = ExtractionService(
        jobs=repositories.jobs,
        recipes=repositories.recipes,
        quota=quota,
        orchestrator=orchestrator,
        dispatch=queue.submit,
        **service_kwargs,
    )

    logger.info(
        "container.built backend=%s workers=%d",
        type(repositories.jobs).__name__, settings.EXTRACTION_WORKERS,
    )
    return Container(
        repositories=repositories,
        quota=quota,
        orchestrator=orchestrator,
        extraction=extraction,
        queue=queue,
        internal_api_token=settings.INTERNAL_API_TOKEN,
    )
