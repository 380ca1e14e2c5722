from __future__ import annotations

from datetime import datetime, timezone

from reciply.app.domain.models import (
    ExtractionJob,
    ExtractionStatus,
    Platform,
    RawExtraction,
    TargetLanguage,
    VideoMetadata,
    VideoMetadataCacheEntry,
)
from reciply.app.domain.recipe import ExtractionMetadata, Recipe, RecipeDraft, RecipeSource
from reciply.app.infra.db.memory_repos import (
    InMemoryExtractionJobRepository,
    InMemoryRawExtractionRepository,
    InMemoryRecipeRepository,
    InMemorySubscriptionRepository,
    InMemoryVideoMetadataCacheRepository,
)

URL = "https://www.youtube.com/watch?v=abc"


def create_job(job_id: str = "job-1", user_id: str = "user-1") -> ExtractionJob:
    return ExtractionJob(
        id=job_id,
        user_id=user_id,
        source_url=URL,
        normalized_url=URL,
        platform=Platform.YOUTUBE,
    )


class TestInMemoryExtractionJobRepository:
    def test_transition_is_conditional(self) -> None:
        repo = InMemoryExtractionJobRepository()
        repo.create(create_job())

        first = repo.transition("job-1", ExtractionStatus.PENDING, ExtractionStatus.FETCHING_TRANSCRIPT, 33)
        second = repo.transition("job-1", ExtractionStatus.PENDING, ExtractionStatus.FETCHING_TRANSCRIPT, 33)

        assert first is True
        assert second is False
        assert repo.get("job-1").progress == 33

    def test_complete_only_from_analyzing(self) -> None:
        repo = InMemoryExtractionJobRepository()
        repo.create(create_job())

        assert repo.complete("job-1", "recipe-1") is False

        repo.transition("job-1", ExtractionStatus.PENDING, ExtractionStatus.FETCHING_TRANSCRIPT, 33)
        repo.transition("job-1", ExtractionStatus.FETCHING_TRANSCRIPT, ExtractionStatus.ANALYZING, 66)

        assert repo.complete("job-1", "recipe-1") is True
        job = repo.get("job-1")
        assert job.status == ExtractionStatus.COMPLETED
        assert job.recipe_id == "recipe-1"
        assert job.error is None

    def test_terminal_job_cannot_fail(self) -> None:
        repo = InMemoryExtractionJobRepository()
        repo.create(create_job())
        repo.fail("job-1", "first error")

        assert repo.fail("job-1", "second error") is False
        assert repo.get("job-1").error == "first error"
        assert repo.get("job-1").recipe_id is None

    def test_find_active_ignores_terminal_and_other_users(self) -> None:
        repo = InMemoryExtractionJobRepository()
        repo.create(create_job("done"))
        repo.fail("done", "boom")
        repo.create(create_job("other", user_id="user-2"))

        assert repo.find_active_by_url("user-1", URL) is None

        repo.create(create_job("live"))
        assert repo.find_active_by_url("user-1", URL).id == "live"

    def test_returned_jobs_are_copies(self) -> None:
        repo = InMemoryExtractionJobRepository()
        job = repo.create(create_job())
        job.status = ExtractionStatus.FAILED

        assert repo.get("job-1").status == ExtractionStatus.PENDING


class TestInMemoryRecipeRepository:
    def test_returned_recipes_are_copies(self) -> None:
        repo = InMemoryRecipeRepository()
        created = repo.create(Recipe(
            id="recipe-1",
            user_id="user-1",
            draft=RecipeDraft(title="Shakshuka"),
            source=RecipeSource(url=URL, platform="youtube"),
            extraction_metadata=ExtractionMetadata(extracted_at=datetime.now(timezone.utc), confidence_score=0.9),
        ))
        created.user_id = "someone-else"
        repo.get("recipe-1").user_id = "someone-else"
        repo.find_by_source_url("user-1", URL).user_id = "someone-else"

        assert repo.get("recipe-1").user_id == "user-1"
        assert repo.count_for_user("user-1") == 1


class TestInMemoryCaches:
    def test_metadata_entries_are_copies(self) -> None:
        repo = InMemoryVideoMetadataCacheRepository()
        repo.upsert(VideoMetadataCacheEntry(normalized_url=URL, platform=Platform.YOUTUBE, metadata=VideoMetadata()))

        repo.get(URL).platform = Platform.TIKTOK

        assert repo.get(URL).platform == Platform.YOUTUBE

    def test_raw_extractions_are_copies(self) -> None:
        repo = InMemoryRawExtractionRepository()
        repo.upsert(RawExtraction(
            normalized_url=URL,
            target_language=TargetLanguage.ORIGINAL,
            draft=RecipeDraft(title="Shakshuka"),
            detected_language="en",
            confidence=0.9,
        ))

        repo.get(URL, TargetLanguage.ORIGINAL).confidence = 0.1

        assert repo.get(URL, TargetLanguage.ORIGINAL).confidence == 0.9


class TestInMemorySubscriptionRepository:
    def test_increment_is_cumulative(self) -> None:
        repo = InMemorySubscriptionRepository()
        repo.get_or_create("user-1", 10)

        assert [repo.increment_used("user-1") for _ in range(3)] == [1, 2, 3]

    def test_get_or_create_keeps_existing(self) -> None:
        repo = InMemorySubscriptionRepository()
        repo.get_or_create("user-1", 10)
        repo.increment_used("user-1")

        subscription = repo.get_or_create("user-1", 50)

        assert subscription.extractions_used == 1
        assert subscription.extractions_limit == 10
