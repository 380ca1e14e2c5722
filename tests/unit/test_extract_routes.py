from __future__ import annotations

import time
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from reciply.app.config import Settings
from reciply.app.container import Container, build_container, build_memory_repositories
from reciply.app.deps import CurrentUser, get_current_user
from reciply.app.domain.models import (
    ExtractionJob,
    ExtractionResult,
    ExtractionStatus,
    Platform,
    Subscription,
    Transcript,
    VideoMetadata,
)
from reciply.app.domain.recipe import Ingredient, RecipeDraft
from reciply.app.infra.db.memory_repos import InMemoryExtractionJobRepository
from reciply.app.main import create_app
from reciply.services.errors import TranscriptUnavailableError
from reciply.services.fetcher import FetcherRegistry, VideoFetcher

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
TIKTOK_URL = "https://www.tiktok.com/@chef/video/123"
TOKEN = "internal-secret"


class StubFetcher(VideoFetcher):
    platform = Platform.YOUTUBE

    async def fetch_metadata(self, url: str) -> VideoMetadata:
        return VideoMetadata(title="Shakshuka")

    async def fetch_transcript(self, url: str) -> Transcript:
        return Transcript(text="Simmer tomatoes and peppers, crack in the eggs, cover and cook.", language="en")


class TikTokStubFetcher(VideoFetcher):
    platform = Platform.TIKTOK

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.transcript_error: Exception | None = None

    async def fetch_metadata(self, url: str) -> VideoMetadata:
        return VideoMetadata(title="Crispy chili oil eggs")

    async def fetch_transcript(self, url: str) -> Transcript:
        self.urls.append(url)
        if self.transcript_error:
            raise self.transcript_error
        return Transcript(text="Heat chili oil, fry the eggs until crispy, finish with scallions.", language="en")


class ProgressRecordingJobRepository(InMemoryExtractionJobRepository):
    def __init__(self) -> None:
        super().__init__()
        self.progress: dict[str, list[int]] = {}

    def create(self, job: ExtractionJob) -> ExtractionJob:
        created = super().create(job)
        self.progress[created.id] = [created.progress]
        return created

    def transition(self, job_id, expected, target, progress, status_message=None) -> bool:
        moved = super().transition(job_id, expected, target, progress, status_message)
        if moved:
            self.progress.setdefault(job_id, []).append(progress)
        return moved

    def complete(self, job_id, recipe_id, status_message=None) -> bool:
        done = super().complete(job_id, recipe_id, status_message)
        if done:
            self.progress.setdefault(job_id, []).append(100)
        return done


class StubExtractor:
    async def extract(self, transcript, metadata, target_language) -> ExtractionResult:
        return ExtractionResult(
            draft=RecipeDraft(title="Shakshuka", ingredients=[Ingredient(name="eggs")]),
            detected_language="en",
            confidence=0.95,
        )


async def passthrough_resolver(url: str, timeout: float = 5.0) -> str:
    return url


class CurrentUserHolder:
    def __init__(self) -> None:
        self.user = CurrentUser(id="user-1", email="cook@example.com")

    def __call__(self) -> CurrentUser:
        return self.user


def create_container(tiktok_fetcher: TikTokStubFetcher) -> Container:
    settings = Settings(STORAGE_BACKEND="memory", INTERNAL_API_TOKEN=TOKEN, EXTRACTION_WORKERS=1)
    repositories = build_memory_repositories()
    repositories.jobs = ProgressRecordingJobRepository()
    return build_container(
        settings,
        repositories=repositories,
        fetchers=FetcherRegistry({Platform.YOUTUBE: StubFetcher(), Platform.TIKTOK: tiktok_fetcher}),
        extractor=StubExtractor(),
        resolver=passthrough_resolver,
    )


@pytest.fixture
def tiktok_fetcher() -> TikTokStubFetcher:
    return TikTokStubFetcher()


@pytest.fixture
def container(tiktok_fetcher: TikTokStubFetcher) -> Container:
    return create_container(tiktok_fetcher)


@pytest.fixture
def current_user() -> CurrentUserHolder:
    return CurrentUserHolder()


@pytest.fixture
def client(container: Container, current_user: CurrentUserHolder):
    app = create_app(container)
    app.dependency_overrides[get_current_user] = current_user
    with TestClient(app) as test_client:
        yield test_client


def wait_for_terminal(client: TestClient, job_id: str, attempts: int = 200) -> dict:
    for _ in range(attempts):
        body = client.get(f"/extract/{job_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


def wait_until(condition, attempts: int = 200) -> None:
    for _ in range(attempts):
        if condition():
            return
        time.sleep(0.01)
    raise AssertionError("condition was never met")


def add_pending_job(container: Container, job_id: str = "job-manual", user_id: str = "user-1") -> ExtractionJob:
    return container.repositories.jobs.create(ExtractionJob(
        id=job_id,
        user_id=user_id,
        source_url=VIDEO_URL,
        normalized_url=VIDEO_URL,
        platform=Platform.YOUTUBE,
    ))


class TestExtractRoutes:
    def test_submit_and_poll_until_completed(self, client: TestClient, container: Container) -> None:
        response = client.post("/extract", json={"url": "https://youtu.be/dQw4w9WgXcQ"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["message"] == "Extraction started"
        assert "existingRecipeId" not in body

        finished = wait_for_terminal(client, body["jobId"])
        assert finished["status"] == "completed"
        assert finished["progress"] == 100
        assert finished["recipeId"]
        assert finished["error"] is None
        wait_until(lambda: container.quota.check("user-1").used == 1)

    def test_second_submit_returns_existing_recipe(self, client: TestClient) -> None:
        job_id = client.post("/extract", json={"url": VIDEO_URL}).json()["jobId"]
        recipe_id = wait_for_terminal(client, job_id)["recipeId"]

        response = client.post("/extract", json={"url": "https://m.youtube.com/watch?v=dQw4w9WgXcQ"})

        assert response.status_code == 200
        assert response.json()["existingRecipeId"] == recipe_id

    def test_invalid_url(self, client: TestClient) -> None:
        response = client.post("/extract", json={"url": "https://vimeo.com/123"})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == (
            "URL is not from a supported platform (TikTok, Instagram, or YouTube)"
        )

    def test_quota_exceeded(self, client: TestClient, container: Container) -> None:
        container.repositories.subscriptions.add(Subscription(
            user_id="user-1",
            extractions_used=10,
            extractions_limit=10,
            current_period_end=datetime(2999, 1, 1, tzinfo=timezone.utc),
        ))

        response = client.post("/extract", json={"url": VIDEO_URL})

        assert response.status_code == 429
        detail = response.json()["detail"]
        assert detail["used"] == 10
        assert detail["limit"] == 10
        assert detail["planTier"] == "free"

    def test_job_of_other_user_is_forbidden(
        self,
        client: TestClient,
        container: Container,
        current_user: CurrentUserHolder,
    ) -> None:
        add_pending_job(container, user_id="user-2")

        response = client.get("/extract/job-manual")

        assert response.status_code == 403

    def test_unknown_job(self, client: TestClient) -> None:
        assert client.get("/extract/nope").status_code == 404


class TestTikTokExtraction:
    def test_tiktok_video_end_to_end(
        self,
        client: TestClient,
        container: Container,
        tiktok_fetcher: TikTokStubFetcher,
    ) -> None:
        response = client.post("/extract", json={"url": TIKTOK_URL, "targetLanguage": "original"})

        assert response.status_code == 200
        job_id = response.json()["jobId"]
        finished = wait_for_terminal(client, job_id)

        assert finished["status"] == "completed"
        assert finished["recipeId"]
        wait_until(lambda: container.repositories.jobs.progress[job_id] == [0, 33, 66, 100])
        assert tiktok_fetcher.urls == [TIKTOK_URL]

        recipe = container.repositories.recipes.get(finished["recipeId"])
        assert recipe.source.platform == "tiktok"
        assert recipe.source.url == TIKTOK_URL
        wait_until(lambda: container.quota.check("user-1").used == 1)

    def test_tiktok_without_captions_fails_with_platform_message(
        self,
        client: TestClient,
        container: Container,
        tiktok_fetcher: TikTokStubFetcher,
    ) -> None:
        tiktok_fetcher.transcript_error = TranscriptUnavailableError("captions disabled")

        job_id = client.post("/extract", json={"url": TIKTOK_URL}).json()["jobId"]
        finished = wait_for_terminal(client, job_id)

        assert finished["status"] == "failed"
        assert finished["recipeId"] is None
        assert "TikTok" in finished["error"]
        assert container.repositories.jobs.progress[job_id] == [0, 33]
        assert container.quota.check("user-1").used == 0


class TestJobsProcessRoute:
    def test_requires_token(self, client: TestClient, container: Container) -> None:
        add_pending_job(container)

        missing = client.post("/jobs/process", json={"jobId": "job-manual"})
        wrong = client.post(
            "/jobs/process",
            json={"jobId": "job-manual"},
            headers={"Authorization": "Bearer wrong"},
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert container.repositories.jobs.get("job-manual").status == ExtractionStatus.PENDING

    def test_runs_pending_job(self, client: TestClient, container: Container) -> None:
        add_pending_job(container)
        headers = {"Authorization": f"Bearer {TOKEN}"}

        first = client.post("/jobs/process", json={"jobId": "job-manual"}, headers=headers)
        second = client.post("/jobs/process", json={"jobId": "job-manual"}, headers=headers)

        assert first.status_code == 200
        assert first.json()["success"] is True
        assert first.json()["status"] == "completed"
        assert first.json()["recipeId"]
        assert second.status_code == 400
        assert second.json()["detail"]["error"] == "Job already processed"

    def test_unknown_job(self, client: TestClient) -> None:
        response = client.post(
            "/jobs/process",
            json={"jobId": "missing"},
            headers={"Authorization": f"Bearer {TOKEN}"},
        )

        assert response.status_code == 404


class TestBillingRoutes:
    def test_usage_for_new_user(self, client: TestClient) -> None:
        body = client.get("/billing/usage").json()

        assert body["used"] == 0
        assert body["limit"] == 10
        assert body["remaining"] == 10
        assert body["planTier"] == "free"
        assert body["currentPeriodEnd"] is not None

    def test_reset_requires_token(self, client: TestClient) -> None:
        assert client.post("/billing/reset", json={"userId": "user-1"}).status_code == 401

    def test_reset_clears_usage(self, client: TestClient, container: Container) -> None:
        container.repositories.subscriptions.add(Subscription(user_id="user-1", extractions_used=7, extractions_limit=10))

        response = client.post(
            "/billing/reset",
            json={"userId": "user-1", "currentPeriodEnd": "2030-01-01T00:00:00Z"},
            headers={"Authorization": f"Bearer {TOKEN}"},
        )

        assert response.status_code == 200
        assert response.json()["used"] == 0
        assert response.json()["remaining"] == 10
        assert client.get("/billing/usage").json()["used"] == 0


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"ok": True}
