from __future__ import annotations

import asyncio
from typing import Callable

import httpx
import pytest

from reciply.app.domain.models import Platform, Transcript, VideoMetadata
from reciply.services.errors import (
    FetchFailedError,
    NetworkTimeoutError,
    PrivateOrUnavailableError,
    ProviderNotConfiguredError,
    RateLimitedError,
    TranscriptUnavailableError,
)
from reciply.services.supadata import SupadataFetcher, parse_metadata

TIKTOK_URL = "https://www.tiktok.com/@chef/video/7301234567890123456"
BASE_URL = "https://api.supadata.test/v1"


def run_with(handler: Callable[[httpx.Request], httpx.Response], call: str, api_key: str | None = "test-key"):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = SupadataFetcher(
                platform=Platform.TIKTOK,
                api_key=api_key,
                base_url=BASE_URL,
                timeout_seconds=5,
                poll_interval_seconds=0,
                poll_max_attempts=3,
                client=client,
            )
            return await getattr(fetcher, call)(TIKTOK_URL)

    return asyncio.run(run())


class TestSupadataTranscript:
    def test_sync_transcript(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"content": "  chop the onions  ", "lang": "en"})

        transcript = run_with(handler, "fetch_transcript")

        assert transcript == Transcript(text="chop the onions", language="en")
        assert seen[0].url.path == "/v1/transcript"
        assert seen[0].url.params["url"] == TIKTOK_URL
        assert seen[0].url.params["text"] == "true"
        assert seen[0].headers["x-api-key"] == "test-key"

    def test_chunked_content_is_joined(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"content": [{"text": "first"}, {"text": " "}, {"text": "second"}]})

        assert run_with(handler, "fetch_transcript").text == "first second"

    def test_async_job_is_polled(self) -> None:
        polls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/transcript":
                return httpx.Response(202, json={"jobId": "job-42"})
            polls.append(request.url.path)
            if len(polls) == 1:
                return httpx.Response(200, json={"status": "active"})
            return httpx.Response(200, json={"status": "completed", "content": "slow cooked", "lang": "pt"})

        transcript = run_with(handler, "fetch_transcript")

        assert transcript.text == "slow cooked"
        assert transcript.language == "pt"
        assert polls == ["/v1/transcript/job-42", "/v1/transcript/job-42"]

    def test_async_job_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/transcript":
                return httpx.Response(202, json={"jobId": "job-42"})
            return httpx.Response(200, json={"status": "failed", "error": {"message": "no speech"}})

        with pytest.raises(TranscriptUnavailableError):
            run_with(handler, "fetch_transcript")

    def test_polling_gives_up(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/transcript":
                return httpx.Response(202, json={"jobId": "job-42"})
            return httpx.Response(200, json={"status": "queued"})

        with pytest.raises(NetworkTimeoutError):
            run_with(handler, "fetch_transcript")

    def test_empty_transcript(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"content": ""})

        with pytest.raises(TranscriptUnavailableError):
            run_with(handler, "fetch_transcript")


class TestSupadataErrors:
    @pytest.mark.parametrize(
        ("status_code", "body", "expected"),
        [
            (404, {"error": "transcript-unavailable", "message": "No transcript"}, TranscriptUnavailableError),
            (400, {"error": "not-found"}, TranscriptUnavailableError),
            (429, {"error": "limit-exceeded"}, RateLimitedError),
            (402, {"error": "upgrade-required"}, RateLimitedError),
            (401, {"error": "unauthorized"}, ProviderNotConfiguredError),
            (500, {"error": "internal-error"}, FetchFailedError),
        ],
    )
    def test_transcript_error_mapping(self, status_code: int, body: dict, expected: type) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json=body)

        with pytest.raises(expected):
            run_with(handler, "fetch_transcript")

    def test_missing_metadata_means_unavailable_video(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "not-found"})

        with pytest.raises(PrivateOrUnavailableError):
            run_with(handler, "fetch_metadata")

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(NetworkTimeoutError):
            run_with(handler, "fetch_transcript")

    def test_missing_api_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(ProviderNotConfiguredError):
            run_with(handler, "fetch_transcript", api_key=None)


class TestSupadataMetadata:
    def test_fetch_metadata(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/metadata"
            return httpx.Response(200, json={
                "title": "Crispy tofu",
                "description": "Ingredients: tofu, cornstarch",
                "author": {"username": "chef", "displayName": "Chef", "verified": True},
                "stats": {"views": 1000, "likes": 10},
                "media": {"type": "video", "duration": 45, "thumbnailUrl": "https://img/t.jpg"},
                "tags": ["tofu"],
                "createdAt": "2024-05-01T10:00:00Z",
            })

        metadata = run_with(handler, "fetch_metadata")

        assert metadata.title == "Crispy tofu"
        assert metadata.author.display_name == "Chef"
        assert metadata.author.verified is True
        assert metadata.stats.likes == 10
        assert metadata.thumbnail_url == "https://img/t.jpg"
        assert metadata.published_at == "2024-05-01T10:00:00Z"

    def test_parse_metadata_tolerates_missing_sections(self) -> None:
        metadata = parse_metadata({"title": "  "})

        assert metadata == VideoMetadata()
