"""
Supadata client for TikTok and Instagram transcripts and metadata.

Long videos are transcribed asynchronously: ``/transcript`` answers 202 with
a job id and ``/transcript/{job_id}`` is polled until the job settles.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from reciply.app.domain.models import (
    Platform,
    Transcript,
    VideoAuthor,
    VideoMedia,
    VideoMetadata,
    VideoStats,
)

from .errors import (
    FetchFailedError,
    NetworkTimeoutError,
    PrivateOrUnavailableError,
    ProviderNotConfiguredError,
    RateLimitedError,
    TranscriptUnavailableError,
)
from .fetcher import VideoFetcher

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.supadata.ai/v1"
PENDING_JOB_STATUSES = frozenset({"queued", "pending", "processing", "running", "active", "in_progress"})
FAILED_JOB_STATUSES = frozenset({"failed", "error"})

TRANSCRIPT_UNAVAILABLE_CODES = frozenset({"transcript-unavailable", "not-found"})
RATE_LIMIT_CODES = frozenset({"limit-exceeded"})
CREDITS_EXHAUSTED_CODES = frozenset({"upgrade-required"})


def _as_dict(value: object) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _clean_string(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _optional_int(value: object) -> int | None:
    return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def _json_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        return _as_dict(response.json())
    except ValueError:
        return {}


def _error_code(payload: dict[str, Any]) -> str | None:
    code = _clean_string(payload.get("error"))
    return code.lower() if code else None


def _error_message(payload: dict[str, Any]) -> str | None:
    for key in ("message", "details", "detail", "error"):
        value = _clean_string(payload.get(key))
        if value:
            return value
    return None


def _transcript_text(payload: dict[str, Any]) -> str:
    content = payload.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = [_clean_string(_as_dict(chunk).get("text")) for chunk in content]
        return " ".join(part for part in parts if part).strip()
    return ""


def parse_metadata(payload: dict[str, Any]) -> VideoMetadata:
    author = _as_dict(payload.get("author"))
    stats = _as_dict(payload.get("stats"))
    media = _as_dict(payload.get("media"))
    tags = payload.get("tags") if isinstance(payload.get("tags"), list) else []
    duration = media.get("duration")

    return VideoMetadata(
        title=_clean_string(payload.get("title")),
        description=_clean_string(payload.get("description")),
        author=VideoAuthor(
            username=_clean_string(author.get("username")),
            display_name=_clean_string(author.get("displayName")),
            avatar_url=_clean_string(author.get("avatarUrl")),
            verified=author.get("verified") if isinstance(author.get("verified"), bool) else None,
        ) if author else None,
        stats=VideoStats(
            views=_optional_int(stats.get("views")),
            likes=_optional_int(stats.get("likes")),
            comments=_optional_int(stats.get("comments")),
            shares=_optional_int(stats.get("shares")),
        ) if stats else None,
        media=VideoMedia(
            type=_clean_string(media.get("type")) or "video",
            duration=float(duration) if isinstance(duration, (int, float)) else None,
            thumbnail_url=_clean_string(media.get("thumbnailUrl")),
            url=_clean_string(media.get("url")),
        ) if media else None,
        tags=[tag for tag in (_clean_string(tag) for tag in tags) if tag],
        published_at=_clean_string(payload.get("createdAt")),
    )


class SupadataFetcher(VideoFetcher):
    def __init__(
        self,
        platform: Platform,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        poll_interval_seconds: float = 2.0,
        poll_max_attempts: int = 30,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.platform = platform
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._poll_max_attempts = max(1, poll_max_attempts)
        self._client = client

    async def _get(self, path: str, params: Optional[dict[str, str]] = None) -> tuple[int, dict[str, Any]]:
        if not self._api_key:
            raise ProviderNotConfiguredError("Supadata API key not configured")

        url = f"{self._base_url}{path}"
        headers = {"x-api-key": self._api_key, "accept": "application/json"}

        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers, timeout=self._timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as error:
            raise NetworkTimeoutError(url, self._timeout_seconds) from error
        except httpx.HTTPError as error:
            raise FetchFailedError(f"Supadata request failed: {error}") from error

        return response.status_code, _json_payload(response)

    def _raise_for_error(self, status_code: int, payload: dict[str, Any], *, transcript: bool) -> None:
        code = _error_code(payload)
        message = _error_message(payload) or f"Supadata request failed (status {status_code})"

        if code in RATE_LIMIT_CODES or status_code == 429:
            raise RateLimitedError(f"Supadata rate limit exceeded: {message}")
        if code in CREDITS_EXHAUSTED_CODES or status_code == 402:
            raise RateLimitedError(f"Supadata credits exhausted: {message}")
        if code in TRANSCRIPT_UNAVAILABLE_CODES or status_code == 404:
            if transcript:
                raise TranscriptUnavailableError(message)
            raise PrivateOrUnavailableError(message)
        if status_code in (401, 403):
            raise ProviderNotConfiguredError(f"Supadata rejected the API key: {message}")
        raise FetchFailedError(message)

    async def _poll_transcript_job(self, job_id: str) -> dict[str, Any]:
        for attempt in range(self._poll_max_attempts):
            status_code, payload = await self._get(f"/transcript/{job_id}")
            if status_code >= 400:
                self._raise_for_error(status_code, payload, transcript=True)

            status = (_clean_string(payload.get("status")) or "").lower()
            if status in FAILED_JOB_STATUSES:
                error = _as_dict(payload.get("error"))
                self._raise_for_error(
                    status_code,
                    {"error": error.get("error") or "transcript-unavailable", "message": error.get("message")},
                    transcript=True,
                )
            if status not in PENDING_JOB_STATUSES:
                return payload

            logger.debug("supadata.poll job=%s attempt=%d status=%s", job_id, attempt + 1, status)
            await asyncio.sleep(self._poll_interval_seconds)

        raise NetworkTimeoutError(f"{self._base_url}/transcript/{job_id}", self._poll_interval_seconds * self._poll_max_attempts)

    async def fetch_transcript(self, url: str) -> Transcript:
        status_code, payload = await self._get("/transcript", {"url": url, "text": "true"})

        if status_code == 202:
            job_id = _clean_string(payload.get("jobId"))
            if not job_id:
                raise FetchFailedError("Supadata accepted the transcript job without a job id")
            logger.info("supadata.transcript_job url=%s job=%s", url, job_id)
            payload = await self._poll_transcript_job(job_id)
        elif status_code >= 400:
            self._raise_for_error(status_code, payload, transcript=True)

        text = _transcript_text(payload)
        if not text:
            raise TranscriptUnavailableError(f"Empty transcript for {url}")

        logger.info("supadata.transcript_ok url=%s chars=%d lang=%s", url, len(text), payload.get("lang"))
        return Transcript(text=text, language=_clean_string(payload.get("lang")))

    async def fetch_metadata(self, url: str) -> VideoMetadata:
        status_code, payload = await self._get("/metadata", {"url": url})
        if status_code >= 400:
            self._raise_for_error(status_code, payload, transcript=False)
        return parse_metadata(payload)
