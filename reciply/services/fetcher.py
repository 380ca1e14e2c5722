from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx
import yt_dlp
from starlette.concurrency import run_in_threadpool
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from reciply.app.domain.models import (
    FetchResult,
    Platform,
    Transcript,
    VideoAuthor,
    VideoMedia,
    VideoMetadata,
    VideoStats,
)

from .errors import (
    FetchFailedError,
    InvalidURLError,
    NetworkTimeoutError,
    PrivateOrUnavailableError,
    RateLimitedError,
    TranscriptUnavailableError,
    UnsupportedPlatformError,
)

logger = logging.getLogger(__name__)

YOUTUBE_VIDEO_ID_PATTERN = re.compile(r"(?:v=|youtu\.be/|shorts/|embed/|live/)([A-Za-z0-9_-]+)")
VTT_TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")
VTT_SKIP_PREFIXES = ("NOTE", "STYLE", "REGION", "WEBVTT")
FALLBACK_CAPTION_LANGUAGES = ("en",)

UNAVAILABLE_MARKERS = (
    "private video",
    "video unavailable",
    "this video is unavailable",
    "has been removed",
    "not available in your country",
    "blocked it in your country",
    "sign in to confirm your age",
    "members-only",
)
RATE_LIMIT_MARKERS = ("http error 429", "too many requests")


class VideoFetcher(ABC):
    """Per-platform adapter returning transcript text and video metadata."""

    platform: Platform = Platform.OTHER

    @abstractmethod
    async def fetch_metadata(self, url: str) -> VideoMetadata:
        pass

    @abstractmethod
    async def fetch_transcript(self, url: str) -> Transcript:
        pass

    async def fetch(self, url: str) -> FetchResult:
        metadata = await self.fetch_metadata(url)
        transcript = await self.fetch_transcript(url)
        return FetchResult(transcript=transcript, metadata=metadata)


class FetcherRegistry:
    def __init__(self, fetchers: Mapping[Platform, VideoFetcher]):
        self._fetchers = dict(fetchers)

    def get(self, platform: Platform) -> VideoFetcher:
        fetcher = self._fetchers.get(platform)
        if fetcher is None:
            raise UnsupportedPlatformError(f"No fetcher registered for platform: {platform.value}")
        return fetcher


@dataclass(frozen=True)
class CaptionSource:
    url: str
    language: str
    extension: str


def _clean_string(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _safe_numeric(value: object, default: int | float = 0) -> int | float:
    return value if isinstance(value, (int, float)) else default


def _optional_int(value: object) -> int | None:
    return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def _extract_thumbnail(info: dict | None) -> str | None:
    if not isinstance(info, dict):
        return None

    direct_url = _clean_string(info.get("thumbnail")) or _clean_string(info.get("thumbnail_url"))
    if direct_url:
        return direct_url

    return _find_best_thumbnail_from_list(info.get("thumbnails"))


def _find_best_thumbnail_from_list(thumbnails: list | None) -> str | None:
    if not isinstance(thumbnails, list):
        return None

    scored_thumbnails = [
        (_score_thumbnail(entry), _clean_string(entry.get("url")))
        for entry in thumbnails
        if isinstance(entry, dict) and _clean_string(entry.get("url"))
    ]

    if not scored_thumbnails:
        return None

    scored_thumbnails.sort(reverse=True, key=lambda x: x[0])
    return scored_thumbnails[0][1]


def _score_thumbnail(entry: dict) -> tuple[int | float, int | float, int | float]:
    return (
        _safe_numeric(entry.get("preference")),
        _safe_numeric(entry.get("width")),
        _safe_numeric(entry.get("height")),
    )


def _create_ydl_options(socket_timeout: float) -> dict:
    return {
        "quiet": True,
        "noprogress": True,
        "skip_download": True,
        "check_formats": False,
        "socket_timeout": socket_timeout,
        "extractor_args": {"youtube": {"player_client": ["android"]}},
    }


def _check_video_availability(info: dict) -> None:
    is_private = info.get("is_private")
    availability = info.get("availability")
    if is_private or availability in {"private", "needs_auth", "subscriber_only", "premium_only"}:
        raise PrivateOrUnavailableError("Video is private or requires sign-in.")


def _map_download_error(error: yt_dlp.utils.DownloadError) -> Exception:
    message = str(error).lower()
    if any(marker in message for marker in UNAVAILABLE_MARKERS):
        return PrivateOrUnavailableError(str(error))
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return RateLimitedError(str(error))
    return FetchFailedError(f"Error reading video: {error}")


def _published_at(info: dict) -> str | None:
    upload_date = _clean_string(info.get("upload_date"))
    if upload_date and len(upload_date) == 8 and upload_date.isdigit():
        return f"{upload_date[:4]}-{upload_date[4:6]}-{upload_date[6:]}"
    return None


def _metadata_from_info(info: dict) -> VideoMetadata:
    handle = _clean_string(info.get("uploader_id")) or _clean_string(info.get("channel_id"))
    tags = info.get("tags") if isinstance(info.get("tags"), list) else []
    return VideoMetadata(
        title=_clean_string(info.get("title")),
        description=_clean_string(info.get("description")),
        author=VideoAuthor(
            username=handle.lstrip("@") if handle else None,
            display_name=_clean_string(info.get("uploader")) or _clean_string(info.get("channel")),
            verified=info.get("channel_is_verified") if isinstance(info.get("channel_is_verified"), bool) else None,
        ),
        stats=VideoStats(
            views=_optional_int(info.get("view_count")),
            likes=_optional_int(info.get("like_count")),
            comments=_optional_int(info.get("comment_count")),
        ),
        media=VideoMedia(
            type="video",
            duration=float(info["duration"]) if isinstance(info.get("duration"), (int, float)) else None,
            thumbnail_url=_extract_thumbnail(info),
            url=_clean_string(info.get("webpage_url")),
        ),
        tags=[tag for tag in (_clean_string(tag) for tag in tags) if tag],
        published_at=_published_at(info),
    )


def _pick_caption_source(submap: dict | None, languages: tuple[str, ...]) -> CaptionSource | None:
    if not submap:
        return None

    for lang in languages:
        entries = submap.get(lang)
        if not entries:
            continue

        vtt_entry = _find_vtt_entry(entries)
        if vtt_entry:
            return CaptionSource(url=vtt_entry, language=lang, extension="vtt")

    return None


def _find_vtt_entry(entries: list) -> str | None:
    for item in entries:
        if item.get("ext") == "vtt" and item.get("url"):
            return item.get("url")
    return None


def _is_vtt_content_line(line: str) -> bool:
    if not line:
        return False
    if line.startswith(VTT_SKIP_PREFIXES):
        return False
    if "-->" in line:
        return False
    if line.isdigit():
        return False
    return True


def _vtt_to_plain_text(content: str) -> str:
    in_note_block = False
    text_lines: list[str] = []

    for raw_line in content.splitlines():
        stripped = raw_line.strip()

        if in_note_block:
            if not stripped:
                in_note_block = False
            continue

        if stripped.startswith("NOTE"):
            in_note_block = True
            continue

        if not _is_vtt_content_line(stripped):
            continue

        cleaned = VTT_TAG_PATTERN.sub("", stripped).strip()
        # auto captions repeat the previous cue line
        if cleaned and (not text_lines or text_lines[-1] != cleaned):
            text_lines.append(cleaned)

    joined = " ".join(text_lines)
    return WHITESPACE_PATTERN.sub(" ", joined).strip()


def _download_vtt_as_text(url: str, timeout: float) -> str:
    try:
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            response = client.get(url)
            response.raise_for_status()
            return _vtt_to_plain_text(response.text)
    except httpx.TimeoutException as error:
        raise NetworkTimeoutError(url, timeout) from error
    except httpx.HTTPError as error:
        raise FetchFailedError(f"HTTP error downloading VTT: {error}") from error


def _caption_languages(info: dict) -> tuple[str, ...]:
    own = _clean_string(info.get("language"))
    manual = tuple((info.get("subtitles") or {}).keys())
    ordered = ([own] if own else []) + list(manual) + list(FALLBACK_CAPTION_LANGUAGES)
    return tuple(dict.fromkeys(ordered))


def _extract_caption_transcript(info: dict, timeout: float) -> Transcript | None:
    languages = _caption_languages(info)

    for key in ("subtitles", "automatic_captions"):
        source = _pick_caption_source(info.get(key), languages)
        if not source:
            continue

        try:
            text = _download_vtt_as_text(source.url, timeout)
        except (NetworkTimeoutError, FetchFailedError) as error:
            logger.warning("fetch.captions_download_failed lang=%s error=%s", source.language, error)
            continue
        if text:
            return Transcript(text=text, language=source.language)

    return None


def extract_video_id(url: str) -> str | None:
    match = YOUTUBE_VIDEO_ID_PATTERN.search(url)
    return match.group(1) if match else None


def _transcript_from_api(video_id: str) -> Transcript | None:
    """
    Returns None when the video has no usable transcript; other failures
    are raised as service errors.
    """
    try:
        transcript_list = YouTubeTranscriptApi().list(video_id)
        available = list(transcript_list)
        if not available:
            return None

        # manual captions first, the original-language auto track otherwise
        available.sort(key=lambda item: item.is_generated)
        fetched = available[0].fetch()
    except (TranscriptsDisabled, NoTranscriptFound):
        return None
    except VideoUnavailable as error:
        raise PrivateOrUnavailableError(str(error)) from error
    except CouldNotRetrieveTranscript as error:
        raise FetchFailedError(f"Could not retrieve transcript: {error}") from error
    except (ConnectionError, TimeoutError) as error:
        raise FetchFailedError(f"Network error fetching transcript: {error}") from error

    text_parts = [snippet.text.strip() for snippet in fetched if snippet.text and snippet.text.strip()]
    text = " ".join(text_parts).strip()
    if not text:
        return None
    return Transcript(text=WHITESPACE_PATTERN.sub(" ", text), language=getattr(fetched, "language_code", None))


class YouTubeFetcher(VideoFetcher):
    platform = Platform.YOUTUBE

    def __init__(self, timeout_seconds: float = 30.0):
        self.timeout_seconds = timeout_seconds

    def _extract_info(self, url: str) -> dict:
        try:
            with yt_dlp.YoutubeDL(_create_ydl_options(self.timeout_seconds)) as ydl:
                info = ydl.extract_info(url, download=False)
        except yt_dlp.utils.DownloadError as error:
            raise _map_download_error(error) from error
        except (ConnectionError, TimeoutError) as error:
            raise FetchFailedError(f"Network error reading video: {error}") from error

        if not info:
            raise PrivateOrUnavailableError("Video is private or not available")
        _check_video_availability(info)
        return info

    def _video_id(self, url: str) -> str:
        video_id = extract_video_id(url)
        if not video_id:
            raise InvalidURLError(f"Not a YouTube video URL: {url}")
        return video_id

    def _fetch_transcript_sync(self, url: str) -> Transcript:
        video_id = self._video_id(url)
        transcript = _transcript_from_api(video_id)
        if transcript is not None:
            return transcript

        logger.info("fetch.transcript_api_empty video=%s trying caption tracks", video_id)
        info = self._extract_info(url)
        transcript = _extract_caption_transcript(info, self.timeout_seconds)
        if transcript is None:
            raise TranscriptUnavailableError(f"No captions available for video {video_id}")
        return transcript

    async def fetch_metadata(self, url: str) -> VideoMetadata:
        self._video_id(url)
        info = await run_in_threadpool(self._extract_info, url)
        return _metadata_from_info(info)

    async def fetch_transcript(self, url: str) -> Transcript:
        transcript = await run_in_threadpool(self._fetch_transcript_sync, url)
        logger.info("fetch.transcript_ok url=%s chars=%d lang=%s", url, len(transcript.text), transcript.language)
        return transcript


def metadata_is_empty(metadata: Optional[VideoMetadata]) -> bool:
    if metadata is None:
        return True
    author = metadata.author
    has_author = author is not None and bool(author.username or author.display_name)
    return not (metadata.title or metadata.description or has_author or metadata.thumbnail_url)
