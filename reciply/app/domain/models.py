# reciply/app/domain/models.py
"""
Domain models for the extraction pipeline.
These are pure data structures with no infrastructure dependencies.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from reciply.app.domain.recipe import RecipeDraft


class Platform(str, Enum):
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _PLATFORM_LABELS[self]


_PLATFORM_LABELS = {
    Platform.TIKTOK: "TikTok",
    Platform.INSTAGRAM: "Instagram",
    Platform.YOUTUBE: "YouTube",
    Platform.OTHER: "the source",
}


class ExtractionStatus(str, Enum):
    """Status enum for extraction jobs."""
    PENDING = "pending"
    FETCHING_TRANSCRIPT = "fetching_transcript"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExtractionStatus.COMPLETED, ExtractionStatus.FAILED)

    def can_transition_to(self, target: "ExtractionStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[ExtractionStatus, frozenset[ExtractionStatus]] = {
    ExtractionStatus.PENDING: frozenset(
        {ExtractionStatus.FETCHING_TRANSCRIPT, ExtractionStatus.FAILED}
    ),
    ExtractionStatus.FETCHING_TRANSCRIPT: frozenset(
        {ExtractionStatus.ANALYZING, ExtractionStatus.FAILED}
    ),
    ExtractionStatus.ANALYZING: frozenset(
        {ExtractionStatus.COMPLETED, ExtractionStatus.FAILED}
    ),
    ExtractionStatus.COMPLETED: frozenset(),
    ExtractionStatus.FAILED: frozenset(),
}

ACTIVE_STATUSES = (
    ExtractionStatus.PENDING,
    ExtractionStatus.FETCHING_TRANSCRIPT,
    ExtractionStatus.ANALYZING,
)

# Progress reported for each stage; failed jobs keep the last value reached.
STAGE_PROGRESS: dict[ExtractionStatus, int] = {
    ExtractionStatus.PENDING: 0,
    ExtractionStatus.FETCHING_TRANSCRIPT: 33,
    ExtractionStatus.ANALYZING: 66,
    ExtractionStatus.COMPLETED: 100,
}


class TargetLanguage(str, Enum):
    ORIGINAL = "original"
    ENGLISH = "en"


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"


DETECTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "hu": "Hungarian",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "pl": "Polish",
    "ro": "Romanian",
    "cs": "Czech",
    "ru": "Russian",
    "uk": "Ukrainian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "ar": "Arabic",
    "tr": "Turkish",
    "sq": "Albanian",
    "unknown": "the same language as the transcript",
}


@dataclass
class ExtractionJob:
    """
    One request to turn a video URL into a recipe.

    ``id`` is the short shareable id handed to clients; storage keeps its own
    row id.
    """
    id: str
    user_id: str
    source_url: str
    normalized_url: str
    platform: Platform
    status: ExtractionStatus = ExtractionStatus.PENDING
    progress: int = 0
    status_message: Optional[str] = None
    recipe_id: Optional[str] = None
    error: Optional[str] = None
    telegram_chat_id: Optional[int] = None
    target_language: TargetLanguage = TargetLanguage.ORIGINAL
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class VideoAuthor:
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    verified: Optional[bool] = None


@dataclass
class VideoStats:
    views: Optional[int] = None
    likes: Optional[int] = None
    comments: Optional[int] = None
    shares: Optional[int] = None


@dataclass
class VideoMedia:
    type: str = "video"
    duration: Optional[float] = None
    thumbnail_url: Optional[str] = None
    url: Optional[str] = None


@dataclass
class VideoMetadata:
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[VideoAuthor] = None
    stats: Optional[VideoStats] = None
    media: Optional[VideoMedia] = None
    tags: list[str] = field(default_factory=list)
    published_at: Optional[str] = None

    @property
    def thumbnail_url(self) -> Optional[str]:
        return self.media.thumbnail_url if self.media else None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "VideoMetadata":
        data = data or {}
        author = data.get("author")
        stats = data.get("stats")
        media = data.get("media")
        return cls(
            title=data.get("title"),
            description=data.get("description"),
            author=VideoAuthor(**author) if isinstance(author, dict) else None,
            stats=VideoStats(**stats) if isinstance(stats, dict) else None,
            media=VideoMedia(**media) if isinstance(media, dict) else None,
            tags=list(data.get("tags") or []),
            published_at=data.get("published_at"),
        )


@dataclass
class VideoMetadataCacheEntry:
    normalized_url: str
    platform: Platform
    metadata: VideoMetadata
    fetched_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Transcript:
    text: str
    language: Optional[str] = None


@dataclass
class FetchResult:
    transcript: Transcript
    metadata: VideoMetadata


@dataclass
class ExtractionResult:
    """Output of the AI stage."""
    draft: RecipeDraft
    detected_language: str
    confidence: float


@dataclass
class RawExtraction:
    normalized_url: str
    target_language: TargetLanguage
    draft: RecipeDraft
    detected_language: str
    confidence: float
    created_at: Optional[datetime] = None

    def to_result(self) -> ExtractionResult:
        return ExtractionResult(
            draft=self.draft,
            detected_language=self.detected_language,
            confidence=self.confidence,
        )


@dataclass
class Subscription:
    """Per-user plan and extraction usage for the current period."""
    user_id: str
    plan_tier: PlanTier = PlanTier.FREE
    extractions_used: int = 0
    extractions_limit: int = 10
    current_period_end: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return max(0, self.extractions_limit - self.extractions_used)


@dataclass
class QuotaCheck:
    """Result of a quota check operation."""
    allowed: bool
    used: int
    limit: int
    plan_tier: PlanTier
    current_period_end: Optional[datetime] = None


@dataclass
class PlatformDetection:
    platform: Platform
    is_valid: bool
    normalized_form: Optional[str] = None
    content_id: Optional[str] = None
    error: Optional[str] = None
