from __future__ import annotations

import logging
import re
from urllib.parse import parse_qs, urlsplit, urlunsplit

import httpx

from reciply.app.domain.models import Platform, PlatformDetection

logger = logging.getLogger(__name__)

MAX_REDIRECT_HOPS = 5
DEFAULT_RESOLVE_TIMEOUT_SECONDS = 5.0
USER_AGENT = "Mozilla/5.0 (compatible; ReciplyBot/1.0; +https://reciply.app)"

_HOST_PREFIXES = ("www.", "m.", "mobile.")

YOUTUBE_HOSTS = frozenset({"youtube.com", "youtube-nocookie.com", "youtu.be"})
INSTAGRAM_HOSTS = frozenset({"instagram.com", "instagr.am"})
TIKTOK_HOSTS = frozenset({"tiktok.com", "vm.tiktok.com", "vt.tiktok.com"})
TIKTOK_SHORT_HOSTS = frozenset({"vm.tiktok.com", "vt.tiktok.com"})
SHORTENER_HOSTS = frozenset({
    "bit.ly",
    "t.co",
    "tinyurl.com",
    "goo.gl",
    "ow.ly",
    "buff.ly",
    "is.gd",
    "lnkd.in",
    "rebrand.ly",
    "shorturl.at",
})

# host -> (required path or None, query parameter holding the target)
REDIRECTOR_WRAPPERS: dict[str, tuple[str | None, tuple[str, ...]]] = {
    "l.instagram.com": (None, ("u",)),
    "l.facebook.com": ("/l.php", ("u",)),
    "lm.facebook.com": ("/l.php", ("u",)),
    "l.messenger.com": ("/l.php", ("u",)),
    "google.com": ("/url", ("q", "url")),
    "youtube.com": ("/redirect", ("q",)),
}

YOUTUBE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
INSTAGRAM_SHORTCODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
TIKTOK_VIDEO_ID_PATTERN = re.compile(r"^\d+$")
TIKTOK_HANDLE_PATTERN = re.compile(r"^@[\w.-]+$")

INSTAGRAM_MEDIA_KINDS = ("p", "reel", "reels", "tv")
YOUTUBE_VIDEO_PATH_KINDS = ("shorts", "embed", "live", "v")
YOUTUBE_CHANNEL_KINDS = ("channel", "user", "c")

UNSUPPORTED_PLATFORM_ERROR = "URL is not from a supported platform (TikTok, Instagram, or YouTube)"
INVALID_URL_ERROR = "Invalid URL format"


def _base_host(hostname: str | None) -> str:
    host = (hostname or "").lower().rstrip(".")
    stripped = True
    while stripped:
        stripped = False
        for prefix in _HOST_PREFIXES:
            if host.startswith(prefix) and host.count(".") > 1:
                host = host[len(prefix):]
                stripped = True
    return host


def _path_segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def _first_query_value(query: str, keys: tuple[str, ...]) -> str | None:
    params = parse_qs(query)
    for key in keys:
        values = params.get(key)
        if values and values[0].strip():
            return values[0].strip()
    return None


def _strip_decorations(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def _unwrap_once(url: str) -> str | None:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None

    wrapper = REDIRECTOR_WRAPPERS.get(_base_host(parts.hostname))
    if wrapper is None:
        return None

    required_path, keys = wrapper
    if required_path is not None and parts.path.rstrip("/") != required_path:
        return None

    target = _first_query_value(parts.query, keys)
    if target and target.lower().startswith(("http://", "https://")):
        return target
    return None


def unwrap_redirector(url: str) -> str:
    """Strip redirector wrappers (Instagram/Facebook link shims, Google and YouTube redirects)."""
    current = url.strip()
    for _ in range(MAX_REDIRECT_HOPS):
        target = _unwrap_once(current)
        if target is None:
            break
        current = target
    return current


def needs_resolution(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False

    host = _base_host(parts.hostname)
    segments = _path_segments(parts.path)
    first = segments[0].lower() if segments else ""

    if host in TIKTOK_SHORT_HOSTS or host in SHORTENER_HOSTS:
        return True
    if host == "tiktok.com" and first in ("t", "v"):
        return True
    if host in INSTAGRAM_HOSTS and first == "share":
        return True
    return _unwrap_once(url) is not None


async def resolve_url(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    max_hops: int = MAX_REDIRECT_HOPS,
    timeout: float = DEFAULT_RESOLVE_TIMEOUT_SECONDS,
) -> str:
    """
    Follow redirector wrappers and short links to the concrete video URL.

    Canonical platform URLs are returned without any network call. On any
    network failure the submitted URL is returned unchanged.
    """
    candidate = unwrap_redirector(url)
    if not needs_resolution(candidate):
        return candidate

    owns_client = client is None
    http = client or httpx.AsyncClient(headers={"User-Agent": USER_AGENT})
    current = candidate

    try:
        for _ in range(max_hops):
            response = await http.head(current, follow_redirects=False, timeout=timeout)
            if response.status_code == 405:
                response = await http.get(current, follow_redirects=False, timeout=timeout)

            location = response.headers.get("location")
            if not response.is_redirect or not location:
                break

            current = unwrap_redirector(str(response.url.join(location)))
            if not needs_resolution(current):
                break

        logger.info("resolve_url.ok url=%s resolved=%s", url, current)
        return current

    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as error:
        logger.warning("resolve_url.failed url=%s error=%s", url, error)
        return url
    finally:
        if owns_client:
            await http.aclose()


def _invalid(platform: Platform, error: str) -> PlatformDetection:
    return PlatformDetection(platform=platform, is_valid=False, error=error)


def _valid(platform: Platform, normalized_form: str, content_id: str | None) -> PlatformDetection:
    return PlatformDetection(
        platform=platform,
        is_valid=True,
        normalized_form=normalized_form,
        content_id=content_id,
    )


def _detect_youtube(host: str, segments: list[str], query: str) -> PlatformDetection:
    video_id: str | None = None
    first = segments[0].lower() if segments else ""

    if host == "youtu.be":
        video_id = segments[0] if segments else None
    elif first == "watch":
        video_id = _first_query_value(query, ("v",))
    elif first in YOUTUBE_VIDEO_PATH_KINDS and len(segments) > 1:
        video_id = segments[1]
    elif first == "playlist" or (not first and _first_query_value(query, ("list",))):
        return _invalid(
            Platform.YOUTUBE,
            "This is a YouTube playlist. Please provide a link to a single video.",
        )
    elif first.startswith("@") or first in YOUTUBE_CHANNEL_KINDS:
        return _invalid(
            Platform.YOUTUBE,
            "This is a YouTube channel page. Please provide a direct link to a video.",
        )

    if not video_id or not YOUTUBE_ID_PATTERN.match(video_id):
        return _invalid(
            Platform.YOUTUBE,
            "This YouTube link does not point to a video. Please provide a direct link to a video or Short.",
        )

    return _valid(Platform.YOUTUBE, f"https://www.youtube.com/watch?v={video_id}", video_id)


def _detect_instagram(host: str, segments: list[str], url: str) -> PlatformDetection:
    lowered = [segment.lower() for segment in segments]

    for index in (0, 1):
        if len(segments) > index + 1 and lowered[index] in INSTAGRAM_MEDIA_KINDS:
            shortcode = segments[index + 1]
            if INSTAGRAM_SHORTCODE_PATTERN.match(shortcode):
                return _valid(Platform.INSTAGRAM, f"https://www.instagram.com/p/{shortcode}", shortcode)

    first = lowered[0] if lowered else ""
    if first == "share" and len(segments) > 1:
        return _valid(Platform.INSTAGRAM, _strip_decorations(url), None)
    if first == "explore":
        return _invalid(
            Platform.INSTAGRAM,
            "This is the Instagram explore page. Please provide a direct link to a post or Reel.",
        )
    if first == "accounts":
        return _invalid(
            Platform.INSTAGRAM,
            "This is an Instagram settings page. Please provide a direct link to a post or Reel.",
        )
    if first == "stories":
        return _invalid(
            Platform.INSTAGRAM,
            "Instagram stories are not supported. Please provide a direct link to a post or Reel.",
        )
    if len(segments) == 1:
        return _invalid(
            Platform.INSTAGRAM,
            "This appears to be an Instagram profile. Please provide a direct link to a post or Reel.",
        )
    return _invalid(
        Platform.INSTAGRAM,
        "This Instagram link does not point to a post or Reel.",
    )


def _detect_tiktok(host: str, segments: list[str], url: str) -> PlatformDetection:
    if host in TIKTOK_SHORT_HOSTS:
        if segments:
            return _valid(Platform.TIKTOK, f"https://{host}/{segments[0]}", None)
        return _invalid(Platform.TIKTOK, "This TikTok short link is incomplete.")

    lowered = [segment.lower() for segment in segments]
    first = lowered[0] if lowered else ""

    if first in ("t", "v") and len(segments) > 1:
        return _valid(Platform.TIKTOK, _strip_decorations(url), None)

    if len(segments) >= 3 and TIKTOK_HANDLE_PATTERN.match(segments[0]) and lowered[1] == "video":
        video_id = segments[2]
        if TIKTOK_VIDEO_ID_PATTERN.match(video_id):
            handle = segments[0].lower()
            return _valid(Platform.TIKTOK, f"https://www.tiktok.com/{handle}/video/{video_id}", video_id)

    if len(segments) == 1 and first.startswith("@"):
        return _invalid(
            Platform.TIKTOK,
            "This appears to be a TikTok profile. Please provide a direct link to a video.",
        )
    return _invalid(
        Platform.TIKTOK,
        "This TikTok page is not a video. Please provide a direct link to a video.",
    )


def detect_platform(url: str) -> PlatformDetection:
    """
    Classify a URL and build its canonical form.

    Mobile and ``www``-less hosts, query strings, fragments and trailing
    slashes all collapse to the same ``normalized_form``.
    """
    text = (url or "").strip()
    try:
        parts = urlsplit(text)
    except ValueError:
        return _invalid(Platform.OTHER, INVALID_URL_ERROR)

    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        return _invalid(Platform.OTHER, INVALID_URL_ERROR)

    host = _base_host(parts.hostname)
    segments = _path_segments(parts.path)

    if host in YOUTUBE_HOSTS:
        return _detect_youtube(host, segments, parts.query)
    if host in INSTAGRAM_HOSTS:
        return _detect_instagram(host, segments, text)
    if host in TIKTOK_HOSTS:
        return _detect_tiktok(host, segments, text)

    return _invalid(Platform.OTHER, UNSUPPORTED_PLATFORM_ERROR)


def normalize_url(url: str) -> str:
    detection = detect_platform(url)
    if detection.is_valid and detection.normalized_form:
        return detection.normalized_form
    return _strip_decorations(url)
