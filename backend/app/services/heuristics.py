import logging
import math
import random
import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qs, urlparse

try:
    from backend.app.services.errors import MalformedDurationError
except ModuleNotFoundError:
    from app.services.errors import MalformedDurationError


logger = logging.getLogger(__name__)

SHORT_FORM_MAX_SECONDS = 180
SHORTS_KEYWORDS = ("#shorts", "#short", "#ytshorts", "shorts/", "/shorts", "youtube.com/shorts")
DURATION_RE = re.compile(r"P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?")
VIDEO_ID_RE = re.compile(r"[A-Za-z0-9_-]{11}")
NON_WORD_RE = re.compile(r"[^\w\s]")
FRACTION_RE = re.compile(r"(?<=\d{2}:\d{2}:\d{2})\.(\d+)")

VERY_POPULAR_VIEWS = 1_000_000
JITTER_MAX = 0.1

COMMON_WORDS = frozenset({
    "the", "be", "to", "of", "and", "a", "in", "that", "have", "i", "it", "for",
    "not", "on", "with", "he", "as", "you", "do", "at", "this", "but", "his",
    "by", "from", "they", "we", "say", "her", "she", "or", "an", "will", "my",
    "one", "all", "would", "there", "their", "what", "so", "up", "out", "if",
    "about", "who", "get", "which", "go", "me", "vs", "new", "review", "best",
    "top", "how", "why", "when", "where", "latest", "update", "official",
    "full", "video", "watch", "first", "look", "hands", "unboxing",
})


# ---------------------------
# Durations
# ---------------------------

def parse_duration(duration: str | None) -> int:
    """
    Convert a YouTube duration ("PT1H2M3S", "P1DT2H", "P0D") to whole seconds.

    None or "" means the API reported no duration and counts as 0.
    Anything else that is not an ISO-8601 duration raises MalformedDurationError.
    """
    if not duration:
        return 0
    match = DURATION_RE.fullmatch(duration.strip())
    if not match:
        raise MalformedDurationError(duration)
    days = int(match.group(1) or 0)
    hours = int(match.group(2) or 0)
    minutes = int(match.group(3) or 0)
    seconds = int(match.group(4) or 0)
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


# ---------------------------
# Item accessors
# ---------------------------

def video_item_id(video: dict[str, Any]) -> str | None:
    # videos.list returns a plain id, search.list returns {"kind": ..., "videoId": ...}
    raw = video.get("id")
    if isinstance(raw, dict):
        raw = raw.get("videoId")
    if isinstance(raw, str) and raw:
        return raw
    return None


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_published_at(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits (Takeout writes e.g. ".07Z")
        normalized = FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.strip())
        parsed = datetime.fromisoformat(normalized.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------
# Short-form filter
# ---------------------------

def is_short_form(video: dict[str, Any]) -> bool:
    """True when the item should be kept out of recommendations."""
    details = video.get("contentDetails")
    snip = video.get("snippet")
    if not details or not snip:
        return True

    try:
        duration_seconds = parse_duration(details.get("duration"))
    except MalformedDurationError:
        logger.debug("Excluding %s: malformed duration %r", video.get("id"), details.get("duration"))
        return True
    if duration_seconds < SHORT_FORM_MAX_SECONDS:
        return True

    tags = snip.get("tags") or []
    text = f"{snip.get('title') or ''} {snip.get('description') or ''} {' '.join(tags)}".lower()
    if any(keyword in text for keyword in SHORTS_KEYWORDS):
        return True

    raw_id = video.get("id")
    if isinstance(raw_id, str) and "/shorts/" in raw_id:
        return True

    dimension = details.get("dimension")
    if isinstance(dimension, dict):
        height = _to_int(dimension.get("height"))
        width = _to_int(dimension.get("width"))
        if height > width:
            return True

    return False


# ---------------------------
# Relevance scoring
# ---------------------------

def extract_keywords(title: str | None, description: str | None) -> list[str]:
    text = f"{title or ''} {(description or '')[:100]}".lower()
    text = NON_WORD_RE.sub("", text)
    return [word for word in text.split() if len(word) > 2 and word not in COMMON_WORDS]


def title_overlap_score(title: str | None, keywords: list[str]) -> float:
    if not keywords:
        return 0.0
    title_words = set((title or "").lower().split())
    matches = sum(1 for keyword in keywords if keyword.lower() in title_words)
    return matches / len(keywords) * 0.3


def channel_diversity_score(video: dict[str, Any], source: dict[str, Any]) -> float:
    channel_id = (video.get("snippet") or {}).get("channelId")
    source_channel_id = (source.get("snippet") or {}).get("channelId")
    if channel_id == source_channel_id:
        return -0.2
    return 0.1


def duration_score(duration_seconds: int) -> float:
    if duration_seconds < 180:
        return -0.5
    if duration_seconds < 300:
        return -0.2
    if 600 < duration_seconds < 3600:
        return 0.2
    return 0.0


def popularity_score(view_count: int) -> float:
    if view_count <= 0:
        return 0.0
    return min(0.4, math.log10(view_count) / 10)


def engagement_score(view_count: int, like_count: int) -> float:
    if view_count <= 0:
        return 0.0
    return min(0.2, (like_count / view_count) * 100)


def recency_score(view_count: int, published_at: datetime | None, now: datetime) -> float:
    # Very popular videos get a flat bonus and skip the age check entirely.
    if view_count > VERY_POPULAR_VIEWS:
        return 0.3
    if published_at is None:
        return 0.0
    age_days = (now - published_at).total_seconds() / 86400
    if age_days > 365:
        return -0.3
    if age_days < 30:
        return 0.2
    if age_days < 90:
        return 0.1
    return 0.0


def score_candidate(
    video: dict[str, Any],
    source: dict[str, Any],
    keywords: list[str],
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> float:
    now = now or datetime.now(timezone.utc)
    rng = rng or random.Random()
    snip = video.get("snippet") or {}

    score = title_overlap_score(snip.get("title"), keywords)
    score += channel_diversity_score(video, source)

    details = video.get("contentDetails")
    if details:
        score += duration_score(parse_duration(details.get("duration")))

    stats = video.get("statistics")
    if stats:
        view_count = _to_int(stats.get("viewCount"))
        like_count = _to_int(stats.get("likeCount"))
        score += popularity_score(view_count)
        score += engagement_score(view_count, like_count)
        score += recency_score(view_count, parse_published_at(snip.get("publishedAt")), now)

    return score + rng.random() * JITTER_MAX


# ---------------------------
# Ordering
# ---------------------------

def shuffle_with_relevance(videos: list, rng: random.Random | None = None) -> list:
    """
    Shuffle inside relevance thirds, then interleave the thirds.

    Input is expected best-first; the top third still leads each round of
    the interleave, so coarse ranking survives while the page varies.
    """
    if len(videos) <= 1:
        return list(videos)
    rng = rng or random.Random()

    chunk_size = math.ceil(len(videos) / 3)
    chunks = [list(videos[i:i + chunk_size]) for i in range(0, len(videos), chunk_size)]
    for chunk in chunks:
        rng.shuffle(chunk)

    result = []
    for index in range(max(len(chunk) for chunk in chunks)):
        for chunk in chunks:
            if index < len(chunk):
                result.append(chunk[index])
    return result


# ---------------------------
# Video IDs
# ---------------------------

def extract_video_id(url: str) -> str | None:
    if not isinstance(url, str):
        return None
    try:
        parsed = urlparse(url.strip())
        host = (parsed.hostname or "").lower()
    except ValueError as exc:
        logger.warning("Could not parse URL %r: %s", url, exc)
        return None

    if "youtube.com" in host:
        values = parse_qs(parsed.query).get("v") or []
        return values[0] if values and values[0] else None
    if "youtu.be" in host:
        return parsed.path[1:] or None
    return None


def resolve_video_id(reference: str) -> str | None:
    if isinstance(reference, str) and VIDEO_ID_RE.fullmatch(reference.strip()):
        return reference.strip()
    return extract_video_id(reference)


def watch_url(video_id: str) -> str:
    return f"https://youtube.com/watch?v={video_id}"
