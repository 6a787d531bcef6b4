import base64
import json
import logging
import random
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

try:
    from backend.app.services.errors import (
        InvalidPageTokenError,
        InvalidSourcesError,
        MalformedHistoryError,
        NoRecommendationsError,
    )
    from backend.app.services.heuristics import (
        extract_keywords,
        extract_video_id,
        is_short_form,
        parse_published_at,
        resolve_video_id,
        score_candidate,
        shuffle_with_relevance,
        video_item_id,
        watch_url,
    )
    from backend.app.services.youtube_client import (
        DEFAULT_TIMEOUT_SECONDS,
        YouTubeNotFoundError,
        fetch_related_videos,
        fetch_video_details,
        hydrate_video_metadata,
    )
except ModuleNotFoundError:
    from app.services.errors import (
        InvalidPageTokenError,
        InvalidSourcesError,
        MalformedHistoryError,
        NoRecommendationsError,
    )
    from app.services.heuristics import (
        extract_keywords,
        extract_video_id,
        is_short_form,
        parse_published_at,
        resolve_video_id,
        score_candidate,
        shuffle_with_relevance,
        video_item_id,
        watch_url,
    )
    from app.services.youtube_client import (
        DEFAULT_TIMEOUT_SECONDS,
        YouTubeNotFoundError,
        fetch_related_videos,
        fetch_video_details,
        hydrate_video_metadata,
    )


logger = logging.getLogger(__name__)

MAX_RESULTS = 15
MAX_SOURCE_URLS = 5
HISTORY_RECENT_LIMIT = 10
HISTORY_WATCH_MARKER = "youtube.com/watch"


class ResultPage(BaseModel):
    items: list[dict[str, Any]] = Field(default_factory=list)
    next_page_token: str | None = None


# ---------------------------
# Cursors
# ---------------------------

def encode_page_token(source_tokens: dict[str, str]) -> str | None:
    """Pack one upstream nextPageToken per source video into a single opaque cursor."""
    if not source_tokens:
        return None
    raw = json.dumps(source_tokens, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_page_token(page_token: str | None) -> dict[str, str] | None:
    if not page_token:
        return None
    padded = page_token + "=" * (-len(page_token) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except ValueError as exc:
        raise InvalidPageTokenError() from exc
    if not isinstance(data, dict) or not all(
        isinstance(key, str) and isinstance(value, str) and value for key, value in data.items()
    ):
        raise InvalidPageTokenError()
    return data


# ---------------------------
# URL-list mode
# ---------------------------

def process_urls(
    urls: list[str],
    api_key: str,
    page_token: str | None = None,
    ranking: bool = False,
    rng: random.Random | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    now: datetime | None = None,
) -> ResultPage:
    if not urls:
        raise InvalidSourcesError("Please provide valid YouTube URLs")
    if len(urls) > MAX_SOURCE_URLS:
        raise InvalidSourcesError(
            f"Maximum {MAX_SOURCE_URLS} URLs allowed at once for better recommendations"
        )
    video_ids = [video_id for video_id in (resolve_video_id(url) for url in urls) if video_id]
    if not video_ids:
        raise InvalidSourcesError("No valid YouTube URLs found")

    logger.info("Processing %d videos with pageToken: %s", len(video_ids), page_token or "none")
    return collect_recommendations(
        urls,
        api_key,
        page_token=page_token,
        ranking=ranking,
        rng=rng,
        timeout=timeout,
        now=now,
    )


def collect_recommendations(
    urls: list[str],
    api_key: str,
    page_token: str | None = None,
    ranking: bool = False,
    rng: random.Random | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    now: datetime | None = None,
) -> ResultPage:
    """
    Pool related videos for every source, drop short-form items and cut the page.

    Sources run one after another. A source the API reports as missing
    (details or related search) is skipped; quota and other upstream
    errors abort the request.

    page_token is a cursor from encode_page_token: each source resumes its
    own related search, and sources with no further pages are left out.
    """
    source_tokens = decode_page_token(page_token)
    pooled: list[tuple[dict[str, Any], dict[str, Any]]] = []
    next_tokens: dict[str, str] = {}

    for url in urls:
        video_id = resolve_video_id(url)
        if not video_id:
            logger.info("Skipping %r: no video id", url)
            continue

        upstream_token = None
        if source_tokens is not None:
            upstream_token = source_tokens.get(video_id)
            if not upstream_token:
                logger.info("No further related pages for %s, skipping", video_id)
                continue

        source = fetch_video_details(video_id, api_key, timeout=timeout)
        if source is None:
            logger.warning("No details found for video %s, skipping", video_id)
            continue

        try:
            related = fetch_related_videos(video_id, api_key, page_token=upstream_token, timeout=timeout)
        except YouTubeNotFoundError:
            logger.warning("Related videos not found for %s, skipping", video_id)
            continue

        if related.get("nextPageToken"):
            next_tokens[video_id] = related["nextPageToken"]
        candidates = hydrate_candidates(related.get("items", []), api_key, timeout=timeout)
        pooled.extend((candidate, source) for candidate in candidates)

    if not pooled:
        raise NoRecommendationsError()

    kept = [(candidate, source) for candidate, source in pooled if not is_short_form(candidate)]
    logger.info("Kept %d of %d pooled candidates after short-form filter", len(kept), len(pooled))

    if ranking:
        kept = rank_candidates(kept, rng=rng or random.Random(), now=now)

    items = [candidate for candidate, _ in kept][:MAX_RESULTS]
    if not items:
        raise NoRecommendationsError()
    return ResultPage(items=items, next_page_token=encode_page_token(next_tokens))


def hydrate_candidates(
    items: list[dict[str, Any]],
    api_key: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> list[dict[str, Any]]:
    # search.list only carries snippets; durations and stats come from videos.list.
    missing_ids = [
        video_id
        for video_id in (video_item_id(item) for item in items if not item.get("contentDetails"))
        if video_id
    ]
    if not missing_ids:
        return list(items)

    hydrated = hydrate_video_metadata(list(dict.fromkeys(missing_ids)), api_key, timeout=timeout)
    by_id = {video_item_id(video): video for video in hydrated}
    return [
        item if item.get("contentDetails") else by_id.get(video_item_id(item), item)
        for item in items
    ]


def rank_candidates(
    pairs: list[tuple[dict[str, Any], dict[str, Any]]],
    rng: random.Random,
    now: datetime | None = None,
) -> list[tuple[dict[str, Any], dict[str, Any]]]:
    now = now or datetime.now(timezone.utc)
    keywords_by_source: dict[int, list[str]] = {}
    scored = []
    for candidate, source in pairs:
        key = id(source)
        if key not in keywords_by_source:
            snip = source.get("snippet") or {}
            keywords_by_source[key] = extract_keywords(snip.get("title"), snip.get("description"))
        score = score_candidate(candidate, source, keywords_by_source[key], now=now, rng=rng)
        scored.append((score, candidate, source))

    scored.sort(key=lambda entry: entry[0], reverse=True)
    return shuffle_with_relevance([(candidate, source) for _, candidate, source in scored], rng=rng)


# ---------------------------
# History-file mode
# ---------------------------

def parse_watch_history(raw: bytes | str) -> list[dict[str, Any]]:
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise MalformedHistoryError(
            "Invalid JSON file format. Please upload a valid Google Takeout watch-history.json file."
        ) from exc

    if not isinstance(data, list):
        raise MalformedHistoryError(
            "Invalid watch history format. The file should contain an array of watch history entries."
        )

    entries = [
        entry
        for entry in data
        if isinstance(entry, dict)
        and isinstance(entry.get("titleUrl"), str)
        and entry["titleUrl"]
        and isinstance(entry.get("time"), str)
        and entry["time"]
    ]
    if not entries:
        raise MalformedHistoryError("No valid watch history entries found in the file.")
    return entries


def _history_sort_key(entry: dict[str, Any]) -> datetime:
    return parse_published_at(entry.get("time")) or datetime.min.replace(tzinfo=timezone.utc)


def recent_history_video_ids(entries: list[dict[str, Any]], limit: int = HISTORY_RECENT_LIMIT) -> list[str]:
    watched = [entry for entry in entries if HISTORY_WATCH_MARKER in (entry.get("titleUrl") or "")]
    watched.sort(key=_history_sort_key, reverse=True)
    video_ids = (extract_video_id(entry["titleUrl"]) for entry in watched[:limit])
    return list(dict.fromkeys(video_id for video_id in video_ids if video_id))


def process_history_file(
    entries: list[dict[str, Any]],
    api_key: str,
    ranking: bool = False,
    rng: random.Random | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    now: datetime | None = None,
) -> ResultPage:
    video_ids = recent_history_video_ids(entries)
    if not video_ids:
        raise InvalidSourcesError("No watched YouTube videos found in the history file.")

    logger.info("Processing %d recent videos from watch history", len(video_ids))
    page = collect_recommendations(
        [watch_url(video_id) for video_id in video_ids],
        api_key,
        ranking=ranking,
        rng=rng,
        timeout=timeout,
        now=now,
    )
    # History results have no continuation; the cursor never advances.
    return ResultPage(items=page.items, next_page_token=None)


# ---------------------------
# Stats
# ---------------------------

def channel_stats(items: list[dict[str, Any]]) -> dict[str, Any]:
    counts = Counter((item.get("snippet") or {}).get("channelId") for item in items)
    unique_channels = len(counts)
    videos_per_channel = round(len(items) / unique_channels, 1) if unique_channels else 0.0
    return {
        "uniqueChannels": unique_channels,
        "videosPerChannel": videos_per_channel,
    }
