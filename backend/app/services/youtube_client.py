import logging
from typing import Any

import requests


logger = logging.getLogger(__name__)

YOUTUBE_VIDEOS_LIST = "https://www.googleapis.com/youtube/v3/videos"
YOUTUBE_SEARCH_LIST = "https://www.googleapis.com/youtube/v3/search"
DEFAULT_TIMEOUT_SECONDS = 15
RELATED_MAX_RESULTS = 50
HYDRATE_BATCH_SIZE = 50


class YouTubeApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class YouTubeQuotaExceededError(YouTubeApiError):
    pass


class YouTubeNotFoundError(YouTubeApiError):
    pass


def chunked(lst, n):
    for i in range(0, len(lst), n):
        yield lst[i:i + n]


def youtube_api_get(url: str, params: dict[str, Any], timeout: float = DEFAULT_TIMEOUT_SECONDS) -> dict[str, Any]:
    try:
        response = requests.get(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise YouTubeApiError(f"YouTube request failed: {exc}") from exc

    if response.status_code == 200:
        return response.json()

    lowered = response.text.lower()
    # 403 covers both an exhausted quota and a rejected key; callers report them the same way.
    if response.status_code == 403 or (
        response.status_code == 429
        and ("quotaexceeded" in lowered or "quota exceeded" in lowered or "youtube.quota" in lowered)
    ):
        raise YouTubeQuotaExceededError("YouTube API quota exceeded", status_code=response.status_code)

    if response.status_code == 404:
        raise YouTubeNotFoundError("YouTube resource not found", status_code=404)

    raise YouTubeApiError(
        f"YouTube API returned HTTP {response.status_code}",
        status_code=response.status_code,
    )


def fetch_video_details(
    video_id: str,
    api_key: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> dict[str, Any] | None:
    try:
        payload = youtube_api_get(
            YOUTUBE_VIDEOS_LIST,
            {
                "part": "snippet,contentDetails,statistics",
                "id": video_id,
                "key": api_key,
            },
            timeout=timeout,
        )
    except YouTubeNotFoundError:
        return None

    items = payload.get("items", [])
    if not items:
        return None
    return items[0]


def fetch_related_videos(
    video_id: str,
    api_key: str,
    page_token: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> dict[str, Any]:
    params = {
        "part": "snippet",
        "relatedToVideoId": video_id,
        "type": "video",
        "maxResults": RELATED_MAX_RESULTS,
        "safeSearch": "none",
        "order": "relevance",
        "key": api_key,
    }
    if page_token:
        params["pageToken"] = page_token

    payload = youtube_api_get(YOUTUBE_SEARCH_LIST, params, timeout=timeout)
    items = payload.get("items", [])
    logger.info("Related search for %s returned %d items", video_id, len(items))
    return {"items": items, "nextPageToken": payload.get("nextPageToken")}


def hydrate_video_metadata(
    video_ids: list[str],
    api_key: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> list[dict[str, Any]]:
    hydrated = []
    for batch in chunked(video_ids, HYDRATE_BATCH_SIZE):
        payload = youtube_api_get(
            YOUTUBE_VIDEOS_LIST,
            {
                "part": "snippet,statistics,contentDetails",
                "id": ",".join(batch),
                "key": api_key,
            },
            timeout=timeout,
        )
        hydrated.extend(payload.get("items", []))
    return hydrated
