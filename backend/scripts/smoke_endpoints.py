from __future__ import annotations

import io
import json
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from starlette.datastructures import UploadFile

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import backend.main as main_module
import backend.app.services.recommender as recommender_module


def make_video(video_id: str, days_ago: int, views: int, duration: str, channel_id: str = "UC_SMOKE") -> dict:
    published_at = (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat().replace("+00:00", "Z")
    return {
        "id": video_id,
        "snippet": {
            "title": f"Video {video_id}",
            "description": "Smoke test upload",
            "channelId": channel_id,
            "publishedAt": published_at,
        },
        "statistics": {"viewCount": str(views), "likeCount": str(views // 50)},
        "contentDetails": {"duration": duration, "dimension": {"width": 1920, "height": 1080}},
    }


def fake_related_payload(video_id: str) -> dict:
    items = []
    for index in range(20):
        duration = "PT45S" if index % 2 else "PT14M"
        items.append(make_video(f"{video_id}_{index}", 5 + index, 1000 * (index + 1), duration, f"UC_{index % 5}"))
    return {"items": items, "nextPageToken": f"{video_id}_NEXT"}


def assert_true(condition: bool, message: str) -> None:
    if not condition:
        raise AssertionError(message)


def upstream_patches():
    return (
        patch.object(main_module, "YOUTUBE_API_KEY", "SMOKE_KEY"),
        patch.object(
            recommender_module,
            "fetch_video_details",
            side_effect=lambda video_id, api_key, timeout=15: make_video(video_id, 30, 5000, "PT10M", "UC_SOURCE"),
        ),
        patch.object(
            recommender_module,
            "fetch_related_videos",
            side_effect=lambda video_id, api_key, page_token=None, timeout=15: fake_related_payload(video_id),
        ),
    )


def test_health() -> None:
    payload = main_module.health()
    assert_true(payload.get("ok") is True, "/health should return ok=true")


def test_recommendations_page() -> None:
    key_patch, details_patch, related_patch = upstream_patches()
    with key_patch, details_patch, related_patch:
        payload = main_module.recommendations(
            main_module.RecommendationRequest(urls=["https://youtu.be/smoke_a", "https://youtu.be/smoke_b"]),
            page_token=None,
        )

    items = payload.get("recommendations", [])
    assert_true(0 < len(items) <= 15, "/api/recommendations should return at most 15 items")
    assert_true(
        all(not recommender_module.is_short_form(item) for item in items),
        "/api/recommendations should never return short-form items",
    )
    assert_true(
        recommender_module.decode_page_token(payload.get("nextPageToken"))
        == {"smoke_a": "smoke_a_NEXT", "smoke_b": "smoke_b_NEXT"},
        "/api/recommendations should carry one upstream cursor per source",
    )


def test_ranked_recommendations() -> None:
    key_patch, details_patch, related_patch = upstream_patches()
    with key_patch, details_patch, related_patch:
        page_1 = recommender_module.process_urls(["https://youtu.be/smoke_a"], "SMOKE_KEY", ranking=True, rng=random.Random(5))
        page_2 = recommender_module.process_urls(["https://youtu.be/smoke_a"], "SMOKE_KEY", ranking=True, rng=random.Random(5))

    ids_1 = [item["id"] for item in page_1.items]
    ids_2 = [item["id"] for item in page_2.items]
    assert_true(ids_1 == ids_2, "ranked pages should be reproducible with a seeded random source")
    assert_true(len(set(ids_1)) == len(ids_1), "ranked pages should not repeat items from one source")


def test_history_upload() -> None:
    history = [
        {
            "titleUrl": f"https://www.youtube.com/watch?v=hist{index:02d}",
            "time": (datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=index)).isoformat(),
        }
        for index in range(14)
    ]
    upload = UploadFile(file=io.BytesIO(json.dumps(history).encode("utf-8")), filename="watch-history.json")

    key_patch, details_patch, related_patch = upstream_patches()
    with key_patch, details_patch, related_patch as related_mock:
        payload = main_module.upload_history(upload)

    assert_true(related_mock.call_count == 10, "history upload should query the 10 most recent videos")
    assert_true(payload.get("nextPageToken") is None, "history upload should not return a cursor")
    assert_true(payload["stats"].get("processedEntries") == 14, "history upload should report processed entries")


def run() -> int:
    checks = [
        ("health", test_health),
        ("recommendations page", test_recommendations_page),
        ("ranked recommendations", test_ranked_recommendations),
        ("history upload", test_history_upload),
    ]
    failures = []

    for check_name, check_fn in checks:
        try:
            check_fn()
            print(f"[PASS] {check_name}")
        except Exception as exc:  # pragma: no cover - smoke script output path
            failures.append((check_name, str(exc)))
            print(f"[FAIL] {check_name}: {exc}")

    if failures:
        print(f"\nSmoke checks failed: {len(failures)}")
        for check_name, message in failures:
            print(f"- {check_name}: {message}")
        return 1

    print("\nAll smoke checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(run())
