import random
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.services.errors import MalformedDurationError
from backend.app.services.heuristics import (
    channel_diversity_score,
    duration_score,
    engagement_score,
    extract_keywords,
    extract_video_id,
    is_short_form,
    parse_duration,
    parse_published_at,
    popularity_score,
    recency_score,
    resolve_video_id,
    score_candidate,
    shuffle_with_relevance,
    title_overlap_score,
    video_item_id,
)


NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


class ZeroRandom(random.Random):
    def random(self):
        return 0.0


def make_video(
    video_id="vid",
    duration="PT6M40S",
    title="Bake sourdough at home",
    description="",
    tags=None,
    channel_id="UC_OTHER",
    views=None,
    likes=None,
    days_ago=10,
    dimension=None,
):
    published_at = (NOW - timedelta(days=days_ago)).isoformat().replace("+00:00", "Z")
    video = {
        "id": video_id,
        "snippet": {
            "title": title,
            "description": description,
            "tags": tags or [],
            "channelId": channel_id,
            "publishedAt": published_at,
        },
        "contentDetails": {"duration": duration},
    }
    if dimension is not None:
        video["contentDetails"]["dimension"] = dimension
    if views is not None:
        video["statistics"] = {"viewCount": str(views), "likeCount": str(likes or 0)}
    return video


def test_parse_duration():
    assert parse_duration("PT1H2M3S") == 3723
    assert parse_duration("PT45S") == 45
    assert parse_duration("PT10M") == 600
    assert parse_duration("PT0S") == 0
    assert parse_duration("PT") == 0
    assert parse_duration("") == 0
    assert parse_duration(None) == 0


def test_parse_duration_accepts_day_component():
    assert parse_duration("P0D") == 0
    assert parse_duration("P1DT1H") == 90000


@pytest.mark.parametrize("value", ["garbage", "1:23", "PT5X", "3723"])
def test_parse_duration_rejects_malformed(value):
    with pytest.raises(MalformedDurationError):
        parse_duration(value)


def test_short_form_by_duration():
    assert is_short_form(make_video(duration="PT2M"))
    assert is_short_form(make_video(duration="PT2M59S"))
    assert not is_short_form(make_video(duration="PT3M"))


def test_short_form_by_text_markers():
    assert is_short_form(make_video(title="My trip #shorts"))
    assert is_short_form(make_video(description="Full clip at youtube.com/shorts/abc"))
    assert is_short_form(make_video(tags=["travel", "#YTShorts"]))


def test_short_form_by_id_and_aspect():
    assert is_short_form(make_video(video_id="https://youtube.com/shorts/abc"))
    assert is_short_form(make_video(dimension={"width": 1080, "height": 1920}))
    assert not is_short_form(make_video(dimension={"width": 1920, "height": 1080}))


def test_short_form_missing_parts_are_excluded():
    video = make_video()
    del video["contentDetails"]
    assert is_short_form(video)

    video = make_video()
    del video["snippet"]
    assert is_short_form(video)


def test_short_form_malformed_duration_is_excluded():
    assert is_short_form(make_video(duration="soon"))


def test_long_landscape_video_is_kept():
    video = make_video(duration="PT6M40S", title="Sourdough basics", dimension={"width": 1280, "height": 720})
    assert not is_short_form(video)


@pytest.mark.parametrize(
    ("value", "microsecond"),
    [
        ("2024-05-01T10:00:00Z", 0),
        ("2024-05-01T10:00:00.07Z", 70000),
        ("2024-05-01T10:00:00.123Z", 123000),
        ("2024-05-01T10:00:00.1234567Z", 123456),
    ],
)
def test_parse_published_at_accepts_any_fraction_length(value, microsecond):
    parsed = parse_published_at(value)
    assert parsed.tzinfo is not None
    assert (parsed.hour, parsed.microsecond) == (10, microsecond)


def test_parse_published_at_bad_values():
    assert parse_published_at(None) is None
    assert parse_published_at("") is None
    assert parse_published_at("yesterday") is None
    assert parse_published_at("2024-05-01T10:00:00").tzinfo == timezone.utc


def test_video_item_id_handles_search_results():
    assert video_item_id({"id": "abc"}) == "abc"
    assert video_item_id({"id": {"kind": "youtube#video", "videoId": "xyz"}}) == "xyz"
    assert video_item_id({"id": {"kind": "youtube#channel"}}) is None


def test_extract_video_id():
    assert extract_video_id("https://www.youtube.com/watch?v=ABC123") == "ABC123"
    assert extract_video_id("https://youtu.be/XYZ789") == "XYZ789"
    assert extract_video_id("https://youtu.be/XYZ789?t=42") == "XYZ789"
    assert extract_video_id("https://m.youtube.com/watch?feature=share&v=QQQ") == "QQQ"
    assert extract_video_id("https://example.com/video") is None
    assert extract_video_id("https://www.youtube.com/watch") is None
    assert extract_video_id("https://youtu.be/") is None
    assert extract_video_id("not a url") is None
    assert extract_video_id("http://[broken") is None
    assert extract_video_id(None) is None


def test_resolve_video_id_accepts_bare_ids():
    assert resolve_video_id("dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert resolve_video_id("https://youtu.be/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert resolve_video_id("short") is None


def test_extract_keywords():
    keywords = extract_keywords("How to Bake Sourdough Bread!", "A simple guide.")
    assert keywords == ["bake", "sourdough", "bread", "simple", "guide"]


def test_extract_keywords_reads_first_100_description_chars():
    description = " " * 95 + "tail words"
    assert extract_keywords("", description) == ["tail"]


def test_title_overlap_score():
    keywords = ["bake", "sourdough", "bread", "simple", "guide"]
    assert title_overlap_score("Bake Sourdough at home", keywords) == pytest.approx(0.12)
    assert title_overlap_score("Anything", []) == 0.0


def test_channel_diversity_score():
    source = make_video(channel_id="UC_SOURCE")
    assert channel_diversity_score(make_video(channel_id="UC_SOURCE"), source) == -0.2
    assert channel_diversity_score(make_video(channel_id="UC_OTHER"), source) == 0.1


def test_duration_score_boundaries():
    assert duration_score(179) == -0.5
    assert duration_score(180) == -0.2
    assert duration_score(299) == -0.2
    assert duration_score(300) == 0.0
    assert duration_score(600) == 0.0
    assert duration_score(601) == 0.2
    assert duration_score(3599) == 0.2
    assert duration_score(3600) == 0.0


def test_popularity_and_engagement_scores():
    assert popularity_score(0) == 0.0
    assert popularity_score(-5) == 0.0
    assert popularity_score(1000) == pytest.approx(0.3)
    assert popularity_score(100000) == 0.4
    assert engagement_score(0, 10) == 0.0
    assert engagement_score(1000, 1) == pytest.approx(0.1)
    assert engagement_score(1000, 10) == 0.2


def test_recency_score():
    def published(days):
        return NOW - timedelta(days=days)

    assert recency_score(2_000_000, published(800), NOW) == 0.3
    assert recency_score(500, published(10), NOW) == 0.2
    assert recency_score(500, published(30), NOW) == 0.1
    assert recency_score(500, published(89), NOW) == 0.1
    assert recency_score(500, published(200), NOW) == 0.0
    assert recency_score(500, published(400), NOW) == -0.3
    assert recency_score(500, None, NOW) == 0.0


def test_score_candidate_sums_terms():
    source = make_video(
        video_id="source",
        title="How to Bake Sourdough Bread",
        channel_id="UC_SOURCE",
    )
    keywords = extract_keywords(source["snippet"]["title"], source["snippet"]["description"])
    candidate = make_video(
        title="Bake sourdough at home",
        duration="PT15M",
        channel_id="UC_OTHER",
        views=1000,
        likes=1,
        days_ago=10,
    )

    score = score_candidate(candidate, source, keywords, now=NOW, rng=ZeroRandom())
    # overlap 2/3 * 0.3, other channel, 10-60 minutes, 1k views, 0.1% likes, fresh
    expected = 0.2 + 0.1 + 0.2 + 0.3 + 0.1 + 0.2
    assert score == pytest.approx(expected)


def test_score_candidate_skips_missing_sections():
    source = make_video(channel_id="UC_SOURCE")
    candidate = {"id": "bare", "snippet": {"title": "Unrelated", "channelId": "UC_SOURCE"}}
    assert score_candidate(candidate, source, ["bread"], now=NOW, rng=ZeroRandom()) == pytest.approx(-0.2)


def test_score_candidate_jitter_stays_in_range():
    source = make_video(video_id="source", channel_id="UC_SOURCE")
    candidate = make_video(views=50000, likes=900, days_ago=45)
    keywords = ["sourdough"]

    base = score_candidate(candidate, source, keywords, now=NOW, rng=ZeroRandom())
    for seed in range(20):
        jittered = score_candidate(candidate, source, keywords, now=NOW, rng=random.Random(seed))
        assert 0.0 <= jittered - base < 0.1


def test_shuffle_with_relevance_is_permutation():
    items = list(range(17))
    result = shuffle_with_relevance(items, rng=random.Random(7))
    assert sorted(result) == items
    assert items == list(range(17))


def test_shuffle_with_relevance_small_inputs():
    assert shuffle_with_relevance([]) == []
    assert shuffle_with_relevance(["only"]) == ["only"]
    assert sorted(shuffle_with_relevance([3, 1, 2, 0], rng=random.Random(1))) == [0, 1, 2, 3]


def test_shuffle_with_relevance_keeps_top_third_leading():
    items = list(range(9))
    result = shuffle_with_relevance(items, rng=random.Random(3))
    assert {result[0], result[3], result[6]} == {0, 1, 2}
    assert {result[1], result[4], result[7]} == {3, 4, 5}
    assert {result[2], result[5], result[8]} == {6, 7, 8}


def test_shuffle_with_relevance_is_reproducible_with_seed():
    items = list(range(12))
    assert shuffle_with_relevance(items, rng=random.Random(42)) == shuffle_with_relevance(
        items, rng=random.Random(42)
    )
