import logging
import os
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

try:
    from backend.app.services.errors import (
        InvalidPageTokenError,
        InvalidSourcesError,
        MalformedHistoryError,
        NoRecommendationsError,
    )
    from backend.app.services.recommender import (
        channel_stats,
        parse_watch_history,
        process_history_file,
        process_urls,
    )
    from backend.app.services.youtube_client import (
        DEFAULT_TIMEOUT_SECONDS,
        YouTubeApiError,
        YouTubeNotFoundError,
        YouTubeQuotaExceededError,
    )
except ModuleNotFoundError:
    from app.services.errors import (
        InvalidPageTokenError,
        InvalidSourcesError,
        MalformedHistoryError,
        NoRecommendationsError,
    )
    from app.services.recommender import (
        channel_stats,
        parse_watch_history,
        process_history_file,
        process_urls,
    )
    from app.services.youtube_client import (
        DEFAULT_TIMEOUT_SECONDS,
        YouTubeApiError,
        YouTubeNotFoundError,
        YouTubeQuotaExceededError,
    )


# ---------------------------
# Config
# ---------------------------

load_dotenv()

logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

YOUTUBE_API_KEY = os.getenv("YOUTUBE_API_KEY")
YOUTUBE_API_TIMEOUT_SECONDS = float(os.getenv("YOUTUBE_API_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS)
RECOMMENDATION_RANKING = (
    os.getenv("RECOMMENDATION_RANKING", "off").strip().lower() in {"1", "true", "yes", "on"}
)


def require_api_key() -> str:
    if not YOUTUBE_API_KEY:
        raise HTTPException(status_code=500, detail="Missing YOUTUBE_API_KEY in backend/.env")
    return YOUTUBE_API_KEY


def parse_cors_origins() -> tuple[list[str], bool]:
    raw = (os.getenv("CORS_ALLOWED_ORIGINS") or "").strip()
    if not raw:
        return ["http://localhost:5173"], True
    if raw == "*":
        return ["*"], False
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        return ["http://localhost:5173"], True
    return origins, True


class RecommendationRequest(BaseModel):
    urls: list[str]


# ---------------------------
# App setup
# ---------------------------

app = FastAPI()

cors_origins, cors_credentials = parse_cors_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    return await call_next(request)


def error_response(status_code: int, detail: str, error_code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "error_code": error_code})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, _exc: RequestValidationError):
    return error_response(400, "Invalid request format. Expected { urls: [...] }", "invalid_request")


@app.exception_handler(InvalidPageTokenError)
async def invalid_page_token_handler(_request: Request, exc: InvalidPageTokenError):
    return error_response(400, str(exc), exc.error_code)


@app.exception_handler(InvalidSourcesError)
async def invalid_sources_handler(_request: Request, exc: InvalidSourcesError):
    return error_response(400, str(exc), exc.error_code)


@app.exception_handler(MalformedHistoryError)
async def malformed_history_handler(_request: Request, exc: MalformedHistoryError):
    return error_response(400, str(exc), exc.error_code)


@app.exception_handler(NoRecommendationsError)
async def no_recommendations_handler(_request: Request, exc: NoRecommendationsError):
    return error_response(404, str(exc), exc.error_code)


@app.exception_handler(YouTubeQuotaExceededError)
async def youtube_quota_exceeded_handler(_request: Request, exc: YouTubeQuotaExceededError):
    logger.error("YouTube quota exceeded: %s", exc)
    return error_response(403, "YouTube API quota exceeded. Please try again later.", "youtube_quota_exhausted")


@app.exception_handler(YouTubeNotFoundError)
async def youtube_not_found_handler(_request: Request, exc: YouTubeNotFoundError):
    logger.warning("YouTube resource not found: %s", exc)
    return error_response(
        404,
        "One or more videos not found. They might be private or deleted.",
        "video_not_found",
    )


@app.exception_handler(YouTubeApiError)
async def youtube_api_error_handler(_request: Request, exc: YouTubeApiError):
    logger.error("YouTube API failure (status %s): %s", exc.status_code, exc)
    return error_response(502, "Could not fetch YouTube data right now.", "youtube_unavailable")


def build_response(page, extra_stats: dict | None = None) -> dict:
    stats = channel_stats(page.items)
    if extra_stats:
        stats.update(extra_stats)
    logger.info(
        "Recommendation stats: %d videos, %d channels",
        len(page.items),
        stats["uniqueChannels"],
    )
    return {
        "recommendations": page.items,
        "nextPageToken": page.next_page_token,
        "total": len(page.items),
        "stats": stats,
        "ranking": RECOMMENDATION_RANKING,
    }


# ---------------------------
# Routes
# ---------------------------

@app.get("/health")
def health():
    return {
        "ok": True,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "api_key_configured": bool(YOUTUBE_API_KEY),
    }


@app.post("/api/recommendations")
def recommendations(
    payload: RecommendationRequest,
    page_token: str | None = Query(default=None, alias="pageToken"),
):
    api_key = require_api_key()
    page = process_urls(
        payload.urls,
        api_key,
        page_token=page_token,
        ranking=RECOMMENDATION_RANKING,
        timeout=YOUTUBE_API_TIMEOUT_SECONDS,
    )
    return build_response(page)


@app.post("/api/upload")
def upload_history(history: UploadFile | None = File(default=None)):
    if history is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    raw = history.file.read()
    entries = parse_watch_history(raw)
    logger.info("Processing %d watch history entries", len(entries))

    api_key = require_api_key()
    page = process_history_file(
        entries,
        api_key,
        ranking=RECOMMENDATION_RANKING,
        timeout=YOUTUBE_API_TIMEOUT_SECONDS,
    )
    return build_response(page, {"processedEntries": len(entries)})
