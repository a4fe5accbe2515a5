"""API routes."""
import logging
from datetime import datetime, timezone
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException

from reelmaker.config import settings
from reelmaker.errors import (
    ConcatenationError,
    DetectionError,
    FetchError,
    FinalizeError,
    NoHighlightsError,
    TranscodeError,
)
from reelmaker.pipeline.runner import HighlightPipeline, build_pipeline
from reelmaker.utils.ffmpeg import check_ffmpeg_available, check_ffprobe_available
from reelmaker.api.schemas import HealthResponse, HighlightRequest, HighlightResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _shared_pipeline() -> HighlightPipeline:
    return build_pipeline()


def get_pipeline() -> HighlightPipeline:
    """Shared pipeline; runs are isolated by their own workspaces."""
    try:
        return _shared_pipeline()
    except DetectionError as e:
        # Missing Gemini credentials
        raise HTTPException(status_code=503, detail=str(e))


# =============================================================================
# Health & System
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()
    gemini_ok = bool(settings.gemini_api_key)

    all_ok = ffmpeg_ok and ffprobe_ok and gemini_ok

    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        if not gemini_ok:
            missing.append("GEMINI_API_KEY")
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        gemini_configured=gemini_ok,
        message=message
    )


# =============================================================================
# Highlights
# =============================================================================

@router.post("/video/highlights", response_model=HighlightResponse)
async def create_video_highlights(
    request: HighlightRequest,
    pipeline: HighlightPipeline = Depends(get_pipeline),
):
    """Build a highlight reel from a video URL and return where it was saved."""
    logger.info(f"Creating video highlights for {request.source_url}")

    try:
        highlights_path = await pipeline.run(
            request.source_url,
            output_dir=request.output_dir,
            output_filename=request.output_filename,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NoHighlightsError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (FetchError, DetectionError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    except (TranscodeError, ConcatenationError, FinalizeError) as e:
        raise HTTPException(status_code=500, detail=f"Failed to create video highlights: {e}")

    return HighlightResponse(
        message="Video highlights created successfully",
        highlights_path=str(highlights_path),
        original_video=request.source_url,
        created_at=datetime.now(timezone.utc),
    )
