"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


# =============================================================================
# Highlight Schemas
# =============================================================================

class HighlightRequest(BaseModel):
    """Request to build a highlight reel from a video URL."""
    source_url: str = Field(..., min_length=1, description="URL of the source video")
    output_dir: Optional[str] = Field(None, description="Directory for the reel (server default if not provided)")
    output_filename: Optional[str] = Field(None, description="File name for the reel")


class HighlightResponse(BaseModel):
    """Highlight reel response."""
    message: str
    highlights_path: str
    original_video: str
    created_at: datetime


# =============================================================================
# System Schemas
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    gemini_configured: bool
    message: Optional[str] = None
