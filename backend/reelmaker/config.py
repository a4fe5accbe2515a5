"""Application configuration."""
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App settings
    app_name: str = "ReelMaker"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Data directories
    scratch_dir: Optional[Path] = None  # None = system temp dir
    output_dir: Path = Path("./data/highlights")

    # Detection service (Gemini)
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    detection_max_span_seconds: float = 15.0  # Sanity ceiling for fallback-parsed spans

    # Highlight packing
    highlight_budget_seconds: float = 30.0  # Max aggregate reel duration
    min_clip_seconds: float = 1.0  # Shortest truncated clip worth keeping
    max_parallel_extractions: int = 2

    # Source download
    fetch_timeout_seconds: float = 120.0
    fetch_chunk_size: int = 1024 * 1024

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffmpeg_timeout_seconds: float = 600.0
    ffprobe_timeout_seconds: float = 30.0

    # Clip encoding settings (identical for every clip so the join can stream-copy)
    export_video_codec: str = "libx264"
    export_video_preset: str = "veryfast"
    export_video_crf: int = 18
    export_frame_rate: int = 30
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "192k"
    export_audio_sample_rate: int = 48000


settings = Settings()
