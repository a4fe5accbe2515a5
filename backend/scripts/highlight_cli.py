#!/usr/bin/env python3
"""
CLI tool to build a highlight reel from a video URL.

Usage:
    python scripts/highlight_cli.py <video_url> [--output-dir <dir>] [--output-filename <name>]

Example:
    python scripts/highlight_cli.py https://example.com/match.mp4 --output-dir ./reels
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from reelmaker.config import settings
from reelmaker.errors import HighlightError, NoHighlightsError
from reelmaker.pipeline.runner import PipelineConfig, build_pipeline


logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)


async def make_highlights(
    video_url: str,
    output_dir: Path = None,
    output_filename: str = None,
    config: PipelineConfig = None,
) -> Path:
    """
    Run the highlight pipeline once.

    Args:
        video_url: URL of the source video
        output_dir: Directory for the reel
        output_filename: File name for the reel
        config: Optional pipeline config override

    Returns:
        Path to the highlight reel
    """
    pipeline = build_pipeline(config=config)

    async def progress_callback(pct, msg):
        logger.debug(f"progress {pct:.0f}%: {msg}")

    return await pipeline.run(
        video_url,
        output_dir=output_dir,
        output_filename=output_filename,
        progress_callback=progress_callback,
    )


def main():
    parser = argparse.ArgumentParser(
        description="Build an AI-picked highlight reel from a video URL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Default 30s reel in ./data/highlights
    python scripts/highlight_cli.py https://example.com/video.mp4

    # 15s reel with a custom name
    python scripts/highlight_cli.py https://example.com/video.mp4 --budget 15 -f reel.mp4
        """
    )

    parser.add_argument(
        "video_url",
        help="URL of the source video"
    )

    parser.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=None,
        help=f"Output directory for the reel (default: {settings.output_dir})"
    )

    parser.add_argument(
        "--output-filename", "-f",
        default=None,
        help="File name for the reel (default: highlights-<run id>.mp4)"
    )

    parser.add_argument(
        "--budget", "-b",
        type=float,
        default=settings.highlight_budget_seconds,
        help="Maximum total reel duration in seconds"
    )

    parser.add_argument(
        "--min-clip",
        type=float,
        default=settings.min_clip_seconds,
        help="Shortest truncated clip worth keeping, in seconds"
    )

    args = parser.parse_args()

    try:
        config = PipelineConfig(
            budget_seconds=args.budget,
            min_clip_seconds=args.min_clip,
        )
        reel_path = asyncio.run(make_highlights(
            video_url=args.video_url,
            output_dir=args.output_dir,
            output_filename=args.output_filename,
            config=config,
        ))
    except ValueError as e:
        logger.error(str(e))
        sys.exit(2)
    except NoHighlightsError as e:
        logger.error(f"No highlights: {e}")
        sys.exit(3)
    except HighlightError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)

    print(reel_path)


if __name__ == "__main__":
    main()
