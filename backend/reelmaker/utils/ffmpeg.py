"""FFmpeg and ffprobe utilities."""
import asyncio
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from reelmaker.config import settings
from reelmaker.errors import ConcatenationError, TranscodeError
from reelmaker.pipeline.models import ExtractedClip, HighlightReel, TimeSegment

logger = logging.getLogger(__name__)


@dataclass
class VideoInfo:
    """Video metadata container."""
    duration: float
    width: int
    height: int
    fps: float
    video_codec: str
    audio_codec: Optional[str]
    format_name: str
    bit_rate: Optional[int]


@dataclass
class ProcessResult:
    """Exit status and captured output of one tool invocation."""
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class FFmpegError(Exception):
    """FFmpeg related error."""
    pass


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


class TranscodeRunner:
    """Runs an external command and captures its exit code and output."""

    async def run(self, args: Sequence[str], timeout: Optional[float] = None) -> ProcessResult:
        """
        Run a command to completion.

        Args:
            args: Program followed by its arguments
            timeout: Seconds to wait before killing the process

        Returns:
            ProcessResult with exit code, stdout and stderr

        Raises:
            FFmpegError: If the process cannot be started or times out
        """
        cmd = [str(arg) for arg in args]
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise FFmpegError(f"Failed to start {cmd[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            # May have exited between the timeout and here
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            raise FFmpegError(f"{cmd[0]} timed out after {timeout}s")
        except asyncio.CancelledError:
            # Don't leave orphaned encoders behind when a sibling step fails
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        return ProcessResult(
            exit_code=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


def _format_seconds(value: float) -> str:
    return f"{value:.3f}"


def _escape_concat_path(path: Path) -> str:
    """Quote a path for an ffmpeg concat manifest line."""
    return "'" + str(path).replace("'", "'\\''") + "'"


def build_concat_manifest(paths: Sequence[Path]) -> str:
    """Build concat demuxer manifest content, one clip per line, in order."""
    return "".join(f"file {_escape_concat_path(Path(p).resolve())}\n" for p in paths)


class MediaTool:
    """
    Extract, join and probe operations on top of a TranscodeRunner.

    All clips are re-encoded with the same fixed settings so they can be
    joined with a stream copy.
    """

    def __init__(
        self,
        runner: Optional[TranscodeRunner] = None,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        ffmpeg_timeout: Optional[float] = None,
        ffprobe_timeout: Optional[float] = None,
    ):
        self.runner = runner or TranscodeRunner()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path
        self.ffmpeg_timeout = ffmpeg_timeout or settings.ffmpeg_timeout_seconds
        self.ffprobe_timeout = ffprobe_timeout or settings.ffprobe_timeout_seconds

    def extract_args(self, source_path: Path, segment: TimeSegment, output_path: Path) -> List[str]:
        """ffmpeg arguments for a frame-accurate, re-encoded cut."""
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            # Input-side seek: decodes from the previous keyframe and drops
            # frames up to the exact offset, so the cut is not keyframe-snapped
            "-ss", _format_seconds(segment.start),
            "-i", str(source_path),
            "-t", _format_seconds(segment.duration),
            "-map", "0:v:0",
            "-map", "0:a:0?",
            "-vf", f"fps={settings.export_frame_rate},format=yuv420p",
            "-c:v", settings.export_video_codec,
            "-preset", settings.export_video_preset,
            "-crf", str(settings.export_video_crf),
            "-c:a", settings.export_audio_codec,
            "-b:a", settings.export_audio_bitrate,
            "-ar", str(settings.export_audio_sample_rate),
            "-ac", "2",
            "-avoid_negative_ts", "make_zero",
            "-movflags", "+faststart",
            str(output_path)
        ]

    async def extract(
        self,
        source_path: str | Path,
        segment: TimeSegment,
        output_path: str | Path,
        index: int = 0,
    ) -> ExtractedClip:
        """
        Cut one segment out of the source video.

        Args:
            source_path: Path to source video
            segment: Interval to cut
            output_path: Path for the clip
            index: Position of the segment in the plan

        Returns:
            ExtractedClip

        Raises:
            TranscodeError: If ffmpeg fails or produces no output
        """
        source_path = Path(source_path)
        output_path = Path(output_path)

        try:
            result = await self.runner.run(
                self.extract_args(source_path, segment, output_path),
                timeout=self.ffmpeg_timeout,
            )
        except FFmpegError as e:
            raise TranscodeError(f"Extraction of {segment} failed: {e}") from e

        if not result.ok:
            raise TranscodeError(
                f"Extraction of {segment} failed",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise TranscodeError(
                f"Extraction of {segment} produced no output",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        return ExtractedClip(path=output_path, segment=segment, index=index)

    async def concatenate(
        self,
        clips: Sequence[ExtractedClip],
        output_path: str | Path,
        manifest_path: Optional[str | Path] = None,
    ) -> HighlightReel:
        """
        Join clips, in the given order, into one video.

        Args:
            clips: Clips in reel order
            output_path: Path for the joined video
            manifest_path: Where to write the concat manifest

        Returns:
            HighlightReel

        Raises:
            ConcatenationError: If a clip is missing or the join fails
        """
        output_path = Path(output_path)
        if manifest_path is None:
            manifest_path = output_path.parent / f"{output_path.stem}-concat.txt"
        manifest_path = Path(manifest_path)

        if not clips:
            raise ConcatenationError("No clips provided for joining")

        for clip in clips:
            if not clip.path.exists():
                raise ConcatenationError(f"Clip file not found: {clip.path}")

        manifest_path.write_text(
            build_concat_manifest([clip.path for clip in clips]), encoding="utf-8"
        )
        logger.debug(f"Concat manifest {manifest_path}:\n{manifest_path.read_text()}")

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-f", "concat",
            "-safe", "0",
            "-i", str(manifest_path),
            "-c", "copy",
            "-movflags", "+faststart",
            str(output_path)
        ]

        try:
            result = await self.runner.run(cmd, timeout=self.ffmpeg_timeout)
        except FFmpegError as e:
            raise ConcatenationError(f"Join failed: {e}") from e

        if not result.ok:
            raise ConcatenationError(
                "Join failed",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ConcatenationError(
                f"Joined video was not created: {output_path}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        return HighlightReel(
            path=output_path,
            segments=tuple(clip.segment for clip in clips),
        )

    async def probe(self, video_path: str | Path) -> VideoInfo:
        """
        Get video metadata using ffprobe.

        Args:
            video_path: Path to video file

        Returns:
            VideoInfo with video metadata

        Raises:
            TranscodeError: If ffprobe fails
        """
        video_path = Path(video_path)
        if not video_path.exists():
            raise TranscodeError(f"Video file not found: {video_path}")

        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(video_path)
        ]

        try:
            result = await self.runner.run(cmd, timeout=self.ffprobe_timeout)
        except FFmpegError as e:
            raise TranscodeError(f"ffprobe error: {e}") from e

        if not result.ok:
            raise TranscodeError("ffprobe failed", exit_code=result.exit_code, stderr=result.stderr)

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise TranscodeError(f"Failed to parse ffprobe output: {e}") from e

        return parse_probe_output(data)


def parse_probe_output(data: dict) -> VideoInfo:
    """
    Build VideoInfo from ffprobe's JSON document.

    Raises:
        TranscodeError: If there is no video stream or a field has an odd value
    """
    if not isinstance(data, dict):
        raise TranscodeError(f"Unexpected ffprobe output: {type(data).__name__}")

    video_stream = None
    audio_stream = None
    for stream in data.get("streams") or []:
        if not isinstance(stream, dict):
            continue
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio" and audio_stream is None:
            audio_stream = stream

    if not video_stream:
        raise TranscodeError("No video stream found")

    # Parse frame rate
    fps_str = str(video_stream.get("r_frame_rate", "30/1"))
    try:
        if "/" in fps_str:
            num, den = fps_str.split("/")
            fps = float(num) / float(den) if float(den) > 0 else 30.0
        else:
            fps = float(fps_str)
    except ValueError:
        fps = 30.0

    fmt = data.get("format") or {}
    try:
        duration = float(fmt.get("duration", 0) or 0)
        if duration == 0:
            duration = float(video_stream.get("duration", 0) or 0)

        return VideoInfo(
            duration=duration,
            width=int(video_stream.get("width", 0)),
            height=int(video_stream.get("height", 0)),
            fps=fps,
            video_codec=video_stream.get("codec_name", "unknown"),
            audio_codec=audio_stream.get("codec_name") if audio_stream else None,
            format_name=fmt.get("format_name", "unknown"),
            bit_rate=int(fmt.get("bit_rate", 0) or 0) or None
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise TranscodeError(f"Unexpected value in ffprobe output: {e}") from e
