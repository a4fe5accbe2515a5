"""Highlight pipeline runner.

Orchestrates one run: fetch the source, detect peak moments, pack them into
the duration budget, cut each one, join the cuts and hand the reel over.
"""
import asyncio
import enum
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from reelmaker.config import Settings, settings
from reelmaker.errors import FinalizeError, NoHighlightsError, TranscodeError
from reelmaker.services.gemini_client import GeminiDetectionClient
from reelmaker.utils.fetch import SourceFetcher
from reelmaker.utils.ffmpeg import MediaTool

from .budget import allocate, fit_to_source
from .detection import MomentDetector
from .models import ExtractedClip, HighlightPlan, HighlightReel, SourceAsset
from .workspace import ResourceManager, ScratchWorkspace

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], Awaitable[None]]


class RunState(str, enum.Enum):
    """Stages of a run, in the only order they can happen."""
    FETCHING = "fetching"
    DETECTING = "detecting"
    ALLOCATING = "allocating"
    EXTRACTING = "extracting"
    CONCATENATING = "concatenating"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


_STATE_ORDER = [
    RunState.FETCHING,
    RunState.DETECTING,
    RunState.ALLOCATING,
    RunState.EXTRACTING,
    RunState.CONCATENATING,
    RunState.FINALIZING,
    RunState.DONE,
]


@dataclass
class PipelineRun:
    """State of a single run."""
    run_id: str
    source_url: str
    state: RunState = RunState.FETCHING
    history: List[RunState] = field(default_factory=lambda: [RunState.FETCHING])
    error: Optional[BaseException] = None

    @property
    def finished(self) -> bool:
        return self.state in (RunState.DONE, RunState.FAILED)

    def advance(self, state: RunState) -> None:
        """Move forward to `state`; backward or post-terminal moves are bugs."""
        if self.finished:
            raise RuntimeError(f"Run {self.run_id} already finished ({self.state.value})")
        if _STATE_ORDER.index(state) <= _STATE_ORDER.index(self.state):
            raise RuntimeError(f"Invalid transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        logger.info(f"[run {self.run_id[:8]}] {state.value}")

    def fail(self, error: BaseException) -> None:
        failed_in = self.state
        self.state = RunState.FAILED
        self.history.append(RunState.FAILED)
        self.error = error
        logger.error(
            f"[run {self.run_id[:8]}] failed during {failed_in.value}: "
            f"{type(error).__name__}: {error}"
        )


@dataclass
class PipelineConfig:
    """Per-pipeline knobs; defaults come from application settings."""
    budget_seconds: float = field(default_factory=lambda: settings.highlight_budget_seconds)
    min_clip_seconds: float = field(default_factory=lambda: settings.min_clip_seconds)
    max_parallel_extractions: int = field(default_factory=lambda: settings.max_parallel_extractions)
    output_dir: Path = field(default_factory=lambda: settings.output_dir)

    def __post_init__(self):
        if self.budget_seconds <= 0:
            raise ValueError("budget_seconds must be positive")
        if self.min_clip_seconds < 0:
            raise ValueError("min_clip_seconds must not be negative")
        if self.max_parallel_extractions <= 0:
            raise ValueError("max_parallel_extractions must be positive")
        self.output_dir = Path(self.output_dir)

    @classmethod
    def from_settings(cls, app_settings: Settings = settings) -> "PipelineConfig":
        return cls(
            budget_seconds=app_settings.highlight_budget_seconds,
            min_clip_seconds=app_settings.min_clip_seconds,
            max_parallel_extractions=app_settings.max_parallel_extractions,
            output_dir=app_settings.output_dir,
        )


def _validate_output_filename(filename: Optional[str]) -> None:
    if filename is None:
        return
    if not filename or Path(filename).name != filename or filename in (".", ".."):
        raise ValueError(f"output_filename must be a plain file name, got {filename!r}")


class HighlightPipeline:
    """
    Turns a source video URL into a highlight reel on local disk.

    The pipeline holds no per-run state, so one instance can serve many
    concurrent runs; each run gets its own scratch workspace.
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        detector: MomentDetector,
        media: MediaTool,
        resources: ResourceManager,
        config: Optional[PipelineConfig] = None,
    ):
        self.fetcher = fetcher
        self.detector = detector
        self.media = media
        self.resources = resources
        self.config = config or PipelineConfig.from_settings()

    async def run(
        self,
        source_url: str,
        output_dir: Optional[str | Path] = None,
        output_filename: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        Build a highlight reel from a video URL.

        Args:
            source_url: URL of the source video
            output_dir: Directory for the reel (defaults to config.output_dir)
            output_filename: File name for the reel (defaults to highlights-<run id>.mp4)
            progress_callback: Optional async callback(percent, message)

        Returns:
            Path to the reel, outside the scratch workspace

        Raises:
            FetchError, DetectionError, NoHighlightsError, TranscodeError,
            ConcatenationError, FinalizeError: when the corresponding stage fails
        """
        _validate_output_filename(output_filename)

        async def report_progress(pct: float, msg: str):
            if progress_callback:
                await progress_callback(pct, msg)
            logger.info(f"[{pct:.0f}%] {msg}")

        workspace = self.resources.open()
        run = PipelineRun(run_id=workspace.run_id, source_url=source_url)
        logger.info(f"[run {run.run_id[:8]}] starting for {source_url}")

        try:
            # Stage 1: Fetch
            await report_progress(0, "Downloading source video...")
            source = await self.fetcher.fetch(source_url, workspace)
            await self._probe_source(source)

            # Stage 2: Detect
            run.advance(RunState.DETECTING)
            await report_progress(20, "Detecting peak moments...")
            proposals = await self.detector.detect(source.path)
            if proposals and source.duration:
                proposals = fit_to_source(proposals, source.duration)

            # Stage 3: Allocate
            run.advance(RunState.ALLOCATING)
            plan = allocate(
                proposals,
                self.config.budget_seconds,
                self.config.min_clip_seconds,
            )
            if not plan:
                raise NoHighlightsError(
                    f"No usable highlight segments found in {source_url} "
                    f"({len(proposals)} proposals)"
                )
            await report_progress(
                40,
                f"Planned {len(plan)} segments ({plan.total_duration:.2f}s "
                f"of {plan.budget_seconds:g}s budget)"
            )

            # Stage 4: Extract
            run.advance(RunState.EXTRACTING)
            clips = await self._extract_all(source, plan, workspace)
            await report_progress(80, f"Extracted {len(clips)} clips")

            # Stage 5: Concatenate
            run.advance(RunState.CONCATENATING)
            reel_path = workspace.new_path("reel", ".mp4")
            manifest_path = workspace.new_path("concat", ".txt")
            reel = await self.media.concatenate(clips, reel_path, manifest_path)
            await self._probe_reel(reel)
            await report_progress(90, "Joined highlight reel")

            # Stage 6: Finalize
            run.advance(RunState.FINALIZING)
            final_path = self._finalize(reel, workspace, output_dir, output_filename)

            run.advance(RunState.DONE)
            await report_progress(100, f"Highlight reel ready at {final_path}")
            return final_path

        except BaseException as e:
            run.fail(e)
            raise

        finally:
            workspace.cleanup()

    async def _probe_source(self, source: SourceAsset) -> None:
        """Record the source duration when ffprobe can tell us."""
        try:
            info = await self.media.probe(source.path)
        except TranscodeError as e:
            logger.warning(f"Could not probe source video: {e}")
            return
        source.duration = info.duration or None
        logger.info(
            f"Source: {info.duration:.1f}s, {info.width}x{info.height}, "
            f"{info.video_codec}/{info.audio_codec or 'no audio'}"
        )

    async def _probe_reel(self, reel: HighlightReel) -> None:
        try:
            info = await self.media.probe(reel.path)
        except TranscodeError as e:
            logger.warning(f"Could not probe highlight reel: {e}")
            return
        reel.duration = info.duration
        logger.info(
            f"Highlight reel duration: {info.duration:.2f}s "
            f"(planned {reel.planned_duration:.2f}s)"
        )

    async def _extract_all(
        self,
        source: SourceAsset,
        plan: HighlightPlan,
        workspace: ScratchWorkspace,
    ) -> List[ExtractedClip]:
        """
        Cut every planned segment, a few at a time.

        Clips come back in plan order regardless of which finished first. The
        first failure cancels the extractions still pending or running.
        """
        semaphore = asyncio.Semaphore(self.config.max_parallel_extractions)

        async def extract_one(index: int, segment) -> ExtractedClip:
            async with semaphore:
                output_path = workspace.new_path(f"clip-{index:02d}", ".mp4")
                logger.info(
                    f"Extracting segment {index + 1}/{len(plan)}: "
                    f"{segment.start:.2f}s to {segment.end:.2f}s"
                )
                return await self.media.extract(source.path, segment, output_path, index=index)

        tasks = [
            asyncio.create_task(extract_one(i, segment))
            for i, segment in enumerate(plan.segments)
        ]
        try:
            clips = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return sorted(clips, key=lambda clip: clip.index)

    def _finalize(
        self,
        reel: HighlightReel,
        workspace: ScratchWorkspace,
        output_dir: Optional[str | Path],
        output_filename: Optional[str],
    ) -> Path:
        """
        Move the reel out of the workspace to its destination.

        Raises:
            FinalizeError: If the destination cannot be created or written
        """
        dest_dir = Path(output_dir) if output_dir else self.config.output_dir
        filename = output_filename or f"highlights-{workspace.run_id}.mp4"
        dest = dest_dir / filename
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FinalizeError(f"Could not create output directory {dest_dir}: {e}") from e

        # Stage under a private name so a failed move never leaves a partial reel
        staging = dest_dir / f".{filename}.{workspace.run_id}.part"
        try:
            shutil.move(str(reel.path), str(staging))
            os.replace(staging, dest)
        except OSError as e:
            staging.unlink(missing_ok=True)
            raise FinalizeError(f"Could not save highlight reel to {dest}: {e}") from e

        workspace.release(reel.path)
        reel.path = dest
        logger.info(f"Highlight reel saved to {dest}")
        return dest


def build_pipeline(
    app_settings: Settings = settings,
    config: Optional[PipelineConfig] = None,
) -> HighlightPipeline:
    """Construct a pipeline with the real Gemini, HTTP and ffmpeg collaborators."""
    config = config or PipelineConfig.from_settings(app_settings)
    client = GeminiDetectionClient(
        api_key=app_settings.gemini_api_key,
        model=app_settings.gemini_model,
    )
    return HighlightPipeline(
        fetcher=SourceFetcher(
            timeout=app_settings.fetch_timeout_seconds,
            chunk_size=app_settings.fetch_chunk_size,
        ),
        detector=MomentDetector(
            client,
            budget_seconds=config.budget_seconds,
            max_span_seconds=app_settings.detection_max_span_seconds,
        ),
        media=MediaTool(
            ffmpeg_path=app_settings.ffmpeg_path,
            ffprobe_path=app_settings.ffprobe_path,
            ffmpeg_timeout=app_settings.ffmpeg_timeout_seconds,
            ffprobe_timeout=app_settings.ffprobe_timeout_seconds,
        ),
        resources=ResourceManager(app_settings.scratch_dir),
        config=config,
    )


async def extract_video_highlights(
    source_url: str,
    output_dir: Optional[str | Path] = None,
    output_filename: Optional[str] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Path:
    """
    Simplified interface: build a default pipeline and run it once.

    Returns the path of the highlight reel.
    """
    pipeline = build_pipeline()
    return await pipeline.run(
        source_url,
        output_dir=output_dir,
        output_filename=output_filename,
        progress_callback=progress_callback,
    )
