"""Peak-moment detection.

The detection service answers in free-form text that is usually, but not
always, a JSON array of [start, end] pairs. The answer is read in two stages:

1. Structured: strip code fences, take the outermost [...] expression and
   parse it as JSON pairs, dropping invalid entries one by one.
2. Numeric fallback: pair up every number in the text and keep the pairs
   that look like plausible short moments.

The first stage that yields at least one segment wins.
"""
import asyncio
import json
import logging
import math
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from reelmaker.config import settings
from reelmaker.errors import DetectionError, InvalidSegmentError
from reelmaker.services.gemini_client import DetectionClient

from .models import SegmentProposal, TimeSegment

logger = logging.getLogger(__name__)


# =============================================================================
# Parse results
# =============================================================================

@dataclass(frozen=True)
class ParseSucceeded:
    """A parse stage produced at least one valid segment."""
    segments: Tuple[TimeSegment, ...]
    stage: str


@dataclass(frozen=True)
class ParseFailed:
    """A parse stage produced nothing usable."""
    stage: str
    reason: str


ParseResult = Union[ParseSucceeded, ParseFailed]


# =============================================================================
# Parsing
# =============================================================================

_FENCE_RE = re.compile(r"^\s*```[\w-]*[ \t]*\n?|\n?[ \t]*```\s*$")

# Plain decimals plus m:ss / h:mm:ss timestamps. A "-" counts as a sign only
# when it does not follow a number, so "12-15" stays a range.
_NUMBER_RE = re.compile(r"(?<![\d.])-?\d+(?::\d{1,2})*(?:\.\d+)?")


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang line and a trailing ``` if present."""
    return _FENCE_RE.sub("", text.strip()).strip()


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _make_segment(start: Any, end: Any) -> Optional[TimeSegment]:
    if not (_is_number(start) and _is_number(end)):
        return None
    try:
        return TimeSegment(start, end)
    except InvalidSegmentError:
        return None


def _entry_bounds(entry: Any) -> Tuple[Any, Any]:
    if isinstance(entry, dict):
        return entry.get("start"), entry.get("end")
    if isinstance(entry, (list, tuple)) and len(entry) == 2:
        return entry[0], entry[1]
    return None, None


def parse_structured(text: str) -> ParseResult:
    """Parse the outermost JSON array in `text` as [start, end] pairs."""
    stage = "structured"
    body = strip_code_fences(text)

    first = body.find("[")
    last = body.rfind("]")
    if first == -1 or last <= first:
        return ParseFailed(stage, "no bracketed array found")

    try:
        data = json.loads(body[first:last + 1])
    except json.JSONDecodeError as e:
        return ParseFailed(stage, f"invalid JSON: {e}")

    if not isinstance(data, list):
        return ParseFailed(stage, "top-level value is not an array")

    # A lone pair instead of a list of pairs
    if len(data) == 2 and all(_is_number(v) for v in data):
        data = [data]

    segments = []
    for i, entry in enumerate(data):
        segment = _make_segment(*_entry_bounds(entry))
        if segment is None:
            logger.debug(f"Discarding entry {i}: {entry!r}")
            continue
        segments.append(segment)

    if not segments:
        return ParseFailed(stage, "array contained no valid pairs")
    return ParseSucceeded(tuple(segments), stage)


def _token_to_seconds(token: str) -> float:
    sign = -1.0 if token.startswith("-") else 1.0
    seconds = 0.0
    for part in token.lstrip("-").split(":"):
        seconds = seconds * 60 + float(part)
    return sign * seconds


def parse_numeric_fallback(text: str, max_span: Optional[float] = None) -> ParseResult:
    """
    Pair every number in `text` sequentially into segments.

    Pairs that are not valid segments, or that span more than `max_span`
    seconds, are dropped.
    """
    stage = "numeric"
    if max_span is None:
        max_span = settings.detection_max_span_seconds

    values = [_token_to_seconds(tok) for tok in _NUMBER_RE.findall(text)]
    if len(values) < 2:
        return ParseFailed(stage, "fewer than two numbers in response")

    segments = []
    for start, end in zip(values[0::2], values[1::2]):
        segment = _make_segment(start, end)
        if segment is None or segment.duration > max_span:
            logger.debug(f"Discarding numeric pair ({start}, {end})")
            continue
        segments.append(segment)

    if not segments:
        return ParseFailed(stage, "no plausible number pairs")
    return ParseSucceeded(tuple(segments), stage)


def parse_segments(text: str, max_span: Optional[float] = None) -> ParseResult:
    """Run the parse stages in order and return the first success."""
    stages: Sequence[Callable[[str], ParseResult]] = (
        parse_structured,
        lambda t: parse_numeric_fallback(t, max_span),
    )
    result: ParseResult = ParseFailed("none", "empty response")
    if not text or not text.strip():
        return result
    for stage in stages:
        result = stage(text)
        if isinstance(result, ParseSucceeded):
            return result
        logger.info(f"{result.stage} parse failed: {result.reason}")
    return result


# =============================================================================
# Detector
# =============================================================================

def build_detection_prompt(
    budget_seconds: float,
    min_moments: int = 3,
    max_moments: int = 5,
    min_length: float = 2.0,
    max_length: float = 4.0,
) -> str:
    """Instruction sent alongside the video."""
    return (
        "Analyze this video and identify its peak moments: the most engaging, "
        "high-energy parts a viewer would want to see in a highlight reel.\n"
        f"Pick {min_moments} to {max_moments} moments, each {min_length:g} to "
        f"{max_length:g} seconds long. Together they must not exceed "
        f"{budget_seconds:g} seconds.\n"
        "List the best moment first.\n"
        "Return your response as a JSON array of timestamp pairs, where each pair is "
        "[start_time_in_seconds, end_time_in_seconds].\n"
        "Only return the JSON array, nothing else."
    )


class MomentDetector:
    """Asks a detection client for peak moments and parses its answer."""

    def __init__(
        self,
        client: DetectionClient,
        budget_seconds: Optional[float] = None,
        max_span_seconds: Optional[float] = None,
    ):
        self.client = client
        self.budget_seconds = budget_seconds or settings.highlight_budget_seconds
        self.max_span_seconds = max_span_seconds or settings.detection_max_span_seconds

    async def detect(self, video_path: str | Path) -> List[SegmentProposal]:
        """
        Detect candidate highlight segments in a local video.

        Args:
            video_path: Path to the fetched source video

        Returns:
            Proposals in the service's order; empty if nothing usable came back

        Raises:
            DetectionError: If the service call fails
        """
        video_path = Path(video_path)
        video_bytes = await asyncio.to_thread(video_path.read_bytes)
        mime_type = mimetypes.guess_type(video_path.name)[0] or "video/mp4"

        prompt = build_detection_prompt(self.budget_seconds)
        try:
            response_text = await self.client.generate(prompt, video_bytes, mime_type)
        except Exception as e:
            if isinstance(e, DetectionError):
                raise
            raise DetectionError(f"Detection request failed: {e}") from e
        response_text = response_text or ""
        logger.debug(f"Raw detection response: {response_text[:500]!r}")

        result = parse_segments(response_text, self.max_span_seconds)
        if isinstance(result, ParseFailed):
            logger.warning(f"No usable segments in detection response ({result.reason})")
            return []

        proposals = [
            SegmentProposal(segment=segment, rank=rank)
            for rank, segment in enumerate(result.segments)
        ]
        logger.info(f"Detected {len(proposals)} moments ({result.stage} parse)")
        for proposal in proposals:
            logger.info(f"  #{proposal.rank}: {proposal.segment}")
        return proposals
