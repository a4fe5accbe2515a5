"""Data types shared by the highlight pipeline stages."""
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from reelmaker.errors import InvalidSegmentError


@dataclass(frozen=True)
class TimeSegment:
    """A [start, end] interval in seconds inside the source video."""
    start: float
    end: float

    def __post_init__(self):
        for name in ("start", "end"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidSegmentError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise InvalidSegmentError(f"{name} must be finite, got {value!r}")
        if self.start < 0:
            raise InvalidSegmentError(f"start must be >= 0, got {self.start}")
        if self.start >= self.end:
            raise InvalidSegmentError(
                f"start must be before end, got [{self.start}, {self.end}]"
            )
        # Normalise ints so equality and formatting behave the same everywhere
        object.__setattr__(self, "start", float(self.start))
        object.__setattr__(self, "end", float(self.end))

    @property
    def duration(self) -> float:
        return self.end - self.start

    def truncated(self, length: float) -> "TimeSegment":
        """Return a copy that keeps only the first `length` seconds."""
        return TimeSegment(self.start, self.start + length)

    def __repr__(self):
        return f"TimeSegment({self.start:.2f}-{self.end:.2f}, dur={self.duration:.2f}s)"


@dataclass(frozen=True)
class SegmentProposal:
    """A detected segment plus its rank in the detector's answer (0 = best)."""
    segment: TimeSegment
    rank: int

    @property
    def duration(self) -> float:
        return self.segment.duration


@dataclass(frozen=True)
class HighlightPlan:
    """Segments accepted for the reel, in selection order."""
    segments: Tuple[TimeSegment, ...]
    budget_seconds: float
    truncated: bool = False

    @property
    def total_duration(self) -> float:
        return sum(seg.duration for seg in self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    def __bool__(self) -> bool:
        return bool(self.segments)


@dataclass
class SourceAsset:
    """The downloaded source video."""
    url: str
    path: Path
    duration: Optional[float] = None


@dataclass(frozen=True)
class ExtractedClip:
    """A re-encoded clip cut from the source for one planned segment."""
    path: Path
    segment: TimeSegment
    index: int


@dataclass
class HighlightReel:
    """The joined highlight video."""
    path: Path
    segments: Tuple[TimeSegment, ...] = field(default_factory=tuple)
    duration: Optional[float] = None

    @property
    def planned_duration(self) -> float:
        return sum(seg.duration for seg in self.segments)
