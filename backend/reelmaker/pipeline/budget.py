"""Greedy packing of detected moments into a fixed reel duration."""
import logging
import math
from typing import Iterable, List, Optional, Sequence

from .models import HighlightPlan, SegmentProposal, TimeSegment

logger = logging.getLogger(__name__)


def _truncate_within(
    segment: TimeSegment,
    cumulative: float,
    budget_seconds: float,
) -> Optional[TimeSegment]:
    """
    Cut `segment` so that `cumulative + duration` stays within the budget.

    `start + remaining` rounds, so `end - start` can come out a few ulps over
    `remaining` for large starts. The end is stepped down until the sum fits.
    Returns None if nothing of the segment survives.
    """
    end = segment.start + (budget_seconds - cumulative)
    while end > segment.start and cumulative + (end - segment.start) > budget_seconds:
        end = math.nextafter(end, segment.start)
    if end <= segment.start:
        return None
    return TimeSegment(segment.start, end)


def allocate(
    proposals: Sequence[SegmentProposal],
    budget_seconds: float,
    min_clip_seconds: float,
) -> HighlightPlan:
    """
    Select proposals, in rank order, until the budget is used up.

    A proposal that fits is accepted as is. The first proposal that does not
    fit is truncated to the remaining budget when at least
    `min_clip_seconds` remain, otherwise it is dropped. Either way packing
    stops there.

    Args:
        proposals: Detected proposals in priority order
        budget_seconds: Hard ceiling on the sum of accepted durations
        min_clip_seconds: Shortest truncated clip worth keeping

    Returns:
        HighlightPlan (possibly empty)
    """
    if budget_seconds <= 0:
        raise ValueError("budget_seconds must be positive")
    if min_clip_seconds < 0:
        raise ValueError("min_clip_seconds must not be negative")

    accepted: List[TimeSegment] = []
    cumulative = 0.0
    truncated = False

    for proposal in proposals:
        segment = proposal.segment
        if cumulative + segment.duration <= budget_seconds:
            accepted.append(segment)
            cumulative += segment.duration
            continue

        remaining = budget_seconds - cumulative
        cut = None
        if remaining > 0 and remaining >= min_clip_seconds:
            cut = _truncate_within(segment, cumulative, budget_seconds)
        if cut is not None:
            accepted.append(cut)
            truncated = True
            logger.debug(
                f"Truncated proposal #{proposal.rank} {segment} to {cut.duration:.2f}s"
            )
        else:
            logger.debug(
                f"Dropped proposal #{proposal.rank} {segment}: "
                f"only {remaining:.2f}s of budget left"
            )
        break

    return HighlightPlan(
        segments=tuple(accepted),
        budget_seconds=budget_seconds,
        truncated=truncated,
    )


def fit_to_source(
    proposals: Iterable[SegmentProposal],
    source_duration: float,
) -> List[SegmentProposal]:
    """
    Clip proposals to the probed source length.

    Proposals starting at or after the end of the source are dropped; the
    rest keep their rank and have their end clamped to the source duration.
    """
    fitted = []
    for proposal in proposals:
        segment = proposal.segment
        if segment.start >= source_duration:
            logger.debug(f"Dropped proposal #{proposal.rank} {segment}: past end of source")
            continue
        if segment.end > source_duration:
            segment = TimeSegment(segment.start, source_duration)
            proposal = SegmentProposal(segment=segment, rank=proposal.rank)
        fitted.append(proposal)
    return fitted
