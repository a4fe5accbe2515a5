"""Tests for detection response parsing and the moment detector."""
import pytest

from reelmaker.errors import DetectionError
from reelmaker.pipeline.detection import (
    MomentDetector,
    ParseFailed,
    ParseSucceeded,
    build_detection_prompt,
    parse_numeric_fallback,
    parse_segments,
    parse_structured,
    strip_code_fences,
)
from reelmaker.pipeline.models import TimeSegment


class _FakeClient:
    def __init__(self, response: str = "", error: Exception = None):
        self.response = response
        self.error = error
        self.calls = []

    async def generate(self, prompt, video_bytes, mime_type):
        self.calls.append((prompt, video_bytes, mime_type))
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "source.mp4"
    path.write_bytes(b"fake video bytes")
    return path


class TestStripCodeFences:
    """Tests for code fence removal."""

    def test_json_fence(self):
        assert strip_code_fences("```json\n[[1.0,3.5]]\n```") == "[[1.0,3.5]]"

    def test_bare_fence(self):
        assert strip_code_fences("```\n[[1, 2]]\n```\n") == "[[1, 2]]"

    def test_no_fence(self):
        assert strip_code_fences("  [[1, 2]]  ") == "[[1, 2]]"


class TestStructuredParse:
    """Tests for the structured (JSON array) parse stage."""

    def test_two_pairs(self):
        result = parse_structured("[[1.0, 3.5], [10.0, 12.0]]")
        assert isinstance(result, ParseSucceeded)
        assert result.segments == (TimeSegment(1.0, 3.5), TimeSegment(10.0, 12.0))
        assert result.stage == "structured"

    def test_fenced_parses_identically(self):
        plain = parse_structured("[[1.0,3.5]]")
        fenced = parse_structured("```json\n[[1.0,3.5]]\n```")
        assert fenced == plain
        assert fenced.segments == (TimeSegment(1.0, 3.5),)

    def test_array_inside_prose(self):
        result = parse_structured("Sure! Here are the moments: [[4, 7], [12, 15]] Enjoy.")
        assert result.segments == (TimeSegment(4, 7), TimeSegment(12, 15))

    def test_invalid_entries_discarded_individually(self):
        text = '[[1, 3], [5, 5], [-2, 1], ["a", 4], [9, 7], [true, 2], [1, 2, 3], 7, [10, 12]]'
        result = parse_structured(text)
        assert result.segments == (TimeSegment(1, 3), TimeSegment(10, 12))

    def test_objects_with_start_end(self):
        result = parse_structured('[{"start": 2, "end": 5}, {"start": 8}]')
        assert result.segments == (TimeSegment(2, 5),)

    def test_single_flat_pair(self):
        result = parse_structured("[3.0, 6.0]")
        assert result.segments == (TimeSegment(3.0, 6.0),)

    def test_no_array(self):
        result = parse_structured("no timestamps here")
        assert isinstance(result, ParseFailed)

    def test_invalid_json(self):
        result = parse_structured("[[1, 2],, [3 4]]")
        assert isinstance(result, ParseFailed)
        assert "invalid JSON" in result.reason

    def test_all_entries_invalid(self):
        result = parse_structured("[[5, 1], [2, 2]]")
        assert isinstance(result, ParseFailed)


class TestNumericFallback:
    """Tests for the numeric fallback parse stage."""

    def test_prose(self):
        result = parse_numeric_fallback("moment around 5.2 to 9.8 seconds")
        assert isinstance(result, ParseSucceeded)
        assert result.segments[0] == TimeSegment(5.2, 9.8)
        assert all(seg.start < seg.end for seg in result.segments)

    def test_discards_long_spans(self):
        result = parse_numeric_fallback("from 10 to 90, then 100 to 103", max_span=15.0)
        assert result.segments == (TimeSegment(100, 103),)

    def test_discards_reversed_pairs(self):
        result = parse_numeric_fallback("9 then 4, and 20 to 22", max_span=15.0)
        assert result.segments == (TimeSegment(20, 22),)

    def test_timestamps(self):
        result = parse_numeric_fallback("best part is 1:05 - 1:08", max_span=15.0)
        assert result.segments == (TimeSegment(65, 68),)

    def test_hyphenated_range_not_negative(self):
        result = parse_numeric_fallback("12-15 seconds", max_span=15.0)
        assert result.segments == (TimeSegment(12, 15),)

    def test_negative_start_is_rejected(self):
        result = parse_numeric_fallback("the clip runs from -1.5 to 2 seconds", max_span=15.0)
        assert isinstance(result, ParseFailed)

    def test_negative_timestamp_keeps_sign(self):
        result = parse_numeric_fallback("-0:05 to 0:02, then 0:10 to 0:12", max_span=15.0)
        assert result.segments == (TimeSegment(10, 12),)

    def test_negative_pair_does_not_shift_later_pairs(self):
        result = parse_segments("from -3 to 1, best is 20 to 23", max_span=15.0)
        assert result.stage == "numeric"
        assert result.segments == (TimeSegment(20, 23),)

    def test_range_after_timestamp_not_negative(self):
        result = parse_numeric_fallback("1:05-1:08", max_span=15.0)
        assert result.segments == (TimeSegment(65, 68),)

    def test_single_number(self):
        assert isinstance(parse_numeric_fallback("at 42 seconds"), ParseFailed)


class TestParseSegments:
    """Tests for stage ordering."""

    def test_structured_wins(self):
        result = parse_segments("[[1, 3]] and also 50 to 52")
        assert result.stage == "structured"
        assert result.segments == (TimeSegment(1, 3),)

    def test_falls_back_when_structured_yields_nothing(self):
        result = parse_segments("[[5, 1]] but really 20.5 to 23", max_span=15.0)
        assert result.stage == "numeric"
        assert TimeSegment(20.5, 23) in result.segments

    def test_both_fail(self):
        assert isinstance(parse_segments("I could not find anything exciting."), ParseFailed)

    def test_empty(self):
        assert isinstance(parse_segments(""), ParseFailed)
        assert isinstance(parse_segments("   "), ParseFailed)


class TestPrompt:
    """Tests for the detection instruction."""

    def test_mentions_budget_and_shape(self):
        prompt = build_detection_prompt(30.0)
        assert "3 to 5" in prompt
        assert "2 to 4 seconds" in prompt
        assert "30 seconds" in prompt
        assert "JSON array" in prompt


class TestMomentDetector:
    """Tests for MomentDetector with a fake client."""

    @pytest.mark.asyncio
    async def test_returns_ranked_proposals(self, video_file):
        client = _FakeClient("```json\n[[5, 8], [20, 23], [40, 50]]\n```")
        detector = MomentDetector(client, budget_seconds=30.0)

        proposals = await detector.detect(video_file)

        assert [p.rank for p in proposals] == [0, 1, 2]
        assert proposals[2].segment == TimeSegment(40, 50)
        prompt, video_bytes, mime_type = client.calls[0]
        assert video_bytes == b"fake video bytes"
        assert mime_type == "video/mp4"
        assert "30 seconds" in prompt

    @pytest.mark.asyncio
    async def test_unusable_response_is_empty_not_error(self, video_file):
        detector = MomentDetector(_FakeClient("Sorry, nothing stood out."))
        assert await detector.detect(video_file) == []

    @pytest.mark.asyncio
    async def test_none_response_is_empty(self, video_file):
        detector = MomentDetector(_FakeClient(None))
        assert await detector.detect(video_file) == []

    @pytest.mark.asyncio
    async def test_detection_error_propagates(self, video_file):
        detector = MomentDetector(_FakeClient(error=DetectionError("quota exceeded")))
        with pytest.raises(DetectionError, match="quota exceeded"):
            await detector.detect(video_file)

    @pytest.mark.asyncio
    async def test_other_client_errors_become_detection_errors(self, video_file):
        detector = MomentDetector(_FakeClient(error=ConnectionError("reset by peer")))
        with pytest.raises(DetectionError, match="reset by peer"):
            await detector.detect(video_file)
