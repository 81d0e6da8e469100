import fractions
import logging

import pytest

import tidepool.constants
import tidepool.mini_notation


F = fractions.Fraction


def _summary (notation: str) -> list:

	"""Parse and reduce the events to (sample, time, duration) tuples."""

	return [(e.sample, e.time, e.duration) for e in tidepool.mini_notation.parse(notation)]


def test_tokens_share_cycle_equally () -> None:

	"""Four tokens land at 0, 1/4, 1/2, 3/4, each a quarter cycle long."""

	assert _summary("bd sn bd sn") == [
		("bd", 0, F(1, 4)),
		("sn", F(1, 4), F(1, 4)),
		("bd", F(1, 2), F(1, 4)),
		("sn", F(3, 4), F(1, 4)),
	]


@pytest.mark.parametrize("count", [1, 2, 3, 5, 7])
def test_slices_are_one_over_token_count (count: int) -> None:

	"""k tokens always give k slices of width 1/k, left to right."""

	events = tidepool.mini_notation.parse(" ".join(["x"] * count))

	assert [e.time for e in events] == [F(i, count) for i in range(count)]
	assert all(e.duration == F(1, count) for e in events)


def test_rest_keeps_its_slot () -> None:

	"""A rest produces no event but the next token keeps its position."""

	assert _summary("~ sn") == [("sn", F(1, 2), F(1, 2))]


def test_repeat_subdivides_the_slot () -> None:

	"""bd*4 fills the cycle with four quarter-length hits."""

	assert _summary("bd*4") == [("bd", F(i, 4), F(1, 4)) for i in range(4)]


def test_repeat_inside_a_longer_pattern () -> None:

	"""A repeated token only subdivides its own slot."""

	assert _summary("bd*2 sn") == [
		("bd", 0, F(1, 4)),
		("bd", F(1, 4), F(1, 4)),
		("sn", F(1, 2), F(1, 2)),
	]


def test_repeated_rest_is_silent () -> None:

	"""~*3 is still a rest."""

	assert _summary("~*3 hh") == [("hh", F(1, 2), F(1, 2))]


def test_repeat_count_is_clamped_to_one () -> None:

	"""Zero or negative counts play once."""

	assert _summary("bd*0") == [("bd", 0, 1)]
	assert _summary("bd*-2") == [("bd", 0, 1)]


def test_non_numeric_count_defaults_to_one (caplog: pytest.LogCaptureFixture) -> None:

	"""An unreadable count plays once and is logged."""

	with caplog.at_level(logging.WARNING, logger="tidepool.mini_notation"):
		assert _summary("bd*many") == [("bd", 0, 1)]

	assert "repeat count" in caplog.text


def test_count_reads_leading_integer () -> None:

	"""Trailing junk after the digits is ignored."""

	assert len(tidepool.mini_notation.parse("hh*3x")) == 3


def test_huge_repeat_count_is_capped (caplog: pytest.LogCaptureFixture) -> None:

	"""Counts above the limit expand to the limit and are logged."""

	with caplog.at_level(logging.WARNING, logger="tidepool.mini_notation"):
		events = tidepool.mini_notation.parse("bd*100000000 sn")

	assert len(events) == tidepool.constants.MAX_REPEAT_COUNT + 1
	assert events[1].time == F(1, 2 * tidepool.constants.MAX_REPEAT_COUNT)
	assert "too large" in caplog.text

	assert len(tidepool.mini_notation.parse("bd*1024")) == 1024


def test_missing_name_produces_nothing () -> None:

	"""*3 with no sample name is skipped."""

	assert _summary("*3 sn") == [("sn", F(1, 2), F(1, 2))]
	assert _summary("* sn") == [("sn", F(1, 2), F(1, 2))]


@pytest.mark.parametrize("notation", ["", "   ", "\n\t"])
def test_empty_input_gives_empty_pattern (notation: str) -> None:

	"""Blank input is an empty pattern, not an error."""

	assert tidepool.mini_notation.parse(notation) == ()


def test_non_string_is_empty_pattern (caplog: pytest.LogCaptureFixture) -> None:

	"""Parsing never raises, even for the wrong type."""

	with caplog.at_level(logging.WARNING, logger="tidepool.mini_notation"):
		assert tidepool.mini_notation.parse(42) == ()  # type: ignore[arg-type]

	assert "expected a string" in caplog.text


def test_any_whitespace_separates_tokens () -> None:

	"""Runs of spaces, tabs and newlines all count as one separator."""

	assert [e.sample for e in tidepool.mini_notation.parse("bd   sn\thh\ncp")] == ["bd", "sn", "hh", "cp"]
