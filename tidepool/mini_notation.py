import fractions
import logging
import re
import typing

import tidepool.constants
import tidepool.pattern


logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse (notation: str) -> tidepool.pattern.Pattern:

	"""
	Parse a mini-notation string into one cycle of events.

	Tokens separated by whitespace share the cycle equally, left to right,
	starting at time 0.  Parsing never fails: anything malformed degrades
	to the emptiest reasonable reading.

	**Syntax:**
	- `bd sn`: Each token gets an equal slice of the cycle.
	- `~`: A rest. No event, but the slice still passes.
	- `bd*4`: Four equal repeats of `bd` inside that token's slice.

	Parameters:
		notation: The string to parse.

	Returns:
		A tuple of `Event` objects with times in ``[0, 1)``.

	Example:
		```python
		parse("bd sn bd sn")   # 4 events at 0, 1/4, 1/2, 3/4
		parse("~ sn")          # sn at 1/2, duration 1/2
		parse("bd*2 sn")       # bd at 0 and 1/4, sn at 1/2
		```
	"""

	if not isinstance(notation, str):
		logger.warning(f"Mini-notation expected a string, got {type(notation).__name__}")
		return ()

	tokens = _tokenize(notation)

	if not tokens:
		return ()

	step = fractions.Fraction(1, len(tokens))
	events: typing.List[tidepool.pattern.Event] = []

	for i, token in enumerate(tokens):
		events.extend(_parse_token(token, i * step, step))

	return tuple(events)


def _tokenize (text: str) -> typing.List[str]:

	"""
	Split notation on whitespace, dropping empty tokens.
	"""

	return text.split()


def _parse_token (token: str, start: fractions.Fraction, step: fractions.Fraction) -> typing.List[tidepool.pattern.Event]:

	"""
	Expand one token occupying ``[start, start + step)`` into events.
	"""

	if token == tidepool.constants.REST:
		return []

	if tidepool.constants.REPEAT_MARKER not in token:
		return [tidepool.pattern.Event(sample=token, time=start, duration=step)]

	parts = token.split(tidepool.constants.REPEAT_MARKER)
	name = parts[0]
	count = _parse_count(parts[1])

	if not name or name == tidepool.constants.REST:
		return []

	sub_step = step / count

	return [
		tidepool.pattern.Event(sample=name, time=start + j * sub_step, duration=sub_step)
		for j in range(count)
	]


def _parse_count (text: str) -> int:

	"""
	Read a repeat count from its leading integer, clamped to ``[1, MAX_REPEAT_COUNT]``.
	"""

	match = _LEADING_INT.match(text)

	if match is None:
		logger.warning(f"Non-numeric repeat count {text!r} - using 1")
		return 1

	count = int(match.group(1))

	if count > tidepool.constants.MAX_REPEAT_COUNT:
		logger.warning(f"Repeat count {count} too large - using {tidepool.constants.MAX_REPEAT_COUNT}")
		return tidepool.constants.MAX_REPEAT_COUNT

	return max(1, count)
