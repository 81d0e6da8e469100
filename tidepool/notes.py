"""Note names, MIDI numbers and frequencies.

Module-level constants:
- `NOTE_NAME_TO_PC`: Maps lower-case note names (``"c"``, ``"cs"``, ``"c#"``,
  ``"db"``...) to pitch classes (0-11)

Module-level helpers:
- `note_to_midi(name)`: Note name with optional octave digit to a MIDI number.
  Unknown or malformed names fall back to middle C with a warning.
- `midi_to_freq(midi)`: Equal-tempered frequency, A4 = 440 Hz.
- `coerce_musical(kind, value)`: Normalise a raw musical parameter value.
- `resolve_frequency(musical, base_freq)`: Final pitch for a trigger.

Convention: **C4 = 60** (middle C).
"""

import logging
import math
import re
import typing

import tidepool.constants


logger = logging.getLogger(__name__)


NOTE_NAME_TO_PC: typing.Dict[str, int] = {
	"c": 0,
	"cs": 1,
	"c#": 1,
	"db": 1,
	"d": 2,
	"ds": 3,
	"d#": 3,
	"eb": 3,
	"e": 4,
	"f": 5,
	"fs": 6,
	"f#": 6,
	"gb": 6,
	"g": 7,
	"gs": 8,
	"g#": 8,
	"ab": 8,
	"a": 9,
	"as": 10,
	"a#": 10,
	"bb": 10,
	"b": 11,
}

MUSICAL_PARAMETERS = ("note", "up", "freq", "midinote", "n")

_NOTE_PATTERN = re.compile(r"^([a-g][sb#]?)(\d*)$", re.IGNORECASE)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_LEADING_FLOAT = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")

_UP_RANGE = (-48, 48)
_FREQ_RANGE = (20.0, 20000.0)


def is_note_name (value: typing.Any) -> bool:

	"""Return True if the value looks like a note name (``c``, ``eb3``, ``F#5``)."""

	return isinstance(value, str) and _NOTE_PATTERN.match(value) is not None


def note_to_midi (name: typing.Any) -> int:

	"""Convert a note name to a MIDI note number.

	The octave digit is optional (default 4) and clamped to 0-9.  Anything
	that can't be read falls back to middle C (60) with a warning - never
	an error.

	Example:
		```python
		note_to_midi("c")    # → 60
		note_to_midi("a4")   # → 69
		note_to_midi("eb3")  # → 51
		note_to_midi("h2")   # → 60 (logged)
		```
	"""

	if not isinstance(name, str):
		logger.warning(f"Note name expected a string, got {type(name).__name__} - using middle C")
		return tidepool.constants.MIDDLE_C

	match = _NOTE_PATTERN.match(name.strip())

	if match is None:
		logger.warning(f"Invalid note name {name!r} - using middle C")
		return tidepool.constants.MIDDLE_C

	pitch_class = NOTE_NAME_TO_PC.get(match.group(1).lower())

	if pitch_class is None:
		logger.warning(f"Unknown note {match.group(1)!r} - using middle C")
		return tidepool.constants.MIDDLE_C

	octave = int(match.group(2)) if match.group(2) else tidepool.constants.DEFAULT_OCTAVE
	octave = max(0, min(9, octave))

	midi = (octave + 1) * 12 + pitch_class

	return max(0, min(127, midi))


def midi_to_freq (midi: float) -> float:

	"""Equal-tempered frequency in Hz for a MIDI number (clamped to 0-127)."""

	midi = max(0, min(127, midi))

	return tidepool.constants.A4_FREQ * 2 ** ((midi - tidepool.constants.A4_MIDI) / 12)


def _leading_int (value: typing.Any) -> typing.Optional[int]:

	if isinstance(value, bool):
		return int(value)

	if isinstance(value, float) and not math.isfinite(value):
		return None

	if isinstance(value, (int, float)):
		return int(value)

	match = _LEADING_INT.match(str(value))

	return int(match.group(1)) if match else None


def _leading_float (value: typing.Any) -> typing.Optional[float]:

	if isinstance(value, (int, float)):
		return float(value)

	match = _LEADING_FLOAT.match(str(value))

	return float(match.group(1)) if match else None


def coerce_musical (kind: str, value: typing.Any) -> typing.Optional[typing.Any]:

	"""Normalise a raw musical parameter value, or return None to skip it.

	- ``note`` keeps note-name text; anything else is skipped.
	- ``n``, ``up`` and ``midinote`` read a leading integer (default 0).
	- ``freq`` reads a leading number (default 440).
	"""

	if kind == "note":
		return value if is_note_name(value) else None

	if kind in ("n", "up", "midinote"):
		parsed = _leading_int(value)
		return 0 if parsed is None else parsed

	if kind == "freq":
		parsed_freq = _leading_float(value)
		return tidepool.constants.DEFAULT_FREQ if parsed_freq is None else parsed_freq

	return value


def resolve_frequency (musical: typing.Mapping[str, typing.Any], base_freq: float) -> float:

	"""Final frequency for a trigger from its musical parameters.

	Priority: ``freq``, then ``midinote``, then ``note``; ``up`` transposes
	the result by semitones (clamped to +/- 48).
	"""

	freq = base_freq

	if isinstance(musical.get("freq"), (int, float)):
		freq = max(_FREQ_RANGE[0], min(_FREQ_RANGE[1], float(musical["freq"])))

	elif isinstance(musical.get("midinote"), (int, float)):
		freq = midi_to_freq(musical["midinote"])

	elif isinstance(musical.get("note"), str):
		freq = midi_to_freq(note_to_midi(musical["note"]))

	if isinstance(musical.get("up"), (int, float)):
		semitones = max(_UP_RANGE[0], min(_UP_RANGE[1], musical["up"]))
		freq = freq * 2 ** (semitones / 12)

	return freq


def resolve_midi (musical: typing.Mapping[str, typing.Any], base_midi: int) -> int:

	"""MIDI note number for a trigger, using the same priority as ``resolve_frequency``."""

	midi = base_midi

	if isinstance(musical.get("freq"), (int, float)) and musical["freq"] > 0:
		midi = round(tidepool.constants.A4_MIDI + 12 * math.log2(musical["freq"] / tidepool.constants.A4_FREQ))

	elif isinstance(musical.get("midinote"), (int, float)):
		midi = int(musical["midinote"])

	elif isinstance(musical.get("note"), str):
		midi = note_to_midi(musical["note"])

	if isinstance(musical.get("up"), (int, float)):
		midi += int(max(_UP_RANGE[0], min(_UP_RANGE[1], musical["up"])))

	return max(0, min(127, midi))
