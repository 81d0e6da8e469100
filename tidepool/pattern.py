import dataclasses
import fractions
import math
import random
import types
import typing

import tidepool.constants


Time = fractions.Fraction
TransformFn = typing.Callable[[typing.Any], typing.Any]

_EMPTY: typing.Mapping[str, typing.Any] = types.MappingProxyType({})


def to_time (value: typing.Union[int, float, fractions.Fraction]) -> fractions.Fraction:

	"""Convert a number to an exact ``Fraction``.

	Floats are read through their shortest decimal form, so ``0.1`` becomes
	exactly ``1/10``.
	"""

	if isinstance(value, fractions.Fraction):
		return value

	if isinstance(value, float):
		return fractions.Fraction(repr(value))

	return fractions.Fraction(value)


def _frozen (mapping: typing.Optional[typing.Mapping[str, typing.Any]]) -> typing.Mapping[str, typing.Any]:

	"""Return a read-only snapshot of a mapping."""

	if not mapping:
		return _EMPTY

	return types.MappingProxyType(dict(mapping))


@dataclasses.dataclass(frozen=True)
class EveryTransform:

	"""
	Apply ``fn`` on cycles divisible by ``n``.
	"""

	n: int
	fn: TransformFn

	def applies (self, cycle: int, rng: random.Random) -> bool:
		return cycle % self.n == 0


@dataclasses.dataclass(frozen=True)
class SometimesTransform:

	"""
	Apply ``fn`` when a fresh random draw falls below ``prob``.
	"""

	fn: TransformFn
	prob: float

	def applies (self, cycle: int, rng: random.Random) -> bool:
		return rng.random() < self.prob


@dataclasses.dataclass(frozen=True)
class WhenmodTransform:

	"""
	Apply ``fn`` on cycles where ``cycle % n == offset``.
	"""

	n: int
	offset: int
	fn: TransformFn

	def applies (self, cycle: int, rng: random.Random) -> bool:
		return cycle % self.n == self.offset


DeferredTransform = typing.Union[EveryTransform, SometimesTransform, WhenmodTransform]


@dataclasses.dataclass(frozen=True)
class Event:

	"""
	One trigger within a pattern.

	``time`` and ``duration`` are in cycles.  ``musical`` and ``effects`` are
	read-only mappings; use ``replace()`` to derive a changed event.
	"""

	sample: str
	time: fractions.Fraction
	duration: fractions.Fraction
	gain: typing.Optional[float] = None
	pan: typing.Optional[float] = None
	musical: typing.Mapping[str, typing.Any] = dataclasses.field(default_factory=lambda: _EMPTY, hash=False)
	effects: typing.Mapping[str, typing.Any] = dataclasses.field(default_factory=lambda: _EMPTY, hash=False)
	deferred: typing.Tuple[DeferredTransform, ...] = dataclasses.field(default=(), hash=False)

	def __post_init__ (self) -> None:

		object.__setattr__(self, "time", to_time(self.time))
		object.__setattr__(self, "duration", to_time(self.duration))
		object.__setattr__(self, "musical", _frozen(self.musical))
		object.__setattr__(self, "effects", _frozen(self.effects))
		object.__setattr__(self, "deferred", tuple(self.deferred))

		if self.time < 0:
			raise ValueError("Event time cannot be negative")

		if not self.is_rest and self.duration <= 0:
			raise ValueError("Event duration must be positive")

	@property
	def is_rest (self) -> bool:
		return not self.sample or self.sample == tidepool.constants.REST

	@property
	def end (self) -> fractions.Fraction:
		return self.time + self.duration

	def replace (self, **changes: typing.Any) -> "Event":

		"""Return a copy of this event with the given fields changed."""

		return dataclasses.replace(self, **changes)


Pattern = typing.Tuple[Event, ...]


def end_time (pattern: typing.Sequence[Event]) -> fractions.Fraction:

	"""
	Latest ``time + duration`` across the pattern (0 for an empty pattern).
	"""

	return max((event.end for event in pattern), default=fractions.Fraction(0))


def span_cycles (pattern: typing.Sequence[Event]) -> int:

	"""
	Number of whole cycles the pattern covers, never less than one.
	"""

	return max(1, math.ceil(end_time(pattern)))


def shift (pattern: typing.Sequence[Event], offset: typing.Union[int, fractions.Fraction]) -> Pattern:

	"""
	Move every event later by ``offset`` cycles.
	"""

	return tuple(event.replace(time=event.time + offset) for event in pattern)


def scale (pattern: typing.Sequence[Event], start: fractions.Fraction, width: fractions.Fraction) -> Pattern:

	"""
	Compress a ``[0, 1)`` pattern into the slot ``[start, start + width)``.
	"""

	return tuple(
		event.replace(time=start + event.time * width, duration=event.duration * width)
		for event in pattern
	)
