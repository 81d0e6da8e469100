"""Pattern sources.

Every place that accepts "something pattern-like" (``sound()``, ``cat()``,
``stack()``, ``append()``, musical parameters...) converts its argument once,
at the boundary, into one of these variants and then works with the variant
only:

- ``TextSource``: mini-notation text.
- ``ListSource``: an ordered list, one event per element.
- ``GeneratorSource``: a callback sampled at 16 equal steps.
- ``BuilderSource``: another builder, fully resolved.
- ``ScalarSource``: a single value (musical parameters only).
"""

import dataclasses
import fractions
import logging
import typing

import tidepool.constants
import tidepool.mini_notation
import tidepool.pattern


logger = logging.getLogger(__name__)


@typing.runtime_checkable
class Resolvable (typing.Protocol):

	"""
	Anything that can be resolved into a finished event sequence.
	"""

	def resolve (self) -> tidepool.pattern.Pattern:
		...


def _is_rest (value: typing.Any) -> bool:
	return value is None or value == "" or value == tidepool.constants.REST or value is False


def _slice_values (values: typing.Sequence[typing.Any]) -> tidepool.pattern.Pattern:

	"""
	Give each value an equal slice of the cycle, skipping rests.
	"""

	if not values:
		return ()

	step = fractions.Fraction(1, len(values))

	return tuple(
		tidepool.pattern.Event(sample=str(value), time=i * step, duration=step)
		for i, value in enumerate(values)
		if not _is_rest(value)
	)


@dataclasses.dataclass(frozen=True)
class TextSource:

	text: str

	def events (self) -> tidepool.pattern.Pattern:
		return tidepool.mini_notation.parse(self.text)

	def values (self) -> typing.List[typing.Any]:
		return [event.sample for event in self.events()]


@dataclasses.dataclass(frozen=True)
class ListSource:

	items: typing.Tuple[typing.Any, ...]

	def events (self) -> tidepool.pattern.Pattern:
		return _slice_values(self.items)

	def values (self) -> typing.List[typing.Any]:
		return [item for item in self.items if not _is_rest(item)]


@dataclasses.dataclass(frozen=True)
class GeneratorSource:

	"""
	A callback receiving the step position (0, 1/16, ... 15/16) and returning
	a sample name or a rest.  A step whose callback raises contributes nothing.
	"""

	fn: typing.Callable[[float], typing.Any]
	steps: int = tidepool.constants.GENERATOR_STEPS

	def _sample (self) -> typing.List[typing.Any]:

		results: typing.List[typing.Any] = []

		for i in range(self.steps):

			try:
				results.append(self.fn(i / self.steps))

			except Exception as exc:
				logger.error(f"Generator failed at step {i}: {exc}")
				results.append(None)

		return results

	def events (self) -> tidepool.pattern.Pattern:
		return _slice_values(self._sample())

	def values (self) -> typing.List[typing.Any]:
		return [value for value in self._sample() if not _is_rest(value)]


@dataclasses.dataclass(frozen=True)
class BuilderSource:

	builder: Resolvable

	def events (self) -> tidepool.pattern.Pattern:
		return self.builder.resolve()

	def values (self) -> typing.List[typing.Any]:
		return [event.sample for event in self.events() if not event.is_rest]


@dataclasses.dataclass(frozen=True)
class ScalarSource:

	value: typing.Any

	def events (self) -> tidepool.pattern.Pattern:
		return _slice_values([self.value])

	def values (self) -> typing.List[typing.Any]:
		return [] if _is_rest(self.value) else [self.value]


PatternSource = typing.Union[TextSource, ListSource, GeneratorSource, BuilderSource]
MusicalSource = typing.Union[TextSource, ListSource, GeneratorSource, BuilderSource, ScalarSource]


def source_from (value: typing.Any) -> typing.Optional[PatternSource]:

	"""
	Classify a raw argument as a pattern source, or return None if it isn't one.
	"""

	if isinstance(value, (TextSource, ListSource, GeneratorSource, BuilderSource)):
		return value

	if isinstance(value, str):
		return TextSource(value)

	if isinstance(value, (list, tuple)):
		return ListSource(tuple(value))

	if isinstance(value, Resolvable):
		return BuilderSource(value)

	if callable(value):
		return GeneratorSource(value)

	return None


def musical_source_from (value: typing.Any) -> typing.Optional[MusicalSource]:

	"""
	Like ``source_from()``, but a lone number (or other value) is also accepted.
	"""

	source = source_from(value)

	if source is not None:
		return source

	if value is None:
		return None

	return ScalarSource(value)
