"""Transform pipeline.

Two kinds of transform live on a builder, in registration order:

- **Eager** (``fast``, ``slow``, ``density``, ``rev``) rewrite event times as
  soon as the builder is resolved.
- **Deferred** (``every``, ``sometimes``, ``whenmod``) only annotate each
  event.  Whether they fire depends on the cycle number or a fresh random
  draw, so ``materialize()`` evaluates them once per cycle, inside the
  scheduler.
"""

import dataclasses
import fractions
import itertools
import logging
import random
import typing

import tidepool.constants
import tidepool.pattern
import tidepool.sources


logger = logging.getLogger(__name__)


BuilderFactory = typing.Callable[[tidepool.pattern.Pattern], typing.Any]


def clamp_factor (factor: typing.Union[int, float, fractions.Fraction]) -> fractions.Fraction:

	"""Exact factor, never below 0.1."""

	return tidepool.pattern.to_time(max(tidepool.constants.MIN_TIME_FACTOR, factor))


def fast (pattern: typing.Sequence[tidepool.pattern.Event], factor: typing.Union[int, float, fractions.Fraction]) -> tidepool.pattern.Pattern:

	"""Speed the pattern up: divide every time and duration by ``factor``."""

	k = clamp_factor(factor)

	return tuple(event.replace(time=event.time / k, duration=event.duration / k) for event in pattern)


def slow (pattern: typing.Sequence[tidepool.pattern.Event], factor: typing.Union[int, float, fractions.Fraction]) -> tidepool.pattern.Pattern:

	"""Slow the pattern down: multiply every time and duration by ``factor``."""

	k = clamp_factor(factor)

	return tuple(event.replace(time=event.time * k, duration=event.duration * k) for event in pattern)


def rev (pattern: typing.Sequence[tidepool.pattern.Event]) -> tidepool.pattern.Pattern:

	"""Mirror the pattern within ``[0, 1)`` and reverse the event order."""

	mirrored = [
		event.replace(time=max(fractions.Fraction(0), 1 - event.time - event.duration))
		for event in pattern
	]

	return tuple(reversed(mirrored))


@dataclasses.dataclass(frozen=True)
class TimeTransform:

	"""
	A registered eager transform: ``fast``, ``slow``, ``density`` or ``rev``.
	"""

	kind: str
	factor: fractions.Fraction = fractions.Fraction(1)

	def apply (self, pattern: tidepool.pattern.Pattern) -> tidepool.pattern.Pattern:

		if self.kind in ("fast", "density"):
			return fast(pattern, self.factor)

		if self.kind == "slow":
			return slow(pattern, self.factor)

		if self.kind == "rev":
			return rev(pattern)

		logger.warning(f"Unknown transform type: {self.kind}")
		return pattern


@dataclasses.dataclass(frozen=True)
class Deferred:

	"""
	A registered deferred transform; applying it only annotates the events.
	"""

	annotation: tidepool.pattern.DeferredTransform

	def apply (self, pattern: tidepool.pattern.Pattern) -> tidepool.pattern.Pattern:
		return tuple(event.replace(deferred=event.deferred + (self.annotation,)) for event in pattern)


Transform = typing.Union[TimeTransform, Deferred]


def apply_all (pattern: tidepool.pattern.Pattern, transforms: typing.Iterable[Transform]) -> tidepool.pattern.Pattern:

	"""
	Apply transforms in registration order.  A failing transform is logged
	and skipped; the rest still run.
	"""

	for transform in transforms:

		try:
			pattern = transform.apply(pattern)

		except Exception:
			logger.exception(f"Error applying transform {transform!r}")

	return pattern


def _apply_user_fn (
	annotation: tidepool.pattern.DeferredTransform,
	event: tidepool.pattern.Event,
	make_builder: BuilderFactory
) -> tidepool.pattern.Pattern:

	"""
	Run a user transform on a singleton pattern; on any failure keep the event.
	"""

	name = type(annotation).__name__

	try:
		result = annotation.fn(make_builder((event,)))

	except Exception:
		logger.exception(f"Error in {name} callback")
		return (event,)

	if not isinstance(result, tidepool.sources.Resolvable):
		logger.warning(f"{name} callback must return a pattern builder, got {type(result).__name__}")
		return (event,)

	try:
		resolved = result.resolve()

	except Exception:
		logger.exception(f"Error resolving {name} result")
		return (event,)

	if not resolved:
		return (event,)

	return tuple(fragment.replace(deferred=()) for fragment in resolved)


def materialize (
	pattern: typing.Sequence[tidepool.pattern.Event],
	cycle: int,
	make_builder: BuilderFactory,
	rng: typing.Optional[random.Random] = None
) -> tidepool.pattern.Pattern:

	"""Evaluate deferred transforms for one cycle.

	Each annotated event is checked against its annotations in order.  When
	an annotation fires, its function is applied to a builder holding just
	that event and the resolved result is spliced in where the event was.
	The returned events carry no annotations.

	Parameters:
		pattern: The channel's stored pattern.
		cycle: The cycle being played.
		make_builder: Creates a builder around a given event sequence.
		rng: Source of randomness for ``sometimes`` (defaults to ``random``).
	"""

	if rng is None:
		rng = random.Random()

	result: typing.List[tidepool.pattern.Event] = []

	for event in pattern:

		if not event.deferred:
			result.append(event)
			continue

		fragments: tidepool.pattern.Pattern = (event.replace(deferred=()),)

		for annotation in event.deferred:

			if not annotation.applies(cycle, rng):
				continue

			fragments = tuple(itertools.chain.from_iterable(
				_apply_user_fn(annotation, fragment, make_builder) for fragment in fragments
			))

		result.extend(fragments)

	return tuple(result)
