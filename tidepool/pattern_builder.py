import logging
import math
import typing

import tidepool.constants
import tidepool.mini_notation
import tidepool.notes
import tidepool.pattern
import tidepool.sources
import tidepool.transforms

if typing.TYPE_CHECKING:
	from tidepool.engine import Engine


logger = logging.getLogger(__name__)


def _is_number (value: typing.Any) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_number (value: typing.Any, name: str) -> bool:

	"""Log and return False unless ``value`` is a finite number."""

	if not _is_number(value):
		logger.warning(f"Type validation failed: {name} expected a number, got {type(value).__name__}")
		return False

	return True


def _check_callable (value: typing.Any, name: str) -> bool:

	"""Log and return False unless ``value`` is callable."""

	if not callable(value) or isinstance(value, tidepool.sources.Resolvable):
		logger.warning(f"Type validation failed: {name} expected a function, got {type(value).__name__}")
		return False

	return True


def _clamp (value: float, bounds: typing.Tuple[float, float]) -> float:
	return max(bounds[0], min(bounds[1], value))


class PatternBuilder:

	"""
	A chainable description of one pattern stream.

	A builder holds a base event sequence, the transforms registered on it,
	pattern-level effects and musical parameters, and the channel it plays
	on.  Every method returns the builder so calls can be chained::

		engine.sound("bd sn bd sn").every(4, lambda p: p.fast(2)).lpf(800).play()

	Nothing here raises on bad input: a wrongly-shaped argument is logged
	and the call leaves the builder unchanged.  Rhythm is measured in
	**cycles** (one pass of the pattern, ``[0, 1)``).
	"""

	def __init__ (self, engine: typing.Optional["Engine"] = None, channel_id: int = 0, events: typing.Optional[typing.Sequence[tidepool.pattern.Event]] = None) -> None:

		"""Create a builder, optionally seeded with events.

		Parameters:
			engine: The ``Engine`` used for playback and tempo control.
				A builder without one can still build and resolve patterns.
			channel_id: Channel this builder plays on.
			events: Initial base events (``None`` until a source is given).
		"""

		self._engine = engine
		self.channel_id = channel_id

		self._base: typing.Optional[tidepool.pattern.Pattern] = tuple(events) if events is not None else None
		self._transforms: typing.Tuple[tidepool.transforms.Transform, ...] = ()
		self._effects: typing.Dict[str, typing.Any] = {}
		self._musical: typing.Dict[str, tidepool.sources.MusicalSource] = {}
		self._gain: typing.Optional[float] = None

	def __repr__ (self) -> str:
		count = len(self._base) if self._base is not None else 0
		return f"<PatternBuilder channel={self.channel_id} events={count} transforms={len(self._transforms)}>"

	@property
	def base (self) -> tidepool.pattern.Pattern:

		"""The stored base events, before any transform."""

		return self._base or ()

	def copy (self, channel_id: typing.Optional[int] = None) -> "PatternBuilder":

		"""Return an independent builder with the same state.

		Parameters:
			channel_id: Channel for the copy (defaults to this builder's).
		"""

		clone = PatternBuilder(
			engine = self._engine,
			channel_id = self.channel_id if channel_id is None else channel_id
		)

		clone._base = self._base
		clone._transforms = self._transforms
		clone._effects = dict(self._effects)
		clone._musical = dict(self._musical)
		clone._gain = self._gain

		return clone

	def _new_channel_id (self) -> int:

		if self._engine is None:
			return self.channel_id

		return self._engine.next_channel_id()

	def _events_from (self, value: typing.Any, caller: str) -> typing.Optional[tidepool.pattern.Pattern]:

		"""Turn a pattern-like argument into events, or log and return None."""

		source = tidepool.sources.source_from(value)

		if source is None:
			logger.warning(f"Invalid pattern type in {caller}(): {type(value).__name__}")
			return None

		try:
			return source.events()

		except Exception:
			logger.exception(f"Error reading pattern in {caller}()")
			return None

	# ── Construction ────────────────────────────────────────────────

	def sound (self, source: typing.Any) -> "PatternBuilder":

		"""
		Set the base pattern from text, a list or a generator callback.

		Parameters:
			source: Mini-notation text (``"bd ~ sn*2"``), a list (one event
				per element, ``None`` and ``"~"`` are rests), a callback
				called with step positions ``0, 1/16 ... 15/16`` that returns
				a sample name or rest, or another builder.

		Example:
			```python
			p.sound("bd sn bd sn")
			p.sound(["bd", None, "sn", None])
			p.sound(lambda t: "hh" if t < 0.5 else "~")
			```
		"""

		events = self._events_from(source, "sound")
		self._base = events if events is not None else ()

		return self

	def struct (self, structure: typing.Any, sound: typing.Any) -> "PatternBuilder":

		"""
		Apply a rhythmic structure to a sound pattern.

		Each ``x`` in ``structure`` takes the next event from ``sound``
		(wrapping around) and places it in that slot; other slots are dropped.

		Example:
			```python
			p.struct("x ~ x x", "bd sn")   # bd, sn, bd on slots 0, 2, 3
			```
		"""

		if not isinstance(structure, str):
			logger.warning(f"Invalid structure in struct(): {type(structure).__name__}")
			self._base = ()
			return self

		slots = tidepool.mini_notation.parse(structure)
		sounds = self._events_from(sound, "struct") or ()

		result: typing.List[tidepool.pattern.Event] = []
		sound_index = 0

		for slot in slots:

			if slot.sample not in tidepool.constants.STRUCT_ACTIVE_MARKERS or not sounds:
				continue

			chosen = sounds[sound_index % len(sounds)]
			result.append(chosen.replace(time=slot.time, duration=slot.duration))
			sound_index += 1

		self._base = tuple(result)

		return self

	def cat (self, patterns: typing.Any) -> "PatternBuilder":

		"""
		Play patterns one after another, squeezed into one cycle.

		With ``n`` patterns each gets a ``1/n`` slice; events are rescaled
		into their slice.

		Example:
			```python
			p.cat(["bd*2", "sn"])   # bd at 0 and 1/4, sn at 1/2
			```
		"""

		if not isinstance(patterns, (list, tuple)):
			logger.warning("cat() expects a list of patterns")
			self._base = ()
			return self

		if not patterns:
			self._base = ()
			return self

		width = tidepool.pattern.to_time(1) / len(patterns)
		result: typing.List[tidepool.pattern.Event] = []

		for index, item in enumerate(patterns):

			events = self._events_from(item, "cat")

			if events is None:
				continue

			result.extend(tidepool.pattern.scale(events, index * width, width))

		self._base = tuple(result)

		return self

	def stack (self, patterns: typing.Any) -> "PatternBuilder":

		"""
		Play patterns at the same time, all sharing the same cycle.
		"""

		if not isinstance(patterns, (list, tuple)):
			logger.warning("stack() expects a list of patterns")
			self._base = ()
			return self

		result: typing.List[tidepool.pattern.Event] = []

		for item in patterns:

			events = self._events_from(item, "stack")

			if events is not None:
				result.extend(events)

		self._base = tuple(result)

		return self

	layer = stack

	def append (self, pattern: typing.Any) -> "PatternBuilder":

		"""
		Add a pattern after this one, starting on the next whole cycle.

		This is how multi-cycle patterns are built: the current end time is
		rounded up to a cycle boundary and the new events are shifted there.

		Example:
			```python
			p.sound("bd sn").append("hh*4")   # cycle 0: bd sn, cycle 1: hh x4
			```
		"""

		if not self._base:
			logger.warning("No base pattern to append to - create a pattern first")
			return self

		events = self._events_from(pattern, "append")

		if events is None:
			return self

		if not events:
			logger.warning("Nothing to append - pattern is empty")
			return self

		boundary = math.ceil(tidepool.pattern.end_time(self._base))

		self._base = self._base + tidepool.pattern.shift(events, boundary)

		logger.debug(f"Appended {len(events)} events at cycle {boundary}; pattern spans {tidepool.pattern.span_cycles(self._base)} cycles")

		return self

	def overlay (self, pattern: typing.Any) -> "PatternBuilder":

		"""
		Merge another pattern into the same cycle (simultaneous, not sequential).
		"""

		if not self._base:
			logger.warning("No base pattern to overlay - create a pattern first")
			return self

		events = self._events_from(pattern, "overlay")

		if events is None:
			return self

		if not events:
			logger.warning("Nothing to overlay - pattern is empty")
			return self

		self._base = self._base + events

		return self

	def superimpose (self, fn: typing.Callable[["PatternBuilder"], "PatternBuilder"]) -> "PatternBuilder":

		"""
		Layer a transformed copy of this pattern on top of itself.

		The copy has its own channel id.  Both the original and the copy are
		fully resolved and their events combined; pending transforms, effects
		and musical parameters are baked in, so later calls apply to the
		combined pattern.

		Example:
			```python
			p.sound("bd sn").superimpose(lambda x: x.fast(2).gain(0.5))
			```
		"""

		if not _check_callable(fn, "superimpose function"):
			return self

		if not self._base:
			logger.warning("No pattern to superimpose - create a pattern first")
			return self

		copy = self.copy(channel_id=self._new_channel_id())

		try:
			transformed = fn(copy)

		except Exception:
			logger.exception("Error in superimpose transform function")
			return self

		if not isinstance(transformed, PatternBuilder):
			logger.warning("superimpose function must return a pattern builder")
			return self

		original_events = self.resolve()
		transformed_events = transformed.resolve()

		self._base = original_events + transformed_events
		self._transforms = ()
		self._effects = {}
		self._musical = {}
		self._gain = None

		logger.debug(f"Superimposed pattern: {len(original_events)} original + {len(transformed_events)} transformed")

		return self

	# ── Time transforms ─────────────────────────────────────────────

	def _add_transform (self, transform: tidepool.transforms.Transform) -> "PatternBuilder":
		self._transforms = self._transforms + (transform,)
		return self

	def fast (self, factor: float) -> "PatternBuilder":

		"""Speed up by ``factor`` (minimum 0.1)."""

		if _check_number(factor, "fast factor"):
			self._add_transform(tidepool.transforms.TimeTransform("fast", tidepool.transforms.clamp_factor(factor)))

		return self

	def slow (self, factor: float) -> "PatternBuilder":

		"""Slow down by ``factor`` (minimum 0.1)."""

		if _check_number(factor, "slow factor"):
			self._add_transform(tidepool.transforms.TimeTransform("slow", tidepool.transforms.clamp_factor(factor)))

		return self

	def density (self, factor: float) -> "PatternBuilder":

		"""Same as ``fast()``."""

		if _check_number(factor, "density factor"):
			self._add_transform(tidepool.transforms.TimeTransform("density", tidepool.transforms.clamp_factor(factor)))

		return self

	def rev (self) -> "PatternBuilder":

		"""Mirror the pattern in time."""

		return self._add_transform(tidepool.transforms.TimeTransform("rev"))

	# ── Conditional transforms ──────────────────────────────────────

	def every (self, n: int, fn: typing.Callable[["PatternBuilder"], "PatternBuilder"]) -> "PatternBuilder":

		"""
		Apply a transformation on every Nth cycle (cycles 0, n, 2n...).

		The decision is made by the scheduler each cycle, not now.

		Parameters:
			n: The cycle frequency (floored, at least 1).
			fn: Receives a builder holding one event and returns a builder.

		Example:
			```python
			# Double speed every 4th cycle
			p.every(4, lambda p: p.fast(2))
			```
		"""

		if _check_number(n, "every n") and _check_callable(fn, "every function"):
			annotation = tidepool.pattern.EveryTransform(n=max(1, math.floor(n)), fn=fn)
			self._add_transform(tidepool.transforms.Deferred(annotation))

		return self

	def sometimes (self, fn: typing.Callable[["PatternBuilder"], "PatternBuilder"], prob: float = tidepool.constants.SOMETIMES) -> "PatternBuilder":

		"""
		Apply a transformation to each event with probability ``prob``.

		A fresh random draw is made per event every cycle.
		"""

		if _check_callable(fn, "sometimes function") and _check_number(prob, "sometimes probability"):
			annotation = tidepool.pattern.SometimesTransform(fn=fn, prob=_clamp(prob, (0.0, 1.0)))
			self._add_transform(tidepool.transforms.Deferred(annotation))

		return self

	def often (self, fn: typing.Callable[["PatternBuilder"], "PatternBuilder"]) -> "PatternBuilder":
		return self.sometimes(fn, tidepool.constants.OFTEN)

	def rarely (self, fn: typing.Callable[["PatternBuilder"], "PatternBuilder"]) -> "PatternBuilder":
		return self.sometimes(fn, tidepool.constants.RARELY)

	def almost_never (self, fn: typing.Callable[["PatternBuilder"], "PatternBuilder"]) -> "PatternBuilder":
		return self.sometimes(fn, tidepool.constants.ALMOST_NEVER)

	def almost_always (self, fn: typing.Callable[["PatternBuilder"], "PatternBuilder"]) -> "PatternBuilder":
		return self.sometimes(fn, tidepool.constants.ALMOST_ALWAYS)

	def whenmod (self, n: int, offset: int, fn: typing.Callable[["PatternBuilder"], "PatternBuilder"]) -> "PatternBuilder":

		"""
		Apply a transformation on cycles where ``cycle % n == offset``.

		Example:
			```python
			# Reverse on the 4th cycle of every 8
			p.whenmod(8, 3, lambda p: p.rev())
			```
		"""

		if _check_number(n, "whenmod n") and _check_number(offset, "whenmod offset") and _check_callable(fn, "whenmod function"):
			annotation = tidepool.pattern.WhenmodTransform(n=max(1, math.floor(n)), offset=max(0, math.floor(offset)), fn=fn)
			self._add_transform(tidepool.transforms.Deferred(annotation))

		return self

	# ── Effects ─────────────────────────────────────────────────────

	def _set_effect (self, name: str, value: typing.Any, bounds: typing.Tuple[float, float]) -> "PatternBuilder":

		if _check_number(value, name):
			self._effects[name] = _clamp(value, bounds)

		return self

	def gain (self, value: float) -> "PatternBuilder":

		"""Set the level, 0.0 to 2.0."""

		if _check_number(value, "gain"):
			self._gain = _clamp(value, (tidepool.constants.MIN_GAIN, tidepool.constants.MAX_GAIN))

		return self

	def pan (self, value: float) -> "PatternBuilder":

		"""Set the stereo position, -1.0 (left) to 1.0 (right)."""

		return self._set_effect("pan", value, tidepool.constants.PAN_RANGE)

	def lpf (self, cutoff: float) -> "PatternBuilder":

		"""Low-pass filter cutoff in Hz."""

		return self._set_effect("lpf", cutoff, tidepool.constants.FILTER_RANGE)

	def hpf (self, cutoff: float) -> "PatternBuilder":

		"""High-pass filter cutoff in Hz."""

		return self._set_effect("hpf", cutoff, tidepool.constants.FILTER_RANGE)

	def bpf (self, cutoff: float) -> "PatternBuilder":

		"""Band-pass filter centre in Hz."""

		return self._set_effect("bpf", cutoff, tidepool.constants.FILTER_RANGE)

	def delay (self, time: float) -> "PatternBuilder":

		"""Echo delay time in seconds."""

		return self._set_effect("delay", time, tidepool.constants.DELAY_RANGE)

	def reverb (self, amount: float) -> "PatternBuilder":

		"""Reverb length in seconds."""

		return self._set_effect("reverb", amount, tidepool.constants.REVERB_RANGE)

	def distortion (self, amount: float) -> "PatternBuilder":
		return self._set_effect("distortion", amount, tidepool.constants.DISTORTION_RANGE)

	def crush (self, bits: float) -> "PatternBuilder":

		"""Bit-crush to ``bits`` of resolution (1-16)."""

		if _check_number(bits, "crush"):
			self._effects["crush"] = int(_clamp(math.floor(bits), tidepool.constants.CRUSH_RANGE))

		return self

	def vowel (self, formant: str) -> "PatternBuilder":

		"""
		Vowel formant filter: ``"a"``, ``"e"``, ``"i"``, ``"o"`` or ``"u"``.

		Unknown letters fall back to ``"a"``.
		"""

		if not isinstance(formant, str):
			logger.warning("vowel() expects a string (a, e, i, o, u)")
			return self

		freqs = tidepool.constants.VOWEL_FORMANTS.get(formant.lower(), tidepool.constants.VOWEL_FORMANTS["a"])
		self._effects["vowel"] = freqs

		logger.debug(f"Applied vowel filter {formant!r} with formants {freqs}")

		return self

	# ── Musical parameters ──────────────────────────────────────────

	def _set_musical (self, kind: str, value: typing.Any) -> "PatternBuilder":

		source = tidepool.sources.musical_source_from(value)

		if source is None:
			logger.warning(f"Invalid {kind} pattern: {type(value).__name__}")
			return self

		self._musical[kind] = source

		return self

	def n (self, pattern: typing.Any) -> "PatternBuilder":

		"""Sample number / variation."""

		return self._set_musical("n", pattern)

	def note (self, pattern: typing.Any) -> "PatternBuilder":

		"""
		Note names, e.g. ``"c e g"`` or ``["c4", "eb4"]``.

		If there are more notes than events, the events are re-sliced so
		every note gets a slot::

			p.sound("superpiano").note("c e g b")   # four notes
		"""

		return self._set_musical("note", pattern)

	def up (self, pattern: typing.Any) -> "PatternBuilder":

		"""Transpose by semitones."""

		return self._set_musical("up", pattern)

	def freq (self, pattern: typing.Any) -> "PatternBuilder":

		"""Frequency in Hz."""

		return self._set_musical("freq", pattern)

	def midinote (self, pattern: typing.Any) -> "PatternBuilder":

		"""MIDI note number (0-127)."""

		return self._set_musical("midinote", pattern)

	def _bind_musical (self, events: tidepool.pattern.Pattern) -> tidepool.pattern.Pattern:

		"""
		Zip musical parameter values onto events, expanding the events first
		if any parameter has more values than there are events.
		"""

		values_by_kind: typing.Dict[str, typing.List[typing.Any]] = {}

		for kind, source in self._musical.items():

			try:
				values_by_kind[kind] = source.values()

			except Exception:
				logger.exception(f"Error processing musical pattern {kind}")

		longest = max((len(values) for values in values_by_kind.values()), default=0)

		if events and longest > len(events):
			step = tidepool.pattern.to_time(1) / longest
			events = tuple(
				events[i % len(events)].replace(time=i * step, duration=step)
				for i in range(longest)
			)

		for kind, values in values_by_kind.items():

			if not values:
				continue

			events = tuple(
				_bind_value(event, kind, values[i % len(values)])
				for i, event in enumerate(events)
			)

		return events

	# ── Tempo ───────────────────────────────────────────────────────

	def set_cps (self, cps: float) -> "PatternBuilder":

		"""Set the global tempo in cycles per second."""

		if self._engine is None:
			logger.warning("set_cps() needs an engine")
		else:
			self._engine.set_cps(cps)

		return self

	def set_tempo (self, bpm: float) -> "PatternBuilder":

		"""Set the global tempo in beats per minute."""

		if self._engine is None:
			logger.warning("set_tempo() needs an engine")
		else:
			self._engine.set_tempo(bpm)

		return self

	# ── Resolution and playback ─────────────────────────────────────

	def _merge_effects (self, events: tidepool.pattern.Pattern) -> tidepool.pattern.Pattern:

		"""Put builder-level gain, pan and effects on every event; builder values win."""

		if self._gain is None and not self._effects:
			return events

		return tuple(
			event.replace(
				gain = self._gain if self._gain is not None else event.gain,
				pan = self._effects.get("pan", event.pan),
				effects = {**event.effects, **self._effects}
			)
			for event in events
		)

	def resolve (self) -> tidepool.pattern.Pattern:

		"""
		Produce the final event sequence.

		Order: musical parameters (with expansion), eager transforms and
		deferred annotations in registration order, then builder-level
		effects.  Deferred transforms are only annotated here; the
		scheduler decides each cycle whether they fire.
		"""

		if self._base is None:
			return ()

		try:
			events = self._bind_musical(self._base)
			events = tidepool.transforms.apply_all(events, self._transforms)
			return self._merge_effects(events)

		except Exception:
			logger.exception("Error resolving pattern")
			return self._base

	def play (self) -> "PatternBuilder":

		"""
		Resolve the pattern and start it on this builder's channel.

		Replaces whatever was playing on the channel.
		"""

		if self._engine is None:
			logger.warning("play() needs an engine")
			return self

		if self._base is None:
			logger.warning("No pattern to play")
			return self

		events = self.resolve()

		if not events:
			logger.warning("No events to play in pattern")
			return self

		self._engine.schedule(events, self.channel_id)

		return self

	def stop (self) -> "PatternBuilder":

		"""Stop this builder's channel."""

		if self._engine is not None:
			self._engine.stop_channel(self.channel_id)

		return self


def _bind_value (event: tidepool.pattern.Event, kind: str, value: typing.Any) -> tidepool.pattern.Event:

	"""Attach one musical value to an event (rests and unreadable values are left alone)."""

	if event.is_rest:
		return event

	coerced = tidepool.notes.coerce_musical(kind, value)

	if coerced is None:
		return event

	return event.replace(musical={**event.musical, kind: coerced})
