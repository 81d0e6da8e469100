import asyncio
import dataclasses
import logging
import random
import signal
import typing

import tidepool.clock
import tidepool.constants
import tidepool.interpreter
import tidepool.live_server
import tidepool.pattern
import tidepool.pattern_builder
import tidepool.sequencer


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class EvalResult:

	"""
	Outcome of ``Engine.evaluate()``.

	``success`` is False only when the code could not be processed at all;
	failures of individual statements are listed in ``errors`` and do not
	stop the statements after them.
	"""

	success: bool
	active_patterns: int = 0
	errors: typing.List[str] = dataclasses.field(default_factory=list)
	error: typing.Optional[str] = None


class Engine:

	"""
	The live-coding engine: tempo, channels and the pattern API.

	An engine owns one ``Clock`` and one ``Sequencer`` feeding one audio
	backend.  Everything a performer types goes through an engine handle:

	```python
	engine = tidepool.Engine(backend)

	engine.sound("bd sn bd sn").every(4, lambda p: p.fast(2)).play()
	engine.stack(["hh*8", engine.sound("bd ~ bd ~").lpf(400)]).play()
	engine.set_cps(0.6)

	engine.play()   # blocks until Ctrl+C
	```
	"""

	def __init__ (
		self,
		backend: tidepool.sequencer.AudioBackend,
		cps: float = tidepool.constants.DEFAULT_CPS,
		rng: typing.Optional[random.Random] = None
	) -> None:

		"""
		Parameters:
			backend: Where triggers go (``OscBackend``, ``MidiBackend``...).
				Its ``current_time()`` drives the clock.
			cps: Initial tempo in cycles per second.
			rng: Randomness for ``choose()`` and ``sometimes`` (seed it for
				repeatable output).
		"""

		self.backend = backend
		self.rng = rng or random.Random()
		self.clock = tidepool.clock.Clock(cps=cps, now=backend.current_time)
		self.sequencer = tidepool.sequencer.Sequencer(self.clock, backend, self._make_builder, self.rng)

		self._channel_counter = 0
		self._live_server: typing.Optional[tidepool.live_server.LiveServer] = None

	@property
	def cps (self) -> float:
		return self.clock.cps

	def next_channel_id (self) -> int:

		"""Hand out the next unused channel id."""

		channel_id = self._channel_counter
		self._channel_counter += 1

		return channel_id

	def _new_builder (self) -> tidepool.pattern_builder.PatternBuilder:
		return tidepool.pattern_builder.PatternBuilder(self, self.next_channel_id())

	def _make_builder (self, events: tidepool.pattern.Pattern) -> tidepool.pattern_builder.PatternBuilder:

		"""Builder handed to deferred transform callbacks; it has no engine, so it cannot play."""

		return tidepool.pattern_builder.PatternBuilder(None, 0, events)

	# ── Pattern API ─────────────────────────────────────────────────

	def sound (self, source: typing.Any) -> tidepool.pattern_builder.PatternBuilder:

		"""
		Start a pattern from mini-notation, a list or a generator callback.

		Example:
			```python
			engine.sound("bd*2 ~ sn")
			```
		"""

		return self._new_builder().sound(source)

	def stack (self, *patterns: typing.Any) -> tidepool.pattern_builder.PatternBuilder:

		"""
		Play several patterns at once.  Accepts a list or separate arguments.
		"""

		return self._new_builder().stack(_as_list(patterns))

	def layer (self, *patterns: typing.Any) -> tidepool.pattern_builder.PatternBuilder:

		"""Same as ``stack()``."""

		return self.stack(*patterns)

	def cat (self, *patterns: typing.Any) -> tidepool.pattern_builder.PatternBuilder:

		"""
		Squeeze several patterns one after another into one cycle.
		"""

		return self._new_builder().cat(_as_list(patterns))

	def struct (self, structure: typing.Any, sound: typing.Any) -> tidepool.pattern_builder.PatternBuilder:
		return self._new_builder().struct(structure, sound)

	def set_cps (self, cps: float) -> None:

		"""Set the tempo in cycles per second (0.1 to 10)."""

		self.clock.set_cps(cps)

	def set_tempo (self, bpm: float) -> None:

		"""Set the tempo in beats per minute (20 to 300, four beats per cycle)."""

		self.clock.set_tempo(bpm)

	def stop_all (self) -> None:

		"""Stop every channel and start numbering channels from zero again."""

		self.sequencer.stop_all()
		self._channel_counter = 0

		logger.info("All patterns stopped")

	def choose (self, options: typing.Any) -> typing.Any:

		"""A random element of ``options``, or None (logged) if it isn't a non-empty list."""

		if not isinstance(options, (list, tuple)) or not options:
			logger.warning("choose() requires a non-empty list")
			return None

		return self.rng.choice(options)

	def cycle_choose (self, options: typing.Any) -> typing.Any:

		"""
		Pick from ``options`` by the current cycle number.

		The same cycle always gives the same element:
		``options[current_cycle % len(options)]``.
		"""

		if not isinstance(options, (list, tuple)) or not options:
			logger.warning("cycle_choose() requires a non-empty list")
			return None

		return options[self.current_cycle() % len(options)]

	# ── Channels and state ──────────────────────────────────────────

	def schedule (self, events: tidepool.pattern.Pattern, channel_id: int) -> None:

		"""Play resolved events on a channel (used by ``PatternBuilder.play()``)."""

		try:
			self.sequencer.schedule_pattern(events, channel_id)

		except Exception:
			logger.exception(f"Error scheduling pattern on channel {channel_id}")

	def stop_channel (self, channel_id: int) -> None:
		self.sequencer.stop_channel(channel_id)

	def current_cycle (self) -> int:
		return self.clock.current_cycle()

	def cycle_progress (self) -> float:
		return self.clock.cycle_progress()

	def is_playing_any (self) -> bool:
		return self.sequencer.is_playing_any()

	def live_info (self) -> typing.Dict[str, typing.Any]:

		"""
		Snapshot of the engine state for the live client header.
		"""

		return {
			"cps": self.clock.cps,
			"cycle": self.current_cycle(),
			"channels": sorted(self.sequencer.channels),
			"backend_ready": self.backend.ready,
		}

	# ── Evaluation ──────────────────────────────────────────────────

	def namespace (self) -> typing.Dict[str, typing.Any]:

		"""Names available to evaluated code."""

		names: typing.Dict[str, typing.Any] = {
			"sound": self.sound,
			"stack": self.stack,
			"layer": self.layer,
			"cat": self.cat,
			"struct": self.struct,
			"set_cps": self.set_cps,
			"set_tempo": self.set_tempo,
			"stop_all": self.stop_all,
			"choose": self.choose,
			"cycle_choose": self.cycle_choose,
		}

		names.update({
			"setCPS": self.set_cps,
			"setTempo": self.set_tempo,
			"stopAll": self.stop_all,
			"cycleChoose": self.cycle_choose,
		})

		return names

	def evaluate (self, code: str) -> EvalResult:

		"""
		Replace everything playing with the patterns described by ``code``.

		All channels are stopped first.  Each statement is evaluated in turn;
		any statement that produces a pattern builder is played.

		Example:
			```python
			result = engine.evaluate('''
			sound("bd sn bd sn")
			  .every(4, lambda p: p.fast(2))   // double time every 4th cycle

			sound("hh*8").gain(0.4)
			''')
			result.active_patterns   # → 2
			```
		"""

		if not isinstance(code, str):
			logger.warning(f"evaluate() expects a string, got {type(code).__name__}")
			return EvalResult(success=False, error="Code must be a string")

		try:
			self.stop_all()
			statements = tidepool.interpreter.split_statements(code)

		except Exception as exc:
			logger.exception("Error executing patterns")
			return EvalResult(success=False, error=str(exc))

		evaluator = tidepool.interpreter.Evaluator(self.namespace(), _is_builder_method)
		result = EvalResult(success=True)

		for index, statement in enumerate(statements, 1):

			try:
				value = evaluator.run(statement)

			except tidepool.interpreter.InterpreterError as exc:
				logger.error(f"Error in statement {index}: {exc}")
				result.errors.append(f"Statement {index}: {exc}")
				continue

			except Exception as exc:
				logger.exception(f"Error in statement {index}")
				result.errors.append(f"Statement {index}: {type(exc).__name__}: {exc}")
				continue

			if isinstance(value, tidepool.pattern_builder.PatternBuilder):
				value.play()
				result.active_patterns += 1

		logger.info(f"Evaluated {len(statements)} statements, {result.active_patterns} patterns active")

		return result

	# ── Lifecycle ───────────────────────────────────────────────────

	def live (self, port: int = 5555) -> None:

		"""
		Enable the live coding server.

		Code sent by ``python -m tidepool.live_client`` (or any TCP client
		using the same framing) is passed to ``evaluate()``.

		Parameters:
			port: The TCP port to listen on (default 5555).
		"""

		self._live_server = tidepool.live_server.LiveServer(self, port=port)

	async def start (self) -> None:

		"""Open the backend and start scheduling."""

		self.backend.open()
		await self.sequencer.start()

	async def stop (self) -> None:

		await self.sequencer.stop()
		self.backend.close()

	async def run (self, stop_event: typing.Optional[asyncio.Event] = None) -> None:

		"""
		Play until ``stop_event`` is set (or SIGINT / SIGTERM arrives).
		"""

		stop_event = stop_event or asyncio.Event()
		loop = asyncio.get_running_loop()

		def _request_stop () -> None:
			stop_event.set()

		try:
			for sig in (signal.SIGINT, signal.SIGTERM):
				loop.add_signal_handler(sig, _request_stop)

		except (NotImplementedError, RuntimeError):
			logger.debug("Signal handlers unavailable - stop via the stop event")

		await self.start()

		if self._live_server is not None:
			await self._live_server.start()

		logger.info("Playing. Press Ctrl+C to stop.")

		try:
			await stop_event.wait()

		finally:
			if self._live_server is not None:
				await self._live_server.stop()

			await self.stop()

	def play (self) -> None:

		"""
		Start playback.  This call blocks until the program is interrupted.
		"""

		try:
			asyncio.run(self.run())

		except KeyboardInterrupt:
			pass


def _as_list (patterns: typing.Tuple[typing.Any, ...]) -> typing.Any:

	"""``f([a, b])`` and ``f(a, b)`` both mean the list ``[a, b]``."""

	if len(patterns) == 1 and isinstance(patterns[0], (list, tuple)):
		return patterns[0]

	return list(patterns)


def _is_builder_method (target: typing.Any, name: str) -> bool:
	return isinstance(target, tidepool.pattern_builder.PatternBuilder) and callable(getattr(target, name, None))
