import asyncio
import dataclasses
import logging
import math
import random
import typing

import tidepool.clock
import tidepool.constants
import tidepool.pattern
import tidepool.transforms


logger = logging.getLogger(__name__)


@typing.runtime_checkable
class AudioBackend (typing.Protocol):

	"""
	The sound-producing side of the engine.

	``trigger()`` must not block: it schedules a sound for ``at_time``
	(which may be slightly in the future) and returns.  Times are in the
	same seconds as ``current_time()``.
	"""

	@property
	def ready (self) -> bool:

		"""True once the backend can accept triggers."""

		...

	def current_time (self) -> float:
		...

	def open (self) -> None:

		"""Acquire the output (socket, device).  Called once before playback."""

		...

	def close (self) -> None:
		...

	def trigger (
		self,
		sample: str,
		gain: float,
		effects: typing.Dict[str, typing.Any],
		musical: typing.Dict[str, typing.Any],
		at_time: float
	) -> None:
		...


@dataclasses.dataclass
class Channel:

	"""
	One independently playable pattern stream.

	``pattern`` is the snapshot the channel plays from; replacing a channel's
	pattern means registering a new ``Channel`` under the same id.
	"""

	id: int
	pattern: tidepool.pattern.Pattern
	running: bool = True
	start_cycle: int = 0
	task: typing.Optional[asyncio.Task] = None
	error_count: int = 0
	last_cycle: int = -1
	# The cycle being emitted, its materialized events and the indices already sent.
	pending_cycle: int = -1
	pending_pattern: tidepool.pattern.Pattern = ()
	emitted: typing.Set[int] = dataclasses.field(default_factory=set)


class Sequencer:

	"""
	Per-channel cycle scheduler and the registry of playing channels.

	Each channel runs as its own asyncio task.  On every wake-up the task
	works out the current cycle, evaluates deferred transforms for it,
	picks the events belonging to that cycle of the pattern and hands them
	to the backend with absolute timestamps.  It then sleeps until the next
	cycle boundary as computed by the shared ``Clock``.

	Channels registered before ``start()`` wait and begin when it runs.
	"""

	def __init__ (
		self,
		clock: tidepool.clock.Clock,
		backend: AudioBackend,
		make_builder: tidepool.transforms.BuilderFactory,
		rng: typing.Optional[random.Random] = None
	) -> None:

		"""
		Parameters:
			clock: Shared tempo and start instant.
			backend: Receives the triggers.
			make_builder: Wraps an event sequence in a builder so deferred
				transform callbacks can work on it.
			rng: Randomness for ``sometimes`` (defaults to a fresh ``random.Random``).
		"""

		self.clock = clock
		self.backend = backend
		self._make_builder = make_builder
		self._rng = rng or random.Random()

		self.channels: typing.Dict[int, Channel] = {}
		self.running = False

	async def start (self) -> None:

		"""Start the clock and every waiting channel."""

		if self.running:
			return

		self.running = True
		self.clock.start()

		for channel in list(self.channels.values()):
			self._launch(channel)

		logger.info("Sequencer started")

	async def stop (self) -> None:

		"""Stop every channel and wait for their tasks to finish."""

		tasks = [channel.task for channel in self.channels.values() if channel.task is not None]

		self.stop_all()
		self.running = False

		for task in tasks:
			try:
				await task
			except asyncio.CancelledError:
				pass

		logger.info("Sequencer stopped")

	def schedule_pattern (self, pattern: tidepool.pattern.Pattern, channel_id: int = 0) -> None:

		"""
		Play ``pattern`` on ``channel_id``, replacing anything already there.

		An empty pattern just stops the channel.
		"""

		self.stop_channel(channel_id)

		if not pattern:
			logger.debug(f"Channel {channel_id}: nothing to schedule")
			return

		channel = Channel(
			id = channel_id,
			pattern = tuple(pattern),
			start_cycle = self.clock.current_cycle()
		)

		self.channels[channel_id] = channel

		if self.running:
			self._launch(channel)

		logger.debug(f"Channel {channel_id}: scheduled {len(channel.pattern)} events spanning {tidepool.pattern.span_cycles(channel.pattern)} cycles")

	def stop_channel (self, channel_id: int) -> None:

		"""Stop a channel and forget it.  Unknown ids are ignored."""

		channel = self.channels.pop(channel_id, None)

		if channel is None:
			return

		channel.running = False

		if channel.task is not None and not channel.task.done():
			channel.task.cancel()

		logger.debug(f"Channel {channel_id} stopped")

	def stop_all (self) -> None:

		"""Stop every channel."""

		for channel_id in list(self.channels):
			self.stop_channel(channel_id)

	def is_playing_any (self) -> bool:
		return bool(self.channels)

	def _launch (self, channel: Channel) -> None:

		if channel.task is None:
			channel.task = asyncio.get_running_loop().create_task(self._run_channel(channel))

	async def _run_channel (self, channel: Channel) -> None:

		"""Wake-up loop for one channel, with backoff on repeated failures."""

		while channel.running:

			try:
				cycle = max(self.clock.current_cycle(), channel.last_cycle + 1)
				self.process_cycle(channel, cycle)

				channel.last_cycle = cycle
				channel.error_count = 0
				delay = self.clock.next_cycle_time(cycle) - self.clock.now()

			except Exception:
				logger.exception(f"Error in schedule cycle on channel {channel.id}")

				delay = min(
					tidepool.constants.BACKOFF_MAX_SECONDS,
					tidepool.constants.BACKOFF_BASE_SECONDS * 2 ** channel.error_count
				)
				channel.error_count += 1

				if channel.error_count >= tidepool.constants.MAX_CONSECUTIVE_FAILURES:
					logger.error(f"Too many scheduling errors, stopping channel {channel.id}")
					self._remove(channel)
					return

			await asyncio.sleep(max(0.0, delay))

	def _remove (self, channel: Channel) -> None:

		"""Tear down a channel from inside its own task."""

		channel.running = False

		if self.channels.get(channel.id) is channel:
			del self.channels[channel.id]

	def process_cycle (self, channel: Channel, cycle: int) -> int:

		"""
		Emit one cycle of a channel's pattern.  Returns the number of triggers sent.

		Deferred transforms are evaluated for ``cycle`` first.  For a pattern
		spanning several cycles only the events of ``cycle % span`` are played.
		Events that fall up to 0.1 s in the past are sent "now"; older ones
		are dropped.

		If emission fails partway through, calling again for the same cycle
		reuses the materialized events and skips the ones already handled.
		"""

		if channel.pending_cycle != cycle:
			channel.pending_pattern = tidepool.transforms.materialize(channel.pattern, cycle, self._make_builder, self._rng)
			channel.pending_cycle = cycle
			channel.emitted = set()

		pattern = channel.pending_pattern

		span = tidepool.pattern.span_cycles(pattern)
		cycle_in_pattern = cycle % span
		cycle_start = self.clock.cycle_start_time(cycle)
		now = self.clock.now()

		logger.debug(f"Channel {channel.id}: cycle {cycle}, pattern cycle {cycle_in_pattern}/{span}")

		sent = 0

		for index, event in enumerate(pattern):

			if event.is_rest or index in channel.emitted:
				continue

			event_cycle = math.floor(event.time)

			if event_cycle != cycle_in_pattern:
				continue

			at_time = cycle_start + float(event.time - event_cycle) / self.clock.cps

			if at_time < now - tidepool.constants.SCHEDULE_TOLERANCE:
				logger.debug(f"Event {event.sample} too far in the past ({now - at_time:.3f}s), skipping")
				channel.emitted.add(index)
				continue

			if self._emit(channel, event, max(now, at_time)):
				sent += 1

			channel.emitted.add(index)

		return sent

	def _emit (self, channel: Channel, event: tidepool.pattern.Event, at_time: float) -> bool:

		if not channel.running:
			return False

		if not self.backend.ready:
			logger.debug(f"Backend not ready, skipping {event.sample}")
			return False

		gain = tidepool.constants.DEFAULT_GAIN if event.gain is None else event.gain
		gain = max(0.0, min(1.0, float(gain)))

		effects = dict(event.effects)

		if event.pan is not None:
			effects.setdefault("pan", event.pan)

		self.backend.trigger(event.sample, gain, effects, dict(event.musical), at_time)

		return True
