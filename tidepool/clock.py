import logging
import math
import time
import typing

import tidepool.constants


logger = logging.getLogger(__name__)


class Clock:

	"""
	Maps wall-clock time to cycles.

	The clock stores a tempo in cycles per second and the instant playback
	began; everything else is derived.  Cycle boundaries are always computed
	from the start instant (``start + n / cps``), never by adding intervals
	to "now", so scheduling does not drift.

	A tempo change takes effect from the next scheduling decision.  To keep
	the current cycle count continuous, the start instant is moved so that
	the cycle position at the moment of the change is preserved.
	"""

	def __init__ (
		self,
		cps: float = tidepool.constants.DEFAULT_CPS,
		now: typing.Optional[typing.Callable[[], float]] = None,
		min_cps: float = tidepool.constants.MIN_CPS,
		max_cps: float = tidepool.constants.MAX_CPS
	) -> None:

		"""
		Parameters:
			cps: Initial tempo in cycles per second.
			now: Time source in seconds (defaults to ``time.perf_counter``).
			min_cps: Lowest accepted tempo.
			max_cps: Highest accepted tempo.
		"""

		if min_cps <= 0 or max_cps < min_cps:
			raise ValueError("Clock bounds must satisfy 0 < min_cps <= max_cps")

		self.min_cps = min_cps
		self.max_cps = max_cps
		self._now = now or time.perf_counter
		self.cps: float = max(min_cps, min(max_cps, cps))
		self.start_time: typing.Optional[float] = None

	@property
	def started (self) -> bool:
		return self.start_time is not None

	def now (self) -> float:
		return self._now()

	def start (self, at: typing.Optional[float] = None) -> None:

		"""Fix the start instant (idempotent: a running clock keeps its start)."""

		if self.start_time is not None:
			return

		self.start_time = self._now() if at is None else at

		logger.info(f"Clock started at {self.cps:.3f} cps")

	def reset (self) -> None:
		self.start_time = None

	def set_cps (self, cps: float) -> None:

		"""
		Change the tempo, clamped to the clock's bounds.

		Non-numeric values are logged and ignored.
		"""

		if isinstance(cps, bool) or not isinstance(cps, (int, float)) or not math.isfinite(cps):
			logger.warning(f"Invalid CPS value: {cps!r}")
			return

		new_cps = max(self.min_cps, min(self.max_cps, float(cps)))

		if self.start_time is not None:
			# Keep the cycle position continuous across the change.
			now = self._now()
			position = (now - self.start_time) * self.cps
			self.start_time = now - position / new_cps

		self.cps = new_cps

		logger.info(f"CPS set to {self.cps:.3f}")

	def set_tempo (self, bpm: float) -> None:

		"""Change the tempo in beats per minute (4 beats per cycle)."""

		if isinstance(bpm, bool) or not isinstance(bpm, (int, float)) or not math.isfinite(bpm):
			logger.warning(f"Invalid BPM value: {bpm!r}")
			return

		bpm = max(tidepool.constants.MIN_BPM, min(tidepool.constants.MAX_BPM, bpm))

		self.set_cps(bpm / tidepool.constants.BPM_TO_CPS)

	def current_cycle (self) -> int:

		"""``floor((now - start) * cps)``, or 0 before the clock starts."""

		if self.start_time is None:
			return 0

		return max(0, math.floor((self._now() - self.start_time) * self.cps))

	def cycle_progress (self) -> float:

		"""Fractional position inside the current cycle, 0.0 to 1.0."""

		if self.start_time is None:
			return 0.0

		position = max(0.0, (self._now() - self.start_time) * self.cps)

		return position - math.floor(position)

	def cycle_start_time (self, cycle: int) -> float:

		"""Wall-clock instant at which ``cycle`` begins."""

		if self.start_time is None:
			raise RuntimeError("Clock has not been started")

		return self.start_time + cycle / self.cps

	def next_cycle_time (self, cycle: int) -> float:

		"""Wall-clock instant at which the cycle after ``cycle`` begins."""

		return self.cycle_start_time(cycle + 1)
