import logging

import pytest

import tidepool.clock


class ManualTime:

	"""A time source that only moves when told to."""

	def __init__ (self, value: float = 10.0) -> None:
		self.value = value

	def __call__ (self) -> float:
		return self.value


def test_cycle_math () -> None:

	"""Cycle numbers and boundaries are derived from the start instant."""

	now = ManualTime()
	clock = tidepool.clock.Clock(cps=2.0, now=now)
	clock.start()

	now.value = 11.3

	assert clock.current_cycle() == 2
	assert clock.cycle_progress() == pytest.approx(0.6)
	assert clock.cycle_start_time(2) == pytest.approx(11.0)
	assert clock.next_cycle_time(2) == pytest.approx(11.5)


def test_before_start () -> None:

	"""An unstarted clock is at cycle 0 and has no boundaries yet."""

	clock = tidepool.clock.Clock(now=ManualTime())

	assert not clock.started
	assert clock.current_cycle() == 0
	assert clock.cycle_progress() == 0.0

	with pytest.raises(RuntimeError):
		clock.cycle_start_time(0)


def test_start_is_idempotent () -> None:

	"""Starting twice keeps the first start instant."""

	now = ManualTime()
	clock = tidepool.clock.Clock(now=now)

	clock.start()
	now.value = 50.0
	clock.start()

	assert clock.start_time == 10.0

	clock.reset()
	clock.start(at=42.0)

	assert clock.start_time == 42.0


def test_boundaries_do_not_drift () -> None:

	"""Boundary n is start + n / cps, however far along we are."""

	clock = tidepool.clock.Clock(cps=0.8, now=ManualTime(0.0))
	clock.start()

	assert clock.cycle_start_time(1000) == pytest.approx(1000 / 0.8)


def test_tempo_change_keeps_cycle_position () -> None:

	"""Changing cps mid-cycle keeps the current position and moves later boundaries."""

	now = ManualTime(0.0)
	clock = tidepool.clock.Clock(cps=1.0, now=now)
	clock.start()

	now.value = 2.5
	clock.set_cps(2.0)

	assert clock.current_cycle() == 2
	assert clock.cycle_progress() == pytest.approx(0.5)
	assert clock.next_cycle_time(2) == pytest.approx(2.75)


def test_cps_is_clamped () -> None:

	"""cps outside 0.1 to 10 is held at the nearest bound."""

	clock = tidepool.clock.Clock(now=ManualTime())

	clock.set_cps(50)
	assert clock.cps == 10.0

	clock.set_cps(0)
	assert clock.cps == 0.1

	assert tidepool.clock.Clock(cps=-3, now=ManualTime()).cps == 0.1


def test_invalid_cps_is_ignored (caplog: pytest.LogCaptureFixture) -> None:

	"""A non-number leaves the tempo alone."""

	clock = tidepool.clock.Clock(cps=1.0, now=ManualTime())

	with caplog.at_level(logging.WARNING, logger="tidepool.clock"):
		clock.set_cps("fast")  # type: ignore[arg-type]
		clock.set_cps(float("nan"))
		clock.set_tempo(None)  # type: ignore[arg-type]

	assert clock.cps == 1.0
	assert "Invalid CPS" in caplog.text
	assert "Invalid BPM" in caplog.text


@pytest.mark.parametrize("bpm, cps", [
	(120, 0.5),
	(240, 1.0),
	(10, 20 / 240),
	(400, 300 / 240),
])
def test_set_tempo (bpm: float, cps: float) -> None:

	"""BPM is clamped to 20-300 and divided by 240."""

	clock = tidepool.clock.Clock(now=ManualTime())
	clock.set_tempo(bpm)

	assert clock.cps == pytest.approx(cps)


def test_bad_bounds_are_rejected () -> None:

	"""The clock refuses bounds it could never satisfy."""

	with pytest.raises(ValueError):
		tidepool.clock.Clock(min_cps=0)

	with pytest.raises(ValueError):
		tidepool.clock.Clock(min_cps=2, max_cps=1)
