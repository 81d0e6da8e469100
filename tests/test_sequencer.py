import asyncio
import logging
import random
import typing

import pytest

import conftest
import tidepool.clock
import tidepool.constants
import tidepool.engine
import tidepool.pattern
import tidepool.pattern_builder
import tidepool.sequencer


def _make_builder (events: tidepool.pattern.Pattern) -> tidepool.pattern_builder.PatternBuilder:
	return tidepool.pattern_builder.PatternBuilder(None, 0, events)


def _sequencer (backend: conftest.FakeBackend, cps: float = 1.0) -> tidepool.sequencer.Sequencer:

	"""A sequencer whose clock started at the backend's current time."""

	clock = tidepool.clock.Clock(cps=cps, now=backend.current_time)
	clock.start()

	return tidepool.sequencer.Sequencer(clock, backend, _make_builder, random.Random(1))


def _channel (builder: tidepool.pattern_builder.PatternBuilder) -> tidepool.sequencer.Channel:
	return tidepool.sequencer.Channel(id=0, pattern=builder.resolve())


def _run_cycles (sequencer: tidepool.sequencer.Sequencer, channel: tidepool.sequencer.Channel, cycles: range) -> dict:

	"""Process each cycle and return the triggers it produced, by cycle."""

	backend = sequencer.backend
	by_cycle = {}

	for cycle in cycles:
		first = len(backend.triggers)
		sequencer.process_cycle(channel, cycle)
		by_cycle[cycle] = backend.triggers[first:]

	return by_cycle


# --- Cycle processing ---


def test_every_fires_on_multiples_only (backend: conftest.FakeBackend) -> None:

	"""every(4) changes cycles 0 and 4 out of 0-7."""

	sequencer = _sequencer(backend)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd sn").every(4, lambda p: p.gain(0.2)))

	by_cycle = _run_cycles(sequencer, channel, range(8))

	changed = [cycle for cycle, triggers in by_cycle.items() if all(t.gain == 0.2 for t in triggers)]

	assert changed == [0, 4]
	assert all(t.gain == tidepool.constants.DEFAULT_GAIN for t in by_cycle[1])


def test_whenmod_fires_on_its_offset (backend: conftest.FakeBackend) -> None:

	"""whenmod(8, 3) changes cycles 3 and 11."""

	sequencer = _sequencer(backend)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd").whenmod(8, 3, lambda p: p.lpf(400)))

	by_cycle = _run_cycles(sequencer, channel, range(16))

	assert [cycle for cycle, triggers in by_cycle.items() if triggers[0].effects.get("lpf") == 400] == [3, 11]


def test_multi_cycle_pattern_plays_one_cycle_at_a_time (backend: conftest.FakeBackend) -> None:

	"""A two-cycle pattern alternates its halves."""

	sequencer = _sequencer(backend)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd sn").append("hh*2"))

	by_cycle = _run_cycles(sequencer, channel, range(4))

	assert [[t.sample for t in by_cycle[c]] for c in range(4)] == [
		["bd", "sn"],
		["hh", "hh"],
		["bd", "sn"],
		["hh", "hh"],
	]
	assert [t.at_time for t in by_cycle[1]] == pytest.approx([101.0, 101.5])


def test_timestamps_follow_the_clock (backend: conftest.FakeBackend) -> None:

	"""At 2 cps, cycle 3 starts 1.5 s after the start instant."""

	sequencer = _sequencer(backend, cps=2.0)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd sn"))

	sent = sequencer.process_cycle(channel, 3)

	assert sent == 2
	assert [t.at_time for t in backend.triggers] == pytest.approx([101.5, 101.75])


def test_late_events_within_tolerance_are_played_now (backend: conftest.FakeBackend) -> None:

	"""Events a little late are sent now; events too late are dropped."""

	sequencer = _sequencer(backend)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("a b c d"))

	backend.now = 100.55
	sequencer.process_cycle(channel, 0)

	assert backend.samples() == ["c", "d"]
	assert [t.at_time for t in backend.triggers] == pytest.approx([100.55, 100.75])


def test_backend_not_ready_skips_emission (backend: conftest.FakeBackend) -> None:

	"""Nothing is sent while the backend is not ready."""

	backend.is_ready = False
	sequencer = _sequencer(backend)

	assert sequencer.process_cycle(_channel(tidepool.pattern_builder.PatternBuilder().sound("bd sn")), 0) == 0
	assert backend.triggers == []


def test_stopped_channel_emits_nothing (backend: conftest.FakeBackend) -> None:

	"""The running flag is checked before every trigger."""

	sequencer = _sequencer(backend)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd sn"))
	channel.running = False

	sequencer.process_cycle(channel, 0)

	assert backend.triggers == []


def test_gain_defaults_and_clamps (backend: conftest.FakeBackend) -> None:

	"""No gain means 0.7; the backend never sees more than 1.0."""

	sequencer = _sequencer(backend)

	sequencer.process_cycle(_channel(tidepool.pattern_builder.PatternBuilder().sound("bd")), 0)
	sequencer.process_cycle(_channel(tidepool.pattern_builder.PatternBuilder().sound("bd").gain(1.8)), 0)

	assert [t.gain for t in backend.triggers] == [0.7, 1.0]


def test_effects_and_musical_reach_the_backend (backend: conftest.FakeBackend) -> None:

	"""Pan, effects and musical parameters are passed on as plain dicts."""

	sequencer = _sequencer(backend)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("superpiano").note("e").pan(0.5).lpf(900))

	sequencer.process_cycle(channel, 0)
	trigger = backend.triggers[0]

	assert trigger.effects == {"pan": 0.5, "lpf": 900}
	assert trigger.musical == {"note": "e"}


class FailOnceBackend (conftest.FakeBackend):

	"""Raises the first time a given sample is triggered."""

	def __init__ (self, fail_on: str) -> None:

		super().__init__()
		self.fail_on = fail_on
		self.failed = False

	def trigger (
		self,
		sample: str,
		gain: float,
		effects: typing.Dict[str, typing.Any],
		musical: typing.Dict[str, typing.Any],
		at_time: float
	) -> None:

		if sample == self.fail_on and not self.failed:
			self.failed = True
			raise RuntimeError(f"backend rejected {sample}")

		super().trigger(sample, gain, effects, musical, at_time)


def test_retrying_a_cycle_skips_events_already_sent () -> None:

	"""A cycle that failed halfway resumes where it stopped."""

	backend = FailOnceBackend("sn")
	sequencer = _sequencer(backend, cps=0.5)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd sn"))

	with pytest.raises(RuntimeError):
		sequencer.process_cycle(channel, 0)

	assert backend.samples() == ["bd"]

	assert sequencer.process_cycle(channel, 0) == 1
	assert backend.samples() == ["bd", "sn"]
	assert [t.at_time for t in backend.triggers] == pytest.approx([100.0, 101.0])

	sequencer.process_cycle(channel, 1)

	assert backend.samples() == ["bd", "sn", "bd", "sn"]


# --- Channel registry ---


def test_scheduling_replaces_the_channel (engine: tidepool.engine.Engine) -> None:

	"""A second pattern on the same channel replaces the first."""

	engine.schedule(engine.sound("bd").resolve(), 3)
	engine.schedule(engine.sound("sn").resolve(), 3)

	assert list(engine.sequencer.channels) == [3]
	assert engine.sequencer.channels[3].pattern[0].sample == "sn"


def test_empty_pattern_stops_the_channel (engine: tidepool.engine.Engine) -> None:

	"""Scheduling nothing removes the channel."""

	engine.schedule(engine.sound("bd").resolve(), 0)
	engine.schedule((), 0)

	assert not engine.is_playing_any()


def test_stop_unknown_channel_is_ignored (engine: tidepool.engine.Engine) -> None:
	engine.stop_channel(99)
	assert not engine.is_playing_any()


# --- Running scheduler ---


@pytest.mark.asyncio
async def test_channels_play_while_running () -> None:

	"""A scheduled channel keeps triggering once per cycle until stopped."""

	backend = conftest.RealtimeBackend()
	engine = tidepool.engine.Engine(backend, cps=10.0)

	engine.sound("bd").play()

	await engine.start()
	await asyncio.sleep(0.35)
	await engine.stop()

	count = len(backend.triggers)

	assert count >= 2
	assert set(backend.samples()) == {"bd"}
	assert not engine.is_playing_any()

	await asyncio.sleep(0.15)

	assert len(backend.triggers) == count


@pytest.mark.asyncio
async def test_channel_is_removed_after_repeated_failures (monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:

	"""Five failures in a row stop the channel."""

	monkeypatch.setattr(tidepool.constants, "BACKOFF_BASE_SECONDS", 0.001)
	monkeypatch.setattr(tidepool.constants, "BACKOFF_MAX_SECONDS", 0.001)

	engine = tidepool.engine.Engine(conftest.RealtimeBackend(), cps=10.0)
	calls = []

	def failing (channel: tidepool.sequencer.Channel, cycle: int) -> int:
		calls.append(cycle)
		raise RuntimeError("scheduler failure")

	monkeypatch.setattr(engine.sequencer, "process_cycle", failing)

	builder = engine.sound("bd").play()

	with caplog.at_level(logging.ERROR, logger="tidepool.sequencer"):

		await engine.start()

		for _ in range(100):
			if not engine.is_playing_any():
				break
			await asyncio.sleep(0.01)

		await engine.stop()

	assert builder.channel_id not in engine.sequencer.channels
	assert len(calls) == tidepool.constants.MAX_CONSECUTIVE_FAILURES
	assert "Too many scheduling errors" in caplog.text


@pytest.mark.asyncio
async def test_success_resets_the_failure_count (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Failures that are not consecutive never stop the channel."""

	monkeypatch.setattr(tidepool.constants, "BACKOFF_BASE_SECONDS", 0.001)
	monkeypatch.setattr(tidepool.constants, "BACKOFF_MAX_SECONDS", 0.001)

	engine = tidepool.engine.Engine(conftest.RealtimeBackend(), cps=10.0)
	calls = []

	def flaky (channel: tidepool.sequencer.Channel, cycle: int) -> int:
		calls.append(cycle)
		if len(calls) <= 3:
			raise RuntimeError("temporary failure")
		return 0

	monkeypatch.setattr(engine.sequencer, "process_cycle", flaky)

	builder = engine.sound("bd").play()

	await engine.start()

	for _ in range(100):
		if len(calls) >= 4:
			break
		await asyncio.sleep(0.01)

	channel = engine.sequencer.channels[builder.channel_id]

	assert channel.error_count == 0
	assert channel.running

	await engine.stop()


def _record_sleeps (monkeypatch: pytest.MonkeyPatch, on_sleep: typing.Optional[typing.Callable[[typing.List[float]], None]] = None) -> typing.List[float]:

	"""Replace the scheduler's sleep with one that returns at once, recording each delay."""

	delays: typing.List[float] = []

	async def fake_sleep (delay: float) -> None:
		delays.append(delay)
		if on_sleep is not None:
			on_sleep(delays)

	monkeypatch.setattr(tidepool.sequencer.asyncio, "sleep", fake_sleep)

	return delays


def _always_failing (channel: tidepool.sequencer.Channel, cycle: int) -> int:
	raise RuntimeError("scheduler failure")


@pytest.mark.asyncio
async def test_backoff_doubles_until_the_channel_is_removed (backend: conftest.FakeBackend, monkeypatch: pytest.MonkeyPatch) -> None:

	"""Retries wait 0.1, 0.2, 0.4 and 0.8 seconds; the fifth failure removes the channel."""

	sequencer = _sequencer(backend)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd"))
	sequencer.channels[channel.id] = channel

	monkeypatch.setattr(sequencer, "process_cycle", _always_failing)
	delays = _record_sleeps(monkeypatch)

	await sequencer._run_channel(channel)

	assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8])
	assert channel.id not in sequencer.channels
	assert not channel.running


@pytest.mark.asyncio
async def test_backoff_is_capped_at_one_second (backend: conftest.FakeBackend, monkeypatch: pytest.MonkeyPatch) -> None:

	"""With more failures allowed, the wait stops growing at 1.0 s."""

	monkeypatch.setattr(tidepool.constants, "MAX_CONSECUTIVE_FAILURES", 8)

	sequencer = _sequencer(backend)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd"))
	sequencer.channels[channel.id] = channel

	monkeypatch.setattr(sequencer, "process_cycle", _always_failing)
	delays = _record_sleeps(monkeypatch)

	await sequencer._run_channel(channel)

	assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.0, 1.0, 1.0])


@pytest.mark.asyncio
async def test_failed_cycle_is_resumed_not_replayed (monkeypatch: pytest.MonkeyPatch) -> None:

	"""After a backend error mid-cycle, the retry sends only what is left."""

	backend = FailOnceBackend("sn")
	sequencer = _sequencer(backend, cps=0.5)
	channel = _channel(tidepool.pattern_builder.PatternBuilder().sound("bd sn"))
	sequencer.channels[channel.id] = channel

	def stop_after_two (delays: typing.List[float]) -> None:
		if len(delays) == 2:
			channel.running = False

	delays = _record_sleeps(monkeypatch, stop_after_two)

	await sequencer._run_channel(channel)

	assert backend.samples() == ["bd", "sn"]
	assert delays[0] == pytest.approx(0.1)
	assert channel.last_cycle == 0
	assert channel.error_count == 0
