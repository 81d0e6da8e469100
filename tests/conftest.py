import dataclasses
import random
import time
import typing

import mido
import pytest

import tidepool.engine


@dataclasses.dataclass
class Trigger:

	"""One recorded call to ``FakeBackend.trigger()``."""

	sample: str
	gain: float
	effects: typing.Dict[str, typing.Any]
	musical: typing.Dict[str, typing.Any]
	at_time: float


class FakeBackend:

	"""Audio backend stub with a hand-driven clock that records every trigger."""

	def __init__ (self, start_time: float = 100.0, ready: bool = True) -> None:

		"""Start the fake clock at ``start_time``."""

		self.now = start_time
		self.is_ready = ready
		self.opened = False
		self.triggers: typing.List[Trigger] = []

	@property
	def ready (self) -> bool:
		return self.is_ready

	def current_time (self) -> float:
		return self.now

	def open (self) -> None:
		self.opened = True

	def close (self) -> None:
		self.opened = False

	def trigger (
		self,
		sample: str,
		gain: float,
		effects: typing.Dict[str, typing.Any],
		musical: typing.Dict[str, typing.Any],
		at_time: float
	) -> None:

		"""Record the trigger."""

		self.triggers.append(Trigger(sample, gain, effects, musical, at_time))

	def samples (self) -> typing.List[str]:
		return [t.sample for t in self.triggers]


class RealtimeBackend (FakeBackend):

	"""Fake backend that follows the real clock, for tests of the running scheduler."""

	def current_time (self) -> float:
		return time.perf_counter()


class FakeMidiOut:

	"""Minimal MIDI output stub that records what it is sent."""

	def __init__ (self) -> None:

		self.messages: typing.List[mido.Message] = []
		self.closed = False

	def send (self, message: mido.Message) -> None:

		"""Record outgoing MIDI messages."""

		self.messages.append(message)

	def close (self) -> None:

		"""Mark the fake device closed."""

		self.closed = True


# Module-level reference so tests can inspect the most recently opened FakeMidiOut.
_current_fake_output: typing.Optional[FakeMidiOut] = None


def _fake_get_output_names () -> list[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	global _current_fake_output
	_current_fake_output = FakeMidiOut()
	return _current_fake_output


def current_fake_output () -> typing.Optional[FakeMidiOut]:
	return _current_fake_output


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use a fake MIDI output for all tests that need it."""

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)


@pytest.fixture
def backend () -> FakeBackend:

	"""A ready fake backend whose clock reads 100.0 until moved."""

	return FakeBackend()


@pytest.fixture
def engine (backend: FakeBackend) -> tidepool.engine.Engine:

	"""An engine at 1 cycle per second with seeded randomness."""

	return tidepool.engine.Engine(backend, cps=1.0, rng=random.Random(42))
