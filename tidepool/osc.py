"""OSC audio backend for SuperDirt.

Every trigger becomes one ``/dirt/play`` message wrapped in a timestamped
OSC bundle, so SuperCollider plays it at the right moment regardless of
network jitter.  The bundle time is ``at_time + latency``.

Parameter mapping
─────────────────
- sample → ``s``; ``n`` → ``n``
- ``gain`` → ``gain``; ``pan`` (-1..1) → ``pan`` (0..1)
- ``lpf`` / ``hpf`` / ``bpf`` → ``cutoff`` / ``hcutoff`` / ``bandf``
- ``delay`` (seconds) → ``delaytime`` plus a fixed ``delay`` send level
- ``reverb`` (seconds) → ``room`` / ``size``
- ``distortion`` (1..100) → ``shape`` (0..1)
- ``crush`` → ``crush``; ``vowel`` → vowel letter
- ``note`` / ``midinote`` / ``freq`` → ``freq``; ``up`` alone → ``up``
"""

import logging
import time
import typing

import pythonosc.osc_bundle_builder
import pythonosc.osc_message_builder
import pythonosc.udp_client

import tidepool.constants
import tidepool.notes


logger = logging.getLogger(__name__)

DIRT_ADDRESS = "/dirt/play"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 57120
DEFAULT_LATENCY = 0.1

_DELAY_SEND = 0.5
_ROOM_LEVEL = 0.4

_PITCH_PARAMETERS = ("note", "midinote", "freq")


def dirt_params (
	sample: str,
	gain: float,
	effects: typing.Mapping[str, typing.Any],
	musical: typing.Mapping[str, typing.Any]
) -> typing.List[typing.Tuple[str, typing.Any]]:

	"""Flatten one trigger into SuperDirt's name/value pairs."""

	params: typing.List[typing.Tuple[str, typing.Any]] = [("s", sample), ("gain", float(gain))]

	if "n" in musical:
		params.append(("n", int(musical["n"])))

	if any(name in musical for name in _PITCH_PARAMETERS):
		params.append(("freq", float(tidepool.notes.resolve_frequency(musical, tidepool.constants.DEFAULT_FREQ))))

	elif "up" in musical:
		params.append(("up", float(musical["up"])))

	if "pan" in effects:
		params.append(("pan", (float(effects["pan"]) + 1.0) / 2.0))

	for name, dirt_name in (("lpf", "cutoff"), ("hpf", "hcutoff"), ("bpf", "bandf")):
		if name in effects:
			params.append((dirt_name, float(effects[name])))

	if "delay" in effects:
		params.append(("delaytime", float(effects["delay"])))
		params.append(("delay", _DELAY_SEND))

	if "reverb" in effects:
		params.append(("room", _ROOM_LEVEL))
		params.append(("size", float(effects["reverb"]) / tidepool.constants.REVERB_RANGE[1]))

	if "distortion" in effects:
		low, high = tidepool.constants.DISTORTION_RANGE
		params.append(("shape", (float(effects["distortion"]) - low) / (high - low + 1)))

	if "crush" in effects:
		params.append(("crush", float(effects["crush"])))

	if "vowel" in effects:
		params.append(("vowel", _vowel_letter(effects["vowel"])))

	return params


def _vowel_letter (formants: typing.Any) -> str:

	for letter, freqs in tidepool.constants.VOWEL_FORMANTS.items():
		if tuple(formants) == freqs:
			return letter

	return "a"


class OscBackend:

	"""Sends triggers to SuperDirt over UDP."""

	def __init__ (
		self,
		host: str = DEFAULT_HOST,
		port: int = DEFAULT_PORT,
		latency: float = DEFAULT_LATENCY
	) -> None:

		if not 0 < port < 65536:
			raise ValueError(f"Invalid OSC port: {port}")

		if latency < 0:
			raise ValueError("OSC latency must not be negative")

		self._host = host
		self._port = port
		self._latency = latency
		self._client: typing.Optional[pythonosc.udp_client.SimpleUDPClient] = None

	@property
	def ready (self) -> bool:
		return self._client is not None

	def current_time (self) -> float:

		"""Wall-clock seconds, the time base OSC bundles are stamped in."""

		return time.time()

	def open (self) -> None:

		"""Create the UDP client."""

		self._client = pythonosc.udp_client.SimpleUDPClient(self._host, self._port)

		logger.info(f"OSC sending to SuperDirt at {self._host}:{self._port} (latency {self._latency:.3f}s)")

	def close (self) -> None:

		if self._client is not None:
			self._client = None
			logger.info("OSC backend closed")

	def trigger (
		self,
		sample: str,
		gain: float,
		effects: typing.Dict[str, typing.Any],
		musical: typing.Dict[str, typing.Any],
		at_time: float
	) -> None:

		"""Send one sound as a bundle stamped ``at_time + latency``."""

		if self._client is None:
			return

		message = pythonosc.osc_message_builder.OscMessageBuilder(address=DIRT_ADDRESS)

		for name, value in dirt_params(sample, gain, effects, musical):
			message.add_arg(name)
			message.add_arg(value)

		bundle = pythonosc.osc_bundle_builder.OscBundleBuilder(at_time + self._latency)
		bundle.add_content(message.build())

		try:
			self._client.send(bundle.build())
		except OSError as e:
			logger.warning(f"OSC send error: {e}")
