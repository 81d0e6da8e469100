import argparse
import logging
import os
import typing

import yaml

import tidepool.constants
import tidepool.engine
import tidepool.midi_utils
import tidepool.osc
import tidepool.sequencer


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


DEFAULT_STARTUP = 'sound("bd sn bd sn")\n\nsound("hh*8").gain(0.5)'


def load_config (config_path: str = 'config.yaml') -> dict:

	"""
	Load configuration from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	with open(config_path, 'r') as f:
		return yaml.safe_load(f) or {}


def build_backend (config: typing.Dict[str, typing.Any]) -> tidepool.sequencer.AudioBackend:

	"""
	Create the audio backend named by ``backend.type`` (``osc`` or ``midi``).
	"""

	backend_type = config.get('backend', {}).get('type', 'osc')

	if backend_type == 'osc':
		osc_config = config.get('osc', {})
		return tidepool.osc.OscBackend(
			host = osc_config.get('host', tidepool.osc.DEFAULT_HOST),
			port = osc_config.get('port', tidepool.osc.DEFAULT_PORT),
			latency = osc_config.get('latency', tidepool.osc.DEFAULT_LATENCY)
		)

	if backend_type == 'midi':
		midi_config = config.get('midi', {})
		return tidepool.midi_utils.MidiBackend(
			device_name = midi_config.get('device_name'),
			channel = midi_config.get('channel', tidepool.midi_utils.GM_DRUM_CHANNEL)
		)

	raise ValueError(f"Unknown backend type: {backend_type!r} (expected 'osc' or 'midi')")


def main () -> None:

	"""
	Main entry point for the tidepool application.
	"""

	parser = argparse.ArgumentParser(description="tidepool live coding engine")
	parser.add_argument("--config", default="config.yaml", help="YAML config file (default: config.yaml)")
	args = parser.parse_args()

	logger.info("tidepool starting...")

	config = load_config(args.config)

	engine = tidepool.engine.Engine(
		build_backend(config),
		cps = config.get('engine', {}).get('cps', tidepool.constants.DEFAULT_CPS)
	)

	live_port = config.get('live', {}).get('port')

	if live_port is not None:
		engine.live(port=live_port)

	result = engine.evaluate(config.get('startup', DEFAULT_STARTUP))

	for error in result.errors:
		logger.warning(f"Startup code: {error}")

	engine.play()


if __name__ == "__main__":
	main()
