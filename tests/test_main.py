import logging
import pathlib

import pytest

import tidepool.__main__
import tidepool.midi_utils
import tidepool.osc


def test_load_config (tmp_path: pathlib.Path) -> None:

	"""YAML settings are read into a dict."""

	config_file = tmp_path / "config.yaml"
	config_file.write_text("engine:\n  cps: 0.6\nbackend:\n  type: midi\nstartup: |\n  sound(\"bd\")\n")

	config = tidepool.__main__.load_config(str(config_file))

	assert config["engine"]["cps"] == 0.6
	assert config["backend"]["type"] == "midi"
	assert config["startup"] == 'sound("bd")\n'


def test_missing_or_empty_config (tmp_path: pathlib.Path, caplog: pytest.LogCaptureFixture) -> None:

	"""A missing file warns; an empty file is an empty config."""

	with caplog.at_level(logging.WARNING, logger="tidepool.__main__"):
		assert tidepool.__main__.load_config(str(tmp_path / "absent.yaml")) == {}

	assert "not found" in caplog.text

	empty = tmp_path / "empty.yaml"
	empty.write_text("")

	assert tidepool.__main__.load_config(str(empty)) == {}


def test_build_osc_backend () -> None:

	"""OSC is the default backend and takes its settings from the osc section."""

	backend = tidepool.__main__.build_backend({"osc": {"port": 57121, "latency": 0.2}})

	assert isinstance(backend, tidepool.osc.OscBackend)
	assert not backend.ready


def test_build_midi_backend () -> None:

	"""backend.type midi gives a MIDI backend on the configured channel."""

	backend = tidepool.__main__.build_backend({"backend": {"type": "midi"}, "midi": {"channel": 3}})

	assert isinstance(backend, tidepool.midi_utils.MidiBackend)
	assert backend.channel == 3


def test_unknown_backend_type () -> None:

	"""Anything other than osc or midi is a configuration error."""

	with pytest.raises(ValueError):
		tidepool.__main__.build_backend({"backend": {"type": "jack"}})
