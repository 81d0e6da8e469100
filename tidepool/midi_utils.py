import asyncio
import logging
import time
import typing
import mido

import tidepool.constants
import tidepool.notes

logger = logging.getLogger(__name__)

# Tidal-style sample names to General MIDI percussion notes (channel 10).
GM_DRUM_MAP: typing.Dict[str, int] = {
    "bd": 36,
    "kick": 36,
    "sn": 38,
    "sd": 38,
    "rim": 37,
    "cp": 39,
    "clap": 39,
    "hh": 42,
    "ch": 42,
    "oh": 46,
    "lt": 45,
    "mt": 47,
    "ht": 50,
    "cr": 49,
    "crash": 49,
    "rd": 51,
    "ride": 51,
    "cb": 56,
    "tamb": 54,
}

GM_DRUM_CHANNEL = 9
DEFAULT_NOTE_LENGTH = 0.1


def select_output_device(device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:
    """
    Select and open a MIDI output device.

    If `device_name` is provided, attempts to open that specific device.
    If `device_name` is None, auto-discovers available devices:
    - If exactly one device exists, it is selected automatically.
    - If multiple devices exist, the first one is used and the rest are listed.
    - If no devices exist, logs an error and returns None.

    Returns:
        A tuple of (device_name, midi_out_object) or (None, None) on failure.
    """
    try:
        outputs = mido.get_output_names()
        logger.info(f"Available MIDI outputs: {outputs}")

        if not outputs:
            logger.error("No MIDI output devices found.")
            return None, None

        if device_name is not None:
            if device_name in outputs:
                midi_out = mido.open_output(device_name)
                logger.info(f"Opened MIDI output: {device_name}")
                return device_name, midi_out
            else:
                logger.error(
                    f"MIDI output device '{device_name}' not found. "
                    f"Available devices: {outputs}"
                )
                return None, None

        selected_name = outputs[0]
        midi_out = mido.open_output(selected_name)

        if len(outputs) == 1:
            logger.info(f"One MIDI output found - using '{selected_name}'")
        else:
            logger.info(f"Several MIDI outputs found - using '{selected_name}' (set midi.device_name to choose)")

        return selected_name, midi_out

    except Exception as e:
        logger.error(f"Failed to open MIDI output: {e}")
        return None, None


def sample_to_note(sample: str, musical: typing.Mapping[str, typing.Any]) -> int:
    """
    MIDI note for a trigger.

    Pitch parameters (note, midinote, freq, up) win; otherwise the sample
    name is looked up in the drum map (a trailing ``:n`` variation is
    ignored), and unknown names play middle C.
    """
    name = sample.split(":")[0].lower()
    base = GM_DRUM_MAP.get(name, tidepool.constants.MIDDLE_C)

    return tidepool.notes.resolve_midi(musical, base)


class MidiBackend:

    """Plays triggers as note on / note off pairs on a MIDI output."""

    def __init__(self, device_name: typing.Optional[str] = None, channel: int = GM_DRUM_CHANNEL, note_length: float = DEFAULT_NOTE_LENGTH) -> None:

        if not 0 <= channel <= 15:
            raise ValueError(f"MIDI channel must be 0-15, got {channel}")

        if note_length <= 0:
            raise ValueError("note_length must be positive")

        self.device_name = device_name
        self.channel = channel
        self.note_length = note_length
        self.midi_out: typing.Optional[typing.Any] = None
        # Sounding note ons per pitch; the note off is sent when the last one ends.
        self._active_notes: typing.Dict[int, int] = {}

    @property
    def ready(self) -> bool:
        return self.midi_out is not None

    def current_time(self) -> float:
        return time.perf_counter()

    def open(self) -> None:
        self.device_name, self.midi_out = select_output_device(self.device_name)

    def close(self) -> None:
        if self.midi_out is None:
            return

        for note in list(self._active_notes):
            self._send("note_off", note, 0)

        self._active_notes.clear()
        self.midi_out.close()
        self.midi_out = None

    def trigger(
        self,
        sample: str,
        gain: float,
        effects: typing.Dict[str, typing.Any],
        musical: typing.Dict[str, typing.Any],
        at_time: float
    ) -> None:
        """Schedule note on at ``at_time`` and note off ``note_length`` later on the running loop."""
        if self.midi_out is None:
            return

        note = sample_to_note(sample, musical)
        velocity = max(0, min(127, round(gain * 127)))

        if velocity == 0:
            return
        delay = max(0.0, at_time - self.current_time())

        loop = asyncio.get_running_loop()
        loop.call_later(delay, self._note_on, note, velocity)
        loop.call_later(delay + self.note_length, self._note_off, note)

    def _note_on(self, note: int, velocity: int) -> None:
        if self.midi_out is None:
            return

        self._active_notes[note] = self._active_notes.get(note, 0) + 1
        self._send("note_on", note, velocity)

    def _note_off(self, note: int) -> None:
        count = self._active_notes.get(note, 0)

        if count > 1:
            self._active_notes[note] = count - 1
            return

        if count == 0:
            return

        del self._active_notes[note]
        self._send("note_off", note, 0)

    def _send(self, message_type: str, note: int, velocity: int) -> None:
        if self.midi_out is None:
            return

        try:
            self.midi_out.send(mido.Message(message_type, channel=self.channel, note=note, velocity=velocity))
        except Exception:
            logger.exception("MIDI send failed (device may be disconnected)")
