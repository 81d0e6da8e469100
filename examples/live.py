import logging

import tidepool
import tidepool.midi_utils

logging.basicConfig(level=logging.INFO)

# Drums on General MIDI channel 10; any GM synth or drum machine will do.
engine = tidepool.Engine(tidepool.midi_utils.MidiBackend(), cps=0.5)

result = engine.evaluate("""
stack(["bd ~ bd ~", "~ sn ~ sn"])
  .every(4, lambda p: p.fast(2))

sound("hh*8")
  .sometimes(lambda p: p.gain(0.3))   // ghost notes
""")

for error in result.errors:
	logging.warning(error)

# Send new code with: python -m tidepool.live_client
engine.live(port=5555)
engine.play()
