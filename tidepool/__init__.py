"""
tidepool - a cycle-based live-coding pattern engine for Python.

Rhythms are written in a compact mini-notation, shaped with a chainable
transform algebra, and played by a drift-free cycle scheduler that sends
timestamped triggers to a sound backend: SuperDirt over OSC, or any MIDI
instrument.

What it does:

- **Mini-notation.** ``"bd ~ sn*2"`` - whitespace-separated steps share
  the cycle equally, ``~`` is a rest, ``name*n`` repeats within a step.
- **Pattern algebra.** ``sound()``, ``stack()``, ``cat()``, ``struct()``,
  ``append()`` for multi-cycle patterns, ``overlay()`` and
  ``superimpose()``.  Patterns can be built from text, lists, or
  generator functions sampled at 16 steps.
- **Transforms.** ``fast()``, ``slow()``, ``rev()`` rewrite time at once;
  ``every()``, ``sometimes()`` and ``whenmod()`` are decided fresh each
  cycle by the scheduler.
- **Sound shaping.** Gain, pan, filters, delay, reverb, distortion,
  bit-crush and vowel formants; pitch via ``note()``, ``up()``,
  ``freq()``, ``midinote()`` and ``n()``.
- **Live coding.** ``engine.evaluate(code)`` replaces what is playing;
  ``engine.live()`` accepts code over TCP from ``tidepool.live_client``.
  Code runs through a small pattern interpreter, never ``eval``.

Minimal example:

    ```python
    import tidepool
    import tidepool.osc

    engine = tidepool.Engine(tidepool.osc.OscBackend())

    engine.sound("bd sn bd sn").every(4, lambda p: p.fast(2)).play()
    engine.sound("hh*8").gain(0.5).pan(0.3).play()

    engine.play()
    ```

Package-level exports: ``Engine``, ``EvalResult``, ``Event``, ``PatternBuilder``, ``parse``.
"""

import tidepool.engine
import tidepool.mini_notation
import tidepool.pattern
import tidepool.pattern_builder


Engine = tidepool.engine.Engine
EvalResult = tidepool.engine.EvalResult
Event = tidepool.pattern.Event
PatternBuilder = tidepool.pattern_builder.PatternBuilder
parse = tidepool.mini_notation.parse
