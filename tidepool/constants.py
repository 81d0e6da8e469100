"""Engine-wide constants.

Time inside a pattern is measured in **cycles**: one cycle spans ``[0, 1)``
and lasts ``1 / cps`` seconds of wall-clock time.  Multi-cycle patterns
(built with ``append()``) simply place events at ``time >= 1``.
"""

# Mini-notation

REST = "~"
REPEAT_MARKER = "*"
STRUCT_ACTIVE_MARKERS = ("x",)

# Largest repeat count `name*n` expands to.
MAX_REPEAT_COUNT = 1024

# Number of equal steps a generator callback is sampled at.
GENERATOR_STEPS = 16

# Tempo

DEFAULT_CPS = 0.8
MIN_CPS = 0.1
MAX_CPS = 10.0
MIN_BPM = 20.0
MAX_BPM = 300.0
BEATS_PER_CYCLE = 4
BPM_TO_CPS = 240.0

# Time transforms never go below this factor.
MIN_TIME_FACTOR = 0.1

# Probability aliases for sometimes()

SOMETIMES = 0.5
OFTEN = 0.75
RARELY = 0.25
ALMOST_NEVER = 0.1
ALMOST_ALWAYS = 0.9

# Scheduling

# Events up to this many seconds in the past are played "now" instead of dropped.
SCHEDULE_TOLERANCE = 0.1

BACKOFF_BASE_SECONDS = 0.1
BACKOFF_MAX_SECONDS = 1.0
MAX_CONSECUTIVE_FAILURES = 5

# Levels

DEFAULT_GAIN = 0.7
MIN_GAIN = 0.0
MAX_GAIN = 2.0

# Effect parameter ranges (inclusive)

PAN_RANGE = (-1.0, 1.0)
FILTER_RANGE = (20.0, 20000.0)
DELAY_RANGE = (0.001, 2.0)
REVERB_RANGE = (0.1, 5.0)
DISTORTION_RANGE = (1.0, 100.0)
CRUSH_RANGE = (1, 16)

# First three formant frequencies (Hz) for each vowel filter.
VOWEL_FORMANTS = {
	"a": (730, 1090, 2440),
	"e": (270, 2290, 3010),
	"i": (300, 2320, 3200),
	"o": (570, 840, 2410),
	"u": (440, 1020, 2240),
}

# Pitch

MIDDLE_C = 60
DEFAULT_OCTAVE = 4
DEFAULT_FREQ = 440.0
A4_MIDI = 69
A4_FREQ = 440.0
