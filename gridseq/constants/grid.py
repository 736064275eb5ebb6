"""Step grid geometry.

A step is one sixteenth note. Bars are always 16 steps (4/4), and pattern
lengths are whole bars.
"""

import typing


STEPS_PER_BAR = 16
STEPS_PER_BEAT = 4
BEATS_PER_BAR = STEPS_PER_BAR // STEPS_PER_BEAT

# Two bars per pattern.
TOTAL_STEPS = 32

# One row per pitch, highest first.
NOTE_NAMES: typing.Tuple[str, ...] = (
	"C5",
	"B4",
	"A#4",
	"A4",
	"G#4",
	"G4",
	"F#4",
	"F4",
	"E4",
	"D#4",
	"D4",
	"C#4",
	"C4",
)

# MIDI export resolution
TICKS_PER_BEAT = 128
TICKS_PER_STEP = TICKS_PER_BEAT // STEPS_PER_BEAT

# Transport controls
DEFAULT_TEMPO_BPM = 122
MIN_TEMPO_BPM = 70
MAX_TEMPO_BPM = 180

DEFAULT_SWING_PERCENT = 0
MIN_SWING_PERCENT = 0
MAX_SWING_PERCENT = 60
SWING_SUBDIVISION = "8n"

# Seconds to wait between scheduling and the first pulse on a fresh start.
START_SETTLE_DELAY = 0.02

# Track mixer
DEFAULT_VOLUME_DB = -8.0
MIN_VOLUME_DB = -24.0
MAX_VOLUME_DB = 6.0
