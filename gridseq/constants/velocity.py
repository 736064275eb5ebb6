"""Velocity constants.

Cells store velocity as a float in ``(0, 1]``. The MIDI file and the MIDI
engine scale it to the 0-127 range. The velocity slider works in MIDI units
with 127 as the denominator.
"""

DEFAULT_CELL_VELOCITY = 0.8
MAX_CELL_VELOCITY = 1.0

# Velocity slider range (MIDI units)
SLIDER_MIN = 10
SLIDER_MAX = 127

# MIDI standard range
MIN_VELOCITY = 0
MAX_VELOCITY = 127
