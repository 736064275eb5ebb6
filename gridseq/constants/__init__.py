"""Constants for gridseq.

- ``gridseq.constants.grid`` - Step grid geometry, pitch rows and transport ranges
- ``gridseq.constants.velocity`` - Cell velocity defaults and slider mapping

The playback clock runs at 24 pulses per quarter note, so a grid step (a
sixteenth) is 6 pulses and a bar of 4/4 is 96.
"""

MIDI_QUARTER_NOTE = 24
