"""Instrument catalogue.

Each track plays one instrument. An instrument id selects the voice the
playback engine builds and the General MIDI program written to exported
files.

Two ways to use this module:

1. **As a catalogue** - ``INSTRUMENTS`` lists every instrument in the order
   new tracks are assigned them::

       instrument = gridseq.instruments.INSTRUMENTS[index % len(gridseq.instruments.INSTRUMENTS)]

2. **As a lookup** - ``program_for()`` resolves an id to its GM program
   number and ``is_known()`` checks an id against the catalogue.
"""

import dataclasses
import typing


DREAM_PAD = "dream-pad"
CHIPTUNE = "chiptune"
FM_KEYS = "fm-keys"
BASS = "bass"

InstrumentId = str

# GM program 89 (Pad 2, warm) is the fallback for unknown ids.
DEFAULT_PROGRAM = 89


@dataclasses.dataclass(frozen=True)
class InstrumentDefinition:

	"""
	A playable instrument and its General MIDI mapping.
	"""

	id: InstrumentId
	name: str
	description: str
	program: int


INSTRUMENTS: typing.Tuple[InstrumentDefinition, ...] = (
	InstrumentDefinition(
		id = DREAM_PAD,
		name = "Dream Pad",
		description = "Slow-attack triangle pad with a long release.",
		program = 89,
	),
	InstrumentDefinition(
		id = CHIPTUNE,
		name = "Chiptune Lead",
		description = "Square-wave lead with short, snappy envelopes.",
		program = 81,
	),
	InstrumentDefinition(
		id = FM_KEYS,
		name = "FM Keys",
		description = "Bell-like FM electric piano.",
		program = 6,
	),
	InstrumentDefinition(
		id = BASS,
		name = "Analog Bass",
		description = "Filtered sawtooth mono bass.",
		program = 34,
	),
)

INSTRUMENT_PROGRAMS: typing.Dict[InstrumentId, int] = {
	instrument.id: instrument.program for instrument in INSTRUMENTS
}


def program_for (instrument_id: InstrumentId) -> int:

	"""
	Return the GM program number for an instrument id (``DEFAULT_PROGRAM`` when unknown).
	"""

	return INSTRUMENT_PROGRAMS.get(instrument_id, DEFAULT_PROGRAM)


def is_known (instrument_id: InstrumentId) -> bool:

	"""Whether the id names an instrument in the catalogue."""

	return instrument_id in INSTRUMENT_PROGRAMS
