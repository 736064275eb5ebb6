"""Compile a grid pattern into canonical note events.

The event list is the single hand-off point between the grid and its two
consumers: the live playback encoder (``gridseq.playback``) and the MIDI file
encoder (``gridseq.midi_export``). Neither consumer reads the grid itself.

Each maximal run of adjacent active cells in a row becomes one sustained
note. A run takes the velocity of its first cell; velocities further along
the run are ignored, since a held note has a single attack.
"""

import dataclasses
import typing

import gridseq.pattern


@dataclasses.dataclass(frozen=True)
class SequencerEvent:

	"""
	A note compiled from one run of active cells.
	"""

	start_step: int
	duration_steps: int
	pitch: str
	velocity: float


	@property
	def end_step (self) -> int:

		"""First step after the note ends."""

		return self.start_step + self.duration_steps


def _row_events (cells: typing.Sequence[gridseq.pattern.Cell], pitch: str) -> typing.List[SequencerEvent]:

	"""
	Scan one row left to right and emit an event per run.
	"""

	events: typing.List[SequencerEvent] = []
	step = 0

	while step < len(cells):

		cell = cells[step]

		if not cell.active:
			step += 1
			continue

		length = 1

		while step + length < len(cells) and cells[step + length].active:
			length += 1

		events.append(SequencerEvent(
			start_step = step,
			duration_steps = length,
			pitch = pitch,
			velocity = cell.velocity
		))

		step += length

	return events


def extract_events (pattern: gridseq.pattern.Pattern) -> typing.List[SequencerEvent]:

	"""
	Return the pattern's note events, row by row, each row in step order.

	An all-inactive pattern returns an empty list.
	"""

	events: typing.List[SequencerEvent] = []

	for pitch, cells in zip(pattern.pitches, pattern.rows):
		events.extend(_row_events(cells, pitch))

	return events
