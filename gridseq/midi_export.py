"""Encode tracks as a Standard MIDI File.

Every canonical event becomes a note-on and a note-off at absolute ticks
(128 ticks per beat, so 32 per step). A track's on/off list is sorted by
tick with note-offs first on a tie, which releases a note before a new one
strikes on the same instant. The sorted list is then converted to delta
times and passed to a ``MidiWriterLike``.

The first track carries the tempo. Every track carries the GM program for
its instrument. Everything up to the writer call is pure: the same tracks
and tempo always give the same stream.
"""

import dataclasses
import datetime
import logging
import pathlib
import typing

import gridseq.constants.grid
import gridseq.constants.velocity
import gridseq.errors
import gridseq.events
import gridseq.instruments
import gridseq.midi_writer
import gridseq.track


logger = logging.getLogger(__name__)


NOTE_ON = "on"
NOTE_OFF = "off"

MIDI_MIME_TYPE = "audio/midi"
EXPORT_CHANNEL = 0


@dataclasses.dataclass(frozen=True)
class TickEvent:

	"""
	A note-on or note-off at an absolute tick.
	"""

	tick: int
	kind: str
	pitch: str
	velocity: int


@dataclasses.dataclass(frozen=True)
class DeltaEvent:

	"""
	A note-on or note-off timed relative to the previous event in its track.
	"""

	delta: int
	kind: str
	pitch: str
	velocity: int


@dataclasses.dataclass(frozen=True)
class ExportedFile:

	"""
	A finished MIDI file ready to hand to the user.
	"""

	filename: str
	data: bytes
	mime_type: str = MIDI_MIME_TYPE


	def save (self, directory: typing.Union[str, pathlib.Path] = ".") -> pathlib.Path:

		"""Write the file into ``directory`` and return its path."""

		path = pathlib.Path(directory) / self.filename
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_bytes(self.data)

		return path


def to_midi_velocity (velocity: float) -> int:

	"""Scale a 0-1 velocity to MIDI 0-127."""

	return max(gridseq.constants.velocity.MIN_VELOCITY, min(gridseq.constants.velocity.MAX_VELOCITY, int(round(velocity * 127))))


def expand_event (event: gridseq.events.SequencerEvent, ticks_per_step: int = gridseq.constants.grid.TICKS_PER_STEP) -> typing.Tuple[TickEvent, TickEvent]:

	"""
	Split an event into its note-on and note-off.
	"""

	on = TickEvent(
		tick = event.start_step * ticks_per_step,
		kind = NOTE_ON,
		pitch = event.pitch,
		velocity = to_midi_velocity(event.velocity)
	)

	off = TickEvent(
		tick = event.end_step * ticks_per_step,
		kind = NOTE_OFF,
		pitch = event.pitch,
		velocity = 0
	)

	return on, off


def tick_events (events: typing.Iterable[gridseq.events.SequencerEvent], ticks_per_step: int = gridseq.constants.grid.TICKS_PER_STEP) -> typing.List[TickEvent]:

	"""
	Return the sorted on/off list for a track's events.

	Sorted by tick; on equal ticks note-offs come before note-ons. Otherwise
	the input order is kept.
	"""

	expanded: typing.List[TickEvent] = []

	for event in events:
		expanded.extend(expand_event(event, ticks_per_step))

	return sorted(expanded, key=lambda tick_event: (tick_event.tick, 0 if tick_event.kind == NOTE_OFF else 1))


def delta_encode (events: typing.Iterable[TickEvent]) -> typing.List[DeltaEvent]:

	"""
	Convert sorted absolute-tick events to delta times, starting from tick 0.
	"""

	encoded: typing.List[DeltaEvent] = []
	last_tick = 0

	for event in events:

		delta = event.tick - last_tick

		if delta < 0:
			raise ValueError("Tick events must be sorted before delta encoding")

		encoded.append(DeltaEvent(
			delta = delta,
			kind = event.kind,
			pitch = event.pitch,
			velocity = event.velocity
		))

		last_tick = event.tick

	return encoded


def decode_deltas (events: typing.Iterable[DeltaEvent]) -> typing.List[int]:

	"""Recover absolute ticks from delta-timed events."""

	ticks: typing.List[int] = []
	tick = 0

	for event in events:
		tick += event.delta
		ticks.append(tick)

	return ticks


def encode_track (
	track: gridseq.track.Track,
	track_writer: gridseq.midi_writer.MidiTrackWriterLike,
	tempo_bpm: typing.Optional[float] = None
) -> typing.List[DeltaEvent]:

	"""
	Write one track's metadata and notes to ``track_writer``.

	The tempo is only written when ``tempo_bpm`` is given. Returns the
	delta-timed stream that was written.
	"""

	if tempo_bpm is not None:
		track_writer.set_tempo(tempo_bpm)

	track_writer.set_instrument(EXPORT_CHANNEL, gridseq.instruments.program_for(track.instrument))

	stream = delta_encode(tick_events(gridseq.events.extract_events(track.pattern)))

	for event in stream:
		if event.kind == NOTE_ON:
			track_writer.note_on(EXPORT_CHANNEL, event.pitch, event.delta, event.velocity)
		else:
			track_writer.note_off(EXPORT_CHANNEL, event.pitch, event.delta, event.velocity)

	return stream


def export_midi (
	tracks: typing.Sequence[gridseq.track.Track],
	tempo_bpm: float,
	writer: typing.Optional[gridseq.midi_writer.MidiWriterLike]
) -> bytes:

	"""
	Encode ``tracks`` and return the serialized file.

	Raises ``ExportNotReadyError`` when ``writer`` is None (not loaded yet).
	"""

	if writer is None:
		raise gridseq.errors.ExportNotReadyError("MIDI writer is not loaded")

	midi_file = writer.create_file()

	for index, track in enumerate(tracks):
		track_writer = writer.create_track()
		encode_track(track, track_writer, tempo_bpm if index == 0 else None)
		midi_file.add_track(track_writer)

	return midi_file.to_bytes()


def export_filename (timestamp: typing.Optional[datetime.datetime] = None) -> str:

	"""
	Return ``agentic-sequencer-<milliseconds since epoch>.mid``.
	"""

	if timestamp is None:
		timestamp = datetime.datetime.now(datetime.timezone.utc)

	return f"agentic-sequencer-{int(timestamp.timestamp() * 1000)}.mid"


def build_export (
	tracks: typing.Sequence[gridseq.track.Track],
	tempo_bpm: float,
	writer: typing.Optional[gridseq.midi_writer.MidiWriterLike],
	timestamp: typing.Optional[datetime.datetime] = None
) -> ExportedFile:

	"""
	Encode ``tracks`` into an ``ExportedFile`` with a timestamped name.
	"""

	data = export_midi(tracks, tempo_bpm, writer)
	exported = ExportedFile(filename=export_filename(timestamp), data=data)

	logger.info(f"Encoded {len(tracks)} tracks into {exported.filename} ({len(data)} bytes)")

	return exported
