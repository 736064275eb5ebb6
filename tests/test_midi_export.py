import dataclasses
import datetime
import io
import pathlib
import typing

import mido
import pytest

import gridseq.errors
import gridseq.events
import gridseq.midi_export
import gridseq.midi_writer
import gridseq.pattern
import gridseq.track


class RecordingTrack:

	"""Track writer that records every call."""

	def __init__ (self) -> None:

		"""Start with no calls."""

		self.calls: typing.List[typing.Tuple[typing.Any, ...]] = []

	def set_tempo (self, bpm: float) -> None:

		"""Record a tempo."""

		self.calls.append(("tempo", bpm))

	def set_instrument (self, channel: int, program: int) -> None:

		"""Record a program."""

		self.calls.append(("instrument", channel, program))

	def note_on (self, channel: int, pitch: str, delta: int, velocity: int) -> None:

		"""Record a note-on."""

		self.calls.append(("on", channel, pitch, delta, velocity))

	def note_off (self, channel: int, pitch: str, delta: int, velocity: int) -> None:

		"""Record a note-off."""

		self.calls.append(("off", channel, pitch, delta, velocity))


class RecordingFile:

	"""File container that records added tracks."""

	def __init__ (self) -> None:

		"""Start empty."""

		self.tracks: typing.List[RecordingTrack] = []

	def add_track (self, track: RecordingTrack) -> None:

		"""Record a track."""

		self.tracks.append(track)

	def to_bytes (self) -> bytes:

		"""Return a marker."""

		return b"MThd"


class RecordingWriter:

	"""Writer that hands out recording files and tracks."""

	def __init__ (self) -> None:

		"""Start with no files."""

		self.files: typing.List[RecordingFile] = []

	def create_file (self) -> RecordingFile:

		"""Create a recording file."""

		self.files.append(RecordingFile())
		return self.files[-1]

	def create_track (self) -> RecordingTrack:

		"""Create a recording track."""

		return RecordingTrack()


def _event (start: int, duration: int, pitch: str = "C4", velocity: float = 0.8) -> gridseq.events.SequencerEvent:

	"""Shorthand for a canonical event."""

	return gridseq.events.SequencerEvent(start_step=start, duration_steps=duration, pitch=pitch, velocity=velocity)


def _track (steps_on: typing.Dict[int, typing.List[int]], instrument: str = "dream-pad", index: int = 0) -> gridseq.track.Track:

	"""A default track with some cells switched on."""

	track = gridseq.track.create_track(index)
	pattern = track.pattern

	for row, steps in steps_on.items():
		for step in steps:
			pattern = gridseq.pattern.toggle_cell(pattern, row, step, True)

	return dataclasses.replace(track, pattern=pattern, instrument=instrument)


def test_expand_event_ticks_and_velocity () -> None:

	"""On at start × 32 with scaled velocity; off at end × 32 with zero velocity."""

	on, off = gridseq.midi_export.expand_event(_event(3, 2, velocity=0.8))

	assert on == gridseq.midi_export.TickEvent(tick=96, kind="on", pitch="C4", velocity=102)
	assert off == gridseq.midi_export.TickEvent(tick=160, kind="off", pitch="C4", velocity=0)


def test_release_sorts_before_attack_on_same_tick () -> None:

	"""A note ending at tick 192 is released before one starting at 192."""

	events = gridseq.midi_export.tick_events([_event(6, 2, pitch="D4"), _event(4, 2, pitch="C4")])

	at_192 = [(event.kind, event.pitch) for event in events if event.tick == 192]

	assert at_192 == [("off", "C4"), ("on", "D4")]
	assert [event.tick for event in events] == [128, 192, 192, 256]


def test_same_row_tie_break () -> None:

	"""Back-to-back notes on one pitch: off then on at the shared tick."""

	events = gridseq.midi_export.tick_events([_event(4, 2), _event(6, 2)])

	assert [(event.tick, event.kind) for event in events] == [(128, "on"), (192, "off"), (192, "on"), (256, "off")]


def test_delta_encoding_uses_running_cursor () -> None:

	"""Each delta is measured from the previous emitted event."""

	stream = gridseq.midi_export.delta_encode(gridseq.midi_export.tick_events([_event(2, 3), _event(7, 1)]))

	assert [(event.kind, event.delta) for event in stream] == [("on", 64), ("off", 96), ("on", 64), ("off", 32)]


def test_delta_round_trip () -> None:

	"""Summing deltas recovers the absolute ticks."""

	ticks = gridseq.midi_export.tick_events([_event(0, 4), _event(0, 1, "E4"), _event(9, 7, "G4"), _event(4, 2, "B4")])
	stream = gridseq.midi_export.delta_encode(ticks)

	assert gridseq.midi_export.decode_deltas(stream) == [event.tick for event in ticks]


def test_delta_encoding_rejects_unsorted () -> None:

	"""Unsorted input would need negative deltas."""

	unsorted = [
		gridseq.midi_export.TickEvent(tick=64, kind="on", pitch="C4", velocity=90),
		gridseq.midi_export.TickEvent(tick=32, kind="off", pitch="C4", velocity=0),
	]

	with pytest.raises(ValueError):
		gridseq.midi_export.delta_encode(unsorted)


def test_writer_calls_for_two_tracks () -> None:

	"""Tempo only on the first track, programs on both, notes in delta order."""

	writer = RecordingWriter()
	lead = _track({12: [0, 1]}, instrument="chiptune")
	empty = _track({}, instrument="bass", index=1)

	data = gridseq.midi_export.export_midi([lead, empty], 122, writer)

	assert data == b"MThd"

	first, second = writer.files[0].tracks

	assert first.calls == [
		("tempo", 122),
		("instrument", 0, 81),
		("on", 0, "C4", 0, 102),
		("off", 0, "C4", 64, 0),
	]
	assert second.calls == [("instrument", 0, 34)]


def test_unknown_instrument_uses_pad_program () -> None:

	"""Instruments missing from the table export as program 89."""

	writer = RecordingWriter()
	gridseq.midi_export.export_midi([_track({}, instrument="theremin")], 100, writer)

	assert writer.files[0].tracks[0].calls == [("tempo", 100), ("instrument", 0, 89)]


def test_export_without_writer_raises () -> None:

	"""Exporting before the writer loads is reported as not ready."""

	with pytest.raises(gridseq.errors.ExportNotReadyError):
		gridseq.midi_export.export_midi([_track({0: [0]})], 120, None)


def test_export_is_deterministic () -> None:

	"""The same tracks and tempo serialize to the same bytes."""

	tracks = [_track({0: [0, 1, 2], 5: [8, 12]}), _track({3: [4]}, instrument="fm-keys", index=1)]

	first = gridseq.midi_export.export_midi(tracks, 122, gridseq.midi_writer.MidoWriter())
	second = gridseq.midi_export.export_midi(tracks, 122, gridseq.midi_writer.MidoWriter())

	assert first == second


def test_mido_file_contents () -> None:

	"""The serialized file reads back with the expected resolution, tempo and notes."""

	tracks = [_track({0: [4, 5]}), _track({12: [6, 7]}, instrument="bass", index=1)]
	data = gridseq.midi_export.export_midi(tracks, 122, gridseq.midi_writer.MidoWriter())

	midi_file = mido.MidiFile(file=io.BytesIO(data))

	assert midi_file.type == 1
	assert midi_file.ticks_per_beat == 128
	assert len(midi_file.tracks) == 2

	first = [message for message in midi_file.tracks[0] if message.type != 'end_of_track']
	second = [message for message in midi_file.tracks[1] if message.type != 'end_of_track']

	assert first[0].type == 'set_tempo'
	assert first[0].tempo == mido.bpm2tempo(122)
	assert (first[1].type, first[1].program) == ('program_change', 89)
	assert [(m.type, m.note, m.time) for m in first[2:]] == [('note_on', 72, 128), ('note_off', 72, 64)]

	assert not any(message.type == 'set_tempo' for message in second)
	assert (second[0].type, second[0].program) == ('program_change', 34)
	assert [(m.type, m.note, m.time, m.velocity) for m in second[1:]] == [('note_on', 60, 192, 102), ('note_off', 60, 64, 0)]


def test_export_filename_uses_milliseconds () -> None:

	"""File names carry the epoch timestamp in milliseconds."""

	timestamp = datetime.datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=datetime.timezone.utc)

	assert gridseq.midi_export.export_filename(timestamp) == f"agentic-sequencer-{int(timestamp.timestamp() * 1000)}.mid"


def test_build_export_and_save (tmp_path: pathlib.Path) -> None:

	"""An exported file has the MIDI MIME type and saves its bytes."""

	exported = gridseq.midi_export.build_export([_track({0: [0]})], 120, gridseq.midi_writer.MidoWriter())

	assert exported.mime_type == "audio/midi"
	assert exported.filename.startswith("agentic-sequencer-")
	assert exported.filename.endswith(".mid")

	path = exported.save(tmp_path / "out")

	assert path.read_bytes() == exported.data
	assert path.read_bytes()[:4] == b"MThd"
