"""Standard MIDI File writer.

``gridseq.midi_export`` produces an ordered, delta-timed note stream and
hands it to a writer with a small note-name API:

- ``create_file()`` / ``create_track()``
- ``track.set_tempo(bpm)``, ``track.set_instrument(channel, program)``
- ``track.note_on(channel, pitch, delta, velocity)`` and ``note_off(...)``
- ``file.add_track(track)`` and ``file.to_bytes()``

``MidoWriter`` implements it with ``mido``. Pitches are labels such as
``"F#3"``; the conversion to note numbers happens here, not in the encoder.
"""

import io
import typing

import mido

import gridseq.constants.grid
import gridseq.notes


@typing.runtime_checkable
class MidiTrackWriterLike (typing.Protocol):

	"""
	Protocol for one track of a file being written.
	"""

	def set_tempo (self, bpm: float) -> None: ...

	def set_instrument (self, channel: int, program: int) -> None: ...

	def note_on (self, channel: int, pitch: str, delta: int, velocity: int) -> None: ...

	def note_off (self, channel: int, pitch: str, delta: int, velocity: int) -> None: ...


@typing.runtime_checkable
class MidiFileWriterLike (typing.Protocol):

	"""
	Protocol for the file container.
	"""

	def add_track (self, track: typing.Any) -> None: ...

	def to_bytes (self) -> bytes: ...


@typing.runtime_checkable
class MidiWriterLike (typing.Protocol):

	"""
	Protocol for the writer module as a whole.
	"""

	def create_file (self) -> MidiFileWriterLike: ...

	def create_track (self) -> MidiTrackWriterLike: ...


class MidoTrack:

	"""
	A ``mido.MidiTrack`` with a note-name API.
	"""

	def __init__ (self) -> None:

		"""Start with an empty track."""

		self.track = mido.MidiTrack()


	def set_tempo (self, bpm: float) -> None:

		"""Append a tempo meta event at delta 0."""

		self.track.append(mido.MetaMessage('set_tempo', tempo=mido.bpm2tempo(bpm), time=0))


	def set_instrument (self, channel: int, program: int) -> None:

		"""Append a program change at delta 0."""

		self.track.append(mido.Message('program_change', channel=channel, program=program, time=0))


	def note_on (self, channel: int, pitch: str, delta: int, velocity: int = 90) -> None:

		"""Append a note-on ``delta`` ticks after the previous event."""

		self.track.append(mido.Message('note_on', channel=channel, note=gridseq.notes.label_to_midi(pitch), velocity=velocity, time=delta))


	def note_off (self, channel: int, pitch: str, delta: int, velocity: int = 90) -> None:

		"""Append a note-off ``delta`` ticks after the previous event."""

		self.track.append(mido.Message('note_off', channel=channel, note=gridseq.notes.label_to_midi(pitch), velocity=velocity, time=delta))


class MidoFile:

	"""
	A Type 1 ``mido.MidiFile`` that serializes to bytes.
	"""

	def __init__ (self, ticks_per_beat: int = gridseq.constants.grid.TICKS_PER_BEAT) -> None:

		"""Create an empty multi-track file."""

		self.midi_file = mido.MidiFile(type=1, ticks_per_beat=ticks_per_beat)


	def add_track (self, track: MidoTrack) -> None:

		"""Append a finished track."""

		self.midi_file.tracks.append(track.track)


	def to_bytes (self) -> bytes:

		"""Serialize the file. mido closes each track with end_of_track."""

		buffer = io.BytesIO()
		self.midi_file.save(file=buffer)

		return buffer.getvalue()


class MidoWriter:

	"""
	``MidiWriterLike`` implementation backed by ``mido``.
	"""

	def __init__ (self, ticks_per_beat: int = gridseq.constants.grid.TICKS_PER_BEAT) -> None:

		"""Store the file resolution."""

		self.ticks_per_beat = ticks_per_beat


	def create_file (self) -> MidoFile:

		"""Return a new empty file."""

		return MidoFile(ticks_per_beat=self.ticks_per_beat)


	def create_track (self) -> MidoTrack:

		"""Return a new empty track."""

		return MidoTrack()


async def load_midi_writer () -> MidoWriter:

	"""
	Return a ready ``MidoWriter``.

	Async so it can be awaited alongside the engine during start-up.
	"""

	return MidoWriter()
