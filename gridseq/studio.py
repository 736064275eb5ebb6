"""The sequencer application state and its user-facing operations.

A ``Studio`` owns the track list, the transport settings, the selected cell
and a one-line status message. It loads its two collaborators lazily (the
MIDI engine for playback and the MIDI file writer for export) and keeps a
single ``PlaybackSession``.

While playing, every change that affects what is heard (tempo, swing,
patterns, instruments, volume, mute, the track list) tears the schedule
down and rebuilds it without moving the transport. Edits made while stopped
are simply picked up by the next start.

Collaborator failures never raise out of the studio: they are logged, the
session is torn down and the status message says what went wrong.
"""

import dataclasses
import datetime
import logging
import pathlib
import typing

import gridseq.config
import gridseq.constants.grid
import gridseq.constants.velocity
import gridseq.engine
import gridseq.errors
import gridseq.event_emitter
import gridseq.midi_export
import gridseq.midi_writer
import gridseq.pattern
import gridseq.playback
import gridseq.track


logger = logging.getLogger(__name__)


EngineFactory = typing.Callable[[], typing.Awaitable[gridseq.engine.AudioEngineLike]]
WriterFactory = typing.Callable[[], typing.Awaitable[gridseq.midi_writer.MidiWriterLike]]

STATUS_PLAYING = "Playing"
STATUS_STOPPED = "Stopped"
STATUS_EXPORTED = "Exported MIDI file."
STATUS_ENGINE_FAILED = "Failed to load audio engine."
STATUS_WRITER_FAILED = "Failed to load MIDI exporter."
STATUS_PLAYBACK_FAILED = "Unable to initialize playback. Check MIDI output permissions."
STATUS_EXPORT_NOT_READY = "MIDI exporter not ready yet."
STATUS_EXPORT_FAILED = "Failed to write MIDI file."


@dataclasses.dataclass(frozen=True)
class SelectedCell:

	"""
	The grid cell whose details are being edited.
	"""

	track_id: str
	row: int
	step: int


@dataclasses.dataclass(frozen=True)
class SelectedNote:

	"""
	Details of the selected cell when it is active.
	"""

	track: gridseq.track.Track
	pitch: str
	velocity: float


	@property
	def slider_value (self) -> int:

		"""Velocity on the 0-127 slider scale."""

		return velocity_to_slider(self.velocity)


def velocity_to_slider (velocity: float) -> int:

	"""Map a 0-1 cell velocity to the slider's MIDI scale."""

	return int(round(velocity * gridseq.constants.velocity.SLIDER_MAX))


def slider_to_velocity (value: float) -> float:

	"""Map a slider value (clamped to 10-127) to a 0-1 cell velocity."""

	clamped = max(gridseq.constants.velocity.SLIDER_MIN, min(gridseq.constants.velocity.SLIDER_MAX, value))

	return clamped / float(gridseq.constants.velocity.SLIDER_MAX)


class Studio:

	"""
	Tracks, transport settings and the play/stop/export flows.
	"""

	def __init__ (
		self,
		config: typing.Optional[gridseq.config.StudioConfig] = None,
		engine_factory: typing.Optional[EngineFactory] = None,
		writer_factory: typing.Optional[WriterFactory] = None,
		tracks: typing.Optional[typing.Sequence[gridseq.track.Track]] = None
	) -> None:

		"""
		Parameters:
			config: Settings; defaults are used when omitted.
			engine_factory: Coroutine function returning a ready audio engine.
				Defaults to opening the configured MIDI output port.
			writer_factory: Coroutine function returning a MIDI writer.
				Defaults to the ``mido`` writer.
			tracks: Initial tracks. Defaults to one empty track.
		"""

		self.config = config if config is not None else gridseq.config.StudioConfig()

		if engine_factory is None:
			device_name = self.config.device_name
			engine_factory = lambda: gridseq.engine.open_midi_engine(device_name)

		self._engine_factory = engine_factory
		self._writer_factory = writer_factory if writer_factory is not None else gridseq.midi_writer.load_midi_writer

		self.total_steps = self.config.steps
		self.tracks: typing.List[gridseq.track.Track] = list(tracks) if tracks is not None else [gridseq.track.create_track(0, steps=self.total_steps)]
		self.tempo_bpm: float = _clamp_tempo(self.config.tempo_bpm)
		self.swing_percent: float = _clamp_swing(self.config.swing_percent)
		self.is_playing = False
		self.status = ""
		self.selected_cell: typing.Optional[SelectedCell] = None

		self.engine: typing.Optional[gridseq.engine.AudioEngineLike] = None
		self.writer: typing.Optional[gridseq.midi_writer.MidiWriterLike] = None
		self.session: typing.Optional[gridseq.playback.PlaybackSession] = None

		self.events = gridseq.event_emitter.EventEmitter()
		self._scheduled_signature: typing.Optional[typing.Tuple[typing.Any, ...]] = None


	# ------------------------------------------------------------------
	# Collaborators
	# ------------------------------------------------------------------

	async def load (self) -> None:

		"""
		Load the engine and the writer. A failure of one does not stop the other.
		"""

		try:
			await self.ensure_engine()
		except Exception:
			logger.exception("Audio engine failed to load")
			self._set_status(STATUS_ENGINE_FAILED)

		try:
			await self.ensure_writer()
		except Exception:
			logger.exception("MIDI writer failed to load")
			self._set_status(STATUS_WRITER_FAILED)


	async def ensure_engine (self) -> gridseq.engine.AudioEngineLike:

		"""
		Return the engine, loading it on first use.

		Raises ``CollaboratorUnavailableError`` when it cannot be loaded.
		"""

		if self.engine is not None:
			return self.engine

		try:
			engine = await self._engine_factory()
		except gridseq.errors.CollaboratorUnavailableError:
			raise
		except Exception as e:
			raise gridseq.errors.CollaboratorUnavailableError(f"Audio engine failed to load: {e}") from e

		self.engine = engine
		self.session = gridseq.playback.PlaybackSession(engine, settle_delay=self.config.settle_delay)

		return engine


	async def ensure_writer (self) -> gridseq.midi_writer.MidiWriterLike:

		"""
		Return the writer, loading it on first use.

		Raises ``CollaboratorUnavailableError`` when it cannot be loaded.
		"""

		if self.writer is not None:
			return self.writer

		try:
			self.writer = await self._writer_factory()
		except Exception as e:
			raise gridseq.errors.CollaboratorUnavailableError(f"MIDI writer failed to load: {e}") from e

		return self.writer


	# ------------------------------------------------------------------
	# Transport
	# ------------------------------------------------------------------

	async def start_playback (self) -> bool:

		"""
		Start playing from the top. Returns whether playback is running.
		"""

		if self.is_playing:
			return True

		try:
			await self.ensure_engine()
			assert self.session is not None
			await self.session.start(self.tracks, self.tempo_bpm, self.swing_percent, self.total_steps, keep_position=False)

		except Exception:
			logger.exception("Playback failed to start")
			self._abort_playback()
			return False

		self._scheduled_signature = self._playback_signature()
		self._set_playing(True)
		self._set_status(STATUS_PLAYING)

		return True


	def stop_playback (self) -> None:

		"""
		Stop, rewind and release every voice and part.
		"""

		if self.session is not None:
			self.session.stop()

		self._scheduled_signature = None
		self._set_playing(False)
		self._set_status(STATUS_STOPPED)


	async def resync (self) -> None:

		"""
		Rebuild the live schedule from the current state, keeping the position.

		Does nothing when stopped or when nothing audible has changed since
		the last schedule.
		"""

		if not self.is_playing or self.session is None:
			return

		signature = self._playback_signature()

		if signature == self._scheduled_signature:
			return

		try:
			await self.session.start(self.tracks, self.tempo_bpm, self.swing_percent, self.total_steps, keep_position=True)

		except Exception:
			logger.exception("Playback failed to reschedule")
			self._abort_playback()
			return

		self._scheduled_signature = signature


	async def set_tempo (self, bpm: float) -> None:

		"""Set the tempo (clamped to 70-180 BPM)."""

		self.tempo_bpm = _clamp_tempo(bpm)
		await self.resync()


	async def set_swing (self, percent: float) -> None:

		"""Set the swing amount (clamped to 0-60%)."""

		self.swing_percent = _clamp_swing(percent)
		await self.resync()


	def _playback_signature (self) -> typing.Tuple[typing.Any, ...]:

		"""Everything that affects what the schedule sounds like."""

		return (
			self.tempo_bpm,
			self.swing_percent,
			tuple((track.id, track.instrument, track.pattern, track.volume_db, track.muted) for track in self.tracks)
		)


	def _abort_playback (self) -> None:

		"""Tear down after a failed start or reschedule and report it."""

		if self.session is not None:
			self.session.stop()

		self._scheduled_signature = None
		self._set_playing(False)
		self._set_status(STATUS_PLAYBACK_FAILED)


	# ------------------------------------------------------------------
	# Tracks
	# ------------------------------------------------------------------

	def track (self, track_id: str) -> gridseq.track.Track:

		"""Return the track with ``track_id``. Unknown ids raise ``KeyError``."""

		found = gridseq.track.find_track(self.tracks, track_id)

		if found is None:
			raise KeyError(f"Unknown track {track_id!r}")

		return found


	async def add_track (self) -> gridseq.track.Track:

		"""Append a default track and return it."""

		self._set_tracks(gridseq.track.add_track(self.tracks, steps=self.total_steps))
		await self.resync()

		return self.tracks[-1]


	async def remove_track (self, track_id: str) -> None:

		"""Remove a track, clearing the selection if it pointed into it."""

		self._set_tracks(gridseq.track.remove_track(self.tracks, track_id))

		if self.selected_cell is not None and self.selected_cell.track_id == track_id:
			self.selected_cell = None

		await self.resync()


	async def update_track (self, track_id: str, updater: typing.Callable[[gridseq.track.Track], gridseq.track.Track]) -> None:

		"""Replace one track with ``updater(track)`` and resync."""

		self._set_tracks(gridseq.track.update_track(self.tracks, track_id, updater))
		await self.resync()


	def set_track_name (self, track_id: str, name: str) -> None:

		"""Rename a track. Names are not heard, so playback is left alone."""

		self._set_tracks(gridseq.track.update_track(self.tracks, track_id, lambda track: dataclasses.replace(track, name=name)))


	async def set_track_instrument (self, track_id: str, instrument_id: str) -> None:

		"""Change a track's instrument."""

		await self.update_track(track_id, lambda track: dataclasses.replace(track, instrument=instrument_id))


	async def set_track_volume (self, track_id: str, volume_db: float) -> None:

		"""Set a track's volume (clamped to -24..6 dB)."""

		volume = gridseq.track.clamp_volume(volume_db)
		await self.update_track(track_id, lambda track: dataclasses.replace(track, volume_db=volume))


	async def toggle_track_mute (self, track_id: str) -> None:

		"""Mute or unmute a track."""

		await self.update_track(track_id, lambda track: dataclasses.replace(track, muted=not track.muted))


	async def clear_track (self, track_id: str) -> None:

		"""Reset a track's pattern to empty."""

		await self.update_track(track_id, lambda track: dataclasses.replace(track, pattern=gridseq.pattern.clear_pattern(track.pattern)))


	# ------------------------------------------------------------------
	# Cells
	# ------------------------------------------------------------------

	async def toggle_cell (self, track_id: str, row: int, step: int, forced_state: typing.Optional[bool] = None) -> None:

		"""Toggle (or force) one cell of a track."""

		await self.update_track(
			track_id,
			lambda track: dataclasses.replace(track, pattern=gridseq.pattern.toggle_cell(track.pattern, row, step, forced_state))
		)


	async def clear_cell (self, track_id: str, row: int, step: int) -> None:

		"""Switch one cell off (the double-click gesture)."""

		await self.toggle_cell(track_id, row, step, forced_state=False)


	async def handle_cell_interaction (self, track_id: str, row: int, step: int) -> None:

		"""
		Flip a cell and select it if it was switched on, otherwise clear the selection.
		"""

		active = not self.track(track_id).pattern.cell(row, step).active
		await self.toggle_cell(track_id, row, step, forced_state=active)

		self.select_cell(SelectedCell(track_id=track_id, row=row, step=step) if active else None)


	async def set_cell_velocity (self, track_id: str, row: int, step: int, velocity: float) -> None:

		"""Set one cell's 0-1 velocity."""

		await self.update_track(
			track_id,
			lambda track: dataclasses.replace(track, pattern=gridseq.pattern.set_velocity(track.pattern, row, step, velocity))
		)


	def select_cell (self, cell: typing.Optional[SelectedCell]) -> None:

		"""Select a cell for velocity editing, or clear the selection with None."""

		self.selected_cell = cell


	@property
	def selected_note (self) -> typing.Optional[SelectedNote]:

		"""Details of the selected cell, or None when nothing active is selected."""

		if self.selected_cell is None:
			return None

		track = gridseq.track.find_track(self.tracks, self.selected_cell.track_id)

		if track is None:
			return None

		pattern = track.pattern

		if not (0 <= self.selected_cell.row < pattern.row_count and 0 <= self.selected_cell.step < pattern.steps):
			return None

		cell = pattern.rows[self.selected_cell.row][self.selected_cell.step]

		if not cell.active:
			return None

		return SelectedNote(track=track, pitch=pattern.pitches[self.selected_cell.row], velocity=cell.velocity)


	async def set_selected_velocity (self, slider_value: float) -> None:

		"""Set the selected cell's velocity from the 10-127 slider. No-op without a selection."""

		if self.selected_cell is None:
			return

		cell = self.selected_cell
		await self.set_cell_velocity(cell.track_id, cell.row, cell.step, slider_to_velocity(slider_value))


	# ------------------------------------------------------------------
	# Export
	# ------------------------------------------------------------------

	def export_midi (
		self,
		directory: typing.Optional[typing.Union[str, pathlib.Path]] = None,
		timestamp: typing.Optional[datetime.datetime] = None
	) -> typing.Optional[pathlib.Path]:

		"""
		Write the tracks to a ``.mid`` file and return its path.

		Returns None (with a status message) while the writer is not loaded or
		when the file cannot be written.
		"""

		try:
			exported = gridseq.midi_export.build_export(self.tracks, self.tempo_bpm, self.writer, timestamp)

		except gridseq.errors.ExportNotReadyError:
			logger.warning("Export requested before the MIDI writer loaded")
			self._set_status(STATUS_EXPORT_NOT_READY)
			return None

		try:
			path = exported.save(directory if directory is not None else self.config.export_directory)

		except OSError:
			logger.exception(f"Could not write {exported.filename}")
			self._set_status(STATUS_EXPORT_FAILED)
			return None

		logger.info(f"Exported MIDI to {path}")
		self._set_status(STATUS_EXPORTED)

		return path


	# ------------------------------------------------------------------
	# Lifecycle
	# ------------------------------------------------------------------

	def close (self) -> None:

		"""
		Release the playback session and close the engine.
		"""

		if self.session is not None:
			self.session.stop()

		self._scheduled_signature = None
		self._set_playing(False)

		close = getattr(self.engine, "close", None)

		if callable(close):
			close()

		self.engine = None
		self.session = None


	def _set_tracks (self, tracks: typing.List[gridseq.track.Track]) -> None:

		self.tracks = tracks
		self.events.emit("tracks", self.tracks)


	def _set_playing (self, playing: bool) -> None:

		if playing != self.is_playing:
			self.is_playing = playing
			self.events.emit("playing", playing)


	def _set_status (self, status: str) -> None:

		self.status = status
		self.events.emit("status", status)


def _clamp_tempo (bpm: float) -> float:

	"""Clamp a tempo to the slider range; non-positive values raise ``ValueError``."""

	if bpm <= 0:
		raise ValueError("BPM must be positive")

	return max(gridseq.constants.grid.MIN_TEMPO_BPM, min(gridseq.constants.grid.MAX_TEMPO_BPM, float(bpm)))


def _clamp_swing (percent: float) -> float:

	"""Clamp a swing percentage to 0-60."""

	return max(gridseq.constants.grid.MIN_SWING_PERCENT, min(gridseq.constants.grid.MAX_SWING_PERCENT, float(percent)))
