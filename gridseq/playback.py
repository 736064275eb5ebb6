"""Live playback of tracks through an audio engine.

Canonical events are keyed by a ``"bar:beat:sixteenth"`` transport time and
handed to the engine as one looping part per track. A ``PlaybackSession``
owns every voice and part it creates and releases all of them in
``teardown()``, which runs before each reschedule, on stop and on shutdown.
Nothing is ever patched in place: a change while playing is a full
teardown followed by a fresh schedule.
"""

import logging
import math
import typing

import gridseq.constants.grid
import gridseq.engine
import gridseq.events
import gridseq.pattern
import gridseq.track


logger = logging.getLogger(__name__)


def step_to_transport_time (step: int) -> str:

	"""
	Convert a grid step to a ``"bar:beat:sixteenth"`` transport time.

	Sixteen steps per bar and four per beat, so step 20 is ``"1:1:0"``.
	"""

	if step < 0:
		raise ValueError("Step cannot be negative")

	bar, remainder = divmod(step, gridseq.constants.grid.STEPS_PER_BAR)
	beat, subdivision = divmod(remainder, gridseq.constants.grid.STEPS_PER_BEAT)

	return f"{bar}:{beat}:{subdivision}"


def loop_length_bars (total_steps: int) -> int:

	"""Number of whole bars needed to hold ``total_steps``."""

	return math.ceil(total_steps / gridseq.constants.grid.STEPS_PER_BAR)


class PlaybackSession:

	"""
	The single live schedule of voices and parts on an engine.
	"""

	def __init__ (self, engine: gridseq.engine.AudioEngineLike, settle_delay: float = gridseq.constants.grid.START_SETTLE_DELAY) -> None:

		"""
		Parameters:
			engine: The audio engine to schedule on.
			settle_delay: Seconds between scheduling and the first pulse when
				starting from a stopped state.
		"""

		self.engine = engine
		self.settle_delay = settle_delay

		self.voices: typing.Dict[str, gridseq.engine.VoiceLike] = {}
		self.parts: typing.List[gridseq.engine.PartLike] = []

		self._event_cache: typing.Dict[str, typing.Tuple[gridseq.pattern.Pattern, typing.List[gridseq.events.SequencerEvent]]] = {}


	@property
	def voice_count (self) -> int:

		"""Number of voices this session currently holds."""

		return len(self.voices)


	@property
	def part_count (self) -> int:

		"""Number of parts this session currently holds."""

		return len(self.parts)


	def events_for (self, track: gridseq.track.Track) -> typing.List[gridseq.events.SequencerEvent]:

		"""
		Return the track's events, re-extracting only when its pattern changed.
		"""

		cached = self._event_cache.get(track.id)

		if cached is not None and cached[0] == track.pattern:
			return cached[1]

		events = gridseq.events.extract_events(track.pattern)
		self._event_cache[track.id] = (track.pattern, events)

		return events


	def teardown (self) -> None:

		"""
		Dispose every part and voice held by the session.

		Parts go first so no callback can reach a disposed voice.
		"""

		parts, self.parts = self.parts, []
		voices, self.voices = self.voices, {}

		for part in parts:
			part.dispose()

		for voice in voices.values():
			voice.dispose()

		if parts or voices:
			logger.debug(f"Released {len(parts)} parts and {len(voices)} voices")


	def configure_transport (self, tempo_bpm: float, swing_percent: float, total_steps: int) -> None:

		"""
		Apply tempo, swing and loop length to the engine's transport.
		"""

		transport = self.engine.transport

		transport.bpm = tempo_bpm
		transport.swing = swing_percent / 100.0
		transport.swing_subdivision = gridseq.constants.grid.SWING_SUBDIVISION
		transport.loop = True
		transport.loop_end = loop_length_bars(total_steps)


	def schedule (
		self,
		tracks: typing.Sequence[gridseq.track.Track],
		tempo_bpm: float,
		swing_percent: float,
		total_steps: int = gridseq.constants.grid.TOTAL_STEPS
	) -> None:

		"""
		Replace the whole schedule with one built from ``tracks``.

		Muted tracks and tracks without events get neither a voice nor a part.
		If anything fails part-way, everything allocated so far is released
		before the error propagates.
		"""

		try:
			self.configure_transport(tempo_bpm, swing_percent, total_steps)
			self.teardown()

			live_ids = {track.id for track in tracks}
			self._event_cache = {track_id: cached for track_id, cached in self._event_cache.items() if track_id in live_ids}

			bars = loop_length_bars(total_steps)

			for track in tracks:

				if track.muted:
					continue

				events = self.events_for(track)

				if not events:
					continue

				voice = self.engine.create_voice(track.instrument)
				self.voices[track.id] = voice
				voice.volume = track.volume_db

				part = self.engine.create_part(
					self._make_trigger(voice),
					[(step_to_transport_time(event.start_step), event) for event in events]
				)
				self.parts.append(part)

				part.loop = True
				part.loop_end = bars
				part.start(0)

		except Exception:
			self.teardown()
			raise

		logger.info(f"Scheduled {len(self.parts)} of {len(tracks)} tracks ({tempo_bpm} BPM, swing {swing_percent}%)")


	def _make_trigger (self, voice: gridseq.engine.VoiceLike) -> gridseq.engine.PartCallback:

		"""
		Build the part callback that sounds one event on ``voice``.
		"""

		transport = self.engine.transport

		def trigger (time: int, event: gridseq.events.SequencerEvent) -> None:

			duration = transport.seconds_per_sixteenth() * event.duration_steps
			voice.trigger_attack_release(event.pitch, duration, time, event.velocity)

		return trigger


	async def start (
		self,
		tracks: typing.Sequence[gridseq.track.Track],
		tempo_bpm: float,
		swing_percent: float,
		total_steps: int = gridseq.constants.grid.TOTAL_STEPS,
		keep_position: bool = False
	) -> None:

		"""
		Start the engine and (re)schedule.

		With ``keep_position`` the transport keeps running from where it is.
		Otherwise it is rewound to the top and started after the settle delay.
		On failure the session is torn down before the error propagates.
		"""

		try:
			await self.engine.start()
			self.schedule(tracks, tempo_bpm, swing_percent, total_steps)

			if not keep_position:
				transport = self.engine.transport
				transport.stop()
				transport.position = 0
				transport.start(self.settle_delay)

		except Exception:
			self.teardown()
			self.engine.transport.stop()
			raise


	def stop (self) -> None:

		"""
		Stop the transport, rewind to the top and release everything.
		"""

		transport = self.engine.transport

		transport.stop()
		transport.position = 0
		self.teardown()
