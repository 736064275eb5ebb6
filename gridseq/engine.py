"""MIDI playback engine.

The playback encoder talks to an audio engine through three small protocols:

- ``TransportLike`` - the shared clock: tempo, swing, looping and position.
- ``PartLike`` - a loopable list of ``(time, payload)`` pairs that calls back
  once per pair at its scheduled instant.
- ``VoiceLike`` - something that can sound a note for a duration.

``MidiEngine`` implements them on top of a ``mido`` output port. The clock
runs as an asyncio task at 24 PPQN and uses a hybrid sleep+spin wait for the
final sub-millisecond of every pulse. Each voice plays on a MIDI channel,
sends a program change for its instrument and controls its level with CC 7.
Sound comes from whatever synth is listening on the port.

Transport times are ``"bar:beat:sixteenth"`` strings, all zero-based, so
``"1:1:0"`` is the second beat of the second bar.
"""

import asyncio
import dataclasses
import heapq
import itertools
import logging
import math
import time
import typing

import mido

import gridseq.constants
import gridseq.constants.grid
import gridseq.errors
import gridseq.instruments
import gridseq.midi_utils
import gridseq.notes
import gridseq.swing


logger = logging.getLogger(__name__)


PartCallback = typing.Callable[[int, typing.Any], typing.Any]
TimeCoordinate = typing.Union[str, int]


@typing.runtime_checkable
class TransportLike (typing.Protocol):

	"""
	Protocol for the engine's shared playback clock.
	"""

	bpm: float
	swing: float
	swing_subdivision: str
	loop: bool
	loop_end: int
	position: int
	running: bool

	def start (self, delay: float = 0.0) -> None: ...

	def stop (self) -> None: ...

	def cancel (self) -> None: ...

	def seconds_per_sixteenth (self) -> float: ...


@typing.runtime_checkable
class PartLike (typing.Protocol):

	"""
	Protocol for a scheduled, loopable group of events.
	"""

	loop: bool
	loop_end: int

	def start (self, offset: int = 0) -> None: ...

	def dispose (self) -> None: ...


@typing.runtime_checkable
class VoiceLike (typing.Protocol):

	"""
	Protocol for a per-track sound source.
	"""

	volume: float

	def trigger_attack_release (self, pitch: str, duration: float, time: int, velocity: float) -> None: ...

	def dispose (self) -> None: ...


@typing.runtime_checkable
class AudioEngineLike (typing.Protocol):

	"""
	Protocol for the engine consumed by ``gridseq.playback``.
	"""

	transport: TransportLike

	async def start (self) -> None: ...

	def create_part (self, callback: PartCallback, events: typing.Sequence[typing.Tuple[TimeCoordinate, typing.Any]]) -> PartLike: ...

	def create_voice (self, instrument_id: str) -> VoiceLike: ...


@dataclasses.dataclass(order=True)
class MidiEvent:

	"""
	A MIDI message scheduled at a clock pulse.

	Events sort by pulse, then note-offs before everything else, then by
	insertion order, so a note released and re-struck on the same pulse is
	not cut short.
	"""

	pulse: int
	priority: int
	sequence: int
	message_type: str = dataclasses.field(compare=False)
	channel: int = dataclasses.field(compare=False)
	note: int = dataclasses.field(compare=False, default=0)
	velocity: int = dataclasses.field(compare=False, default=0)
	owner: int = dataclasses.field(compare=False, default=-1)


def parse_transport_time (value: TimeCoordinate, pulses_per_beat: int = gridseq.constants.MIDI_QUARTER_NOTE) -> int:

	"""
	Convert a transport time to pulses.

	Integers are taken as pulses. Strings are ``"bar:beat:sixteenth"`` with
	missing trailing fields treated as zero (``"2"`` is the start of bar 2).
	"""

	if isinstance(value, int):
		if value < 0:
			raise ValueError("Transport time cannot be negative")
		return value

	fields = value.strip().split(":")

	if not 1 <= len(fields) <= 3:
		raise ValueError(f"Invalid transport time {value!r}")

	try:
		numbers = [float(field) for field in fields] + [0.0] * (3 - len(fields))
	except ValueError:
		raise ValueError(f"Invalid transport time {value!r}") from None

	bars, beats, sixteenths = numbers

	if min(numbers) < 0:
		raise ValueError("Transport time cannot be negative")

	pulses = (
		bars * gridseq.constants.grid.BEATS_PER_BAR * pulses_per_beat
		+ beats * pulses_per_beat
		+ sixteenths * pulses_per_beat / gridseq.constants.grid.STEPS_PER_BEAT
	)

	return int(round(pulses))


def db_to_cc_volume (volume_db: float) -> int:

	"""
	Map a level in dB to a CC 7 value using the GM curve ``dB = 40·log10(cc/127)``.
	"""

	if volume_db == -math.inf:
		return 0

	value = int(round(127 * 10 ** (volume_db / 40.0)))

	return max(0, min(127, value))


class Transport:

	"""
	Pulse clock shared by every part and voice of one ``MidiEngine``.
	"""

	def __init__ (
		self,
		send: typing.Callable[[mido.Message], None],
		pulses_per_beat: int = gridseq.constants.MIDI_QUARTER_NOTE,
		spin_wait: bool = True
	) -> None:

		"""
		Parameters:
			send: Callable that delivers a message to the output port.
			pulses_per_beat: Clock resolution.
			spin_wait: When True, busy-wait the final millisecond of each pulse
				for tighter timing at the cost of some CPU.
		"""

		self._send = send
		self.pulses_per_beat = pulses_per_beat
		self.pulses_per_bar = gridseq.constants.grid.BEATS_PER_BAR * pulses_per_beat

		self.swing: float = 0.0
		self.swing_subdivision: str = gridseq.constants.grid.SWING_SUBDIVISION
		self.loop: bool = True
		self.loop_end: int = 1
		self._position = 0

		self.running = False
		self.task: typing.Optional[asyncio.Task] = None
		self.start_time = 0.0
		self.pulse_count = 0

		self.event_queue: typing.List[MidiEvent] = []
		self.active_notes: typing.Set[typing.Tuple[int, int]] = set()
		self._note_owners: typing.Dict[typing.Tuple[int, int], int] = {}
		self._event_counter = itertools.count()
		self._parts: typing.List["MidiPart"] = []

		self._spin_wait = spin_wait
		self._spin_threshold: float = 0.001

		self.current_bpm: float = 0
		self.seconds_per_beat = 0.0
		self.seconds_per_pulse = 0.0
		self.bpm = gridseq.constants.grid.DEFAULT_TEMPO_BPM


	@property
	def bpm (self) -> float:

		"""Tempo in beats per minute."""

		return self.current_bpm


	@bpm.setter
	def bpm (self, value: float) -> None:

		if value <= 0:
			raise ValueError("BPM must be positive")

		self.current_bpm = float(value)
		self.seconds_per_beat = 60.0 / self.current_bpm
		self.seconds_per_pulse = self.seconds_per_beat / self.pulses_per_beat

		logger.debug(f"BPM set to {self.current_bpm:.2f}")


	@property
	def position (self) -> int:

		"""Playback position in pulses, relative to the loop start."""

		return self._position


	@position.setter
	def position (self, value: TimeCoordinate) -> None:

		pulses = parse_transport_time(value, self.pulses_per_beat)

		if self.loop and self.loop_end_pulses > 0:
			pulses %= self.loop_end_pulses

		self._position = pulses


	@property
	def loop_end_pulses (self) -> int:

		"""Loop length in pulses."""

		return self.loop_end * self.pulses_per_bar


	@property
	def parts (self) -> typing.List["MidiPart"]:

		"""Parts currently started on this transport."""

		return list(self._parts)


	def seconds_per_sixteenth (self) -> float:

		"""Length of one grid step at the current tempo."""

		return self.seconds_per_beat / gridseq.constants.grid.STEPS_PER_BEAT


	def seconds_to_pulses (self, seconds: float) -> int:

		"""Convert a duration to whole pulses at the current tempo (at least one)."""

		return max(1, int(round(seconds / self.seconds_per_pulse)))


	def swing_subdivision_pulses (self) -> int:

		"""Length of the swing subdivision in pulses."""

		return gridseq.swing.subdivision_to_pulses(self.swing_subdivision, self.pulses_per_beat)


	def add_part (self, part: "MidiPart") -> None:

		"""Register a started part with the clock."""

		if part not in self._parts:
			self._parts.append(part)


	def remove_part (self, part: "MidiPart") -> None:

		"""Unregister a part. Unknown parts are ignored."""

		if part in self._parts:
			self._parts.remove(part)


	def schedule_note (self, channel: int, note: int, velocity: int, pulse: int, duration_pulses: int, owner: int = -1) -> None:

		"""
		Queue a note-on at ``pulse`` and its note-off ``duration_pulses`` later.

		``owner`` tags both events so ``release_owner`` can drop them without
		touching other voices on the same channel.
		"""

		heapq.heappush(self.event_queue, MidiEvent(
			pulse = pulse,
			priority = 1,
			sequence = next(self._event_counter),
			message_type = 'note_on',
			channel = channel,
			note = note,
			velocity = velocity,
			owner = owner
		))

		heapq.heappush(self.event_queue, MidiEvent(
			pulse = pulse + duration_pulses,
			priority = 0,
			sequence = next(self._event_counter),
			message_type = 'note_off',
			channel = channel,
			note = note,
			velocity = 0,
			owner = owner
		))


	def release_owner (self, owner: int) -> None:

		"""
		Drop pending events scheduled by ``owner`` and silence the notes it started.
		"""

		self.event_queue = [event for event in self.event_queue if event.owner != owner]
		heapq.heapify(self.event_queue)

		for channel, note in sorted(self.active_notes):
			if self._note_owners.get((channel, note)) == owner:
				self._send(mido.Message('note_off', channel=channel, note=note, velocity=0))
				self.active_notes.discard((channel, note))
				self._note_owners.pop((channel, note), None)


	def start (self, delay: float = 0.0) -> None:

		"""
		Start the clock in an asyncio task, ``delay`` seconds from now.

		Must be called from a running event loop.
		"""

		if self.running:
			return

		self.running = True
		self.task = asyncio.get_running_loop().create_task(self._run_loop(delay))

		logger.info(f"Transport started at {self.current_bpm:.2f} BPM")


	def stop (self) -> None:

		"""
		Stop the clock, drop pending notes and silence sounding ones.
		"""

		was_running = self.running
		self.running = False

		if self.task is not None:
			self.task.cancel()
			self.task = None

		self.cancel()

		if was_running:
			logger.info("Transport stopped")


	def cancel (self) -> None:

		"""
		Drop every pending note event and silence notes that are still sounding.
		"""

		self.event_queue = []

		for channel, note in sorted(self.active_notes):
			self._send(mido.Message('note_off', channel=channel, note=note, velocity=0))

		self.active_notes.clear()
		self._note_owners.clear()


	async def _run_loop (self, delay: float) -> None:

		"""
		Advance one pulse per ``seconds_per_pulse`` until stopped.
		"""

		if delay > 0:
			await asyncio.sleep(delay)

		self.start_time = time.perf_counter()
		next_pulse_time = self.start_time

		while self.running:

			while time.perf_counter() >= next_pulse_time:
				self.advance_pulse()
				next_pulse_time += self.seconds_per_pulse

				if not self.running:
					return

			sleep_time = next_pulse_time - time.perf_counter()

			if sleep_time > 0:
				if self._spin_wait and sleep_time > self._spin_threshold:
					await asyncio.sleep(sleep_time - self._spin_threshold)
					while time.perf_counter() < next_pulse_time:
						pass
				else:
					await asyncio.sleep(sleep_time)


	def advance_pulse (self) -> None:

		"""
		Fire parts at the current position, send due MIDI, then move one pulse on.
		"""

		for part in list(self._parts):
			part.fire(self._position, self.pulse_count)

		self._process_pulse(self.pulse_count)

		self.pulse_count += 1
		self._position += 1

		if self.loop and self._position >= self.loop_end_pulses:
			self._position = 0


	def _process_pulse (self, pulse: int) -> None:

		"""
		Send every queued event due at or before ``pulse``.
		"""

		while self.event_queue and self.event_queue[0].pulse <= pulse:

			event = heapq.heappop(self.event_queue)

			if event.message_type == 'note_on' and event.velocity > 0:
				self.active_notes.add((event.channel, event.note))
				self._note_owners[(event.channel, event.note)] = event.owner
			else:
				self.active_notes.discard((event.channel, event.note))
				self._note_owners.pop((event.channel, event.note), None)

			self._send(mido.Message(
				event.message_type,
				channel = event.channel,
				note = event.note,
				velocity = event.velocity
			))


class MidiPart:

	"""
	A loopable group of events that calls ``callback(pulse, payload)`` per event.
	"""

	def __init__ (
		self,
		transport: Transport,
		callback: PartCallback,
		events: typing.Sequence[typing.Tuple[TimeCoordinate, typing.Any]],
		on_dispose: typing.Optional[typing.Callable[["MidiPart"], None]] = None
	) -> None:

		"""
		Parse event times to pulses. Nothing fires until ``start()``.
		"""

		self._transport = transport
		self._callback = callback
		self._on_dispose = on_dispose

		self.loop = False
		self.loop_end = 1
		self.offset = 0
		self.started = False
		self.disposed = False

		self._straight: typing.Dict[int, typing.List[typing.Any]] = {}

		for coordinate, payload in events:
			pulse = parse_transport_time(coordinate, transport.pulses_per_beat)
			self._straight.setdefault(pulse, []).append(payload)

		self._timeline_key: typing.Optional[typing.Tuple[float, int, int, bool]] = None
		self._timeline: typing.Dict[int, typing.List[typing.Any]] = {}


	@property
	def loop_end_pulses (self) -> int:

		"""Loop length in pulses."""

		return self.loop_end * self._transport.pulses_per_bar


	@property
	def event_count (self) -> int:

		"""Number of payloads in the part."""

		return sum(len(payloads) for payloads in self._straight.values())


	def start (self, offset: int = 0) -> None:

		"""
		Begin firing, with the part's time zero at transport position ``offset``.
		"""

		if self.disposed:
			raise RuntimeError("Cannot start a disposed part")

		self.offset = offset
		self.started = True
		self._transport.add_part(self)


	def stop (self) -> None:

		"""Stop firing without releasing the part."""

		self.started = False
		self._transport.remove_part(self)


	def dispose (self) -> None:

		"""
		Stop and release the part. Safe to call more than once.
		"""

		if self.disposed:
			return

		self.stop()
		self.disposed = True
		self._straight = {}
		self._timeline = {}

		if self._on_dispose is not None:
			self._on_dispose(self)


	def timeline (self) -> typing.Dict[int, typing.List[typing.Any]]:

		"""
		Return pulse → payloads with the transport's current swing applied.
		"""

		key = (self._transport.swing, self._transport.swing_subdivision_pulses(), self.loop_end_pulses, self.loop)

		if key != self._timeline_key:

			swung = gridseq.swing.apply_swing(self._straight, self._transport.swing, key[1])

			if self.loop and self.loop_end_pulses > 0:
				wrapped: typing.Dict[int, typing.List[typing.Any]] = {}
				for pulse in sorted(swung):
					wrapped.setdefault(pulse % self.loop_end_pulses, []).extend(swung[pulse])
				swung = wrapped

			self._timeline = swung
			self._timeline_key = key

		return self._timeline


	def fire (self, position: int, pulse: int) -> None:

		"""
		Invoke the callback for every payload due at transport ``position``.

		``pulse`` is the clock's absolute pulse and is what the callback receives
		as its time argument.
		"""

		if not self.started:
			return

		relative = position - self.offset

		if self.loop and self.loop_end_pulses > 0:
			relative %= self.loop_end_pulses
		elif relative < 0:
			return

		for payload in self.timeline().get(relative, []):
			try:
				self._callback(pulse, payload)
			except Exception:
				logger.exception(f"Part callback failed at pulse {pulse}")


class MidiVoice:

	"""
	One instrument on a MIDI channel.

	Voices normally own their channel. When the engine runs out of channels
	several voices share one; the program and CC 7 level are then per
	channel, but each voice still releases only the notes it scheduled.
	"""

	def __init__ (
		self,
		transport: Transport,
		send: typing.Callable[[mido.Message], None],
		channel: int,
		instrument_id: str,
		on_dispose: typing.Optional[typing.Callable[["MidiVoice"], None]] = None,
		voice_id: int = 0
	) -> None:

		"""
		Select the instrument's GM program on ``channel``.
		"""

		self._transport = transport
		self._send = send
		self._on_dispose = on_dispose
		self.channel = channel
		self.instrument_id = instrument_id
		self.voice_id = voice_id
		self.disposed = False
		self._volume = 0.0

		self._send(mido.Message('program_change', channel=channel, program=gridseq.instruments.program_for(instrument_id)))


	@property
	def volume (self) -> float:

		"""Channel level in dB."""

		return self._volume


	@volume.setter
	def volume (self, value: float) -> None:

		self._volume = float(value)
		self._send(mido.Message('control_change', channel=self.channel, control=7, value=db_to_cc_volume(self._volume)))


	def trigger_attack_release (self, pitch: str, duration: float, time: int, velocity: float) -> None:

		"""
		Sound ``pitch`` at clock pulse ``time`` for ``duration`` seconds.

		``velocity`` is 0-1 and is scaled to MIDI 1-127.
		"""

		if self.disposed:
			return

		note = gridseq.notes.label_to_midi(pitch)
		midi_velocity = max(1, min(127, int(round(velocity * 127))))
		duration_pulses = self._transport.seconds_to_pulses(duration)

		self._transport.schedule_note(self.channel, note, midi_velocity, time, duration_pulses, owner=self.voice_id)


	def dispose (self) -> None:

		"""
		Silence this voice's notes and hand it back to the engine. Safe to call more than once.
		"""

		if self.disposed:
			return

		self.disposed = True
		self._transport.release_owner(self.voice_id)

		if self._on_dispose is not None:
			self._on_dispose(self)


class MidiEngine:

	"""
	Audio engine implementation that drives a ``mido`` output port.
	"""

	# Channel 10 (index 9) is reserved for GM percussion.
	DRUM_CHANNEL = 9

	def __init__ (self, midi_out: typing.Any, pulses_per_beat: int = gridseq.constants.MIDI_QUARTER_NOTE, spin_wait: bool = True) -> None:

		"""
		Parameters:
			midi_out: An open ``mido`` output port (or anything with ``send``).
			pulses_per_beat: Clock resolution.
			spin_wait: Passed to the ``Transport``.
		"""

		self.midi_out = midi_out
		self.transport = Transport(self._send, pulses_per_beat=pulses_per_beat, spin_wait=spin_wait)
		self.voices: typing.List[MidiVoice] = []
		self.parts: typing.List[MidiPart] = []
		self.started = False
		self._free_channels: typing.List[int] = [channel for channel in range(16) if channel != self.DRUM_CHANNEL]
		self._voice_ids = itertools.count()


	async def start (self) -> None:

		"""
		Make sure the output port is usable before the first note is scheduled.
		"""

		if self.midi_out is None:
			raise gridseq.errors.CollaboratorUnavailableError("MIDI output is closed")

		self.started = True


	def create_part (self, callback: PartCallback, events: typing.Sequence[typing.Tuple[TimeCoordinate, typing.Any]]) -> MidiPart:

		"""Create a part bound to this engine's transport."""

		part = MidiPart(self.transport, callback, events, on_dispose=self._forget_part)
		self.parts.append(part)

		return part


	def create_voice (self, instrument_id: str) -> MidiVoice:

		"""
		Allocate a channel for ``instrument_id``.

		Each voice gets its own channel while any of the 15 melodic channels
		is free. After that voices share: a channel already playing the same
		instrument is preferred, otherwise the least shared channel is used
		and its program is switched to the new instrument.
		"""

		channel = self._claim_channel(instrument_id)
		voice = MidiVoice(self.transport, self._send, channel, instrument_id, on_dispose=self._forget_voice, voice_id=next(self._voice_ids))
		self.voices.append(voice)

		logger.debug(f"Voice '{instrument_id}' allocated on channel {channel}")

		return voice


	def _claim_channel (self, instrument_id: str) -> int:

		if self._free_channels:
			return self._free_channels.pop(0)

		users: typing.Dict[int, typing.List[MidiVoice]] = {}

		for voice in self.voices:
			users.setdefault(voice.channel, []).append(voice)

		same_instrument = [
			channel for channel, voices in users.items()
			if all(voice.instrument_id == instrument_id for voice in voices)
		]

		candidates = same_instrument or list(users)
		channel = min(sorted(candidates), key=lambda candidate: len(users[candidate]))

		if not same_instrument:
			logger.warning(
				f"All MIDI channels are in use; '{instrument_id}' shares channel {channel} "
				f"and replaces its program"
			)

		return channel


	def _forget_part (self, part: MidiPart) -> None:

		if part in self.parts:
			self.parts.remove(part)


	def _forget_voice (self, voice: MidiVoice) -> None:

		if voice in self.voices:
			self.voices.remove(voice)

		if any(other.channel == voice.channel for other in self.voices):
			return

		if voice.channel not in self._free_channels:
			self._free_channels.append(voice.channel)
			self._free_channels.sort()


	def _send (self, message: mido.Message) -> None:

		"""
		Send a message to the output port, logging (not raising) on failure.
		"""

		if self.midi_out is None:
			return

		try:
			self.midi_out.send(message)
		except Exception:
			logger.exception("MIDI send failed (device may be disconnected)")


	def panic (self) -> None:

		"""
		Silence everything: tracked notes, then All Notes Off / All Sound Off on every channel.
		"""

		logger.info("Panic: sending all notes off.")

		self.transport.cancel()

		for channel in range(16):
			self._send(mido.Message('control_change', channel=channel, control=123, value=0))
			self._send(mido.Message('control_change', channel=channel, control=120, value=0))


	def close (self) -> None:

		"""
		Stop the transport, release everything and close the port.
		"""

		self.transport.stop()

		for part in list(self.parts):
			part.dispose()

		for voice in list(self.voices):
			voice.dispose()

		self.panic()

		if self.midi_out is not None:
			try:
				self.midi_out.close()
			except Exception:
				logger.exception("Failed to close MIDI output")
			self.midi_out = None

		self.started = False


async def open_midi_engine (device_name: typing.Optional[str] = None, spin_wait: bool = True) -> MidiEngine:

	"""
	Open a MIDI output port and wrap it in a ``MidiEngine``.

	Raises ``CollaboratorUnavailableError`` when no port can be opened.
	"""

	name, midi_out = gridseq.midi_utils.select_output_device(device_name)

	if midi_out is None:
		raise gridseq.errors.CollaboratorUnavailableError(
			f"No MIDI output available{f' named {device_name!r}' if device_name else ''}"
		)

	logger.info(f"MIDI engine ready on '{name}'")

	return MidiEngine(midi_out, spin_wait=spin_wait)
