import typing

import mido
import pytest

import gridseq.engine


class FakeMidiOut:

	"""MIDI output stub that records what is sent."""

	def __init__ (self) -> None:

		"""Start with no messages."""

		self.messages: typing.List[mido.Message] = []
		self.closed = False

	def send (self, message: mido.Message) -> None:

		"""Record an outgoing MIDI message."""

		self.messages.append(message)

	def close (self) -> None:

		"""Mark the fake device closed."""

		self.closed = True

	def of_type (self, message_type: str) -> typing.List[mido.Message]:

		"""Return recorded messages of one type."""

		return [message for message in self.messages if message.type == message_type]


def _fake_get_output_names () -> list[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	return FakeMidiOut()


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use a fake MIDI output."""

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)


class FakeTransport:

	"""Transport stub that records configuration and start/stop calls."""

	def __init__ (self) -> None:

		"""Default transport state."""

		self.bpm = 120.0
		self.swing = 0.0
		self.swing_subdivision = "16n"
		self.loop = False
		self.loop_end = 0
		self.position: typing.Any = 7
		self.running = False
		self.start_calls: typing.List[float] = []
		self.stop_calls = 0

	def start (self, delay: float = 0.0) -> None:

		"""Record a start."""

		self.running = True
		self.start_calls.append(delay)

	def stop (self) -> None:

		"""Record a stop."""

		self.running = False
		self.stop_calls += 1

	def cancel (self) -> None:

		"""Nothing queued in the fake."""

		return None

	def seconds_per_sixteenth (self) -> float:

		"""Sixteenth length at the current tempo."""

		return 60.0 / self.bpm / 4


class FakePart:

	"""Part stub that can be fired by hand."""

	def __init__ (self, engine: "FakeEngine", callback: typing.Callable, events: typing.Sequence[typing.Tuple[typing.Any, typing.Any]]) -> None:

		"""Store the callback and events."""

		self.engine = engine
		self.callback = callback
		self.events = list(events)
		self.loop = False
		self.loop_end = 0
		self.started_at: typing.Optional[int] = None
		self.disposed = False

	def start (self, offset: int = 0) -> None:

		"""Record the start offset."""

		self.started_at = offset

	def dispose (self) -> None:

		"""Release the part."""

		self.disposed = True
		self.engine.live_parts.remove(self)

	def fire_all (self, time: int = 0) -> None:

		"""Invoke the callback for every event."""

		for _, payload in self.events:
			self.callback(time, payload)


class FakeVoice:

	"""Voice stub that records triggers."""

	def __init__ (self, engine: "FakeEngine", instrument_id: str) -> None:

		"""Store the instrument."""

		self.engine = engine
		self.instrument_id = instrument_id
		self.volume = 0.0
		self.triggers: typing.List[typing.Tuple[str, float, int, float]] = []
		self.disposed = False

	def trigger_attack_release (self, pitch: str, duration: float, time: int, velocity: float) -> None:

		"""Record a trigger."""

		self.triggers.append((pitch, duration, time, velocity))

	def dispose (self) -> None:

		"""Release the voice."""

		self.disposed = True
		self.engine.live_voices.remove(self)


class FakeEngine:

	"""Audio engine stub that tracks live voices and parts."""

	def __init__ (self, fail_on_voice: typing.Optional[int] = None, fail_start: bool = False) -> None:

		"""
		Parameters:
			fail_on_voice: Raise when this many voices already exist.
			fail_start: Raise from ``start()``.
		"""

		self.transport = FakeTransport()
		self.live_parts: typing.List[FakePart] = []
		self.live_voices: typing.List[FakeVoice] = []
		self.all_voices: typing.List[FakeVoice] = []
		self.started = 0
		self.closed = False
		self._fail_on_voice = fail_on_voice
		self._fail_start = fail_start

	async def start (self) -> None:

		"""Record (or fail) an engine start."""

		if self._fail_start:
			raise RuntimeError("audio device blocked")

		self.started += 1

	def create_part (self, callback: typing.Callable, events: typing.Sequence[typing.Tuple[typing.Any, typing.Any]]) -> FakePart:

		"""Create and track a part."""

		part = FakePart(self, callback, events)
		self.live_parts.append(part)
		return part

	def create_voice (self, instrument_id: str) -> FakeVoice:

		"""Create and track a voice."""

		if self._fail_on_voice is not None and len(self.live_voices) >= self._fail_on_voice:
			raise RuntimeError("voice allocation failed")

		voice = FakeVoice(self, instrument_id)
		self.live_voices.append(voice)
		self.all_voices.append(voice)
		return voice

	def close (self) -> None:

		"""Record the close."""

		self.closed = True


@pytest.fixture
def fake_engine () -> FakeEngine:

	"""A fresh fake audio engine."""

	return FakeEngine()


@pytest.fixture
def midi_out () -> FakeMidiOut:

	"""A fresh recording MIDI output."""

	return FakeMidiOut()


@pytest.fixture
def midi_engine (midi_out: FakeMidiOut) -> gridseq.engine.MidiEngine:

	"""A real MIDI engine on a recording output."""

	return gridseq.engine.MidiEngine(midi_out, spin_wait=False)


@pytest.fixture
def make_engine () -> typing.Type[FakeEngine]:

	"""The fake engine class, for tests that need to configure failures."""

	return FakeEngine
