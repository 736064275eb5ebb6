import dataclasses
import typing

import pytest

import gridseq.events
import gridseq.pattern
import gridseq.playback
import gridseq.track


def _track (steps_on: typing.Dict[int, typing.List[int]], index: int = 0, **changes: typing.Any) -> gridseq.track.Track:

	"""A default track with some cells switched on."""

	track = gridseq.track.create_track(index)
	pattern = track.pattern

	for row, steps in steps_on.items():
		for step in steps:
			pattern = gridseq.pattern.toggle_cell(pattern, row, step, True)

	return dataclasses.replace(track, pattern=pattern, **changes)


@pytest.mark.parametrize("step, expected", [
	(0, "0:0:0"),
	(3, "0:0:3"),
	(4, "0:1:0"),
	(15, "0:3:3"),
	(20, "1:1:0"),
	(31, "1:3:3"),
])
def test_step_to_transport_time (step: int, expected: str) -> None:

	"""Sixteen steps per bar, four per beat."""

	assert gridseq.playback.step_to_transport_time(step) == expected


def test_loop_length_bars () -> None:

	"""Partial bars round up."""

	assert gridseq.playback.loop_length_bars(32) == 2
	assert gridseq.playback.loop_length_bars(33) == 3


def test_schedule_configures_transport (fake_engine: typing.Any) -> None:

	"""Tempo, swing fraction, eighth-note swing and the loop are set."""

	session = gridseq.playback.PlaybackSession(fake_engine)
	session.schedule([_track({0: [0]})], tempo_bpm=96, swing_percent=25, total_steps=48)

	transport = fake_engine.transport

	assert transport.bpm == 96
	assert transport.swing == 0.25
	assert transport.swing_subdivision == "8n"
	assert transport.loop is True
	assert transport.loop_end == 3


def test_one_voice_and_looping_part_per_audible_track (fake_engine: typing.Any) -> None:

	"""Each unmuted track with notes gets one voice and one looping part started at 0."""

	tracks = [_track({0: [0, 1], 2: [20]}, volume_db=-3.0), _track({5: [8]}, index=1)]

	session = gridseq.playback.PlaybackSession(fake_engine)
	session.schedule(tracks, tempo_bpm=120, swing_percent=0)

	assert session.voice_count == 2
	assert session.part_count == 2
	assert [voice.instrument_id for voice in fake_engine.live_voices] == ["dream-pad", "chiptune"]
	assert fake_engine.live_voices[0].volume == -3.0

	part = fake_engine.live_parts[0]

	assert part.loop is True
	assert part.loop_end == 2
	assert part.started_at == 0
	assert [time for time, _ in part.events] == ["0:0:0", "1:1:0"]


def test_muted_and_empty_tracks_allocate_nothing (fake_engine: typing.Any) -> None:

	"""No voice or part for a muted track or an empty pattern."""

	tracks = [_track({0: [0]}, muted=True), _track({}, index=1)]

	session = gridseq.playback.PlaybackSession(fake_engine)
	session.schedule(tracks, tempo_bpm=120, swing_percent=0)

	assert session.voice_count == 0
	assert session.part_count == 0
	assert fake_engine.all_voices == []


def test_part_callback_triggers_voice (fake_engine: typing.Any) -> None:

	"""A firing event sounds its pitch for duration × sixteenth at its velocity."""

	track = _track({3: [4, 5, 6]})
	track = dataclasses.replace(track, pattern=gridseq.pattern.set_velocity(track.pattern, 3, 4, 0.5))

	session = gridseq.playback.PlaybackSession(fake_engine)
	session.schedule([track], tempo_bpm=120, swing_percent=0)

	fake_engine.live_parts[0].fire_all(time=42)

	assert fake_engine.live_voices[0].triggers == [("A4", pytest.approx(0.375), 42, 0.5)]


def test_reschedule_releases_previous_resources (fake_engine: typing.Any) -> None:

	"""Scheduling again disposes every earlier voice and part first."""

	session = gridseq.playback.PlaybackSession(fake_engine)
	session.schedule([_track({0: [0]}), _track({1: [1]}, index=1)], tempo_bpm=120, swing_percent=0)

	first_voices = list(fake_engine.live_voices)

	session.schedule([_track({0: [0]})], tempo_bpm=130, swing_percent=0)

	assert all(voice.disposed for voice in first_voices)
	assert len(fake_engine.live_voices) == 1
	assert len(fake_engine.live_parts) == 1


@pytest.mark.parametrize("tracks", [
	[],
	[_track({0: [0]})],
	[_track({0: [0]}), _track({2: [3, 4]}, index=1), _track({1: [1]}, index=2, muted=True)],
])
def test_stop_leaves_nothing_live (fake_engine: typing.Any, tracks: typing.List[gridseq.track.Track]) -> None:

	"""After stop no voice or part survives and the transport is rewound."""

	session = gridseq.playback.PlaybackSession(fake_engine)
	session.schedule(tracks, tempo_bpm=120, swing_percent=0)
	session.stop()

	assert session.voice_count == 0
	assert session.part_count == 0
	assert fake_engine.live_voices == []
	assert fake_engine.live_parts == []
	assert fake_engine.transport.position == 0
	assert fake_engine.transport.running is False


def test_failed_schedule_tears_down (make_engine: typing.Any) -> None:

	"""If voice allocation fails part-way, nothing allocated so far survives."""

	engine = make_engine(fail_on_voice=1)
	session = gridseq.playback.PlaybackSession(engine)

	with pytest.raises(RuntimeError):
		session.schedule([_track({0: [0]}), _track({1: [1]}, index=1)], tempo_bpm=120, swing_percent=0)

	assert session.voice_count == 0
	assert engine.live_voices == []
	assert engine.live_parts == []


@pytest.mark.asyncio
async def test_fresh_start_rewinds_and_delays (fake_engine: typing.Any) -> None:

	"""Starting from stopped resets the position and starts after the settle delay."""

	session = gridseq.playback.PlaybackSession(fake_engine, settle_delay=0.02)
	await session.start([_track({0: [0]})], tempo_bpm=120, swing_percent=0)

	assert fake_engine.started == 1
	assert fake_engine.transport.position == 0
	assert fake_engine.transport.start_calls == [0.02]


@pytest.mark.asyncio
async def test_keep_position_does_not_restart (fake_engine: typing.Any) -> None:

	"""A live reschedule leaves the transport where it is."""

	session = gridseq.playback.PlaybackSession(fake_engine)
	await session.start([_track({0: [0]})], tempo_bpm=120, swing_percent=0)

	fake_engine.transport.position = 37
	await session.start([_track({0: [0, 1]})], tempo_bpm=140, swing_percent=10, keep_position=True)

	assert fake_engine.transport.position == 37
	assert len(fake_engine.transport.start_calls) == 1
	assert fake_engine.transport.bpm == 140
	assert session.voice_count == 1


@pytest.mark.asyncio
async def test_engine_start_failure_leaves_nothing (make_engine: typing.Any) -> None:

	"""A failing engine start propagates after teardown."""

	engine = make_engine(fail_start=True)
	session = gridseq.playback.PlaybackSession(engine)

	with pytest.raises(RuntimeError):
		await session.start([_track({0: [0]})], tempo_bpm=120, swing_percent=0)

	assert session.voice_count == 0
	assert engine.live_parts == []


def test_events_reused_while_pattern_unchanged (fake_engine: typing.Any) -> None:

	"""The same event list is reused until the track's pattern changes."""

	track = _track({0: [0]})
	session = gridseq.playback.PlaybackSession(fake_engine)

	first = session.events_for(track)

	assert session.events_for(dataclasses.replace(track, volume_db=0.0)) is first

	changed = dataclasses.replace(track, pattern=gridseq.pattern.toggle_cell(track.pattern, 0, 1, True))

	assert session.events_for(changed) is not first
	assert session.events_for(changed)[0].duration_steps == 2
