import dataclasses
import typing
import uuid

import gridseq.constants.grid
import gridseq.instruments
import gridseq.pattern


@dataclasses.dataclass(frozen=True)
class Track:

	"""
	One instrument lane: a pattern plus its mixer settings.
	"""

	id: str
	name: str
	instrument: gridseq.instruments.InstrumentId
	pattern: gridseq.pattern.Pattern
	volume_db: float = gridseq.constants.grid.DEFAULT_VOLUME_DB
	muted: bool = False


def create_id () -> str:

	"""Return a new opaque track id."""

	return uuid.uuid4().hex


def clamp_volume (volume_db: float) -> float:

	"""Clamp a track volume to the mixer range."""

	return max(gridseq.constants.grid.MIN_VOLUME_DB, min(gridseq.constants.grid.MAX_VOLUME_DB, float(volume_db)))


def create_track (index: int, steps: int = gridseq.constants.grid.TOTAL_STEPS) -> Track:

	"""
	Create the ``index``-th default track.

	Instruments are handed out in catalogue order, wrapping around.
	"""

	instruments = gridseq.instruments.INSTRUMENTS

	return Track(
		id = create_id(),
		name = f"Track {index + 1}",
		instrument = instruments[index % len(instruments)].id,
		pattern = gridseq.pattern.create_empty_pattern(steps=steps),
	)


def add_track (tracks: typing.Sequence[Track], steps: int = gridseq.constants.grid.TOTAL_STEPS) -> typing.List[Track]:

	"""Return the track list with a new default track appended."""

	return list(tracks) + [create_track(len(tracks), steps=steps)]


def remove_track (tracks: typing.Sequence[Track], track_id: str) -> typing.List[Track]:

	"""Return the track list without ``track_id``. Unknown ids raise ``KeyError``."""

	if find_track(tracks, track_id) is None:
		raise KeyError(f"Unknown track {track_id!r}")

	return [track for track in tracks if track.id != track_id]


def find_track (tracks: typing.Sequence[Track], track_id: str) -> typing.Optional[Track]:

	"""Return the track with ``track_id``, or None."""

	for track in tracks:
		if track.id == track_id:
			return track

	return None


def update_track (
	tracks: typing.Sequence[Track],
	track_id: str,
	updater: typing.Callable[[Track], Track]
) -> typing.List[Track]:

	"""
	Return the track list with ``updater`` applied to one track.

	Unknown ids raise ``KeyError``.
	"""

	if find_track(tracks, track_id) is None:
		raise KeyError(f"Unknown track {track_id!r}")

	return [updater(track) if track.id == track_id else track for track in tracks]
