"""Project files: track lists as YAML.

A project lists tracks. Each row string has one character per step::

	tracks:
	  - name: Lead
	    instrument: chiptune
	    volume_db: -6
	    muted: false
	    rows:
	      C5: "x x . . X . . . 5 . . . . . . . x x x x . . . . . . . . . . . ."
	      G4: "................................"

Spaces are ignored. ``x`` is an active cell at the default velocity, ``X``
an accent at full velocity, a digit ``1``-``9`` an active cell at ``n/9``,
and ``.`` or ``-`` an inactive cell. Rows that are not listed stay empty.
Row names may be spelled with flats or in lower case, so ``Bb4`` and
``a#4`` both name the ``A#4`` row.
"""

import dataclasses
import logging
import typing

import yaml

import gridseq.constants.grid
import gridseq.constants.velocity
import gridseq.instruments
import gridseq.notes
import gridseq.pattern
import gridseq.track


logger = logging.getLogger(__name__)

_INACTIVE = ".-"
_ACCENT = "X"
_ACTIVE = "x"


def parse_row (text: str, steps: int) -> typing.List[gridseq.pattern.Cell]:

	"""
	Parse one row string into cells. Raises ``ValueError`` on bad input.
	"""

	symbols = text.replace(" ", "")

	if len(symbols) != steps:
		raise ValueError(f"Row {text!r} has {len(symbols)} steps, expected {steps}")

	cells: typing.List[gridseq.pattern.Cell] = []

	for symbol in symbols:

		if symbol in _INACTIVE:
			cells.append(gridseq.pattern.Cell())

		elif symbol == _ACTIVE:
			cells.append(gridseq.pattern.Cell(active=True))

		elif symbol == _ACCENT:
			cells.append(gridseq.pattern.Cell(active=True, velocity=gridseq.constants.velocity.MAX_CELL_VELOCITY))

		elif symbol in "123456789":
			cells.append(gridseq.pattern.Cell(active=True, velocity=int(symbol) / 9.0))

		else:
			raise ValueError(f"Unknown step symbol {symbol!r}")

	return cells


def format_row (cells: typing.Sequence[gridseq.pattern.Cell]) -> str:

	"""
	Format cells as a row string, one group of four per beat.

	Velocities are written as the nearest symbol, so an odd velocity does not
	survive a save/load round trip exactly.
	"""

	symbols: typing.List[str] = []

	for cell in cells:

		if not cell.active:
			symbols.append(".")
		elif cell.velocity == gridseq.constants.velocity.DEFAULT_CELL_VELOCITY:
			symbols.append(_ACTIVE)
		elif cell.velocity >= gridseq.constants.velocity.MAX_CELL_VELOCITY:
			symbols.append(_ACCENT)
		else:
			symbols.append(str(max(1, min(9, int(round(cell.velocity * 9))))))

	beat = gridseq.constants.grid.STEPS_PER_BEAT

	return " ".join("".join(symbols[i:i + beat]) for i in range(0, len(symbols), beat))


def _row_index (label: str, pitches: typing.Sequence[str]) -> int:

	"""
	Find the row for a pitch label, accepting any spelling of the same note.
	"""

	try:
		canonical = gridseq.notes.midi_to_label(gridseq.notes.label_to_midi(label))
	except ValueError:
		canonical = label

	if canonical not in pitches:
		raise ValueError(f"Unknown pitch row {label!r} (rows are {', '.join(pitches)})")

	return list(pitches).index(canonical)


def track_from_dict (data: typing.Dict[str, typing.Any], index: int, steps: int = gridseq.constants.grid.TOTAL_STEPS) -> gridseq.track.Track:

	"""
	Build a track from one project entry.
	"""

	base = gridseq.track.create_track(index, steps=steps)
	instrument = str(data.get('instrument', base.instrument))

	if not gridseq.instruments.is_known(instrument):
		logger.warning(f"Unknown instrument '{instrument}' on track {index + 1}; it will export as program {gridseq.instruments.DEFAULT_PROGRAM}")

	pattern = base.pattern
	rows = data.get('rows') or {}

	for pitch, text in rows.items():

		row = _row_index(str(pitch), pattern.pitches)

		for step, cell in enumerate(parse_row(str(text), steps)):
			if cell.active:
				pattern = gridseq.pattern.set_velocity(pattern, row, step, cell.velocity)
				pattern = gridseq.pattern.toggle_cell(pattern, row, step, True)

	return dataclasses.replace(
		base,
		name = str(data.get('name', base.name)),
		instrument = instrument,
		pattern = pattern,
		volume_db = gridseq.track.clamp_volume(data.get('volume_db', base.volume_db)),
		muted = bool(data.get('muted', False)),
	)


def track_to_dict (track: gridseq.track.Track) -> typing.Dict[str, typing.Any]:

	"""
	Describe a track as a project entry. Empty rows are left out.
	"""

	rows = {
		pitch: format_row(cells)
		for pitch, cells in zip(track.pattern.pitches, track.pattern.rows)
		if any(cell.active for cell in cells)
	}

	return {
		'name': track.name,
		'instrument': track.instrument,
		'volume_db': track.volume_db,
		'muted': track.muted,
		'rows': rows,
	}


def load_project (path: str, steps: int = gridseq.constants.grid.TOTAL_STEPS) -> typing.List[gridseq.track.Track]:

	"""
	Load the tracks of a project file.
	"""

	with open(path, 'r') as f:
		data = yaml.safe_load(f) or {}

	entries = data.get('tracks') or []

	if not isinstance(entries, list):
		raise ValueError(f"Project {path} must list its tracks under 'tracks'")

	tracks = [track_from_dict(entry, index, steps=steps) for index, entry in enumerate(entries)]

	logger.info(f"Loaded {len(tracks)} tracks from {path}")

	return tracks


def save_project (path: str, tracks: typing.Sequence[gridseq.track.Track]) -> None:

	"""
	Write tracks to a project file.
	"""

	with open(path, 'w') as f:
		yaml.safe_dump({'tracks': [track_to_dict(track) for track in tracks]}, f, sort_keys=False)
