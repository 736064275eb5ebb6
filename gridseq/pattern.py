import dataclasses
import math
import typing

import gridseq.constants.grid
import gridseq.constants.velocity


@dataclasses.dataclass(frozen=True)
class Cell:

	"""
	One (row, step) slot of the grid.
	"""

	active: bool = False
	velocity: float = gridseq.constants.velocity.DEFAULT_CELL_VELOCITY


EMPTY_CELL = Cell()


@dataclasses.dataclass(frozen=True)
class Pattern:

	"""
	An immutable pitch-row × step grid.

	Rows follow ``pitches`` order. Every edit returns a new ``Pattern``, so two
	patterns can be compared with ``==`` (or ``is``) to detect changes.
	"""

	pitches: typing.Tuple[str, ...]
	rows: typing.Tuple[typing.Tuple[Cell, ...], ...]


	def __post_init__ (self) -> None:

		"""
		Check the grid shape.
		"""

		if len(self.rows) != len(self.pitches):
			raise ValueError("Pattern needs exactly one row per pitch")

		step_counts = {len(row) for row in self.rows}

		if len(step_counts) > 1:
			raise ValueError("Every pattern row must have the same step count")


	@property
	def row_count (self) -> int:

		"""Number of pitch rows."""

		return len(self.rows)


	@property
	def steps (self) -> int:

		"""Number of steps in every row."""

		return len(self.rows[0]) if self.rows else 0


	@property
	def bars (self) -> int:

		"""Pattern length in 16-step bars."""

		return math.ceil(self.steps / gridseq.constants.grid.STEPS_PER_BAR)


	def cell (self, row: int, step: int) -> Cell:

		"""
		Return the cell at ``(row, step)``, rejecting out-of-range coordinates.
		"""

		_check_coordinates(self, row, step)

		return self.rows[row][step]


	def active_count (self) -> int:

		"""Number of active cells across all rows."""

		return sum(1 for row in self.rows for cell in row if cell.active)


def _check_coordinates (pattern: Pattern, row: int, step: int) -> None:

	"""
	Raise ``ValueError`` unless ``(row, step)`` addresses a cell of ``pattern``.
	"""

	if not 0 <= row < pattern.row_count:
		raise ValueError(f"Row {row} is out of range (0-{pattern.row_count - 1})")

	if not 0 <= step < pattern.steps:
		raise ValueError(f"Step {step} is out of range (0-{pattern.steps - 1})")


def _replace_cell (pattern: Pattern, row: int, step: int, cell: Cell) -> Pattern:

	"""
	Return a copy of ``pattern`` with one cell swapped. Untouched rows are shared.
	"""

	old_row = pattern.rows[row]
	new_row = old_row[:step] + (cell,) + old_row[step + 1:]
	rows = pattern.rows[:row] + (new_row,) + pattern.rows[row + 1:]

	return Pattern(pitches=pattern.pitches, rows=rows)


def create_empty_pattern (
	pitches: typing.Sequence[str] = gridseq.constants.grid.NOTE_NAMES,
	steps: int = gridseq.constants.grid.TOTAL_STEPS
) -> Pattern:

	"""
	Create a pattern with every cell inactive at the default velocity.
	"""

	if not pitches:
		raise ValueError("A pattern needs at least one pitch row")

	if steps <= 0 or steps % gridseq.constants.grid.STEPS_PER_BAR != 0:
		raise ValueError(f"Step count must be a positive multiple of {gridseq.constants.grid.STEPS_PER_BAR}")

	row = (EMPTY_CELL,) * steps

	return Pattern(
		pitches = tuple(pitches),
		rows = tuple(row for _ in pitches)
	)


def toggle_cell (pattern: Pattern, row: int, step: int, forced_state: typing.Optional[bool] = None) -> Pattern:

	"""
	Switch a cell on or off.

	With ``forced_state`` the cell is set to that state, otherwise it flips.
	The velocity is kept either way, so re-enabling a cell restores the
	velocity it had before.
	"""

	cell = pattern.cell(row, step)
	active = (not cell.active) if forced_state is None else bool(forced_state)

	if active == cell.active:
		return pattern

	return _replace_cell(pattern, row, step, dataclasses.replace(cell, active=active))


def set_velocity (pattern: Pattern, row: int, step: int, value: float) -> Pattern:

	"""
	Set a cell's velocity without changing whether it is active.

	Values above 1.0 are clamped to 1.0. Zero, negative and NaN values raise
	``ValueError``.
	"""

	cell = pattern.cell(row, step)

	if not value > 0:
		raise ValueError("Velocity must be greater than zero")

	velocity = min(float(value), gridseq.constants.velocity.MAX_CELL_VELOCITY)

	if velocity == cell.velocity:
		return pattern

	return _replace_cell(pattern, row, step, dataclasses.replace(cell, velocity=velocity))


def clear_pattern (pattern: Pattern) -> Pattern:

	"""
	Return a fresh empty pattern with the same rows and step count.
	"""

	return create_empty_pattern(pitches=pattern.pitches, steps=pattern.steps)
