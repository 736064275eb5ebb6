from __future__ import annotations

import math
import re
import typing

from gridseq.constants import MIDI_QUARTER_NOTE


PayloadType = typing.TypeVar("PayloadType")

_SUBDIVISION_PATTERN = re.compile(r"^(\d+)n$")


def subdivision_to_pulses (subdivision: str, pulses_per_quarter: int = MIDI_QUARTER_NOTE) -> int:

	"""
	Convert a note-value subdivision such as ``"8n"`` or ``"16n"`` to pulses.
	"""

	match = _SUBDIVISION_PATTERN.match(subdivision)

	if match is None:
		raise ValueError(f"Invalid swing subdivision {subdivision!r}")

	denominator = int(match.group(1))

	if denominator <= 0 or (4 * pulses_per_quarter) % denominator != 0:
		raise ValueError(f"Subdivision {subdivision!r} does not fit {pulses_per_quarter} PPQN")

	return (4 * pulses_per_quarter) // denominator


def swing_pulse (pulse: int, amount: float, subdivision_pulses: int) -> int:

	"""
	Return where ``pulse`` lands once swing is applied.

	Swing works on pairs of subdivisions. Positions on the pair boundary stay
	put; positions inside the pair are pushed later along a half-sine, so the
	off-beat subdivision moves furthest: by ``amount × 2/3`` of a subdivision
	(a triplet feel at ``amount = 1``).
	"""

	if amount < 0 or amount > 1:
		raise ValueError("Swing amount must be between 0 and 1")

	if subdivision_pulses <= 0:
		raise ValueError("Subdivision must be at least one pulse")

	if amount == 0:
		return pulse

	cycle = 2 * subdivision_pulses
	within = pulse % cycle

	if within == 0:
		return pulse

	progress = within / float(cycle)
	offset = math.sin(progress * math.pi) * amount * (cycle / 3.0)

	return int(round(pulse + offset))


def apply_swing (
	positions: typing.Dict[int, typing.List[PayloadType]],
	amount: float,
	subdivision_pulses: int
) -> typing.Dict[int, typing.List[PayloadType]]:

	"""
	Apply swing to a mapping of pulse position → payloads.

	Payloads that land on the same pulse after swinging are merged in their
	original order.
	"""

	new_positions: typing.Dict[int, typing.List[PayloadType]] = {}

	for old_pulse in sorted(positions):

		new_pulse = swing_pulse(old_pulse, amount, subdivision_pulses)

		if new_pulse not in new_positions:
			new_positions[new_pulse] = []

		new_positions[new_pulse].extend(positions[old_pulse])

	return new_positions
