"""Note labels and MIDI note numbers.

Grid rows are named with scientific pitch labels such as ``"C4"`` or
``"F#3"``. Convention: **C4 = 60** (Middle C).

Module-level constants:
- `NOTE_NAME_TO_PC`: Maps note names (e.g., `"C"`, `"F#"`, `"Bb"`) to pitch classes (0-11)
- `PC_TO_NOTE_NAME`: Maps pitch classes to sharp-spelled note names
"""

import re
import typing


NOTE_NAME_TO_PC: typing.Dict[str, int] = {
	"C": 0,
	"C#": 1,
	"Db": 1,
	"D": 2,
	"D#": 3,
	"Eb": 3,
	"E": 4,
	"F": 5,
	"F#": 6,
	"Gb": 6,
	"G": 7,
	"G#": 8,
	"Ab": 8,
	"A": 9,
	"A#": 10,
	"Bb": 10,
	"B": 11,
}

PC_TO_NOTE_NAME: typing.List[str] = [
	"C",
	"C#",
	"D",
	"D#",
	"E",
	"F",
	"F#",
	"G",
	"G#",
	"A",
	"A#",
	"B",
]

_LABEL_PATTERN = re.compile(r"^([A-Ga-g])([#b]?)(-?\d+)$")


def label_to_midi (label: str) -> int:

	"""
	Convert a pitch label to a MIDI note number.

	Accepts an upper- or lower-case letter, an optional ``#`` or ``b``, and an
	octave number: ``"C4"`` → 60, ``"f#3"`` → 54, ``"Bb2"`` → 46.

	Raises ``ValueError`` for malformed labels or notes outside 0-127.
	"""

	match = _LABEL_PATTERN.match(label.strip())

	if match is None:
		raise ValueError(f"Invalid pitch label {label!r}")

	letter, accidental, octave = match.groups()
	name = letter.upper() + accidental

	if name not in NOTE_NAME_TO_PC:
		raise ValueError(f"Unsupported spelling {name!r} in pitch label {label!r}")

	note = (int(octave) + 1) * 12 + NOTE_NAME_TO_PC[name]

	if not 0 <= note <= 127:
		raise ValueError(f"Pitch label {label!r} is outside the MIDI note range")

	return note


def midi_to_label (note: int) -> str:

	"""
	Convert a MIDI note number to a sharp-spelled pitch label (60 → ``"C4"``).
	"""

	if not 0 <= note <= 127:
		raise ValueError(f"MIDI note {note} is outside 0-127")

	return f"{PC_TO_NOTE_NAME[note % 12]}{note // 12 - 1}"
