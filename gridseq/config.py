"""Configuration loaded from YAML.

Example ``config.yaml``::

	midi:
	  device_name: "IAC Driver Bus 1"
	sequencer:
	  tempo_bpm: 122
	  swing_percent: 10
	  steps: 32
	  settle_delay: 0.02
	export:
	  directory: "exports"
	logging:
	  level: INFO

Every key is optional. A missing file gives the defaults.
"""

import dataclasses
import logging
import os
import typing

import yaml

import gridseq.constants.grid


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class StudioConfig:

	"""
	Resolved settings for a studio session.
	"""

	device_name: typing.Optional[str] = None
	tempo_bpm: float = gridseq.constants.grid.DEFAULT_TEMPO_BPM
	swing_percent: float = gridseq.constants.grid.DEFAULT_SWING_PERCENT
	steps: int = gridseq.constants.grid.TOTAL_STEPS
	settle_delay: float = gridseq.constants.grid.START_SETTLE_DELAY
	export_directory: str = "."
	log_level: str = "INFO"


	def __post_init__ (self) -> None:

		"""
		Validate values that would otherwise fail much later.
		"""

		if self.steps <= 0 or self.steps % gridseq.constants.grid.STEPS_PER_BAR != 0:
			raise ValueError(f"sequencer.steps must be a positive multiple of {gridseq.constants.grid.STEPS_PER_BAR}")

		if self.tempo_bpm <= 0:
			raise ValueError("sequencer.tempo_bpm must be positive")

		if self.settle_delay < 0:
			raise ValueError("sequencer.settle_delay cannot be negative")


def config_from_dict (data: typing.Optional[typing.Dict[str, typing.Any]]) -> StudioConfig:

	"""
	Build a ``StudioConfig`` from parsed YAML sections.
	"""

	data = data or {}

	midi = data.get('midi') or {}
	sequencer = data.get('sequencer') or {}
	export = data.get('export') or {}
	logging_section = data.get('logging') or {}

	defaults = StudioConfig()

	return StudioConfig(
		device_name = midi.get('device_name', defaults.device_name),
		tempo_bpm = float(sequencer.get('tempo_bpm', defaults.tempo_bpm)),
		swing_percent = float(sequencer.get('swing_percent', defaults.swing_percent)),
		steps = int(sequencer.get('steps', defaults.steps)),
		settle_delay = float(sequencer.get('settle_delay', defaults.settle_delay)),
		export_directory = str(export.get('directory', defaults.export_directory)),
		log_level = str(logging_section.get('level', defaults.log_level)).upper(),
	)


def load_config (config_path: str = 'config.yaml') -> StudioConfig:

	"""
	Load configuration from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return StudioConfig()

	with open(config_path, 'r') as f:
		data = yaml.safe_load(f)

	if data is not None and not isinstance(data, dict):
		raise ValueError(f"Config file {config_path} must contain a mapping")

	return config_from_dict(data)
