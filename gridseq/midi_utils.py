import logging
import typing

import mido

logger = logging.getLogger(__name__)


def list_output_devices () -> typing.List[str]:

	"""
	Return the names of the available MIDI output ports (empty on failure).
	"""

	try:
		return list(mido.get_output_names())

	except Exception as e:
		logger.error(f"Failed to list MIDI outputs: {e}")
		return []


def select_output_device (device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:

	"""
	Select and open a MIDI output port for playback.

	If `device_name` is provided, opens exactly that port.
	If `device_name` is None, the first available port is used and the
	choice is logged, so a headless session never blocks on a prompt.

	Returns:
		A tuple of (device_name, midi_out_object) or (None, None) on failure.
	"""

	try:
		outputs = mido.get_output_names()
		logger.info(f"Available MIDI outputs: {outputs}")

		if not outputs:
			logger.error("No MIDI output devices found.")
			return None, None

		if device_name is not None:
			if device_name in outputs:
				midi_out = mido.open_output(device_name)
				logger.info(f"Opened MIDI output: {device_name}")
				return device_name, midi_out
			else:
				logger.error(
					f"MIDI output device '{device_name}' not found. "
					f"Available devices: {outputs}"
				)
				return None, None

		selected_name = outputs[0]
		midi_out = mido.open_output(selected_name)

		if len(outputs) == 1:
			logger.info(f"One MIDI output found - using '{selected_name}'")
		else:
			logger.info(
				f"{len(outputs)} MIDI outputs found - using '{selected_name}'. "
				f"Set midi.device_name in the config to choose another."
			)

		return selected_name, midi_out

	except Exception as e:
		logger.error(f"Failed to open MIDI output: {e}")
		return None, None
