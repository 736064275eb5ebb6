"""Command line entry point.

Usage::

    python -m gridseq devices
    python -m gridseq export song.yaml -o song.mid
    python -m gridseq play song.yaml --bars 8

Settings are read from ``config.yaml`` (or ``--config``); see
``gridseq.config`` for the format and ``gridseq.project`` for project files.
"""

import argparse
import asyncio
import logging
import sys
import typing

import gridseq.config
import gridseq.constants.grid
import gridseq.errors
import gridseq.midi_utils
import gridseq.project
import gridseq.studio


logger = logging.getLogger(__name__)


def _positive_float (value: str) -> float:

	"""argparse type for values that must be greater than zero."""

	try:
		number = float(value)
	except ValueError:
		raise argparse.ArgumentTypeError(f"{value!r} is not a number") from None

	if not number > 0:
		raise argparse.ArgumentTypeError(f"{value} must be greater than zero")

	return number


def _positive_int (value: str) -> int:

	"""argparse type for counts that must be at least one."""

	try:
		number = int(value)
	except ValueError:
		raise argparse.ArgumentTypeError(f"{value!r} is not a whole number") from None

	if number < 1:
		raise argparse.ArgumentTypeError(f"{value} must be at least 1")

	return number


def _build_parser () -> argparse.ArgumentParser:

	"""Build the argument parser."""

	parser = argparse.ArgumentParser(prog="gridseq", description="Step-grid MIDI sequencer")
	parser.add_argument("--config", default="config.yaml", help="Path to the YAML config file")

	commands = parser.add_subparsers(dest="command", required=True)

	commands.add_parser("devices", help="List MIDI output ports")

	export = commands.add_parser("export", help="Write a project to a MIDI file")
	export.add_argument("project", help="Project YAML file")
	export.add_argument("-o", "--output", default=None, help="Directory for the exported file")
	export.add_argument("--tempo", type=_positive_float, default=None, help="Tempo in BPM (overrides the config)")

	play = commands.add_parser("play", help="Play a project through a MIDI output port")
	play.add_argument("project", help="Project YAML file")
	play.add_argument("--bars", type=_positive_int, default=None, help="Stop after this many bars (default: until interrupted)")
	play.add_argument("--tempo", type=_positive_float, default=None, help="Tempo in BPM (overrides the config)")
	play.add_argument("--swing", type=float, default=None, help="Swing percent (overrides the config)")

	return parser


async def _export (studio: gridseq.studio.Studio, output: typing.Optional[str]) -> int:

	"""Load the writer and export. Returns an exit code."""

	try:
		await studio.ensure_writer()
	except gridseq.errors.CollaboratorUnavailableError as e:
		logger.error(f"{gridseq.studio.STATUS_WRITER_FAILED} {e}")
		return 1

	path = studio.export_midi(directory=output)

	if path is None:
		logger.error(studio.status)
		return 1

	print(path)
	return 0


async def _play (studio: gridseq.studio.Studio, bars: typing.Optional[int]) -> int:

	"""Play until ``bars`` have passed or the task is cancelled. Returns an exit code."""

	await studio.load()

	try:
		if not await studio.start_playback():
			logger.error(studio.status)
			return 1

		if bars is None:
			while True:
				await asyncio.sleep(1)

		seconds = bars * gridseq.constants.grid.BEATS_PER_BAR * 60.0 / studio.tempo_bpm
		await asyncio.sleep(studio.config.settle_delay + seconds)

	finally:
		studio.close()

	return 0


def main (argv: typing.Optional[typing.List[str]] = None) -> int:

	"""
	Main entry point for the gridseq command line.
	"""

	args = _build_parser().parse_args(argv)
	config = gridseq.config.load_config(args.config)

	logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))

	if args.command == "devices":
		for name in gridseq.midi_utils.list_output_devices():
			print(name)
		return 0

	if getattr(args, "tempo", None) is not None:
		config.tempo_bpm = args.tempo

	if getattr(args, "swing", None) is not None:
		config.swing_percent = args.swing

	tracks = gridseq.project.load_project(args.project, steps=config.steps)
	studio = gridseq.studio.Studio(config=config, tracks=tracks)

	try:
		if args.command == "export":
			return asyncio.run(_export(studio, args.output))

		return asyncio.run(_play(studio, args.bars))

	except KeyboardInterrupt:
		logger.info("Stopping...")
		studio.close()
		return 0


if __name__ == "__main__":
	sys.exit(main())
