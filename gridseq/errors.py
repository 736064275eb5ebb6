class GridseqError (Exception):
	pass


class CollaboratorUnavailableError (GridseqError):

	"""
	The MIDI engine or the MIDI file writer could not be loaded or started.
	"""


class ExportNotReadyError (GridseqError):

	"""
	An export was requested before the MIDI file writer finished loading.
	"""
