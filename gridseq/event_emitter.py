import asyncio
import logging
import typing


logger = logging.getLogger(__name__)

CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	Named notifications with sync and async listeners.

	The studio uses it to announce ``"status"``, ``"tracks"`` and
	``"playing"`` changes to whatever front end is attached.
	"""

	def __init__ (self) -> None:

		"""
		Initialize an empty listener registry.
		"""

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}
		self._tasks: typing.Set[asyncio.Task] = set()


	def on (self, event_name: str, callback: CallbackType) -> None:

		"""
		Register a callback for an event name.
		"""

		self._listeners.setdefault(event_name, []).append(callback)


	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a previously registered callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		if callback not in self._listeners.get(event_name, []):
			raise ValueError(f"Callback not registered for event {event_name!r}")

		self._listeners[event_name].remove(callback)


	def listener_count (self, event_name: str) -> int:

		"""Number of callbacks registered for ``event_name``."""

		return len(self._listeners.get(event_name, []))


	def emit (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call every listener for ``event_name``.

		Plain callbacks run immediately. Coroutine callbacks are scheduled on
		the running loop and held until they finish; their exceptions are
		logged. With no loop running they are skipped with a warning.
		"""

		for callback in list(self._listeners.get(event_name, [])):

			if asyncio.iscoroutinefunction(callback):

				try:
					loop = asyncio.get_running_loop()
				except RuntimeError:
					logger.warning(f"No running event loop for async listener of {event_name!r}")
					continue

				task = loop.create_task(callback(*args, **kwargs), name=f"emit:{event_name}")
				self._tasks.add(task)
				task.add_done_callback(self._task_done)

			else:
				callback(*args, **kwargs)


	def _task_done (self, task: asyncio.Task) -> None:

		self._tasks.discard(task)

		if task.cancelled():
			return

		error = task.exception()

		if error is not None:
			logger.error(f"Async listener {task.get_name()!r} failed: {error!r}", exc_info=error)
