import asyncio

import pytest

import gridseq.event_emitter


def test_on_and_emit () -> None:

	"""Registered sync callbacks are called on emit."""

	emitter = gridseq.event_emitter.EventEmitter()
	received: list[str] = []

	emitter.on("status", lambda v: received.append(v))
	emitter.emit("status", "Playing")

	assert received == ["Playing"]


def test_off_removes_callback () -> None:

	"""off() prevents a previously registered callback from being called."""

	emitter = gridseq.event_emitter.EventEmitter()
	received: list[bool] = []

	def cb (v: bool) -> None:
		received.append(v)

	emitter.on("playing", cb)
	emitter.off("playing", cb)
	emitter.emit("playing", True)

	assert received == []
	assert emitter.listener_count("playing") == 0


def test_off_raises_for_unregistered_callback () -> None:

	"""off() raises ValueError when the callback was never registered."""

	emitter = gridseq.event_emitter.EventEmitter()

	with pytest.raises(ValueError, match="tracks"):
		emitter.off("tracks", lambda: None)


def test_async_listener_without_loop_is_skipped () -> None:

	"""A coroutine listener is skipped when no loop is running."""

	emitter = gridseq.event_emitter.EventEmitter()
	received: list[str] = []

	async def cb (v: str) -> None:
		received.append(v)

	emitter.on("status", cb)
	emitter.emit("status", "Stopped")

	assert received == []


@pytest.mark.asyncio
async def test_async_listener_is_scheduled () -> None:

	"""A coroutine listener runs on the current loop."""

	emitter = gridseq.event_emitter.EventEmitter()
	received: list[str] = []

	async def cb (v: str) -> None:
		received.append(v)

	emitter.on("status", cb)
	emitter.emit("status", "Playing")

	await asyncio.sleep(0)

	assert received == ["Playing"]


@pytest.mark.asyncio
async def test_failing_async_listener_is_logged (caplog: pytest.LogCaptureFixture) -> None:

	"""An exception in a scheduled listener is logged and the task is released."""

	emitter = gridseq.event_emitter.EventEmitter()

	async def cb (v: str) -> None:
		raise RuntimeError(f"bad {v}")

	emitter.on("status", cb)
	emitter.emit("status", "Playing")

	assert len(emitter._tasks) == 1

	await asyncio.sleep(0)
	await asyncio.sleep(0)

	assert len(emitter._tasks) == 0
	assert any("bad Playing" in record.getMessage() for record in caplog.records if record.levelname == "ERROR")
