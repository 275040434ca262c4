"""Deadline and exponential-backoff helpers for awaitable operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from careledger.errors import OperationTimeout

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Follow-up tasks scheduled from done-callbacks; kept referenced until they finish.
_BACKGROUND: set[asyncio.Future] = set()


def _consume_outcome(task: asyncio.Future) -> None:
	# A task abandoned by with_timeout may still fail later; retrieve the error so
	# the event loop does not report it as never retrieved.
	if task.cancelled():
		return
	exc = task.exception()
	if exc is not None:
		LOGGER.debug("Abandoned operation finished with error: %s", exc)


def _late_result_handler(on_late: Callable[[T], Awaitable[None]]) -> Callable[[asyncio.Future], None]:
	def _handle(task: asyncio.Future) -> None:
		if task.cancelled() or task.exception() is not None:
			return
		follow_up = asyncio.ensure_future(on_late(task.result()))
		_BACKGROUND.add(follow_up)
		follow_up.add_done_callback(_BACKGROUND.discard)
		follow_up.add_done_callback(_consume_outcome)

	return _handle


async def with_timeout(
	operation: Awaitable[T],
	timeout: float,
	message: str = "Operation timed out",
	on_late: Callable[[T], Awaitable[None]] | None = None,
) -> T:
	"""Await ``operation`` for at most ``timeout`` seconds.

	The operation is shielded: when the deadline passes the caller stops waiting
	but the underlying call keeps running to completion in the background. When
	``on_late`` is given it is scheduled with the result of an operation that
	succeeds after the deadline, so callers can reconcile the late side effect.
	"""

	task = asyncio.ensure_future(operation)
	try:
		return await asyncio.wait_for(asyncio.shield(task), timeout)
	except asyncio.TimeoutError as exc:
		task.add_done_callback(_consume_outcome)
		if on_late is not None:
			task.add_done_callback(_late_result_handler(on_late))
		raise OperationTimeout(message) from exc


async def with_retry(
	operation: Callable[[], Awaitable[T]],
	retries: int = 3,
	initial_delay: float = 1.0,
) -> T:
	"""Invoke ``operation`` up to ``retries`` times with pure exponential backoff.

	Sleeps ``initial_delay * 2 ** attempt`` seconds after each failed attempt and
	re-raises the last error once attempts are exhausted.
	"""

	if retries < 1:
		raise ValueError("retries must be at least 1")

	for attempt in range(retries):
		try:
			return await operation()
		except Exception as exc:
			if attempt == retries - 1:
				raise
			delay = initial_delay * (2 ** attempt)
			LOGGER.warning("Attempt %s failed (%s), retrying in %.1fs", attempt + 1, exc, delay)
			await asyncio.sleep(delay)

	raise RuntimeError("All retry attempts failed")
