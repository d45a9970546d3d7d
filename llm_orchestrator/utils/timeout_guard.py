"""
Timeout Guard Utility

Races an already-started async operation against a hard deadline.

The losing operation is not cancelled by default: a timeout means "stop
waiting", not "stop working". The operation keeps running in the background and
any exception it raises later is logged rather than left unretrieved. Callers
whose operation supports cancellation can opt in with ``cancel_on_timeout``.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Optional, TypeVar, Union

from .exceptions import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _log_orphaned_result(task: "asyncio.Future[Any]", message: str) -> None:
    """Retrieve the late outcome of a timed-out operation so it is never lost."""
    if task.cancelled():
        logger.debug(f"⏱️ Timed-out operation was cancelled: {message}")
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            f"⚠️ Operation failed after its deadline had already passed ({message}): "
            f"{type(exc).__name__}: {exc}"
        )
    else:
        logger.debug(f"⏱️ Timed-out operation completed in background: {message}")


async def race_with_timeout(
    operation: Union[Awaitable[T], "asyncio.Future[T]"],
    timeout_ms: float,
    message: Optional[str] = None,
    *,
    cancel_on_timeout: bool = False
) -> T:
    """
    Await an operation, failing with a timeout once ``timeout_ms`` elapses.

    Args:
        operation: Coroutine, task or future. Coroutines are scheduled as tasks
            immediately so they keep running if the race is lost.
        timeout_ms: Deadline in milliseconds
        message: Message carried by the timeout error
        cancel_on_timeout: Cancel the operation when the deadline passes

    Returns:
        The operation's result if it settles first

    Raises:
        OperationTimeoutError: If the deadline passes first
        Exception: Whatever the operation raises if it fails before the deadline

    Example:
        text = await race_with_timeout(
            extract_pdf(data),
            timeout_ms=240000,
            message="PDF extraction timed out"
        )
    """
    task = asyncio.ensure_future(operation)
    started = time.monotonic()

    done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    if task in done:
        return task.result()

    elapsed_ms = (time.monotonic() - started) * 1000
    error_msg = message or f"Operation timed out after {timeout_ms}ms"
    logger.error(f"⏱️ {error_msg} (elapsed {elapsed_ms:.0f}ms)")

    task.add_done_callback(lambda t: _log_orphaned_result(t, error_msg))
    if cancel_on_timeout:
        task.cancel()

    raise OperationTimeoutError(
        error_msg,
        timeout_ms=timeout_ms,
        details={"elapsed_ms": round(elapsed_ms, 2), "cancelled": cancel_on_timeout}
    )
