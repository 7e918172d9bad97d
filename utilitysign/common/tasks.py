"""
Best-effort background work.

Operations that are allowed to fail silently (BankID session cancellation, the
post-signing completion trigger) are scheduled through ``fire_and_forget``. Their
outcome is only ever logged; it never reaches the caller's error path.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Strong references so the event loop does not garbage-collect running tasks.
_background_tasks: set[asyncio.Task] = set()


async def _run_logged(awaitable: Awaitable[Any], description: str) -> Any:
    try:
        result = await awaitable
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Background task failed: %s", description)
        return None
    logger.debug("Background task finished: %s -> %r", description, result)
    return result


def fire_and_forget(awaitable: Awaitable[Any], description: str) -> asyncio.Task:
    task = asyncio.create_task(_run_logged(awaitable, description))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def invoke_callback(callback: Optional[Callable[..., Any]], *args: Any) -> Any:
    """Call a sync or async callback and return its result."""
    if callback is None:
        return None
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
