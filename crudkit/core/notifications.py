"""Notification dispatch.

Mutating operations hand each affected record to a caller-supplied
callback. The callback may be a plain function or a coroutine function;
its return value is ignored.

Three dispatch modes exist and each operation picks one explicitly:

- ``dispatch``: call once and await; failures propagate.
- ``dispatch_all``: call once per record concurrently, await all; the
  first failure propagates.
- ``dispatch_detached``: schedule one task per record and return at
  once; failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from crudkit.core.observability import metrics

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[Any], Any | Awaitable[Any]]

# Detached tasks stay referenced until they finish.
_pending: set[asyncio.Task] = set()


async def dispatch(notify: NotifyCallback, record: Any, *, mode: str = "awaited") -> Any:
    """Invoke ``notify`` for one record, awaiting it if it returns an awaitable."""
    try:
        result = notify(record)
        if inspect.isawaitable(result):
            result = await result
    except Exception:
        metrics.notifications_total.labels(mode=mode, status="error").inc()
        raise
    metrics.notifications_total.labels(mode=mode, status="success").inc()
    return result


async def dispatch_all(notify: NotifyCallback, records: Iterable[Any]) -> None:
    """Notify for every record concurrently and wait for all of them."""
    await asyncio.gather(*(dispatch(notify, record, mode="gathered") for record in records))


async def _run_detached(notify: NotifyCallback, record: Any) -> None:
    try:
        await dispatch(notify, record, mode="detached")
    except Exception:
        logger.exception("Detached notification failed", extra={"record": repr(record)})


def dispatch_detached(notify: NotifyCallback, records: Iterable[Any]) -> list[asyncio.Task]:
    """
    Schedule one notification per record without waiting.

    Returns:
        The scheduled tasks; callers needing completion may await them
    """
    tasks = []
    for record in records:
        task = asyncio.create_task(_run_detached(notify, record))
        _pending.add(task)
        task.add_done_callback(_pending.discard)
        tasks.append(task)
    return tasks


async def drain_pending() -> None:
    """Wait for every detached notification still in flight."""
    while _pending:
        await asyncio.gather(*list(_pending))


def logging_notifier(event: str, *, entity_type: str) -> Callable[[Any], None]:
    """Build a callback that emits a structured log line per record.

    Useful as a default until a real transport (event bus, webhook) is wired.
    """

    def _notify(record: Any) -> None:
        logger.info(
            "notify:%s",
            event,
            extra={
                "entity_type": entity_type,
                "entity_id": str(getattr(record, "id", "")),
            },
        )

    return _notify
