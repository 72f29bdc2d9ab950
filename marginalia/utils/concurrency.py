"""Fan-out / fan-in helpers for best-effort concurrent work.

Every phase of ingestion that talks to more than one external service
(metadata dual lookup, the four source scrapers, the two catalog
searches) follows the same shape: launch N independent operations,
wait until *all* of them have settled, and keep going regardless of
which ones failed.  :func:`gather_settled` expresses that shape once.

Each awaitable is bounded by an explicit deadline.  When the consumer of
an ingestion stream disconnects, the work already in flight is abandoned
rather than cancelled; the deadline guarantees that abandoned work still
terminates instead of lingering for the lifetime of the process.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

import structlog

from marginalia.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def with_deadline(awaitable: Awaitable[_T], deadline: float | None) -> _T:
    """Await *awaitable*, raising :class:`asyncio.TimeoutError` after *deadline* seconds.

    A ``None`` or non-positive deadline disables the bound.
    """
    if deadline is None or deadline <= 0:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=deadline)


async def gather_settled(
    awaitables: list[Awaitable[_T]],
    deadline: float | None = None,
    labels: list[str] | None = None,
    logger: structlog.BoundLogger | None = None,
) -> list[_T | BaseException]:
    """Run *awaitables* concurrently and return once every one has settled.

    Parameters
    ----------
    awaitables:
        The operations to run.  They are started together.
    deadline:
        Per-operation deadline in seconds.  An operation that exceeds it
        settles with :class:`asyncio.TimeoutError`.
    labels:
        Optional names, parallel to *awaitables*, used when logging
        failures.
    logger:
        Optional structured logger for failure warnings.

    Returns
    -------
    list
        Results in input order.  A failed operation contributes its
        exception instead of a value; nothing is raised.
    """
    log = logger or _logger
    results = await asyncio.gather(
        *(with_deadline(a, deadline) for a in awaitables),
        return_exceptions=True,
    )

    for idx, result in enumerate(results):
        if isinstance(result, BaseException):
            label = labels[idx] if labels and idx < len(labels) else str(idx)
            log.warning(
                "settled_with_error",
                operation=label,
                error_type=type(result).__name__,
                error=str(result),
            )

    return list(results)
