"""Bounded-width concurrent batches.

Items run in waves of ``width`` coroutines. A failing item never
cancels its siblings: the exception is logged and converted into a
placeholder by ``on_error``, so the batch always returns one result per
input, in input order.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger()

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

ProgressCallback = Callable[[int, int], None]


@dataclass
class BatchReport(Generic[ResultT]):
    results: list[ResultT] = field(default_factory=list)
    failures: int = 0

    @property
    def succeeded(self) -> int:
        return len(self.results) - self.failures


async def run_in_waves(
    items: Sequence[ItemT],
    worker: Callable[[ItemT], Awaitable[ResultT]],
    on_error: Callable[[ItemT, Exception], ResultT],
    *,
    width: int = 3,
    on_progress: ProgressCallback | None = None,
) -> BatchReport[ResultT]:
    """Process ``items`` with at most ``width`` concurrent workers.

    Args:
        items: Inputs, processed in order.
        worker: Async function producing one result per item.
        on_error: Builds the placeholder result for a failed item.
        width: Wave size (concurrency bound).
        on_progress: Called with (done, total) after each wave.
    """
    if width < 1:
        raise ValueError("width must be >= 1")

    report: BatchReport[ResultT] = BatchReport()
    total = len(items)

    async def _guarded(index: int, item: ItemT) -> tuple[ResultT, bool]:
        try:
            return await worker(item), False
        except Exception as exc:
            logger.error("batch_item_failed", index=index, error=str(exc))
            return on_error(item, exc), True

    for start in range(0, total, width):
        wave = items[start : start + width]
        outcomes = await asyncio.gather(
            *(_guarded(start + offset, item) for offset, item in enumerate(wave))
        )
        for result, failed in outcomes:
            report.results.append(result)
            report.failures += failed
        if on_progress is not None:
            on_progress(min(start + width, total), total)

    logger.info("batch_completed", total=total, failures=report.failures)
    return report
