import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from ..models.fmp import FetchFailure

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_EVERY = 100

FetchFn = Callable[[str], Awaitable[Any]]


async def process_all(
    symbols: Sequence[str],
    fetch_fn: FetchFn,
    *,
    description: str = "Symbols",
    concurrency: int = 1,
    progress_every: int = DEFAULT_PROGRESS_EVERY,
    summary=None,
    clock: Callable[[], float] = time.monotonic,
) -> Dict[str, Any]:
    """
    Run `fetch_fn` over `symbols`, `concurrency` at a time, in the given order.

    Symbols whose fetch ends in a FetchFailure, None, or an exception are left
    out of the returned mapping; nothing per-symbol escapes this function.
    An empty result is not an error here.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    results: Dict[str, Any] = {}
    total = len(symbols)
    processed = 0
    failed = 0
    start = clock()

    for i in range(0, total, concurrency):
        chunk = symbols[i:i + concurrency]
        outcomes = await asyncio.gather(*(fetch_fn(s) for s in chunk), return_exceptions=True)

        for symbol, outcome in zip(chunk, outcomes):
            processed += 1
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(f"  {description}: unexpected error for {symbol}: {outcome}")
                failed += 1
            elif outcome is None or isinstance(outcome, FetchFailure):
                failed += 1
            else:
                results[symbol] = outcome

            if processed % progress_every == 0 or processed == total:
                elapsed = (clock() - start) / 60
                pct = round(processed / total * 100) if total else 100
                logger.info(
                    f"  {description}: {processed}/{total} ({pct}%) - "
                    f"success: {len(results)} - {elapsed:.0f}m elapsed"
                )

    if summary is not None:
        summary.record_stage(description, attempted=total, succeeded=len(results), failed=failed)
    return results
