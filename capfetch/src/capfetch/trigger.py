"""
Scheduled/triggered invocation.

A trigger carries a shared-secret token and runs the scraper under an
execution ceiling. The outcome is reported as an HTTP-style status and a
JSON body so a scheduler (cron, a serverless function) can relay it as is.
"""
import asyncio
import hmac
import logging
import time
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Tuple

from .errors import CapFetchError
from .models.company import Snapshot

logger = logging.getLogger(__name__)

RunFn = Callable[[], Awaitable[Tuple[Snapshot, Dict[str, Optional[str]]]]]


class TriggerResponse(NamedTuple):
    status: int
    body: Dict[str, Any]


def is_authorized(token: Optional[str], secret: Optional[str]) -> bool:
    """An unset secret authorizes nobody."""
    if not token or not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


async def handle_trigger(
    token: Optional[str],
    run: RunFn,
    *,
    secret: Optional[str],
    timeout_s: float,
    clock: Callable[[], float] = time.monotonic,
) -> TriggerResponse:
    if not is_authorized(token, secret):
        logger.warning("Rejected trigger with missing or invalid token")
        return TriggerResponse(401, {"error": "Unauthorized"})

    start = clock()

    def elapsed() -> str:
        return f"{clock() - start:.1f}s"

    try:
        snapshot, locations = await asyncio.wait_for(run(), timeout=timeout_s)
    except asyncio.TimeoutError:
        # Treated as operational; the next scheduled trigger retries
        logger.error(f"Scrape exceeded the {timeout_s:g}s execution ceiling")
        return TriggerResponse(504, {"error": f"Execution exceeded {timeout_s:g}s", "duration": elapsed()})
    except CapFetchError as e:
        logger.error(f"Scrape failed: {e.message}")
        return TriggerResponse(500, {"error": e.message, "duration": elapsed()})
    except Exception as e:
        logger.exception(f"Scrape failed unexpectedly: {e}")
        return TriggerResponse(500, {"error": str(e), "duration": elapsed()})

    body = {
        "success": True,
        "companies": len(snapshot.companies),
        "duration": elapsed(),
        "location": locations.get("blob") or locations.get("file"),
        "lastUpdated": snapshot.model_dump(mode="json", include={"last_updated"})["last_updated"],
    }
    return TriggerResponse(200, body)
