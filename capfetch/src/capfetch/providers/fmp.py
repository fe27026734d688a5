"""
Financial Modeling Prep client.

Every request goes through one pacing gate shared by the whole process:
a fixed minimum spacing between consecutive requests, plus a cooldown
window that any HTTP 429 pushes forward for everyone. Per-symbol lookups
never raise; they return the parsed resource or a FetchFailure.

Reference: https://site.financialmodelingprep.com/developer/docs/stable
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests
from pydantic import ValidationError as PayloadError

from ..errors import ProviderError
from ..models.fmp import (
    AnalystEstimate,
    FetchFailure,
    FinancialGrowth,
    IncomeResult,
    IncomeStatement,
    Profile,
    Quote,
    RatiosTTM,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://financialmodelingprep.com/stable"

LOOKUP_TIMEOUT_S = 10
SCREENER_TIMEOUT_S = 60
SCREENER_PAGE_LIMIT = 10000
SCREENER_MIN_MARKET_CAP = 1_000_000_000

BASE_BACKOFF_S = 1.0
MAX_BACKOFF_S = 30.0

# Connection reset/refused/aborted, DNS failures and timeouts all land here
TRANSIENT_EXCEPTIONS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


class ResourceKind(str, Enum):
    QUOTE = "quote"
    PROFILE = "profile"
    INCOME = "income"
    RATIOS = "ratios"
    GROWTH = "growth"
    ESTIMATES = "estimates"


# kind -> (path, fixed query params); `symbol` and `apikey` are added per call
ENDPOINTS: Dict[ResourceKind, Tuple[str, Dict[str, Any]]] = {
    ResourceKind.QUOTE: ("/quote", {}),
    ResourceKind.PROFILE: ("/profile", {}),
    ResourceKind.INCOME: ("/income-statement", {"period": "quarter", "limit": 4}),
    ResourceKind.RATIOS: ("/ratios-ttm", {}),
    ResourceKind.GROWTH: ("/financial-growth", {}),
    ResourceKind.ESTIMATES: ("/analyst-estimates", {"period": "annual"}),
}


def _parse_income(rows: List[Dict[str, Any]]) -> IncomeResult:
    statements = [IncomeStatement.model_validate(r) for r in rows]
    currency = statements[0].reported_currency or "USD"
    return IncomeResult(statements=statements, reported_currency=currency)


def _parse_estimates(rows: List[Dict[str, Any]]) -> List[AnalystEstimate]:
    return [AnalystEstimate.model_validate(r) for r in rows if r.get("date")]


_PARSERS: Dict[ResourceKind, Callable[[List[Dict[str, Any]]], Any]] = {
    ResourceKind.QUOTE: lambda rows: Quote.model_validate(rows[0]),
    ResourceKind.PROFILE: lambda rows: Profile.model_validate(rows[0]),
    ResourceKind.INCOME: _parse_income,
    ResourceKind.RATIOS: lambda rows: RatiosTTM.model_validate(rows[0]),
    ResourceKind.GROWTH: lambda rows: FinancialGrowth.model_validate(rows[0]),
    ResourceKind.ESTIMATES: _parse_estimates,
}


class RateLimitState:
    """
    Process-wide pacing state.

    Read and written only from the event-loop thread, so no lock is taken.
    If requests are ever issued from several OS threads at once, these two
    timestamps must be guarded by a threading.Lock.
    """

    def __init__(self):
        self.cooldown_until = 0.0
        self.next_request_at = 0.0

    def extend_cooldown(self, until: float):
        if until > self.cooldown_until:
            self.cooldown_until = until


GLOBAL_RATE_LIMIT = RateLimitState()


class _RequestFailed(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class FMPClient:
    """Rate-limited async client for the FMP stable API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = BASE_URL,
        session: Optional[requests.Session] = None,
        rate_limit: Optional[RateLimitState] = None,
        request_delay: float = 0.1,
        max_retries: int = 5,
        base_backoff: float = BASE_BACKOFF_S,
        max_backoff: float = MAX_BACKOFF_S,
        timeout: float = LOOKUP_TIMEOUT_S,
        screener_timeout: float = SCREENER_TIMEOUT_S,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.rate_limit = rate_limit or GLOBAL_RATE_LIMIT
        self.request_delay = request_delay
        self.max_retries = max_retries
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.timeout = timeout
        self.screener_timeout = screener_timeout
        self._sleep = sleep
        self._clock = clock

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_backoff * (2 ** attempt), self.max_backoff)

    async def _await_slot(self):
        """Wait out any active cooldown and the minimum spacing, then claim the next slot."""
        state = self.rate_limit
        while True:
            now = self._clock()
            start = max(now, state.cooldown_until, state.next_request_at)
            if start <= now:
                state.next_request_at = now + self.request_delay
                return
            await self._sleep(start - now)

    async def _get_json(self, path: str, params: Dict[str, Any], *, timeout: float, label: str) -> Any:
        url = f"{self.base_url}{path}"
        query = dict(params)
        query["apikey"] = self.api_key

        for attempt in range(self.max_retries):
            last_attempt = attempt >= self.max_retries - 1
            await self._await_slot()

            try:
                resp = await asyncio.to_thread(self.session.get, url, params=query, timeout=timeout)
            except TRANSIENT_EXCEPTIONS as e:
                reason = e.__class__.__name__
                if last_attempt:
                    raise _RequestFailed(reason)
                delay = self.backoff_delay(attempt)
                logger.info(f"  {reason} on {label}, waiting {delay:g}s (attempt {attempt + 1}/{self.max_retries})...")
                await self._sleep(delay)
                continue
            except requests.RequestException as e:
                raise _RequestFailed(str(e))

            status = resp.status_code
            if status == 429 or status >= 500:
                if last_attempt:
                    raise _RequestFailed(f"HTTP {status}")
                delay = self.backoff_delay(attempt)
                reason = "rate limited" if status == 429 else f"HTTP {status}"
                logger.info(f"  {reason} on {label}, waiting {delay:g}s (attempt {attempt + 1}/{self.max_retries})...")
                if status == 429:
                    # Hold back every other in-flight symbol as well
                    self.rate_limit.extend_cooldown(self._clock() + delay)
                await self._sleep(delay)
                continue

            if status >= 400:
                raise _RequestFailed(f"HTTP {status}")

            try:
                return resp.json()
            except ValueError:
                raise _RequestFailed("invalid JSON body")

        raise _RequestFailed("retries exhausted")

    async def fetch(self, kind: ResourceKind, symbol: str) -> Union[Any, FetchFailure]:
        """Fetch one resource for one symbol. Never raises for per-symbol faults."""
        kind = ResourceKind(kind)
        path, extra = ENDPOINTS[kind]
        params = {"symbol": symbol, **extra}

        try:
            data = await self._get_json(path, params, timeout=self.timeout, label=symbol)
        except _RequestFailed as e:
            logger.info(f"  Skipping {symbol} ({kind.value}): {e.reason}")
            return FetchFailure(symbol=symbol, kind=kind.value, reason=e.reason)

        if not isinstance(data, list) or not data:
            return FetchFailure(symbol=symbol, kind=kind.value, reason="no data")

        try:
            parsed = _PARSERS[kind](data)
        except (PayloadError, TypeError, KeyError) as e:
            logger.warning(f"  Malformed {kind.value} payload for {symbol}: {e}")
            return FetchFailure(symbol=symbol, kind=kind.value, reason="malformed payload")

        if isinstance(parsed, list) and not parsed:
            return FetchFailure(symbol=symbol, kind=kind.value, reason="no data")
        return parsed

    async def fetch_screener_symbols(
        self,
        min_market_cap: int = SCREENER_MIN_MARKET_CAP,
        page_limit: int = SCREENER_PAGE_LIMIT,
    ) -> List[str]:
        """
        Page through the company screener until a short page comes back.
        Raises ProviderError if a page cannot be fetched.
        """
        logger.info("Fetching global stock list from company-screener...")
        symbols: List[str] = []
        page = 0

        while True:
            params = {
                "marketCapMoreThan": min_market_cap,
                "isActivelyTrading": "true",
                "isEtf": "false",
                "isFund": "false",
                "limit": page_limit,
                "page": page,
            }
            try:
                data = await self._get_json(
                    "/company-screener", params, timeout=self.screener_timeout, label=f"screener page {page}"
                )
            except _RequestFailed as e:
                raise ProviderError(
                    f"Company screener failed on page {page}: {e.reason}",
                    {"page": page, "collected": len(symbols)},
                )

            if not isinstance(data, list) or not data:
                break

            page_symbols = [row.get("symbol") for row in data if isinstance(row, dict) and row.get("symbol")]
            symbols.extend(page_symbols)
            logger.info(f"  Page {page}: fetched {len(page_symbols)} symbols (total: {len(symbols)})")

            if len(data) < page_limit:
                break
            page += 1

        return symbols
