import logging
from collections import Counter
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

REPORTING_CURRENCY = "USD"


class FXRateTable:
    """
    Units of each currency per 1 USD, fetched once per run.
    Read-only: every conversion in a run sees the same rates.
    """

    def __init__(self, rates: Mapping[str, float], fetched_at: Optional[datetime] = None):
        self._rates = MappingProxyType({k.upper(): float(v) for k, v in rates.items() if v is not None})
        self.fetched_at = fetched_at

    def get(self, currency: str) -> Optional[float]:
        rate = self._rates.get(currency.upper())
        # A zero rate is as useless as a missing one
        return rate if rate else None

    def __contains__(self, currency: str) -> bool:
        return self.get(currency) is not None

    def __len__(self) -> int:
        return len(self._rates)


def to_usd(amount: float, currency: Optional[str], fx_rates: FXRateTable) -> float:
    """
    Convert `amount` from `currency` to USD.

    Fails open: a currency missing from the table is returned unconverted,
    with a warning.
    """
    code = (currency or REPORTING_CURRENCY).upper()
    if code == REPORTING_CURRENCY:
        return amount
    rate = fx_rates.get(code)
    if rate is None:
        logger.warning(f"No FX rate for {code}, treating amount as USD")
        return amount
    return amount / rate


class CurrencyNormalizer:
    """to_usd bound to one run's rate table, counting lookup misses for the run summary."""

    def __init__(self, fx_rates: FXRateTable):
        self.fx_rates = fx_rates
        self.misses = Counter()

    def to_usd(self, amount: float, currency: Optional[str]) -> float:
        code = (currency or REPORTING_CURRENCY).upper()
        if code != REPORTING_CURRENCY and code not in self.fx_rates:
            self.misses[code] += 1
        return to_usd(amount, code, self.fx_rates)

    @property
    def miss_count(self) -> int:
        return sum(self.misses.values())
