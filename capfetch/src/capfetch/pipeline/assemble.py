import datetime
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..models.company import CompanyRecord
from ..models.fmp import AnalystEstimate, FinancialGrowth, IncomeResult, Profile, Quote, RatiosTTM
from .currency import REPORTING_CURRENCY, CurrencyNormalizer
from .metrics import forward_metrics, growth_metrics, income_metrics, select_forward_estimate, ttm_eps

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY = "US"


class FetchBundle(BaseModel):
    """Per-symbol results of each batch stage, keyed by symbol."""

    quotes: Dict[str, Quote] = Field(default_factory=dict)
    profiles: Dict[str, Profile] = Field(default_factory=dict)
    income: Dict[str, IncomeResult] = Field(default_factory=dict)
    ratios: Dict[str, RatiosTTM] = Field(default_factory=dict)
    growth: Dict[str, FinancialGrowth] = Field(default_factory=dict)
    estimates: Dict[str, List[AnalystEstimate]] = Field(default_factory=dict)


def has_valid_quote(quote: Optional[Quote]) -> bool:
    return quote is not None and quote.market_cap is not None and quote.market_cap > 0


def reporting_currency(income: Optional[IncomeResult]) -> str:
    if income is None:
        return REPORTING_CURRENCY
    return (income.reported_currency or REPORTING_CURRENCY).upper()


def build_record(
    symbol: str,
    bundle: FetchBundle,
    normalizer: CurrencyNormalizer,
    *,
    as_of: datetime.date,
    timestamp: datetime.datetime,
) -> Optional[CompanyRecord]:
    """
    Join every stage's result for `symbol` into one record.
    Returns None without a quote carrying a positive market cap; any other
    missing resource only leaves its fields as None.
    """
    quote = bundle.quotes.get(symbol)
    if not has_valid_quote(quote):
        return None

    profile = bundle.profiles.get(symbol)
    income = bundle.income.get(symbol)
    ratio = bundle.ratios.get(symbol)

    currency = reporting_currency(income)

    def convert(amount: float) -> float:
        return normalizer.to_usd(amount, currency)

    inc = income_metrics(income.statements if income else [], convert)
    estimate = select_forward_estimate(bundle.estimates.get(symbol) or [], as_of)
    fwd = forward_metrics(estimate, quote.price, convert)
    growth = growth_metrics(bundle.growth.get(symbol))
    pe_ratio = ratio.pe_ratio if ratio else None

    return CompanyRecord(
        symbol=symbol,
        name=(profile.company_name if profile else None) or quote.name or symbol,
        country=(profile.country if profile else None) or quote.country or DEFAULT_COUNTRY,
        market_cap=quote.market_cap,
        price=quote.price,
        week_52_high=quote.year_high,
        daily_change_percent=quote.change_percentage,
        pe_ratio=pe_ratio,
        ttm_eps=ttm_eps(quote.price, pe_ratio),
        earnings=inc.earnings,
        revenue=inc.revenue,
        operating_margin=inc.operating_margin,
        dividend_percent=ratio.dividend_yield if ratio else None,
        forward_pe=fwd.forward_pe,
        forward_eps=fwd.forward_eps,
        forward_eps_date=fwd.forward_eps_date,
        revenue_growth_5y=growth.revenue_growth_5y,
        revenue_growth_3y=growth.revenue_growth_3y,
        eps_growth_5y=growth.eps_growth_5y,
        eps_growth_3y=growth.eps_growth_3y,
        last_updated=timestamp,
    )


def assign_ranks(records: Sequence[CompanyRecord]) -> List[CompanyRecord]:
    """
    Sort by market cap descending (missing counts as 0) and number 1..N.
    The sort is stable, so equal market caps keep their incoming order and
    re-ranking an unchanged, already ranked list is a no-op.
    """
    ranked = sorted(records, key=lambda r: r.market_cap or 0, reverse=True)
    for i, record in enumerate(ranked):
        record.rank = i + 1
    return ranked


def assemble(
    symbols: Sequence[str],
    bundle: FetchBundle,
    normalizer: CurrencyNormalizer,
    *,
    as_of: datetime.date,
    timestamp: datetime.datetime,
) -> List[CompanyRecord]:
    """Build and rank a record for every symbol with a valid quote."""
    logger.info("Building company data...")
    records = []
    for symbol in symbols:
        record = build_record(symbol, bundle, normalizer, as_of=as_of, timestamp=timestamp)
        if record is not None:
            records.append(record)
    return assign_ranks(records)
