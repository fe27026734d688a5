"""
Partial updates: refresh the fields one category owns on an existing
snapshot instead of re-fetching everything.

Each handler receives the running scraper (for fetching) and the current
records keyed by symbol, mutates only its own fields, and returns the
records. Symbols missing from a fetch keep their previous values; no
record is ever removed.
"""
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict

from ..models.company import CompanyRecord
from ..providers.fmp import ResourceKind
from .assemble import build_record, has_valid_quote, reporting_currency
from .currency import REPORTING_CURRENCY
from .metrics import forward_metrics, growth_metrics, income_metrics, select_forward_estimate, ttm_eps

logger = logging.getLogger(__name__)

Records = Dict[str, CompanyRecord]


class UpdateCategory(str, Enum):
    QUOTES = "quotes"
    WEEK_52_HIGH = "week_52_high"
    PE_RATIO = "pe_ratio"
    FINANCIALS = "financials"
    GROWTH = "growth"
    FORWARD_PE = "forward_pe"
    CURRENCY_FIX = "currency_fix"
    NEW_SYMBOLS = "new_symbols"


# Categories that can move market cap, and so the ranking
RERANK_CATEGORIES = frozenset({UpdateCategory.QUOTES, UpdateCategory.NEW_SYMBOLS})


def _apply_income(company: CompanyRecord, income, normalizer) -> None:
    currency = reporting_currency(income)
    inc = income_metrics(income.statements, lambda amount: normalizer.to_usd(amount, currency))
    if inc.revenue is not None:
        company.revenue = inc.revenue
        company.operating_margin = inc.operating_margin
    if inc.earnings is not None:
        company.earnings = inc.earnings


def _apply_forward(company: CompanyRecord, estimates, currency: str, normalizer, as_of) -> bool:
    estimate = select_forward_estimate(estimates or [], as_of)
    fwd = forward_metrics(estimate, company.price, lambda amount: normalizer.to_usd(amount, currency))
    if fwd.forward_eps is None:
        return False
    company.forward_eps = fwd.forward_eps
    company.forward_eps_date = fwd.forward_eps_date
    if fwd.forward_pe is not None:
        company.forward_pe = fwd.forward_pe
    return True


async def update_quotes(scraper, records: Records) -> Records:
    quotes = await scraper.fetch_stage(ResourceKind.QUOTE, list(records), "Quotes")
    updated = skipped = 0
    for symbol, company in records.items():
        quote = quotes.get(symbol)
        if quote is None:
            continue
        if not has_valid_quote(quote):
            skipped += 1
            continue
        company.price = quote.price
        company.market_cap = quote.market_cap
        if quote.year_high is not None:
            company.week_52_high = quote.year_high
        company.daily_change_percent = quote.change_percentage
        updated += 1
    scraper.summary.count("updated", updated)
    scraper.summary.count("skipped", skipped)
    logger.info(f"Updated quotes for {updated} companies")
    return records


async def update_week_52_high(scraper, records: Records) -> Records:
    quotes = await scraper.fetch_stage(ResourceKind.QUOTE, list(records), "Quotes")
    updated = 0
    for symbol, company in records.items():
        quote = quotes.get(symbol)
        if quote is not None and quote.year_high is not None:
            company.week_52_high = quote.year_high
            updated += 1
    scraper.summary.count("updated", updated)
    logger.info(f"Updated week_52_high for {updated} companies")
    return records


async def update_pe_ratio(scraper, records: Records) -> Records:
    ratios = await scraper.fetch_stage(ResourceKind.RATIOS, list(records), "Ratios TTM")
    updated = 0
    for symbol, company in records.items():
        ratio = ratios.get(symbol)
        if ratio is None or ratio.pe_ratio is None or ratio.pe_ratio <= 0:
            continue
        company.pe_ratio = ratio.pe_ratio
        company.ttm_eps = ttm_eps(company.price, ratio.pe_ratio)
        updated += 1
    scraper.summary.count("updated", updated)
    logger.info(f"Updated pe_ratio for {updated} companies")
    return records


async def update_financials(scraper, records: Records) -> Records:
    normalizer = await scraper.load_normalizer()
    symbols = list(records)
    income = await scraper.fetch_stage(ResourceKind.INCOME, symbols, "Income statements")
    ratios = await scraper.fetch_stage(ResourceKind.RATIOS, symbols, "Ratios TTM")

    updated = 0
    for symbol, company in records.items():
        result = income.get(symbol)
        if result is not None and result.statements:
            _apply_income(company, result, normalizer)
            updated += 1

        ratio = ratios.get(symbol)
        if ratio is not None:
            if ratio.pe_ratio is not None:
                company.pe_ratio = ratio.pe_ratio
            if ratio.dividend_yield is not None:
                company.dividend_percent = ratio.dividend_yield
            derived = ttm_eps(company.price, ratio.pe_ratio)
            if derived is not None:
                company.ttm_eps = derived
    scraper.summary.count("updated", updated)
    logger.info(f"Updated financials for {updated} companies")
    return records


async def update_growth(scraper, records: Records) -> Records:
    growth = await scraper.fetch_stage(ResourceKind.GROWTH, list(records), "Financial growth")
    updated = 0
    for symbol, company in records.items():
        data = growth.get(symbol)
        if data is None:
            continue
        metrics = growth_metrics(data)
        for field, value in metrics._asdict().items():
            if value is not None:
                setattr(company, field, value)
        updated += 1
    scraper.summary.count("updated", updated)
    logger.info(f"Updated growth data for {updated} companies")
    return records


async def update_forward_pe(scraper, records: Records) -> Records:
    normalizer = await scraper.load_normalizer()
    symbols = list(records)
    # Income statements are fetched only to learn each reporting currency
    income = await scraper.fetch_stage(ResourceKind.INCOME, symbols, "Income statements")
    estimates = await scraper.fetch_stage(ResourceKind.ESTIMATES, symbols, "Analyst estimates")

    updated = 0
    for symbol, company in records.items():
        currency = reporting_currency(income.get(symbol))
        if _apply_forward(company, estimates.get(symbol), currency, normalizer, scraper.as_of):
            updated += 1
    scraper.summary.count("updated", updated)
    logger.info(f"Updated forward_pe for {updated} companies")
    return records


async def update_currency_fix(scraper, records: Records) -> Records:
    """Re-derive USD figures for non-USD reporters; USD reporters are left untouched."""
    normalizer = await scraper.load_normalizer()
    symbols = list(records)
    income = await scraper.fetch_stage(ResourceKind.INCOME, symbols, "Income statements")
    estimates = await scraper.fetch_stage(ResourceKind.ESTIMATES, symbols, "Analyst estimates")

    updated = skipped = 0
    for symbol, company in records.items():
        result = income.get(symbol)
        if result is None:
            continue
        currency = reporting_currency(result)
        if currency == REPORTING_CURRENCY:
            skipped += 1
            continue
        if result.statements:
            _apply_income(company, result, normalizer)
        _apply_forward(company, estimates.get(symbol), currency, normalizer, scraper.as_of)
        updated += 1
    scraper.summary.count("updated", updated)
    scraper.summary.count("skipped", skipped)
    logger.info(f"Fixed currency for {updated} non-USD companies (skipped {skipped} USD companies)")
    return records


async def update_new_symbols(scraper, records: Records) -> Records:
    """Run the full per-symbol pipeline for supplemental symbols not yet in the snapshot."""
    new_symbols = [s for s in scraper.supplemental if s not in records]
    if not new_symbols:
        logger.info("All supplemental symbols already present in dataset. Nothing to do.")
        scraper.summary.count("added", 0)
        return records

    preview = ", ".join(new_symbols[:10]) + ("..." if len(new_symbols) > 10 else "")
    logger.info(f"Found {len(new_symbols)} new symbols to fetch: {preview}")

    normalizer = await scraper.load_normalizer()
    valid, bundle = await scraper.fetch_bundle(new_symbols)

    added = 0
    for symbol in valid:
        record = build_record(symbol, bundle, normalizer, as_of=scraper.as_of, timestamp=scraper.timestamp)
        if record is None:
            continue
        # Ranked together with everything else once the handler returns
        record.rank = None
        records[symbol] = record
        added += 1
    scraper.summary.count("added", added)
    logger.info(f"Added {added} new companies")
    return records


Handler = Callable[[object, Records], Awaitable[Records]]

HANDLERS: Dict[UpdateCategory, Handler] = {
    UpdateCategory.QUOTES: update_quotes,
    UpdateCategory.WEEK_52_HIGH: update_week_52_high,
    UpdateCategory.PE_RATIO: update_pe_ratio,
    UpdateCategory.FINANCIALS: update_financials,
    UpdateCategory.GROWTH: update_growth,
    UpdateCategory.FORWARD_PE: update_forward_pe,
    UpdateCategory.CURRENCY_FIX: update_currency_fix,
    UpdateCategory.NEW_SYMBOLS: update_new_symbols,
}

_unhandled = set(UpdateCategory) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"No update handler for: {sorted(c.value for c in _unhandled)}")
