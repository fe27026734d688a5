"""
Derived metrics: TTM sums, CAGR, forward P/E, TTM EPS.

Everything here is pure; currency conversion is passed in by the caller.
"""
import datetime
from typing import Callable, Iterable, List, NamedTuple, Optional, Sequence

from dateutil.relativedelta import relativedelta

from ..models.fmp import AnalystEstimate, FinancialGrowth, IncomeStatement

TTM_QUARTERS = 4
FORWARD_BUFFER = relativedelta(months=3)


class TTMTotals(NamedTuple):
    revenue: Optional[float]
    net_income: Optional[float]
    operating_income: Optional[float]


class IncomeMetrics(NamedTuple):
    revenue: Optional[float]
    earnings: Optional[float]
    operating_margin: Optional[float]


class GrowthMetrics(NamedTuple):
    revenue_growth_5y: Optional[float]
    revenue_growth_3y: Optional[float]
    eps_growth_5y: Optional[float]
    eps_growth_3y: Optional[float]


class ForwardMetrics(NamedTuple):
    forward_eps: Optional[float]
    forward_eps_date: Optional[str]
    forward_pe: Optional[float]


def _sum_reported(values: Iterable[Optional[float]]) -> Optional[float]:
    reported = [v for v in values if v is not None]
    return sum(reported) if reported else None


def ttm_totals(statements: Sequence[IncomeStatement]) -> Optional[TTMTotals]:
    """
    Sum the four most recent quarters. A line item no quarter reports is
    None; one reported by only some quarters sums over those.
    """
    if not statements:
        return None
    recent = sorted(
        statements,
        key=lambda s: s.date or datetime.date.min,
        reverse=True,
    )[:TTM_QUARTERS]
    return TTMTotals(
        revenue=_sum_reported(s.revenue for s in recent),
        net_income=_sum_reported(s.net_income for s in recent),
        operating_income=_sum_reported(s.operating_income for s in recent),
    )


def income_metrics(
    statements: Sequence[IncomeStatement],
    convert: Callable[[float], float],
) -> IncomeMetrics:
    """
    TTM revenue, earnings and operating margin.

    Non-positive TTM revenue is treated as unreliable: revenue and margin
    stay None. Net income is kept whatever its sign.
    The margin is taken before `convert` runs, from same-currency figures.
    """
    totals = ttm_totals(statements)
    if totals is None:
        return IncomeMetrics(None, None, None)

    revenue = None
    margin = None
    if totals.revenue is not None and totals.revenue > 0:
        if totals.operating_income is not None:
            margin = totals.operating_income / totals.revenue
        revenue = convert(totals.revenue)

    earnings = None
    if totals.net_income is not None:
        earnings = convert(totals.net_income)
    return IncomeMetrics(revenue=revenue, earnings=earnings, operating_margin=margin)


def total_growth_to_cagr(total_growth: float, years: int) -> float:
    """
    Annualise a total multi-year growth fraction: (1 + g)^(1/years) - 1.
    A decline of 100% or more has no real root and maps to exactly -1.
    """
    if total_growth <= -1:
        return -1.0
    return (1 + total_growth) ** (1 / years) - 1


def _cagr_or_none(total_growth: Optional[float], years: int) -> Optional[float]:
    if total_growth is None:
        return None
    return total_growth_to_cagr(total_growth, years)


def growth_metrics(growth: Optional[FinancialGrowth]) -> GrowthMetrics:
    if growth is None:
        return GrowthMetrics(None, None, None, None)
    return GrowthMetrics(
        revenue_growth_5y=_cagr_or_none(growth.five_y_revenue_growth, 5),
        revenue_growth_3y=_cagr_or_none(growth.three_y_revenue_growth, 3),
        eps_growth_5y=_cagr_or_none(growth.five_y_net_income_growth, 5),
        eps_growth_3y=_cagr_or_none(growth.three_y_net_income_growth, 3),
    )


def select_forward_estimate(
    estimates: Sequence[AnalystEstimate],
    as_of: datetime.date,
) -> Optional[AnalystEstimate]:
    """
    Earliest estimate whose fiscal year ends at least three months after
    `as_of`; an imminently closing year is not forward guidance.
    Falls back to the furthest-out estimate when none qualifies.
    """
    if not estimates:
        return None
    ordered: List[AnalystEstimate] = sorted(estimates, key=lambda e: e.date)
    threshold = as_of + FORWARD_BUFFER
    for estimate in ordered:
        if estimate.date >= threshold:
            return estimate
    return ordered[-1]


def forward_pe(price: Optional[float], forward_eps: Optional[float]) -> Optional[float]:
    if not price or forward_eps is None or forward_eps <= 0:
        return None
    return price / forward_eps


def forward_metrics(
    estimate: Optional[AnalystEstimate],
    price: Optional[float],
    convert: Callable[[float], float],
) -> ForwardMetrics:
    """Forward EPS (converted to USD), its fiscal-year date, and forward P/E."""
    if estimate is None or estimate.eps_avg is None or estimate.eps_avg <= 0:
        return ForwardMetrics(None, None, None)
    eps = convert(estimate.eps_avg)
    return ForwardMetrics(
        forward_eps=eps,
        forward_eps_date=estimate.date.isoformat(),
        forward_pe=forward_pe(price, eps),
    )


def ttm_eps(price: Optional[float], pe_ratio: Optional[float]) -> Optional[float]:
    """Diagnostic trailing EPS backed out of the source's trailing P/E."""
    if not price or pe_ratio is None or pe_ratio <= 0:
        return None
    return price / pe_ratio
