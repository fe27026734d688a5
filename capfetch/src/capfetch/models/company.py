from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class CompanyRecord(BaseModel):
    """
    One ranked company. Monetary aggregates (earnings, revenue, forward EPS)
    are in USD; ratios and growth rates are unitless decimals.
    A field is None when the source had no data for it, never 0.
    """

    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    name: str
    country: Optional[str] = None
    rank: Optional[int] = None

    market_cap: Optional[float] = Field(None, alias="marketCap")
    price: Optional[float] = None
    week_52_high: Optional[float] = Field(None, alias="week52High")
    daily_change_percent: Optional[float] = Field(None, alias="dailyChangePercent")

    pe_ratio: Optional[float] = Field(None, alias="peRatio")
    ttm_eps: Optional[float] = Field(None, alias="ttmEPS")
    earnings: Optional[float] = None
    revenue: Optional[float] = None
    operating_margin: Optional[float] = Field(None, alias="operatingMargin")
    dividend_percent: Optional[float] = Field(None, alias="dividendPercent")

    forward_pe: Optional[float] = Field(None, alias="forwardPE")
    forward_eps: Optional[float] = Field(None, alias="forwardEPS")
    forward_eps_date: Optional[str] = Field(None, alias="forwardEPSDate")

    revenue_growth_5y: Optional[float] = Field(None, alias="revenueGrowth5Y")
    revenue_growth_3y: Optional[float] = Field(None, alias="revenueGrowth3Y")
    eps_growth_5y: Optional[float] = Field(None, alias="epsGrowth5Y")
    eps_growth_3y: Optional[float] = Field(None, alias="epsGrowth3Y")

    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")


class Snapshot(BaseModel):
    """A complete, timestamped output of the pipeline."""

    companies: List[CompanyRecord] = Field(default_factory=list)
    last_updated: datetime
    exported_at: Optional[datetime] = None

    def symbols(self) -> List[str]:
        return [c.symbol for c in self.companies]
