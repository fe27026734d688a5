import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class _FMPModel(BaseModel):
    """Raw FMP payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Quote(_FMPModel):
    symbol: str
    name: Optional[str] = None
    price: Optional[float] = None
    change_percentage: Optional[float] = Field(None, alias="changePercentage")
    market_cap: Optional[float] = Field(None, alias="marketCap")
    year_high: Optional[float] = Field(None, alias="yearHigh")
    country: Optional[str] = None


class Profile(_FMPModel):
    symbol: str
    company_name: Optional[str] = Field(None, alias="companyName")
    country: Optional[str] = None
    price: Optional[float] = None


class IncomeStatement(_FMPModel):
    """One quarterly income statement."""

    symbol: Optional[str] = None
    date: Optional[datetime.date] = None
    period: Optional[str] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = Field(None, alias="netIncome")
    operating_income: Optional[float] = Field(None, alias="operatingIncome")
    reported_currency: Optional[str] = Field(None, alias="reportedCurrency")


class IncomeResult(BaseModel):
    """Most recent quarterly statements plus the currency they are reported in."""

    statements: List[IncomeStatement] = Field(default_factory=list)
    reported_currency: str = "USD"


class RatiosTTM(_FMPModel):
    symbol: Optional[str] = None
    pe_ratio: Optional[float] = Field(None, alias="priceToEarningsRatioTTM")
    dividend_yield: Optional[float] = Field(None, alias="dividendYieldTTM")


class FinancialGrowth(_FMPModel):
    """Total (not annualised) multi-year growth, as fractions."""

    symbol: Optional[str] = None
    five_y_revenue_growth: Optional[float] = Field(None, alias="fiveYRevenueGrowthPerShare")
    five_y_net_income_growth: Optional[float] = Field(None, alias="fiveYNetIncomeGrowthPerShare")
    three_y_revenue_growth: Optional[float] = Field(None, alias="threeYRevenueGrowthPerShare")
    three_y_net_income_growth: Optional[float] = Field(None, alias="threeYNetIncomeGrowthPerShare")


class AnalystEstimate(_FMPModel):
    """Annual consensus estimate; `date` is the fiscal-year end."""

    symbol: Optional[str] = None
    date: datetime.date
    eps_avg: Optional[float] = Field(None, alias="epsAvg")


class FetchFailure(BaseModel):
    """Terminal per-symbol outcome: no usable data for this symbol and resource."""

    symbol: str
    kind: str
    reason: str
