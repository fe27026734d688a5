"""
Explicit mapping between CompanyRecord and its serialized row.

The in-memory model uses camelCase names (the pydantic aliases); the
snapshot file uses flat snake_case columns. Keeping the mapping in one
table lets the wire schema move independently of the model.
"""
from typing import Any, Dict

from ..models.company import CompanyRecord, Snapshot

WIRE_SCHEMA_VERSION = 1

# in-memory name -> serialized column
WIRE_FIELDS: Dict[str, str] = {
    "symbol": "symbol",
    "name": "name",
    "rank": "rank",
    "marketCap": "market_cap",
    "price": "price",
    "week52High": "week_52_high",
    "dailyChangePercent": "daily_change_percent",
    "earnings": "earnings",
    "revenue": "revenue",
    "peRatio": "pe_ratio",
    "ttmEPS": "ttm_eps",
    "forwardPE": "forward_pe",
    "forwardEPS": "forward_eps",
    "forwardEPSDate": "forward_eps_date",
    "dividendPercent": "dividend_percent",
    "operatingMargin": "operating_margin",
    "revenueGrowth5Y": "revenue_growth_5y",
    "revenueGrowth3Y": "revenue_growth_3y",
    "epsGrowth5Y": "eps_growth_5y",
    "epsGrowth3Y": "eps_growth_3y",
    "country": "country",
    "lastUpdated": "last_updated",
}

FROM_WIRE: Dict[str, str] = {column: name for name, column in WIRE_FIELDS.items()}


def to_wire(record: CompanyRecord) -> Dict[str, Any]:
    data = record.model_dump(mode="json", by_alias=True)
    return {column: data.get(name) for name, column in WIRE_FIELDS.items()}


def from_wire(row: Dict[str, Any]) -> CompanyRecord:
    """Columns absent from older snapshots come back as None."""
    data = {FROM_WIRE[column]: value for column, value in row.items() if column in FROM_WIRE}
    return CompanyRecord.model_validate(data)


def snapshot_to_wire(snapshot: Snapshot) -> Dict[str, Any]:
    stamps = snapshot.model_dump(mode="json", include={"last_updated", "exported_at"})
    last_updated = stamps["last_updated"]
    exported_at = stamps["exported_at"] or last_updated
    return {
        "companies": [to_wire(c) for c in snapshot.companies],
        "lastUpdated": last_updated,
        "exportedAt": exported_at,
    }


def snapshot_from_wire(data: Dict[str, Any]) -> Snapshot:
    return Snapshot(
        companies=[from_wire(row) for row in data.get("companies") or []],
        last_updated=data.get("lastUpdated") or data.get("exportedAt"),
        exported_at=data.get("exportedAt"),
    )
