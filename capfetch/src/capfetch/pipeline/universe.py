import logging
from pathlib import Path
from typing import Iterable, List, Optional

import yaml

from ..errors import ProviderError, StructuralError, ValidationError
from ..models.company import Snapshot

logger = logging.getLogger(__name__)


def load_supplemental(path: str = "supplemental.yaml") -> List[str]:
    """
    Load the hand-maintained supplemental symbol list from YAML.
    Expected shape:
      supplemental:
        symbols: [TCEHY, XIACF]

    These are listings the screener omits but every per-symbol endpoint
    serves. A missing file means no supplemental symbols.
    """
    p = Path(path)
    if not p.exists():
        logger.warning(f"Supplemental symbol file not found: {path}")
        return []

    try:
        data = yaml.safe_load(p.read_text()) or {}
    except Exception as e:
        raise ValidationError(f"Invalid supplemental YAML: {e}")

    if "supplemental" not in data or not isinstance(data["supplemental"], dict):
        raise ValidationError("Supplemental file must contain a 'supplemental' object.")

    symbols = data["supplemental"].get("symbols") or []
    if not isinstance(symbols, list):
        raise ValidationError("'supplemental.symbols' must be a list.")

    norm = []
    for s in symbols:
        if not isinstance(s, str) or not s.strip():
            raise ValidationError("All supplemental symbols must be non-empty strings.")
        norm.append(s.strip().upper())

    return merge_universe(norm, [])


def merge_universe(primary: Iterable[str], supplemental: Iterable[str]) -> List[str]:
    """Ordered, de-duplicated union; `primary` wins and keeps its order."""
    seen = set()
    merged = []
    for symbol in list(primary) + list(supplemental):
        if symbol and symbol not in seen:
            seen.add(symbol)
            merged.append(symbol)
    return merged


def symbols_from_snapshot(snapshot: Optional[Snapshot]) -> List[str]:
    if snapshot is None:
        return []
    return merge_universe(snapshot.symbols(), [])


async def resolve_universe(
    client,
    supplemental: List[str],
    *,
    snapshot: Optional[Snapshot] = None,
) -> List[str]:
    """
    Screener symbols plus any supplemental symbols the screener did not return.

    If the screener yields nothing, the symbols of the current snapshot are
    used instead; with no snapshot either, the run cannot proceed.
    """
    try:
        screener = await client.fetch_screener_symbols()
    except ProviderError as e:
        logger.warning(f"Screener unavailable: {e.message}")
        screener = []

    primary = merge_universe(screener, [])
    if primary:
        logger.info(f"Found {len(primary)} global stocks from company-screener endpoint")
    else:
        primary = symbols_from_snapshot(snapshot)
        if not primary:
            raise StructuralError(
                "Symbol universe is empty: screener returned no symbols and no snapshot exists to fall back on."
            )
        logger.warning(f"Screener returned no symbols; falling back to {len(primary)} symbols from the current snapshot")

    universe = merge_universe(primary, supplemental)
    logger.info(f"Added {len(universe) - len(primary)} supplemental symbols (total: {len(universe)})")
    return universe
