import logging
from datetime import datetime, timezone

import requests

from ..errors import ProviderError
from ..pipeline.currency import FXRateTable

logger = logging.getLogger(__name__)

FX_URL = "https://open.er-api.com/v6/latest/USD"
FX_TIMEOUT_S = 15


def fetch_fx_rates(session: requests.Session = None, url: str = FX_URL) -> FXRateTable:
    """
    Fetch USD exchange rates (units per 1 USD, e.g. JPY -> 155.14).
    Reference: https://www.exchangerate-api.com/docs/free
    """
    logger.info("Fetching FX rates...")
    http = session or requests
    try:
        resp = http.get(url, timeout=FX_TIMEOUT_S)
        resp.raise_for_status()
        data = resp.json()
    except requests.RequestException as e:
        logger.error(f"FX rate request failed: {e}")
        raise ProviderError(f"FX rate fetch failed: {e}")
    except ValueError as e:
        raise ProviderError(f"FX rate response was not JSON: {e}")

    rates = data.get("rates") if isinstance(data, dict) else None
    if not isinstance(rates, dict) or not rates:
        raise ProviderError("FX rate response contained no rates", {"url": url})

    table = FXRateTable(rates, fetched_at=datetime.now(timezone.utc))
    logger.info(f"  Got {len(table)} FX rates")
    return table
