import logging
import time
from collections import Counter
from typing import Any, Callable, Dict, Optional, Sequence

import pandas as pd

from ..models.company import CompanyRecord

logger = logging.getLogger(__name__)

# record attribute -> summary label
COVERAGE_FIELDS = {
    "earnings": "with_earnings",
    "revenue": "with_revenue",
    "pe_ratio": "with_pe_ratio",
    "dividend_percent": "with_dividend",
    "operating_margin": "with_margin",
    "forward_pe": "with_forward_pe",
    "revenue_growth_5y": "with_revenue_growth_5y",
    "revenue_growth_3y": "with_revenue_growth_3y",
    "eps_growth_5y": "with_eps_growth_5y",
    "eps_growth_3y": "with_eps_growth_3y",
}


def coverage_stats(records: Sequence[CompanyRecord]) -> Dict[str, int]:
    """Count how many records carry a value for each headline metric."""
    if not records:
        return {label: 0 for label in COVERAGE_FIELDS.values()}
    df = pd.DataFrame([r.model_dump() for r in records], columns=list(COVERAGE_FIELDS))
    counts = df.notna().sum()
    return {label: int(counts[field]) for field, label in COVERAGE_FIELDS.items()}


class RunSummary:
    """Per-stage success/failure counts and outcome of one run."""

    def __init__(self, mode: str, clock: Callable[[], float] = time.monotonic):
        self.mode = mode
        self.stages: Dict[str, Dict[str, int]] = {}
        self.counters: Counter = Counter()
        self.currency_misses: Dict[str, int] = {}
        self.coverage: Dict[str, int] = {}
        self.companies = 0
        self.error: Optional[str] = None
        self._clock = clock
        self._start = clock()

    def record_stage(self, name: str, attempted: int, succeeded: int, failed: int):
        self.stages[name] = {"attempted": attempted, "succeeded": succeeded, "failed": failed}

    def count(self, name: str, n: int = 1):
        self.counters[name] += n

    def record_companies(self, records: Sequence[CompanyRecord]):
        self.companies = len(records)
        self.coverage = coverage_stats(records)

    @property
    def duration_s(self) -> float:
        return self._clock() - self._start

    def as_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "companies": self.companies,
            "stages": self.stages,
            "counters": dict(self.counters),
            "currency_misses": self.currency_misses,
            "coverage": self.coverage,
            "duration_s": round(self.duration_s, 2),
            "error": self.error,
        }

    def log(self):
        logger.info("========================================")
        logger.info(f"  Summary ({self.mode})")
        logger.info("========================================")
        for name, stage in self.stages.items():
            logger.info(
                f"{name + ':':<22} {stage['succeeded']}/{stage['attempted']} ok, {stage['failed']} failed"
            )
        for name, n in sorted(self.counters.items()):
            logger.info(f"{name + ':':<22} {n}")
        if self.currency_misses:
            logger.warning(f"FX rate misses:        {self.currency_misses}")
        if self.companies:
            logger.info(f"Total companies:       {self.companies}")
            for label, n in self.coverage.items():
                pct = round(n / self.companies * 100)
                logger.info(f"{label + ':':<22} {n} ({pct}%)")
        if self.error:
            logger.error(f"Run failed: {self.error}")
        logger.info(f"Duration: {self.duration_s / 60:.1f} minutes")
