import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..config import ScraperSettings, get_fmp_key
from ..errors import StructuralError, ValidationError
from ..export.blob import BlobUploader
from ..export.snapshot import SnapshotStore, publish
from ..models.company import Snapshot
from ..providers.fmp import FMPClient, ResourceKind
from ..providers.fx import fetch_fx_rates
from .assemble import FetchBundle, assemble, assign_ranks, has_valid_quote
from .batch import process_all
from .currency import CurrencyNormalizer, FXRateTable
from .summary import RunSummary
from .universe import resolve_universe
from .updates import HANDLERS, RERANK_CATEGORIES, UpdateCategory

logger = logging.getLogger(__name__)

FULL_MODE = "full"


def build_client(settings: ScraperSettings, **kwargs) -> FMPClient:
    """FMP client configured from settings. Fails fast without an API key."""
    api_key = get_fmp_key()
    if not api_key:
        raise ValidationError(
            "FMP_API_KEY is missing or invalid. "
            "Please add it to your .env file."
        )
    return FMPClient(
        api_key,
        request_delay=settings.request_delay_ms / 1000,
        max_retries=settings.max_retries,
        **kwargs,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scraper:
    """
    One scraper run: a full rebuild of the dataset, or a partial update of
    one category applied to the stored snapshot.
    """

    def __init__(
        self,
        client: FMPClient,
        store: SnapshotStore,
        *,
        supplemental: Sequence[str] = (),
        settings: Optional[ScraperSettings] = None,
        fx_loader: Callable[[], FXRateTable] = fetch_fx_rates,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.store = store
        self.supplemental = list(supplemental)
        self.settings = settings or ScraperSettings()
        self.fx_loader = fx_loader
        self._now = now
        self.timestamp = now()
        self.summary = RunSummary(FULL_MODE)
        self._normalizer: Optional[CurrencyNormalizer] = None

    @property
    def as_of(self):
        return self.timestamp.date()

    async def fetch_stage(self, kind: ResourceKind, symbols: Sequence[str], description: str) -> Dict:
        logger.info(f"Fetching {description.lower()} for {len(symbols)} stocks...")
        return await process_all(
            list(symbols),
            lambda symbol: self.client.fetch(kind, symbol),
            description=description,
            concurrency=self.settings.concurrency,
            progress_every=self.settings.progress_every,
            summary=self.summary,
        )

    async def load_normalizer(self) -> CurrencyNormalizer:
        """FX rates are fetched at most once per run; without them the run fails."""
        if self._normalizer is None:
            table = await asyncio.to_thread(self.fx_loader)
            self._normalizer = CurrencyNormalizer(table)
        return self._normalizer

    async def fetch_bundle(self, symbols: Sequence[str]) -> Tuple[List[str], FetchBundle]:
        """
        Run every per-symbol stage in order. Symbols without a quote carrying
        a positive market cap are dropped after the quote stage.
        """
        bundle = FetchBundle()
        bundle.quotes = await self.fetch_stage(ResourceKind.QUOTE, symbols, "Quotes")
        valid = [s for s in symbols if has_valid_quote(bundle.quotes.get(s))]
        logger.info(f"{len(valid)} stocks with valid market cap")

        bundle.profiles = await self.fetch_stage(ResourceKind.PROFILE, valid, "Profiles")
        bundle.income = await self.fetch_stage(ResourceKind.INCOME, valid, "Income statements")
        bundle.ratios = await self.fetch_stage(ResourceKind.RATIOS, valid, "Ratios TTM")
        bundle.growth = await self.fetch_stage(ResourceKind.GROWTH, valid, "Financial growth")
        bundle.estimates = await self.fetch_stage(ResourceKind.ESTIMATES, valid, "Analyst estimates")
        return valid, bundle

    def _load_existing(self) -> Optional[Snapshot]:
        try:
            return self.store.load()
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable snapshot: {e.message}")
            return None

    async def run_full(self) -> Snapshot:
        logger.info("Starting full scrape")
        symbols = await resolve_universe(self.client, self.supplemental, snapshot=self._load_existing())

        # Fail on FX before spending the run's request budget
        normalizer = await self.load_normalizer()
        valid, bundle = await self.fetch_bundle(symbols)

        records = assemble(valid, bundle, normalizer, as_of=self.as_of, timestamp=self.timestamp)
        self.summary.currency_misses = dict(normalizer.misses)
        if not records:
            raise StructuralError(
                "No companies survived merging; refusing to publish an empty dataset.",
                {"universe": len(symbols), "with_quotes": len(valid)},
            )
        self.summary.record_companies(records)
        return Snapshot(companies=records, last_updated=self.timestamp)

    async def run_update(self, category: Union[UpdateCategory, str]) -> Snapshot:
        category = UpdateCategory(category)
        logger.info(f"Starting partial update: {category.value}")

        existing = self.store.load()
        if existing is None:
            raise StructuralError(
                f"Partial update '{category.value}' needs an existing snapshot; run a full scrape first.",
                {"path": str(self.store.path)},
            )
        logger.info(f"Loaded {len(existing.companies)} existing companies")

        records = {c.symbol: c.model_copy(deep=True) for c in existing.companies}
        records = await HANDLERS[category](self, records)

        companies = list(records.values())
        for company in companies:
            company.last_updated = self.timestamp
        if category in RERANK_CATEGORIES:
            companies = assign_ranks(companies)

        if self._normalizer is not None:
            self.summary.currency_misses = dict(self._normalizer.misses)
        self.summary.record_companies(companies)
        return Snapshot(companies=companies, last_updated=self.timestamp)

    async def run(self, only: Optional[Union[UpdateCategory, str]] = None) -> Snapshot:
        self.summary = RunSummary(UpdateCategory(only).value if only else FULL_MODE)
        self.timestamp = self._now()
        self._normalizer = None
        try:
            if only:
                return await self.run_update(only)
            return await self.run_full()
        except Exception as e:
            self.summary.error = str(e)
            raise
        finally:
            self.summary.log()

    async def run_and_publish(
        self,
        only: Optional[Union[UpdateCategory, str]] = None,
        uploader: Optional[BlobUploader] = None,
    ) -> Tuple[Snapshot, Dict[str, Optional[str]]]:
        snapshot = await self.run(only)
        snapshot.exported_at = self._now()
        locations = publish(snapshot, self.store, uploader)
        return snapshot, locations
