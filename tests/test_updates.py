import datetime
import json
import tempfile
import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "capfetch" / "src"
sys.path.insert(0, str(SRC))

from capfetch.config import ScraperSettings
from capfetch.errors import ProviderError, StructuralError
from capfetch.export.snapshot import SnapshotStore
from capfetch.models.company import CompanyRecord, Snapshot
from capfetch.models.fmp import (
    AnalystEstimate,
    FetchFailure,
    FinancialGrowth,
    IncomeResult,
    IncomeStatement,
    Profile,
    Quote,
    RatiosTTM,
)
from capfetch.pipeline.currency import FXRateTable
from capfetch.pipeline.runner import Scraper
from capfetch.pipeline.updates import HANDLERS, RERANK_CATEGORIES, UpdateCategory
from capfetch.providers.fmp import ResourceKind

OLD_STAMP = datetime.datetime(2025, 1, 1, 6, 0, tzinfo=datetime.timezone.utc)
NEW_STAMP = datetime.datetime(2025, 1, 15, 6, 0, tzinfo=datetime.timezone.utc)

Q = ResourceKind.QUOTE
P = ResourceKind.PROFILE
I = ResourceKind.INCOME
R = ResourceKind.RATIOS
G = ResourceKind.GROWTH
E = ResourceKind.ESTIMATES


class FakeClient:
    """Serves canned resources; anything not configured is a 'no data' failure."""

    def __init__(self, data, screener=()):
        self.data = data
        self.screener = list(screener)
        self.calls = []

    async def fetch(self, kind, symbol):
        kind = ResourceKind(kind)
        self.calls.append((kind, symbol))
        value = self.data.get((kind, symbol))
        if value is None:
            return FetchFailure(symbol=symbol, kind=kind.value, reason="no data")
        return value

    async def fetch_screener_symbols(self):
        return list(self.screener)

    def symbols_fetched(self, kind):
        return [s for k, s in self.calls if k == kind]


def _income(currency, revenue, net_income, operating_income):
    statements = [
        IncomeStatement(
            date=datetime.date(2024, 12, 31) - datetime.timedelta(days=91 * i),
            revenue=revenue / 4,
            netIncome=net_income / 4,
            operatingIncome=operating_income / 4,
            reportedCurrency=currency,
        )
        for i in range(4)
    ]
    return IncomeResult(statements=statements, reported_currency=currency)


def _existing(symbol, rank, market_cap, **fields):
    return CompanyRecord(
        symbol=symbol,
        name=f"{symbol} Corp",
        country="US",
        rank=rank,
        marketCap=market_cap,
        price=100.0,
        lastUpdated=OLD_STAMP,
        **fields,
    )


class ScraperTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.store = SnapshotStore(str(Path(self._tmp.name) / "companies.json"))
        self.fx_calls = 0

    def _fx(self):
        self.fx_calls += 1
        return FXRateTable({"USD": 1.0, "EUR": 0.92})

    def _scraper(self, client, supplemental=()):
        return Scraper(
            client,
            self.store,
            supplemental=supplemental,
            settings=ScraperSettings(concurrency=2),
            fx_loader=self._fx,
            now=lambda: NEW_STAMP,
        )

    def _seed(self, *records):
        self.store.write(Snapshot(companies=list(records), last_updated=OLD_STAMP))


class TestFullRun(ScraperTestCase):
    def _client(self):
        return FakeClient(
            {
                (Q, "AAA"): Quote(symbol="AAA", name="Alpha", price=100.0, marketCap=3e12, yearHigh=110.0),
                (Q, "BBB"): Quote(symbol="BBB", name="Beta", price=50.0, marketCap=5e11),
                (Q, "DDD"): Quote(symbol="DDD", name="Delta", price=1.0, marketCap=0),
                (P, "AAA"): Profile(symbol="AAA", companyName="Alpha Inc.", country="US"),
                (P, "BBB"): Profile(symbol="BBB", companyName="Beta SE", country="DE"),
                (I, "AAA"): _income("USD", 400e9, 100e9, 120e9),
                (I, "BBB"): _income("EUR", 92e9, 9.2e9, 18.4e9),
                (R, "AAA"): RatiosTTM(priceToEarningsRatioTTM=30.0, dividendYieldTTM=0.005),
                (G, "BBB"): FinancialGrowth(fiveYRevenueGrowthPerShare=0.61051),
                (E, "AAA"): [AnalystEstimate(date=datetime.date(2025, 12, 31), epsAvg=4.0)],
            },
            screener=["AAA", "BBB", "DDD"],
        )

    async def test_full_run(self):
        client = self._client()
        scraper = self._scraper(client, supplemental=["EEE", "AAA"])

        snapshot = await scraper.run()

        self.assertEqual(snapshot.symbols(), ["AAA", "BBB"])
        self.assertEqual([c.rank for c in snapshot.companies], [1, 2])
        self.assertEqual(snapshot.last_updated, NEW_STAMP)
        self.assertEqual(client.symbols_fetched(Q), ["AAA", "BBB", "DDD", "EEE"])
        # Only symbols with a usable quote go further
        self.assertEqual(client.symbols_fetched(P), ["AAA", "BBB"])
        self.assertEqual(client.symbols_fetched(E), ["AAA", "BBB"])

        bbb = snapshot.companies[1]
        self.assertAlmostEqual(bbb.revenue, 100e9)
        self.assertAlmostEqual(bbb.revenue_growth_5y, 0.10, places=6)
        self.assertIsNone(bbb.pe_ratio)

        self.assertEqual(scraper.summary.stages["Quotes"], {"attempted": 4, "succeeded": 3, "failed": 1})
        self.assertEqual(scraper.summary.companies, 2)
        self.assertEqual(scraper.summary.coverage["with_pe_ratio"], 1)
        self.assertEqual(self.fx_calls, 1)

    async def test_zero_companies_is_structural(self):
        client = FakeClient({}, screener=["AAA"])
        scraper = self._scraper(client)

        with self.assertRaises(StructuralError):
            await scraper.run()
        self.assertIsNotNone(scraper.summary.error)

    async def test_fx_failure_aborts_run(self):
        def broken_fx():
            raise ProviderError("FX rate fetch failed")

        scraper = Scraper(self._client(), self.store, fx_loader=broken_fx, now=lambda: NEW_STAMP)
        with self.assertRaises(ProviderError):
            await scraper.run()

    async def test_run_and_publish_writes_snapshot(self):
        scraper = self._scraper(self._client())
        snapshot, locations = await scraper.run_and_publish()

        self.assertEqual(locations["file"], str(self.store.path))
        self.assertIsNone(locations["blob"])
        payload = json.loads(self.store.path.read_text())
        self.assertEqual([c["symbol"] for c in payload["companies"]], ["AAA", "BBB"])
        self.assertEqual(self.store.load().companies[0].rank, 1)

    async def test_failed_run_keeps_previous_snapshot(self):
        self._seed(_existing("OLD", 1, 1e9))
        before = self.store.path.read_text()
        scraper = self._scraper(FakeClient({}, screener=["AAA"]))

        with self.assertRaises(StructuralError):
            await scraper.run_and_publish()
        self.assertEqual(self.store.path.read_text(), before)


class TestPartialUpdates(ScraperTestCase):
    def test_every_category_has_a_handler(self):
        self.assertEqual(set(HANDLERS), set(UpdateCategory))
        self.assertEqual(RERANK_CATEGORIES, {UpdateCategory.QUOTES, UpdateCategory.NEW_SYMBOLS})

    async def test_update_needs_existing_snapshot(self):
        scraper = self._scraper(FakeClient({}))
        with self.assertRaises(StructuralError):
            await scraper.run("quotes")

    async def test_quotes_rerank(self):
        self._seed(_existing("AAA", 1, 2e9), _existing("BBB", 2, 1e9))
        client = FakeClient({
            (Q, "BBB"): Quote(symbol="BBB", price=120.0, marketCap=5e9, yearHigh=130.0, changePercentage=20.0),
        })

        snapshot = await self._scraper(client).run(UpdateCategory.QUOTES)

        self.assertEqual(snapshot.symbols(), ["BBB", "AAA"])
        bbb, aaa = snapshot.companies
        self.assertEqual((bbb.rank, aaa.rank), (1, 2))
        self.assertEqual(bbb.price, 120.0)
        self.assertEqual(bbb.daily_change_percent, 20.0)
        # No fresh quote: previous values stay
        self.assertEqual(aaa.market_cap, 2e9)

    async def test_growth_does_not_rerank(self):
        # Stored order deliberately disagrees with market cap
        self._seed(_existing("AAA", 1, 1e9), _existing("BBB", 2, 9e9, revenueGrowth5Y=0.2))
        client = FakeClient({
            (G, "AAA"): FinancialGrowth(threeYNetIncomeGrowthPerShare=0.331),
        })

        snapshot = await self._scraper(client).run("growth")

        self.assertEqual([(c.symbol, c.rank) for c in snapshot.companies], [("AAA", 1), ("BBB", 2)])
        self.assertAlmostEqual(snapshot.companies[0].eps_growth_3y, 0.10, places=6)
        self.assertEqual(snapshot.companies[1].revenue_growth_5y, 0.2)
        self.assertEqual(client.symbols_fetched(Q), [])

    async def test_currency_fix_skips_usd_reporters(self):
        usd = _existing("EEE", 1, 2e12, revenue=1e9, earnings=2e8, operatingMargin=0.1)
        eur = _existing("BBB", 2, 1e12, revenue=92e9, earnings=9.2e9, operatingMargin=0.2)
        self._seed(usd, eur)
        client = FakeClient({
            (I, "EEE"): _income("USD", 4e9, 1e9, 1e9),
            (I, "BBB"): _income("EUR", 92e9, 9.2e9, 18.4e9),
            (E, "BBB"): [AnalystEstimate(date=datetime.date(2025, 12, 31), epsAvg=4.6)],
        })
        scraper = self._scraper(client)

        snapshot = await scraper.run(UpdateCategory.CURRENCY_FIX)

        eee, bbb = snapshot.companies
        self.assertEqual(
            eee.model_dump(exclude={"last_updated"}),
            usd.model_dump(exclude={"last_updated"}),
        )
        self.assertAlmostEqual(bbb.revenue, 100e9)
        self.assertAlmostEqual(bbb.earnings, 10e9)
        self.assertAlmostEqual(bbb.forward_eps, 5.0)
        self.assertAlmostEqual(bbb.forward_pe, 20.0)
        self.assertEqual(scraper.summary.counters["skipped"], 1)
        self.assertEqual(scraper.summary.counters["updated"], 1)

    async def test_new_symbols_run_full_pipeline(self):
        self._seed(_existing("AAA", 1, 2e12))
        client = FakeClient({
            (Q, "NEW"): Quote(symbol="NEW", name="Newco", price=10.0, marketCap=4e12),
            (P, "NEW"): Profile(symbol="NEW", companyName="Newco Holdings", country="CN"),
            (R, "NEW"): RatiosTTM(priceToEarningsRatioTTM=20.0),
        })
        scraper = self._scraper(client, supplemental=["AAA", "NEW", "GONE"])

        snapshot = await scraper.run(UpdateCategory.NEW_SYMBOLS)

        self.assertEqual([(c.symbol, c.rank) for c in snapshot.companies], [("NEW", 1), ("AAA", 2)])
        self.assertEqual(snapshot.companies[0].country, "CN")
        self.assertEqual(snapshot.companies[0].pe_ratio, 20.0)
        self.assertEqual(client.symbols_fetched(Q), ["NEW", "GONE"])
        self.assertEqual(scraper.summary.counters["added"], 1)

    async def test_every_record_restamped(self):
        self._seed(_existing("AAA", 1, 2e9), _existing("BBB", 2, 1e9))
        snapshot = await self._scraper(FakeClient({})).run(UpdateCategory.WEEK_52_HIGH)

        self.assertEqual(snapshot.last_updated, NEW_STAMP)
        self.assertTrue(all(c.last_updated == NEW_STAMP for c in snapshot.companies))

    async def test_pe_ratio_update(self):
        self._seed(_existing("AAA", 1, 2e9, peRatio=10.0))
        client = FakeClient({(R, "AAA"): RatiosTTM(priceToEarningsRatioTTM=25.0)})

        snapshot = await self._scraper(client).run("pe_ratio")

        self.assertEqual(snapshot.companies[0].pe_ratio, 25.0)
        self.assertEqual(snapshot.companies[0].ttm_eps, 4.0)


if __name__ == "__main__":
    unittest.main()
