import datetime
import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "capfetch" / "src"
sys.path.insert(0, str(SRC))

from capfetch.models.fmp import AnalystEstimate, FinancialGrowth, IncomeStatement
from capfetch.pipeline import metrics


def _quarter(day, revenue, net_income, operating_income):
    return IncomeStatement(
        date=day,
        revenue=revenue,
        netIncome=net_income,
        operatingIncome=operating_income,
    )


def _identity(amount):
    return amount


class TestCagr(unittest.TestCase):
    def test_total_growth_annualises(self):
        # 61.05% over 5 years is 10% a year
        self.assertAlmostEqual(metrics.total_growth_to_cagr(0.61051, 5), 0.10, places=6)

    def test_cagr_compounds_back_to_total(self):
        for g, n in [(0.5, 3), (1.2, 5), (-0.3, 3), (0.0, 5)]:
            cagr = metrics.total_growth_to_cagr(g, n)
            self.assertAlmostEqual((1 + cagr) ** n - 1, g, places=9)

    def test_total_wipeout_is_minus_one(self):
        self.assertEqual(metrics.total_growth_to_cagr(-1.0, 5), -1.0)
        self.assertEqual(metrics.total_growth_to_cagr(-1.5, 3), -1.0)

    def test_growth_metrics_keeps_missing_values_none(self):
        growth = FinancialGrowth(fiveYRevenueGrowthPerShare=0.61051, threeYNetIncomeGrowthPerShare=None)
        result = metrics.growth_metrics(growth)
        self.assertAlmostEqual(result.revenue_growth_5y, 0.10, places=6)
        self.assertIsNone(result.eps_growth_3y)
        self.assertIsNone(result.revenue_growth_3y)

    def test_growth_metrics_without_data(self):
        self.assertEqual(metrics.growth_metrics(None), (None, None, None, None))


class TestIncomeMetrics(unittest.TestCase):
    def test_ttm_sums_four_most_recent_quarters(self):
        statements = [
            _quarter(datetime.date(2024, 3, 31), 100, 10, 20),
            _quarter(datetime.date(2024, 12, 31), 100, 10, 20),
            _quarter(datetime.date(2023, 12, 31), 9999, 9999, 9999),
            _quarter(datetime.date(2024, 6, 30), 100, 10, 20),
            _quarter(datetime.date(2024, 9, 30), 100, 10, 20),
        ]
        totals = metrics.ttm_totals(statements)
        self.assertEqual(totals.revenue, 400)
        self.assertEqual(totals.net_income, 40)
        self.assertEqual(totals.operating_income, 80)

    def test_margin_taken_before_conversion(self):
        statements = [_quarter(datetime.date(2024, 3, 31), 1000, 100, 250)]
        result = metrics.income_metrics(statements, lambda amount: amount / 2)
        self.assertEqual(result.revenue, 500)
        self.assertEqual(result.earnings, 50)
        self.assertAlmostEqual(result.operating_margin, 0.25)

    def test_non_positive_revenue_leaves_revenue_and_margin_empty(self):
        statements = [_quarter(datetime.date(2024, 3, 31), 0, -50, -10)]
        result = metrics.income_metrics(statements, _identity)
        self.assertIsNone(result.revenue)
        self.assertIsNone(result.operating_margin)
        self.assertEqual(result.earnings, -50)

    def test_zero_net_income_is_recorded(self):
        statements = [_quarter(datetime.date(2024, 3, 31), 100, 0, 10)]
        self.assertEqual(metrics.income_metrics(statements, _identity).earnings, 0)

    def test_unreported_net_income_is_unknown(self):
        statements = [
            IncomeStatement(date=datetime.date(2024, 3, 31) + datetime.timedelta(days=91 * i), revenue=100.0)
            for i in range(3)
        ]
        result = metrics.income_metrics(statements, _identity)
        self.assertEqual(result.revenue, 300.0)
        self.assertIsNone(result.earnings)
        self.assertIsNone(result.operating_margin)

    def test_partially_reported_line_item_sums_what_is_there(self):
        statements = [
            _quarter(datetime.date(2024, 3, 31), 100, 10, None),
            _quarter(datetime.date(2024, 6, 30), 100, None, 30),
        ]
        totals = metrics.ttm_totals(statements)
        self.assertEqual(totals.net_income, 10)
        self.assertEqual(totals.operating_income, 30)
        self.assertAlmostEqual(metrics.income_metrics(statements, _identity).operating_margin, 0.15)

    def test_no_statements(self):
        self.assertEqual(metrics.income_metrics([], _identity), (None, None, None))


class TestForwardEstimate(unittest.TestCase):
    def setUp(self):
        self.estimates = [
            AnalystEstimate(date=datetime.date(2026, 12, 31), epsAvg=6.0),
            AnalystEstimate(date=datetime.date(2025, 12, 31), epsAvg=5.0),
            AnalystEstimate(date=datetime.date(2024, 12, 31), epsAvg=4.0),
        ]

    def test_skips_fiscal_year_closing_within_three_months(self):
        chosen = metrics.select_forward_estimate(self.estimates, datetime.date(2024, 11, 1))
        self.assertEqual(chosen.date, datetime.date(2025, 12, 31))

    def test_year_closing_after_buffer_is_forward(self):
        chosen = metrics.select_forward_estimate(self.estimates, datetime.date(2024, 9, 30))
        self.assertEqual(chosen.date, datetime.date(2024, 12, 31))

    def test_falls_back_to_furthest_out(self):
        chosen = metrics.select_forward_estimate(self.estimates, datetime.date(2027, 6, 1))
        self.assertEqual(chosen.date, datetime.date(2026, 12, 31))

    def test_no_estimates(self):
        self.assertIsNone(metrics.select_forward_estimate([], datetime.date(2024, 1, 1)))

    def test_forward_metrics(self):
        estimate = AnalystEstimate(date=datetime.date(2025, 12, 31), epsAvg=5.0)
        result = metrics.forward_metrics(estimate, 100.0, _identity)
        self.assertEqual(result.forward_eps, 5.0)
        self.assertEqual(result.forward_eps_date, "2025-12-31")
        self.assertEqual(result.forward_pe, 20.0)

    def test_forward_pe_needs_positive_eps(self):
        self.assertIsNone(metrics.forward_pe(100.0, 0))
        self.assertIsNone(metrics.forward_pe(100.0, -2.0))
        self.assertIsNone(metrics.forward_pe(None, 5.0))
        estimate = AnalystEstimate(date=datetime.date(2025, 12, 31), epsAvg=-1.0)
        self.assertEqual(metrics.forward_metrics(estimate, 100.0, _identity), (None, None, None))

    def test_ttm_eps(self):
        self.assertEqual(metrics.ttm_eps(100.0, 25.0), 4.0)
        self.assertIsNone(metrics.ttm_eps(100.0, 0))
        self.assertIsNone(metrics.ttm_eps(100.0, None))


if __name__ == "__main__":
    unittest.main()
