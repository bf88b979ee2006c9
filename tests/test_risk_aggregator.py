"""Unit tests for aegis.services.risk_aggregator: cited financial exposure from finding summaries."""

import unittest

from aegis.schemas.evidence import FindingSummary
from aegis.schemas.risk import OrganizationProfile
from aegis.services.risk_aggregator import (
    DEFAULT_RISK_MODEL,
    INDUSTRY_MULTIPLIERS,
    SIZE_MULTIPLIERS,
    calculate_financial_impact,
    determine_size_category,
    format_financial_range,
    generate_financial_justification,
)


def _summary(finding_type: str, count: int = 1, severity: str = "HIGH") -> FindingSummary:
    return FindingSummary(type=finding_type, severity=severity, count=count)


def _healthcare() -> OrganizationProfile:
    return OrganizationProfile(industry="healthcare", employee_count=150)


class TestCalculateFinancialImpact(unittest.TestCase):
    """One exposed database at a 150-person healthcare organization."""

    def setUp(self) -> None:
        self.calc = calculate_financial_impact([_summary("exposed-database")], _healthcare())

    def test_impact_chain(self) -> None:
        self.assertAlmostEqual(self.calc.base_impact, 180000)
        self.assertEqual(self.calc.industry, "healthcare")
        self.assertEqual(self.calc.industry_multiplier, 1.9)
        self.assertEqual(self.calc.size_category, "mid-market")
        self.assertEqual(self.calc.size_multiplier, 1.2)
        self.assertAlmostEqual(self.calc.adjusted_impact, 410400, places=2)
        self.assertAlmostEqual(self.calc.total_likelihood, 0.225)
        self.assertAlmostEqual(self.calc.expected_value, 92340, places=2)

    def test_confidence_interval(self) -> None:
        low, high = self.calc.confidence_interval
        self.assertAlmostEqual(low, 64638, places=2)
        self.assertAlmostEqual(high, 120042, places=2)

    def test_citations_factor_then_industry_then_size(self) -> None:
        self.assertEqual(
            self.calc.citations,
            [
                DEFAULT_RISK_MODEL.factors["EXPOSED_DATABASE"].source,
                INDUSTRY_MULTIPLIERS["healthcare"].source,
                SIZE_MULTIPLIERS["mid-market"].source,
            ],
        )
        self.assertEqual(self.calc.risk_factors, ["EXPOSED_DATABASE"])

    def test_deterministic(self) -> None:
        again = calculate_financial_impact([_summary("exposed-database")], _healthcare())
        self.assertEqual(self.calc, again)


class TestAggregationRules(unittest.TestCase):
    def test_count_scales_base_and_likelihood(self) -> None:
        calc = calculate_financial_impact([_summary("typo-domain", count=3)], OrganizationProfile())
        self.assertAlmostEqual(calc.base_impact, 65000 * 3)
        self.assertAlmostEqual(calc.total_likelihood, 0.40 * 3 * 0.3)

    def test_likelihood_capped_at_one(self) -> None:
        calc = calculate_financial_impact([_summary("exposed-secret", count=10)], OrganizationProfile())
        self.assertEqual(calc.total_likelihood, 1.0)
        low, high = calc.confidence_interval
        self.assertAlmostEqual(low, calc.expected_value * 0.7)
        self.assertAlmostEqual(high, calc.expected_value * 1.3)

    def test_unmapped_types_carry_no_weight(self) -> None:
        calc = calculate_financial_impact(
            [_summary("tech-component", severity="INFO"), _summary("component-vulnerability")],
            OrganizationProfile(industry="retail"),
        )
        self.assertEqual(calc.base_impact, 0)
        self.assertEqual(calc.expected_value, 0)
        self.assertEqual(calc.risk_factors, [])
        self.assertEqual(len(calc.citations), 2)

    def test_shared_factor_cited_once(self) -> None:
        calc = calculate_financial_impact(
            [_summary("weak-tls"), _summary("tls-expiring", severity="MEDIUM")],
            OrganizationProfile(),
        )
        self.assertEqual(calc.risk_factors, ["WEAK_TLS_SSL"])
        self.assertEqual(calc.citations.count(DEFAULT_RISK_MODEL.factors["WEAK_TLS_SSL"].source), 1)
        self.assertAlmostEqual(calc.base_impact, 90000)

    def test_unknown_industry_falls_back_to_manufacturing(self) -> None:
        calc = calculate_financial_impact([_summary("exposed-database")], OrganizationProfile(industry="aerospace"))
        self.assertEqual(calc.industry, "manufacturing")
        self.assertEqual(calc.industry_multiplier, 1.0)

    def test_industry_is_case_insensitive(self) -> None:
        calc = calculate_financial_impact([_summary("exposed-database")], OrganizationProfile(industry=" Financial "))
        self.assertEqual(calc.industry, "financial")

    def test_custom_model(self) -> None:
        model = DEFAULT_RISK_MODEL.model_copy(update={"likelihood_dampening": 1.0, "confidence_band": 0.1})
        calc = calculate_financial_impact([_summary("exposed-database")], OrganizationProfile(), model)
        self.assertAlmostEqual(calc.total_likelihood, 0.75)
        low, high = calc.confidence_interval
        self.assertAlmostEqual(low, calc.expected_value * 0.9)
        self.assertAlmostEqual(high, calc.expected_value * 1.1)


class TestDetermineSizeCategory(unittest.TestCase):
    def test_employee_count_thresholds(self) -> None:
        self.assertEqual(determine_size_category(OrganizationProfile(employee_count=5000)), "enterprise")
        self.assertEqual(determine_size_category(OrganizationProfile(employee_count=1000)), "enterprise")
        self.assertEqual(determine_size_category(OrganizationProfile(employee_count=100)), "mid-market")
        self.assertEqual(determine_size_category(OrganizationProfile(employee_count=12)), "small-business")

    def test_employees_win_over_revenue(self) -> None:
        profile = OrganizationProfile(employee_count=20, estimated_revenue=500_000_000)
        self.assertEqual(determine_size_category(profile), "small-business")

    def test_revenue_thresholds(self) -> None:
        self.assertEqual(determine_size_category(OrganizationProfile(estimated_revenue=150_000_000)), "enterprise")
        self.assertEqual(determine_size_category(OrganizationProfile(estimated_revenue=20_000_000)), "mid-market")
        self.assertEqual(determine_size_category(OrganizationProfile(estimated_revenue=1_000_000)), "small-business")

    def test_default_without_data(self) -> None:
        self.assertEqual(determine_size_category(OrganizationProfile()), "mid-market")


class TestFormatting(unittest.TestCase):
    def test_thousands_range(self) -> None:
        calc = calculate_financial_impact([_summary("exposed-database")], _healthcare())
        self.assertEqual(format_financial_range(calc), "$65K - $120K")

    def test_millions_range(self) -> None:
        calc = calculate_financial_impact(
            [_summary("exposed-secret", count=4)],
            OrganizationProfile(industry="financial", employee_count=2000),
        )
        self.assertRegex(format_financial_range(calc), r"^\$\d+\.\dM - \$\d+\.\dM$")

    def test_zero_range(self) -> None:
        calc = calculate_financial_impact([], OrganizationProfile())
        self.assertEqual(format_financial_range(calc), "$0 - $0")

    def test_justification_lists_factors_and_numbered_sources(self) -> None:
        calc = calculate_financial_impact([_summary("exposed-database")], _healthcare())
        text = generate_financial_justification(calc)
        self.assertIn("Exposed Database Service", text)
        self.assertIn("$65K - $120K", text)
        self.assertIn("1. IBM Cost of Data Breach Report 2024, Database Exposure Analysis", text)
        self.assertIn("3. IBM 2024: Mid-market 1.2x SMB costs", text)
        self.assertIn("+/-30% variance", text)


if __name__ == "__main__":
    unittest.main()
