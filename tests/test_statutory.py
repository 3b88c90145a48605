from decimal import Decimal

from schoolfin.core.config import TaxBand
from schoolfin.tax.statutory import (
    StatutoryCalculator, health_levy, housing_levy, income_tax, pension_contribution,
)


def test_deductions_on_55000(calculator):
    lines = calculator.deductions(Decimal("55000"))
    assert [(l.name, l.amount) for l in lines] == [
        ("PAYE", Decimal("8883.33")),
        ("NSSF", Decimal("1080.00")),
        ("SHA Contribution", Decimal("1512.50")),
        ("Housing Levy", Decimal("825.00")),
    ]


def test_payroll_breakdown(calculator):
    b = calculator.payroll_breakdown(55000)
    assert b["Gross"] == Decimal("55000.00")
    assert b["Total Deductions"] == Decimal("12300.83")
    assert b["Net"] == Decimal("42699.17")


def test_relief_floors_paye_at_zero(calculator):
    assert calculator.compute_paye(Decimal("20000")) == Decimal("0.00")
    assert calculator.compute_paye(Decimal("24000")) == Decimal("0.00")


def test_paye_with_custom_bands():
    bands = [TaxBand(upper_bound=Decimal("288000"), rate=Decimal("0.10")), TaxBand(rate=Decimal("0.30"))]
    # 30000 * 12 = 360000 -> 28800 + 72000 * 0.3 = 50400 a year
    assert income_tax(Decimal("30000"), bands, Decimal("0")) == Decimal("4200.00")


def test_pension_capped_at_ceiling(calculator):
    assert calculator.compute_pension(Decimal("10000")) == Decimal("600.00")
    assert calculator.compute_pension(Decimal("18000")) == Decimal("1080.00")
    assert calculator.compute_pension(Decimal("500000")) == Decimal("1080.00")


def test_zero_and_negative_pay(calculator):
    for gross in (0, Decimal("0"), Decimal("-5000")):
        assert all(line.amount == 0 for line in calculator.deductions(gross))
    assert pension_contribution(-1, Decimal("0.06"), Decimal("18000")) == 0
    assert health_levy(-1, Decimal("0.0275")) == 0
    assert housing_levy(-1, Decimal("0.015")) == 0


def test_monotonic_in_gross(calculator):
    previous = None
    for gross in range(0, 400001, 2500):
        current = [l.amount for l in calculator.deductions(Decimal(gross))]
        if previous:
            assert all(c >= p for c, p in zip(current, previous))
        previous = current


def test_labels_follow_config(calculator):
    config = calculator.config.model_copy(update={"pension_label": "Pension"})
    lines = StatutoryCalculator(config).deductions(Decimal("55000"))
    assert [l.name for l in lines] == ["PAYE", "Pension", "SHA Contribution", "Housing Levy"]
