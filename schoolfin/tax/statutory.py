"""
Statutory payroll deductions: PAYE, pension (NSSF), health levy (SHA) and housing levy.

Each function is pure and takes its jurisdiction parameters explicitly, so a
change of rates or brackets is a configuration change. All of them return 0
for zero pay, never go negative and are non-decreasing in pay.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from ..core.config import StatutoryConfig, TaxBand, statutory_config
from ..core.schemas import PayLine
from ..core.utils import ZERO, to_money

MONTHS_PER_YEAR = Decimal(12)


def _non_negative(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value if value > 0 else Decimal(0)


def income_tax(monthly_taxable_pay, bands: Sequence[TaxBand], personal_relief) -> Decimal:
    """PAYE for one month.

    Simplified monthly approximation: the month's pay is annualized, run through
    the progressive bands, brought back to a monthly figure and reduced by the
    flat monthly personal relief. There is no year-to-date reconciliation.
    """
    annual = _non_negative(monthly_taxable_pay) * MONTHS_PER_YEAR
    tax = Decimal(0)
    lower = Decimal(0)
    for band in bands:
        upper = band.upper_bound
        if upper is None or annual <= upper:
            tax += (annual - lower) * band.rate
            break
        tax += (upper - lower) * band.rate
        lower = upper
    monthly = tax / MONTHS_PER_YEAR - _non_negative(personal_relief)
    return to_money(max(monthly, Decimal(0)))


def pension_contribution(gross_pay, rate, ceiling) -> Decimal:
    return to_money(_non_negative(rate) * min(_non_negative(gross_pay), _non_negative(ceiling)))


def health_levy(gross_pay, rate) -> Decimal:
    return to_money(_non_negative(rate) * _non_negative(gross_pay))


def housing_levy(gross_pay, rate) -> Decimal:
    return to_money(_non_negative(rate) * _non_negative(gross_pay))


class StatutoryCalculator:
    """The four statutory deductions bound to one jurisdiction's configuration."""

    def __init__(self, config: Optional[StatutoryConfig] = None):
        self.config = config or statutory_config()

    def compute_paye(self, gross) -> Decimal:
        return income_tax(gross, self.config.bands, self.config.personal_relief)

    def compute_pension(self, gross) -> Decimal:
        return pension_contribution(gross, self.config.pension_rate, self.config.pension_ceiling)

    def compute_health_levy(self, gross) -> Decimal:
        return health_levy(gross, self.config.health_levy_rate)

    def compute_housing_levy(self, gross) -> Decimal:
        return housing_levy(gross, self.config.housing_levy_rate)

    def deductions(self, gross) -> List[PayLine]:
        # order is fixed: payslips and statutory forms look lines up by position and name
        c = self.config
        return [
            PayLine(name=c.paye_label, amount=self.compute_paye(gross)),
            PayLine(name=c.pension_label, amount=self.compute_pension(gross)),
            PayLine(name=c.health_levy_label, amount=self.compute_health_levy(gross)),
            PayLine(name=c.housing_levy_label, amount=self.compute_housing_levy(gross)),
        ]

    def payroll_breakdown(self, gross) -> Dict[str, Decimal]:
        gross = to_money(_non_negative(gross))
        lines = self.deductions(gross)
        total = sum((line.amount for line in lines), ZERO)
        breakdown = {"Gross": gross}
        breakdown.update({line.name: line.amount for line in lines})
        breakdown["Total Deductions"] = total
        breakdown["Net"] = gross - total
        return breakdown
