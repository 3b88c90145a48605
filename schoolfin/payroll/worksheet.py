"""
Draft payroll generation.

Per staff member: Basic Salary, then every recurring earning template, then the
four statutory deductions on the resulting gross, then recurring deduction
templates. Percentage templates always apply to the base salary, never to the
gross accumulated so far.
"""
from datetime import date
from typing import Iterable, List

from ..core.exceptions import InvalidInputError
from ..core.schemas import PERIOD_PATTERN, ItemCategory, PayLine, PayrollEntry, PayrollItemTemplate, StaffMember
from ..core.utils import money_sum
from ..tax.statutory import StatutoryCalculator

BASIC_SALARY = "Basic Salary"


def _recurring(templates: Iterable[PayrollItemTemplate], category: ItemCategory) -> List[PayrollItemTemplate]:
    return [t for t in templates if t.is_recurring and t.category is category]


def generate_entry(
    staff: StaffMember,
    templates: Iterable[PayrollItemTemplate],
    calculator: StatutoryCalculator,
    period: str,
    pay_date: date,
) -> PayrollEntry:
    templates = list(templates)
    base = staff.base_salary

    earnings = [PayLine(name=BASIC_SALARY, amount=base)]
    for item in _recurring(templates, ItemCategory.EARNING):
        earnings.append(PayLine(name=item.name, amount=item.amount_for(base)))

    gross = money_sum(line.amount for line in earnings)
    deductions = calculator.deductions(gross)
    for item in _recurring(templates, ItemCategory.DEDUCTION):
        deductions.append(PayLine(name=item.name, amount=item.amount_for(base)))

    return PayrollEntry(
        staff_id=staff.staff_id,
        staff_name=staff.name,
        period=period,
        pay_date=pay_date,
        earnings=earnings,
        deductions=deductions,
    )


def generate_worksheet(
    roster: Iterable[StaffMember],
    templates: Iterable[PayrollItemTemplate],
    calculator: StatutoryCalculator,
    period: str,
    pay_date: date,
) -> List[PayrollEntry]:
    """One draft entry per staff member, in roster order."""
    if not PERIOD_PATTERN.match(period or ""):
        raise InvalidInputError(f"Invalid payroll period {period!r}, expected YYYY-MM")
    roster = list(roster)
    templates = list(templates)
    seen = set()
    for staff in roster:
        if staff.staff_id in seen:
            raise InvalidInputError(f"Staff {staff.staff_id} appears more than once in the roster")
        seen.add(staff.staff_id)

    names = [t.name for t in templates if t.is_recurring]
    clashes = {n for n in names if names.count(n) > 1} | ({BASIC_SALARY} & set(names))
    clashes |= set(names) & set(calculator.config.deduction_labels)
    if clashes:
        raise InvalidInputError(f"Recurring payroll items clash with other lines: {sorted(clashes)}")

    return [generate_entry(staff, templates, calculator, period, pay_date) for staff in roster]
