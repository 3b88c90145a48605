import asyncio
from datetime import date
from decimal import Decimal

import pytest

from schoolfin.core.exceptions import InvalidInputError, NotFoundError
from schoolfin.payroll.engine import PayrollEngine
from schoolfin.reports.financials import FinancialReports
from schoolfin.transactions.manager import TransactionManager


@pytest.fixture
def reports(session_factory):
    engine = PayrollEngine("school1", session_factory)
    engine.staff.add({"staff_id": "T001", "name": "Jane Wanjiku", "base_salary": "50000"})
    engine.staff.add({"staff_id": "T002", "name": "Brian Otieno", "base_salary": "30000"})
    engine.items.create({"name": "Staff Loan", "category": "Deduction",
                         "calculation": {"kind": "Fixed", "amount": "1500"}, "is_recurring": True})
    for month in (1, 2):
        asyncio.run(engine.finalize(engine.start_run(f"2024-{month:02d}", date(2024, month, 28))))

    fees = TransactionManager("school1", session_factory)
    fees.record({"student_id": "ADM001", "kind": "Invoice", "amount": "12000", "date": date(2024, 1, 5)})
    fees.record({"student_id": "ADM002", "kind": "Invoice", "amount": "8000", "date": date(2024, 1, 5)})
    fees.record({"student_id": "ADM002", "kind": "Payment", "amount": "8000", "date": date(2024, 1, 20)})
    return FinancialReports("school1", session_factory)


def test_arrears_report(reports):
    df = reports.arrears_report()
    assert list(df["Student"]) == ["ADM001"]
    assert df.iloc[0]["Balance"] == Decimal("12000.00")


def test_payroll_register(reports):
    df = reports.payroll_register("2024-01")
    assert list(df["Name"]) == ["Brian Otieno", "Jane Wanjiku"]
    assert "Staff Loan" in df.columns
    row = df[df["Staff ID"] == "T001"].iloc[0]
    assert row["Gross Pay"] == Decimal("50000.00")
    assert row["Net Pay"] == row["Gross Pay"] - row["Total Deductions"]
    assert reports.payroll_register("2024-03").empty
    with pytest.raises(InvalidInputError):
        reports.payroll_register("Jan 2024")


def test_p9_card(reports):
    df = reports.p9_card("T001", 2024)
    assert len(df) == 13
    jan = df.iloc[0]
    assert jan["Month"] == "2024-01"
    # 50000 * 12 = 600000 -> 28800 + 25000 + 63600 = 117400 a year
    assert jan["PAYE"] == Decimal("7383.33")
    assert jan["NSSF"] == Decimal("1080.00")
    assert jan["SHA"] == Decimal("1375.00")
    assert jan["Housing Levy"] == Decimal("750.00")
    assert df.iloc[2]["Gross Pay"] == 0
    total = df.iloc[-1]
    assert total["Month"] == "Total"
    assert total["Gross Pay"] == Decimal("100000.00")
    with pytest.raises(NotFoundError):
        reports.p9_card("T001", 2023)
