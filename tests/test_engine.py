import asyncio
from datetime import date
from decimal import Decimal

import pytest

from schoolfin.core.exceptions import AlreadyFinalizedError, InvalidInputError, NotFoundError
from schoolfin.payroll.engine import PayrollEngine


@pytest.fixture
def engine(session_factory):
    e = PayrollEngine("school1", session_factory)
    e.staff.add({"staff_id": "T001", "name": "Jane Wanjiku", "base_salary": "50000", "kra_pin": "A123456789Z"})
    e.staff.add({"staff_id": "T002", "name": "Brian Otieno", "base_salary": "30000"})
    e.items.create({"name": "House Allowance", "category": "Earning",
                    "calculation": {"kind": "PercentOfBasic", "rate": "10"}, "is_recurring": True})
    e.items.create({"name": "Sports Bonus", "category": "Earning",
                    "calculation": {"kind": "Fixed", "amount": "2500"}, "is_recurring": False})
    return e


def test_start_run_uses_active_roster_and_recurring_items(engine):
    engine.staff.add({"staff_id": "T003", "name": "Former Staff", "base_salary": "40000", "is_active": False})
    ws = engine.start_run("2024-05", date(2024, 5, 28))
    assert sorted(e.staff_id for e in ws.entries) == ["T001", "T002"]
    jane = ws.entry("T001")
    assert [l.name for l in jane.earnings] == ["Basic Salary", "House Allowance"]
    assert jane.gross_pay == Decimal("55000.00")


def test_finalize_and_history(engine):
    for month in (3, 4, 5):
        ws = engine.start_run(f"2024-{month:02d}", date(2024, month, 28))
        if month == 5:
            ws.edit_deduction("T001", "NSSF", 0)
        asyncio.run(engine.finalize(ws))

    page = engine.history(page=1, limit=4)
    assert page["total"] == 6
    assert page["last_page"] == 2
    assert [r.period for r in page["data"]][:2] == ["2024-05", "2024-05"]
    assert len(engine.history(page=2, limit=4)["data"]) == 2

    jane = engine.history(staff_id="T001", period="2024-05")
    assert jane["total"] == 1
    assert jane["data"][0].net_pay == Decimal("43779.17")

    with pytest.raises(AlreadyFinalizedError):
        asyncio.run(engine.finalize(engine.start_run("2024-05", date(2024, 5, 30))))


def test_run_summary(engine):
    ws = engine.start_run("2024-05", date(2024, 5, 28))
    summary = engine.run_summary(ws.entries)
    assert summary["staff_count"] == 2
    assert summary["gross_pay"] == Decimal("88000.00")
    assert summary["earnings"]["House Allowance"] == Decimal("8000.00")
    assert summary["net_pay"] == summary["gross_pay"] - summary["total_deductions"]
    assert summary["deductions"]["NSSF"] == Decimal("2160.00")


def test_item_and_staff_management(engine):
    items = engine.items.list_items()
    assert [i.name for i in items] == ["House Allowance", "Sports Bonus"]
    allowance = items[0]
    updated = engine.items.update(allowance.id, {"calculation": {"kind": "Fixed", "amount": "4000"}})
    assert updated.amount_for(Decimal("50000")) == Decimal("4000.00")
    engine.items.delete(items[1].id)
    assert [i.name for i in engine.items.list_items()] == ["House Allowance"]
    with pytest.raises(NotFoundError):
        engine.items.delete(items[1].id)
    with pytest.raises(InvalidInputError):
        engine.items.create({"name": "Bad", "category": "Bonus", "calculation": {"kind": "Fixed", "amount": "1"}})

    engine.staff.update("T002", {"base_salary": "32000"})
    assert engine.staff.get("T002").base_salary == Decimal("32000.00")
    engine.staff.deactivate("T002")
    assert [s.staff_id for s in engine.staff.active_roster()] == ["T001"]
    with pytest.raises(InvalidInputError):
        engine.staff.add({"staff_id": "T001", "name": "Duplicate", "base_salary": "1"})
    with pytest.raises(NotFoundError):
        engine.staff.get("T404")
