import asyncio
from datetime import date
from decimal import Decimal

import pytest

from schoolfin.core.exceptions import AlreadyFinalizedError
from schoolfin.core.repositories import PayrollRunsRepository
from schoolfin.core.schemas import PayrollRecord
from schoolfin.payroll.editor import PayrollWorksheet
from schoolfin.payroll.history import PayrollHistorySink, SqlPayrollHistorySink
from schoolfin.payroll.worksheet import generate_worksheet


def test_sql_sink_is_a_history_sink(session_factory):
    assert isinstance(SqlPayrollHistorySink("s1", session_factory), PayrollHistorySink)


def test_finalize_into_database(session_factory, jane, house_allowance, calculator, pay_date):
    sink = SqlPayrollHistorySink("s1", session_factory)
    entries = generate_worksheet([jane], [house_allowance], calculator, "2024-05", pay_date)
    ws = PayrollWorksheet("2024-05", entries, school_id="s1")
    ws.edit_deduction("T001", "NSSF", 0)
    asyncio.run(ws.finalize(sink))

    assert asyncio.run(sink.is_finalized("2024-05"))
    assert not asyncio.run(sink.is_finalized("2024-06"))
    stored = asyncio.run(sink.records("2024-05"))
    assert len(stored) == 1
    r = stored[0]
    assert [l.name for l in r.earnings] == ["Basic Salary", "House Allowance"]
    assert [l.name for l in r.deductions] == ["PAYE", "NSSF", "SHA Contribution", "Housing Levy"]
    assert r.deduction_amount("NSSF") == 0
    assert r.net_pay == Decimal("43779.17")


def test_second_batch_for_period_refused(session_factory, jane, calculator, pay_date):
    sink = SqlPayrollHistorySink("s1", session_factory)
    first = PayrollWorksheet("2024-05", generate_worksheet([jane], [], calculator, "2024-05", pay_date), "s1")
    asyncio.run(first.finalize(sink))
    second = PayrollWorksheet("2024-05", generate_worksheet([jane], [], calculator, "2024-05", pay_date), "s1")
    with pytest.raises(AlreadyFinalizedError):
        asyncio.run(second.finalize(sink))
    assert not second.is_finalized
    # other schools are unaffected
    other = SqlPayrollHistorySink("s2", session_factory)
    asyncio.run(PayrollWorksheet("2024-05", generate_worksheet([jane], [], calculator, "2024-05", pay_date), "s2").finalize(other))


def test_batch_is_all_or_nothing(session_factory, jane, calculator, pay_date):
    repo = PayrollRunsRepository("s1", session_factory)
    entry = generate_worksheet([jane], [], calculator, "2024-05", pay_date)[0]
    good = PayrollRecord.from_entry(entry)
    same_staff = good.model_copy(update={"id": "another-id"})
    with pytest.raises(AlreadyFinalizedError):
        repo.append_batch("2024-05", [good, same_staff])
    assert not repo.has_period("2024-05")


def test_record_totals_must_match_lines(jane, calculator):
    entry = generate_worksheet([jane], [], calculator, "2024-05", date(2024, 5, 28))[0]
    data = PayrollRecord.from_entry(entry).model_dump()
    data["net_pay"] = data["net_pay"] + 1
    with pytest.raises(ValueError):
        PayrollRecord.model_validate(data)
