import asyncio
from datetime import date
from decimal import Decimal

import pytest

from schoolfin.core.config import settings
from schoolfin.core.exceptions import PersistenceError
from schoolfin.core.schemas import FixedAmount, ItemCategory, PayrollItemTemplate, PercentOfBasic, StaffMember
from schoolfin.db.session import init_db, make_engine, make_session_factory
from schoolfin.tax.statutory import StatutoryCalculator


@pytest.fixture(autouse=True)
def audit_dir(tmp_path, monkeypatch):
    path = tmp_path / "logs"
    monkeypatch.setattr(settings, "AUDIT_LOG_PATH", str(path))
    return path


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'schoolfin.db'}")
    init_db(engine)
    yield make_session_factory(engine=engine)
    engine.dispose()


@pytest.fixture
def calculator():
    return StatutoryCalculator()


@pytest.fixture
def jane():
    return StaffMember(staff_id="T001", name="Jane Wanjiku", base_salary=Decimal("50000"), kra_pin="A123456789Z")


@pytest.fixture
def house_allowance():
    return PayrollItemTemplate(
        id="HA", name="House Allowance", category=ItemCategory.EARNING,
        calculation=PercentOfBasic(rate=Decimal("10")), is_recurring=True,
    )


@pytest.fixture
def loan_recovery():
    return PayrollItemTemplate(
        id="LN", name="Staff Loan", category=ItemCategory.DEDUCTION,
        calculation=FixedAmount(amount=Decimal("2000")), is_recurring=True,
    )


@pytest.fixture
def pay_date():
    return date(2024, 5, 28)


class MemorySink:
    def __init__(self):
        self.batches = {}

    async def append_batch(self, period, records):
        if period in self.batches:
            raise PersistenceError(f"{period} already stored")
        self.batches[period] = list(records)

    async def is_finalized(self, period):
        return period in self.batches


class BrokenSink(MemorySink):
    async def append_batch(self, period, records):
        raise ConnectionError("database unavailable")


class SlowSink(MemorySink):
    async def append_batch(self, period, records):
        await asyncio.sleep(5)
        await super().append_batch(period, records)


@pytest.fixture
def memory_sink():
    return MemorySink()


@pytest.fixture
def broken_sink():
    return BrokenSink()


@pytest.fixture
def slow_sink():
    return SlowSink()
