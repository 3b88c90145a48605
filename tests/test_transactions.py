from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from schoolfin.core.audit import AuditLogger
from schoolfin.core.exceptions import InvalidInputError, NotFoundError
from schoolfin.transactions.manager import TransactionManager


@pytest.fixture
def manager(session_factory):
    return TransactionManager("school1", session_factory)


def record(manager, student, kind, amount, day, **extra):
    return manager.record({"student_id": student, "kind": kind, "amount": amount,
                           "date": date(2024, 2, day), **extra})


def test_record_and_summarize(manager):
    record(manager, "ADM001", "Invoice", "15000", 1, description="Term 1 fees")
    record(manager, "ADM001", "Payment", "6000", 3, method="MPesa", reference="QWE123RTY")
    s = manager.summary("ADM001")
    assert s.balance == Decimal("9000.00")
    assert s.last_payment_date == date(2024, 2, 3)
    assert AuditLogger("school1").get_history(entity_type="transaction")


def test_record_rejects_bad_rows(manager):
    with pytest.raises(InvalidInputError):
        record(manager, "ADM001", "Invoice", "-10", 1)
    with pytest.raises(InvalidInputError):
        record(manager, "ADM001", "Refund", "10", 1)
    assert manager.repository.get_count() == 0


def test_same_day_entries_keep_arrival_order(manager):
    record(manager, "ADM002", "Payment", "500", 5)
    record(manager, "ADM002", "Invoice", "2000", 5)
    lines = manager.statement("ADM002")
    assert [l.running_balance for l in lines] == [Decimal("-500.00"), Decimal("1500.00")]
    with pytest.raises(NotFoundError):
        manager.statement("NOBODY")


def test_arrears_uses_reminder_threshold(manager):
    record(manager, "ADM001", "Invoice", "1500", 1)
    record(manager, "ADM002", "Invoice", "900", 1)
    record(manager, "ADM003", "Invoice", "5000", 1)
    record(manager, "ADM003", "ManualCredit", "3000", 2, description="Bursary")
    assert [s.student_id for s in manager.arrears()] == ["ADM003", "ADM001"]
    assert [s.student_id for s in manager.arrears(Decimal("0"))] == ["ADM003", "ADM001", "ADM002"]


def test_bulk_upload_reports_row_errors(manager, tmp_path):
    path = tmp_path / "fees.csv"
    pd.DataFrame([
        {"Adm No": "ADM010", "Type": "Invoice", "Amount": "20000", "Date": "2024-01-08", "Ref": ""},
        {"Adm No": "ADM010", "Type": "Payment", "Amount": "abc", "Date": "2024-01-09", "Ref": "X1"},
        {"Adm No": "ADM011", "Type": "Payment", "Amount": "5000", "Date": "2024-01-10", "Ref": "MP77"},
    ]).to_csv(path, index=False)
    mappings = [
        {"source": "Adm No", "target": "student_id", "transform": "upper"},
        {"source": "Type", "target": "kind"},
        {"source": "Amount", "target": "amount"},
        {"source": "Date", "target": "date"},
        {"source": "Ref", "target": "reference"},
    ]
    result = manager.bulk_upload(str(path), mappings)
    assert result["success"] is False
    assert result["appended"] == 2
    assert result["upload_result"]["error_rows"] == 1
    assert result["upload_result"]["row_errors"][0]["row"] == 2
    assert manager.summary("ADM011").overpayment == Decimal("5000.00")


def test_search_and_export(manager, tmp_path):
    record(manager, "ADM001", "Invoice", "15000", 1, description="Term 1 fees")
    record(manager, "ADM001", "Payment", "6000", 3, reference="QWE123RTY")
    record(manager, "ADM002", "Invoice", "15000", 1, description="Term 1 fees")
    assert len(manager.search_transactions(query="term 1")) == 2
    assert [t.reference for t in manager.search_transactions(kind="Payment")] == ["QWE123RTY"]
    assert len(manager.search_transactions(student_id="ADM001", start_date=date(2024, 2, 2))) == 1

    out = tmp_path / "export.csv"
    assert manager.export_transactions(str(out), student_id="ADM001")
    assert len(pd.read_csv(out)) == 2
    assert manager.export_transactions(str(out), student_id="NOBODY") is False

    stats = manager.get_transaction_stats()
    assert stats["students"] == 2
    assert stats["by_kind"]["Invoice"]["count"] == 2
