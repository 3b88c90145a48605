from decimal import Decimal

import pandas as pd

from schoolfin.staff.manager import StaffManager


def test_bulk_upload_with_preview(session_factory, tmp_path):
    path = tmp_path / "staff.csv"
    pd.DataFrame([
        {"staff_id": "T001", "name": "Jane Wanjiku", "base_salary": "55000", "kra_pin": "A1"},
        {"staff_id": "T002", "name": "Brian Otieno", "base_salary": "-1", "kra_pin": ""},
        {"staff_id": "T003", "name": "Mary Akinyi", "base_salary": "20000", "kra_pin": ""},
    ]).to_csv(path, index=False)
    manager = StaffManager("school1", session_factory)
    result = manager.bulk_upload(str(path))

    assert result["upload_result"]["error_rows"] == 1
    assert result["staff_stats"] == {"created": 2, "updated": 0}
    assert result["total_staff"] == 2
    preview = result["payroll_preview"]
    assert preview["total_gross"] == Decimal("75000.00")
    assert preview["total_net"] == preview["total_gross"] - preview["total_deductions"]
    assert manager.get("T001").kra_pin == "A1"
    assert manager.get("T003").kra_pin is None

    again = manager.bulk_upload(str(path))
    assert again["staff_stats"] == {"created": 0, "updated": 2}


def test_empty_preview(session_factory):
    assert StaffManager("school1", session_factory).payroll_preview([])["total_staff"] == 0
