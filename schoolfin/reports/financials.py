from typing import Iterable, Optional

import pandas as pd
from sqlalchemy.orm import sessionmaker

from schoolfin.core.config import StatutoryConfig, statutory_config
from schoolfin.core.exceptions import InvalidInputError, NotFoundError
from schoolfin.core.repositories import PayrollRunsRepository, TransactionsRepository
from schoolfin.core.schemas import PERIOD_PATTERN, PayrollRecord, StudentFinancialSummary
from schoolfin.core.utils import ZERO
from schoolfin.transactions import ledger

ARREARS_COLUMNS = ["Student", "Balance", "Overpayment", "Last Payment"]
P9_COLUMNS = ["Month", "Gross Pay", "PAYE", "NSSF", "SHA", "Housing Levy", "Total Deductions", "Net Pay"]


def arrears_frame(summaries: Iterable[StudentFinancialSummary], threshold=ZERO) -> pd.DataFrame:
    rows = [{
        "Student": s.student_id,
        "Balance": s.balance,
        "Overpayment": s.overpayment,
        "Last Payment": s.last_payment_date,
    } for s in ledger.in_arrears(summaries, threshold)]
    return pd.DataFrame(rows, columns=ARREARS_COLUMNS)


def register_frame(records: Iterable[PayrollRecord]) -> pd.DataFrame:
    """One row per staff member, one column per earning/deduction line."""
    rows = []
    for r in records:
        row = {"Staff ID": r.staff_id, "Name": r.staff_name}
        row.update({line.name: line.amount for line in r.earnings})
        row["Gross Pay"] = r.gross_pay
        row.update({line.name: line.amount for line in r.deductions})
        row["Total Deductions"] = r.total_deductions
        row["Net Pay"] = r.net_pay
        rows.append(row)
    df = pd.DataFrame(rows)
    if df.empty:
        return pd.DataFrame(columns=["Staff ID", "Name", "Gross Pay", "Total Deductions", "Net Pay"])
    # staff without an optional line get zero rather than NaN
    return df.fillna(ZERO).sort_values(["Name", "Staff ID"]).reset_index(drop=True)


def p9_frame(records: Iterable[PayrollRecord], year: int, config: Optional[StatutoryConfig] = None) -> pd.DataFrame:
    """Annual tax deduction card: twelve months, zero where nothing was paid, plus a total row."""
    c = config or statutory_config()
    by_period = {r.period: r for r in records}
    rows = []
    for month in range(1, 13):
        r = by_period.get(f"{year:04d}-{month:02d}")
        rows.append({
            "Month": f"{year:04d}-{month:02d}",
            "Gross Pay": r.gross_pay if r else ZERO,
            "PAYE": r.deduction_amount(c.paye_label) if r else ZERO,
            "NSSF": r.deduction_amount(c.pension_label) if r else ZERO,
            "SHA": r.deduction_amount(c.health_levy_label) if r else ZERO,
            "Housing Levy": r.deduction_amount(c.housing_levy_label) if r else ZERO,
            "Total Deductions": r.total_deductions if r else ZERO,
            "Net Pay": r.net_pay if r else ZERO,
        })
    df = pd.DataFrame(rows, columns=P9_COLUMNS)
    totals = {"Month": "Total"}
    totals.update({col: sum(df[col], ZERO) for col in P9_COLUMNS[1:]})
    return pd.concat([df, pd.DataFrame([totals])], ignore_index=True)


class FinancialReports:
    def __init__(self, school_id: str, session_factory: Optional[sessionmaker] = None,
                 config: Optional[StatutoryConfig] = None):
        self.school_id = school_id
        self.transactions = TransactionsRepository(school_id, session_factory)
        self.runs = PayrollRunsRepository(school_id, session_factory)
        self.config = config or statutory_config()

    def arrears_report(self, threshold=ZERO) -> pd.DataFrame:
        summaries = ledger.summarize_all(self.transactions.load())
        return arrears_frame(summaries.values(), threshold)

    def payroll_register(self, period: str) -> pd.DataFrame:
        if not PERIOD_PATTERN.match(period or ""):
            raise InvalidInputError(f"Invalid payroll period {period!r}, expected YYYY-MM")
        records, _ = self.runs.query(period=period)
        return register_frame(records)

    def p9_card(self, staff_id: str, year: int) -> pd.DataFrame:
        records, _ = self.runs.query(staff_id=staff_id, year=year)
        if not records:
            raise NotFoundError(f"No finalized payroll for staff {staff_id} in {year}")
        return p9_frame(records, year, self.config)

    def export(self, df: pd.DataFrame, file_path: str) -> str:
        if str(file_path).lower().endswith(".csv"):
            df.to_csv(file_path, index=False)
        else:
            df.to_excel(file_path, index=False)
        return file_path
