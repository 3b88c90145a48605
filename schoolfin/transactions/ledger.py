"""
Fee ledger aggregation.

A student's position is always re-derived from the full transaction set: sort
by date (stable, so same-day entries keep arrival order), keep a running signed
total and split the result into balance owed or overpayment held.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from ..core.exceptions import InvalidInputError
from ..core.schemas import StatementLine, StudentFinancialSummary, Transaction
from ..core.utils import ZERO


def _in_date_order(transactions: Iterable[Transaction]) -> List[Transaction]:
    return sorted(transactions, key=lambda t: t.date)


def _single_student(transactions: Sequence[Transaction], student_id: Optional[str]) -> Optional[str]:
    ids = {t.student_id for t in transactions}
    if student_id is not None:
        ids.add(student_id)
    if len(ids) > 1:
        raise InvalidInputError(f"Transactions span more than one student: {sorted(ids)}")
    return next(iter(ids), None)


def summarize(transactions: Iterable[Transaction], student_id: Optional[str] = None) -> StudentFinancialSummary:
    """Balance, overpayment and last payment date for one student."""
    txns = list(transactions)
    sid = _single_student(txns, student_id)

    running = ZERO
    last_payment_date = None
    for t in _in_date_order(txns):
        running += t.signed_amount
        if t.kind.is_payment:
            last_payment_date = t.date

    return StudentFinancialSummary(
        student_id=sid,
        balance=max(ZERO, running),
        overpayment=max(ZERO, -running),
        last_payment_date=last_payment_date,
    )


def summarize_all(
    transactions: Iterable[Transaction],
    student_ids: Optional[Iterable[str]] = None,
) -> Dict[str, StudentFinancialSummary]:
    """Per-student summaries for the whole population.

    Students listed in ``student_ids`` with no transactions get a zero summary.
    """
    partitions: Dict[str, List[Transaction]] = {sid: [] for sid in (student_ids or ())}
    for t in transactions:
        partitions.setdefault(t.student_id, []).append(t)
    return {sid: summarize(txns, student_id=sid) for sid, txns in partitions.items()}


def statement(transactions: Iterable[Transaction]) -> List[StatementLine]:
    """The student's ledger in date order with the running balance after each entry."""
    txns = list(transactions)
    _single_student(txns, None)
    running = ZERO
    lines = []
    for t in _in_date_order(txns):
        running += t.signed_amount
        lines.append(StatementLine(transaction=t, running_balance=running))
    return lines


def in_arrears(summaries: Iterable[StudentFinancialSummary], threshold: Decimal = ZERO) -> List[StudentFinancialSummary]:
    """Students owing more than ``threshold``, largest balance first."""
    owing = [s for s in summaries if s.balance > threshold]
    owing.sort(key=lambda s: s.balance, reverse=True)
    return owing
