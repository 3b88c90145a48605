"""
Editable payroll worksheet for one period.

The worksheet owns the draft entries between generation and finalization.
Only existing deduction lines can be changed; earnings and the set of lines are
fixed by generation. Finalization hands the whole batch to a history sink in a
single awaited call and only flips state once the sink has accepted it.
"""
import asyncio
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional

from ..core.audit import AuditLogger
from ..core.exceptions import (
    InvalidInputError, NotFoundError, PersistenceError, WorksheetFinalizedError,
)
from ..core.schemas import PayLine, PayrollEntry, PayrollRecord
from ..core.utils import setup_logging, to_money
from .history import PayrollHistorySink


class WorksheetState(str, Enum):
    GENERATED = "generated"
    EDITED = "edited"
    FINALIZED = "finalized"
    DISCARDED = "discarded"


def _valid_amount(amount) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidInputError(f"Invalid deduction amount {amount!r}") from e
    if not value.is_finite():
        raise InvalidInputError(f"Deduction amount must be finite, got {amount!r}")
    if value < 0:
        raise InvalidInputError(f"Deduction amount cannot be negative, got {amount!r}")
    return to_money(value)


class PayrollWorksheet:
    """Draft payroll for one period, owned by a single editing session."""

    def __init__(
        self,
        period: str,
        entries: List[PayrollEntry],
        school_id: str = "system",
        audit_logger: Optional[AuditLogger] = None,
        user_id: Optional[str] = None,
    ):
        self.period = period
        self.school_id = school_id
        self.user_id = user_id
        self.audit_logger = audit_logger
        self.logger = setup_logging(school_id)
        self.state = WorksheetState.GENERATED
        self.records: List[PayrollRecord] = []
        self._entries: Dict[str, PayrollEntry] = {}
        for entry in entries:
            if entry.period != period:
                raise InvalidInputError(f"Entry for {entry.staff_id} is for {entry.period}, not {period}")
            if entry.staff_id in self._entries:
                raise InvalidInputError(f"Staff {entry.staff_id} appears more than once in the worksheet")
            self._entries[entry.staff_id] = entry

    @property
    def entries(self) -> List[PayrollEntry]:
        return list(self._entries.values())

    @property
    def is_finalized(self) -> bool:
        return self.state is WorksheetState.FINALIZED

    def entry(self, staff_id: str) -> PayrollEntry:
        try:
            return self._entries[staff_id]
        except KeyError:
            raise NotFoundError(f"Staff {staff_id} is not on the {self.period} worksheet") from None

    def _check_open(self):
        if self.state is WorksheetState.FINALIZED:
            raise WorksheetFinalizedError(f"Payroll for {self.period} is already finalized")
        if self.state is WorksheetState.DISCARDED:
            raise WorksheetFinalizedError(f"Worksheet for {self.period} was discarded")

    def edit_deduction(self, staff_id: str, deduction_name: str, amount) -> PayrollEntry:
        """Replace one deduction line. Totals follow from the line arrays."""
        self._check_open()
        entry = self.entry(staff_id)
        idx = entry.deduction_index(deduction_name)
        value = _valid_amount(amount)

        previous = entry.deductions[idx].amount
        deductions = list(entry.deductions)
        deductions[idx] = PayLine(name=deduction_name, amount=value)
        entry.deductions = deductions
        self.state = WorksheetState.EDITED

        self.logger.info("Payroll %s: %s %s %s -> %s", self.period, staff_id, deduction_name, previous, value)
        if self.audit_logger:
            self.audit_logger.log_data_change(
                entity_type="payroll_worksheet",
                operation="edit",
                entity_id=f"{self.period}:{staff_id}",
                changes={"deduction": deduction_name, "from": previous, "to": value},
                user_id=self.user_id,
            )
        return entry

    async def finalize(self, sink: PayrollHistorySink, timeout: Optional[float] = None) -> List[PayrollRecord]:
        """Persist every entry as one batch.

        On any sink error or timeout the worksheet stays as it was and can be
        finalized again. A timed-out write may still land; ask the sink
        ``is_finalized`` before retrying.
        """
        self._check_open()
        if not self._entries:
            raise InvalidInputError(f"Worksheet for {self.period} has no entries")

        finalized_at = datetime.now()
        records = [PayrollRecord.from_entry(e, finalized_at=finalized_at) for e in self._entries.values()]
        try:
            await asyncio.wait_for(sink.append_batch(self.period, records), timeout)
        except PersistenceError:
            self.logger.exception("Payroll %s: finalization refused", self.period)
            raise
        except asyncio.TimeoutError as e:
            self.logger.error("Payroll %s: finalization timed out after %ss", self.period, timeout)
            raise PersistenceError(f"Timed out storing payroll for {self.period}") from e
        except Exception as e:
            self.logger.exception("Payroll %s: finalization failed", self.period)
            raise PersistenceError(f"Could not store payroll for {self.period}: {e}") from e

        self.state = WorksheetState.FINALIZED
        self.records = records
        self.logger.info("Payroll %s finalized: %d entries", self.period, len(records))
        if self.audit_logger:
            self.audit_logger.log_data_change(
                entity_type="payroll",
                operation="finalize",
                entity_id=self.period,
                changes={
                    "entries": len(records),
                    "gross_pay": sum(r.gross_pay for r in records),
                    "net_pay": sum(r.net_pay for r in records),
                },
                user_id=self.user_id,
            )
        return records

    def discard(self):
        """Throw the draft away. The worksheet cannot be used afterwards."""
        self._check_open()
        self._entries.clear()
        self.state = WorksheetState.DISCARDED
        self.logger.info("Payroll %s: worksheet discarded", self.period)
