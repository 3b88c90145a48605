from datetime import date
from decimal import Decimal
from math import ceil
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import sessionmaker

from ..core.audit import AuditLogger
from ..core.repositories import PayrollRunsRepository
from ..core.schemas import PayrollEntry
from ..core.utils import ZERO, setup_logging
from ..staff.manager import StaffManager
from ..tax.statutory import StatutoryCalculator
from .editor import PayrollWorksheet
from .history import PayrollHistorySink, SqlPayrollHistorySink
from .items import PayrollItemManager
from .worksheet import generate_worksheet


class PayrollEngine:
    """Wires the stored roster, item templates, statutory calculator and history together."""

    def __init__(
        self,
        school_id: str,
        session_factory: Optional[sessionmaker] = None,
        calculator: Optional[StatutoryCalculator] = None,
        sink: Optional[PayrollHistorySink] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.school_id = school_id
        self.calculator = calculator or StatutoryCalculator()
        self.audit_logger = audit_logger or AuditLogger(school_id)
        self.staff = StaffManager(school_id, session_factory, self.calculator, self.audit_logger)
        self.items = PayrollItemManager(school_id, session_factory, self.audit_logger)
        self.runs = PayrollRunsRepository(school_id, session_factory)
        self.sink = sink or SqlPayrollHistorySink(school_id, repository=self.runs)
        self.logger = setup_logging(school_id)

    def start_run(self, period: str, pay_date: date, user_id: Optional[str] = None) -> PayrollWorksheet:
        """Generate the draft worksheet for a period from the active roster."""
        entries = generate_worksheet(
            self.staff.active_roster(),
            self.items.list_items(recurring_only=True),
            self.calculator,
            period,
            pay_date,
        )
        self.logger.info("Payroll %s generated for %d staff", period, len(entries))
        return PayrollWorksheet(period, entries, self.school_id, self.audit_logger, user_id)

    async def finalize(self, worksheet: PayrollWorksheet, timeout: Optional[float] = None):
        return await worksheet.finalize(self.sink, timeout=timeout)

    def history(self, staff_id: Optional[str] = None, period: Optional[str] = None,
                page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """Finalized payroll, newest pay date first, one page at a time."""
        page = max(page, 1)
        limit = max(limit, 1)
        records, total = self.runs.query(staff_id=staff_id, period=period, page=page, limit=limit)
        return {
            'data': records,
            'total': total,
            'page': page,
            'limit': limit,
            'last_page': max(1, ceil(total / limit)),
        }

    @staticmethod
    def run_summary(entries: Iterable[PayrollEntry]) -> Dict[str, Any]:
        """Totals for a run, overall and per line name."""
        entries = list(entries)
        earnings: Dict[str, Decimal] = {}
        deductions: Dict[str, Decimal] = {}
        for e in entries:
            for line in e.earnings:
                earnings[line.name] = earnings.get(line.name, ZERO) + line.amount
            for line in e.deductions:
                deductions[line.name] = deductions.get(line.name, ZERO) + line.amount
        return {
            'staff_count': len(entries),
            'gross_pay': sum((e.gross_pay for e in entries), ZERO),
            'total_deductions': sum((e.total_deductions for e in entries), ZERO),
            'net_pay': sum((e.net_pay for e in entries), ZERO),
            'earnings': earnings,
            'deductions': deductions,
        }
