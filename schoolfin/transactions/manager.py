"""
Fee transaction management: recording, bulk upload, balances, search and export.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from ..core.audit import AuditLogger
from ..core.config import settings
from ..core.exceptions import InvalidInputError, NotFoundError
from ..core.repositories import TransactionsRepository
from ..core.schemas import StatementLine, StudentFinancialSummary, Transaction, TransactionKind
from ..core.upload_manager import ColumnMapping, UploadManager
from ..core.utils import setup_logging
from . import ledger


class TransactionManager:
    """Student ledger operations for one school."""

    def __init__(self, school_id: str, session_factory: Optional[sessionmaker] = None,
                 audit_logger: Optional[AuditLogger] = None):
        self.school_id = school_id
        self.repository = TransactionsRepository(school_id, session_factory)
        self.audit_logger = audit_logger or AuditLogger(school_id)
        self.upload_manager = UploadManager(school_id, 'transactions', self.audit_logger)
        self.logger = setup_logging(school_id)

    def record(self, data: Dict[str, Any], user_id: Optional[str] = None) -> Transaction:
        """Validate and append one transaction."""
        try:
            txn = Transaction.model_validate(data)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid transaction: {e}") from e
        self.repository.append(txn)
        self.audit_logger.log_data_change('transaction', 'create', txn.id, txn.model_dump(mode='json'), user_id)
        self.logger.info("Recorded %s %s for %s", txn.kind.value, txn.amount, txn.student_id)
        return txn

    def bulk_upload(self, file_path: str, column_mappings: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
        """
        Bulk upload transactions from CSV/Excel/JSON.

        Valid rows are appended in file order; rows that fail validation are
        returned in ``upload_result['row_errors']`` and nothing is stored for them.

        Args:
            file_path: Path to the file
            column_mappings: List of {'source': 'col_name', 'target': 'transaction_field'}
        """
        mappings = [
            ColumnMapping(source_column=m['source'], target_field=m['target'], transform=m.get('transform'))
            for m in column_mappings or []
        ]
        result, txns = self.upload_manager.process_upload(file_path, Transaction.model_validate, mappings)
        if txns:
            self.repository.append_many(txns)
        self.logger.info("Transaction upload %s: %d rows, %d rejected", result.batch_id, result.total_rows, result.error_rows)

        return {
            'success': result.success,
            'upload_result': result.to_dict(),
            'appended': len(txns),
            'total_transactions': self.repository.get_count(),
        }

    def summary(self, student_id: str) -> StudentFinancialSummary:
        return ledger.summarize(self.repository.load(student_id), student_id=student_id)

    def summaries(self) -> Dict[str, StudentFinancialSummary]:
        return ledger.summarize_all(self.repository.load())

    def statement(self, student_id: str) -> List[StatementLine]:
        txns = self.repository.load(student_id)
        if not txns:
            raise NotFoundError(f"No transactions for student {student_id}")
        return ledger.statement(txns)

    def arrears(self, threshold: Optional[Decimal] = None) -> List[StudentFinancialSummary]:
        """Students due a fee reminder."""
        if threshold is None:
            threshold = settings.FEE_REMINDER_THRESHOLD
        return ledger.in_arrears(self.summaries().values(), threshold)

    def get_transaction_stats(self) -> Dict[str, Any]:
        """Counts and totals per transaction kind."""
        txns = self.repository.load()
        by_kind = {kind.value: {'count': 0, 'total': Decimal('0.00')} for kind in TransactionKind}
        for t in txns:
            by_kind[t.kind.value]['count'] += 1
            by_kind[t.kind.value]['total'] += t.amount
        return {
            'total_transactions': len(txns),
            'students': len({t.student_id for t in txns}),
            'by_kind': by_kind,
        }

    def search_transactions(
        self,
        query: str = "",
        student_id: Optional[str] = None,
        kind: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 100,
    ) -> List[Transaction]:
        """Search transactions with filters, newest first."""
        return self.repository.search(
            query=query,
            student_id=student_id,
            kind=TransactionKind(kind) if kind else None,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
        )

    def export_transactions(self, file_path: str, **filters) -> bool:
        """Export transactions to Excel (or CSV by extension) with optional filters."""
        txns = self.search_transactions(**filters)

        if not txns:
            return False

        df = pd.DataFrame([t.model_dump(mode='json') for t in txns])
        if str(file_path).lower().endswith('.csv'):
            df.to_csv(file_path, index=False)
        else:
            df.to_excel(file_path, index=False)
        return True
