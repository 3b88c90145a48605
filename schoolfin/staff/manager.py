"""
Staff roster management with bulk upload and a payroll preview.
"""
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from ..core.audit import AuditLogger
from ..core.exceptions import InvalidInputError, NotFoundError
from ..core.repositories import StaffRepository
from ..core.schemas import StaffMember
from ..core.upload_manager import ColumnMapping, UploadManager
from ..core.utils import money_sum, setup_logging
from ..tax.statutory import StatutoryCalculator


class StaffManager:
    """Roster maintenance. Payroll runs read the active roster from here."""

    def __init__(self, school_id: str, session_factory: Optional[sessionmaker] = None,
                 calculator: Optional[StatutoryCalculator] = None,
                 audit_logger: Optional[AuditLogger] = None):
        self.school_id = school_id
        self.repository = StaffRepository(school_id, session_factory)
        self.audit_logger = audit_logger or AuditLogger(school_id)
        self.upload_manager = UploadManager(school_id, 'staff', self.audit_logger)
        self.payroll_calculator = calculator or StatutoryCalculator()
        self.logger = setup_logging(school_id)

    def get(self, staff_id: str) -> StaffMember:
        staff = self.repository.find_by_key('id', staff_id)
        if staff is None:
            raise NotFoundError(f"Staff {staff_id} not found")
        return staff

    def add(self, data: Dict[str, Any], user_id: Optional[str] = None) -> StaffMember:
        try:
            staff = StaffMember.model_validate(data)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid staff record: {e}") from e
        if self.repository.find_by_key('id', staff.staff_id) is not None:
            raise InvalidInputError(f"Staff {staff.staff_id} already exists")
        self.repository.upsert(staff)
        self.audit_logger.log_data_change('staff', 'create', staff.staff_id, staff.model_dump(mode='json'), user_id)
        return staff

    def update(self, staff_id: str, changes: Dict[str, Any], user_id: Optional[str] = None) -> StaffMember:
        """Change salary or identifiers. The staff id itself cannot change."""
        data = self.get(staff_id).model_dump()
        data.update(changes)
        data['staff_id'] = staff_id
        try:
            staff = StaffMember.model_validate(data)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid staff record: {e}") from e
        self.repository.upsert(staff)
        self.audit_logger.log_data_change('staff', 'update', staff_id, changes, user_id)
        return staff

    def deactivate(self, staff_id: str, user_id: Optional[str] = None) -> StaffMember:
        return self.update(staff_id, {'is_active': False}, user_id)

    def active_roster(self) -> List[StaffMember]:
        return self.repository.get_active()

    def bulk_upload(self, file_path: str, column_mappings: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
        """
        Bulk upload staff from CSV/Excel/JSON. Valid rows are upserted, invalid
        rows are reported per row.

        Args:
            file_path: Path to the file
            column_mappings: List of {'source': 'col_name', 'target': 'staff_field'}
        """
        mappings = [
            ColumnMapping(source_column=m['source'], target_field=m['target'], transform=m.get('transform'))
            for m in column_mappings or []
        ]
        result, staff = self.upload_manager.process_upload(file_path, StaffMember.model_validate, mappings)

        stats = {'created': 0, 'updated': 0}
        for member in staff:
            for k, v in self.repository.upsert(member).items():
                stats[k] += v
        self.logger.info("Staff upload %s: %d rows, %d rejected", result.batch_id, result.total_rows, result.error_rows)

        return {
            'success': result.success,
            'upload_result': result.to_dict(),
            'staff_stats': stats,
            'payroll_preview': self.payroll_preview(staff),
            'total_staff': self.repository.get_count(),
        }

    def payroll_preview(self, staff: List[StaffMember]) -> Dict[str, Any]:
        """Statutory deductions on base salary, before allowances and edits."""
        rows = []
        for member in staff:
            breakdown = self.payroll_calculator.payroll_breakdown(member.base_salary)
            rows.append({'staff_id': member.staff_id, 'name': member.name, **breakdown})
        df = pd.DataFrame(rows)
        if df.empty:
            return {'total_staff': 0, 'total_gross': 0, 'total_deductions': 0, 'total_net': 0, 'details': []}
        return {
            'total_staff': len(rows),
            'total_gross': money_sum(df['Gross']),
            'total_deductions': money_sum(df['Total Deductions']),
            'total_net': money_sum(df['Net']),
            'details': rows[:10],
        }
