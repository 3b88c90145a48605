"""
Payroll item templates: allowances and deductions applied on top of base pay.
"""
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from ..core.audit import AuditLogger
from ..core.exceptions import InvalidInputError, NotFoundError
from ..core.repositories import PayrollItemsRepository
from ..core.schemas import PayrollItemTemplate
from ..core.utils import setup_logging


class PayrollItemManager:
    """CRUD over payroll item templates, with an audit entry per change."""

    def __init__(self, school_id: str, session_factory: Optional[sessionmaker] = None,
                 audit_logger: Optional[AuditLogger] = None):
        self.school_id = school_id
        self.repository = PayrollItemsRepository(school_id, session_factory)
        self.audit_logger = audit_logger or AuditLogger(school_id)
        self.logger = setup_logging(school_id)

    @staticmethod
    def _build(data: Dict[str, Any]) -> PayrollItemTemplate:
        try:
            return PayrollItemTemplate.model_validate(data)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid payroll item: {e}") from e

    def create(self, data: Dict[str, Any], user_id: Optional[str] = None) -> PayrollItemTemplate:
        item = self.repository.create(self._build(data))
        self.audit_logger.log_data_change("payroll_item", "create", item.id, item.model_dump(mode="json"), user_id)
        self.logger.info("Payroll item created: %s (%s)", item.name, item.id)
        return item

    def list_items(self, recurring_only: bool = False) -> List[PayrollItemTemplate]:
        items = self.repository.load_all()
        if recurring_only:
            items = [i for i in items if i.is_recurring]
        return items

    def get(self, item_id: str) -> PayrollItemTemplate:
        item = self.repository.find_by_key("id", item_id)
        if item is None:
            raise NotFoundError(f"Payroll item with ID {item_id} not found")
        return item

    def update(self, item_id: str, changes: Dict[str, Any], user_id: Optional[str] = None) -> PayrollItemTemplate:
        current = self.get(item_id)
        data = current.model_dump()
        data.update(changes)
        data["id"] = item_id
        item = self.repository.replace(self._build(data))
        self.audit_logger.log_data_change("payroll_item", "update", item_id, changes, user_id)
        return item

    def delete(self, item_id: str, user_id: Optional[str] = None) -> None:
        self.repository.delete(item_id)
        self.audit_logger.log_data_change("payroll_item", "delete", item_id, {}, user_id)
        self.logger.info("Payroll item deleted: %s", item_id)
