"""
Repository layer over the SQLAlchemy store.
Each repository is scoped to one school and converts between ORM rows and the
validated domain types in ``schoolfin.core.schemas``.
"""
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import distinct, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from ..db import models
from ..db.session import SessionLocal
from .exceptions import AlreadyFinalizedError, NotFoundError, PersistenceError
from .schemas import (
    FixedAmount, ItemCategory, PayLine, PayrollItemTemplate, PayrollRecord, PercentOfBasic,
    StaffMember, Transaction, TransactionKind,
)

EARNING = ItemCategory.EARNING.value
DEDUCTION = ItemCategory.DEDUCTION.value


class BaseRepository(ABC):
    """Base repository with the common session handling."""

    model: Any = None

    def __init__(self, school_id: str, session_factory: Optional[sessionmaker] = None):
        self.school_id = school_id
        self.session_factory = session_factory or SessionLocal

    def session(self):
        return self.session_factory()

    def get_count(self) -> int:
        """Get total record count for this school."""
        with self.session() as db:
            stmt = select(func.count()).select_from(self.model).where(self.model.school_id == self.school_id)
            return db.execute(stmt).scalar_one()

    @abstractmethod
    def find_by_key(self, key_field: str, key_value: Any) -> Optional[Any]:
        """Find single record by key field. Must be implemented by subclasses."""
        pass

    def _find_row(self, db, key_field: str, key_value: Any):
        column = getattr(self.model, key_field, None)
        if column is None:
            raise ValueError(f"Unknown field {key_field} for {self.model.__tablename__}")
        stmt = select(self.model).where(self.model.school_id == self.school_id, column == key_value)
        return db.execute(stmt).scalars().first()


class TransactionsRepository(BaseRepository):
    """Append-only store of student ledger entries."""

    model = models.StudentTransaction

    @staticmethod
    def _to_schema(row: models.StudentTransaction) -> Transaction:
        return Transaction(
            id=row.id,
            student_id=row.student_id,
            kind=TransactionKind(row.kind),
            amount=row.amount,
            date=row.date,
            description=row.description or "",
            method=row.method,
            reference=row.reference,
        )

    def _to_row(self, txn: Transaction) -> models.StudentTransaction:
        return models.StudentTransaction(
            id=txn.id,
            school_id=self.school_id,
            student_id=txn.student_id,
            kind=txn.kind.value,
            amount=txn.amount,
            date=txn.date,
            description=txn.description,
            method=txn.method.value if txn.method else None,
            reference=txn.reference,
        )

    def append(self, txn: Transaction) -> Transaction:
        return self.append_many([txn])[0]

    def append_many(self, txns: Sequence[Transaction]) -> List[Transaction]:
        """Append in the given order, all or nothing."""
        with self.session() as db:
            with db.begin():
                db.add_all([self._to_row(t) for t in txns])
        return list(txns)

    def load(self, student_id: Optional[str] = None) -> List[Transaction]:
        """Transactions in arrival order, optionally for one student."""
        with self.session() as db:
            stmt = select(self.model).where(self.model.school_id == self.school_id)
            if student_id is not None:
                stmt = stmt.where(self.model.student_id == student_id)
            rows = db.execute(stmt.order_by(self.model.seq)).scalars().all()
            return [self._to_schema(r) for r in rows]

    def student_ids(self) -> List[str]:
        with self.session() as db:
            stmt = (
                select(distinct(self.model.student_id))
                .where(self.model.school_id == self.school_id)
                .order_by(self.model.student_id)
            )
            return list(db.execute(stmt).scalars().all())

    def find_by_key(self, key_field: str, key_value: Any) -> Optional[Transaction]:
        """Find transaction by key field (``id`` or ``reference``)."""
        with self.session() as db:
            row = self._find_row(db, key_field, key_value)
            return self._to_schema(row) if row else None

    def search(
        self,
        query: str = "",
        student_id: Optional[str] = None,
        kind: Optional[TransactionKind] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 100,
    ) -> List[Transaction]:
        """Search transactions with filters, newest first."""
        stmt = select(self.model).where(self.model.school_id == self.school_id)
        if student_id:
            stmt = stmt.where(self.model.student_id == student_id)
        if kind is not None:
            stmt = stmt.where(self.model.kind == TransactionKind(kind).value)
        if start_date:
            stmt = stmt.where(self.model.date >= start_date)
        if end_date:
            stmt = stmt.where(self.model.date <= end_date)
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(or_(
                self.model.description.ilike(pattern),
                self.model.reference.ilike(pattern),
                self.model.id.ilike(pattern),
            ))
        stmt = stmt.order_by(self.model.date.desc(), self.model.seq.desc()).limit(limit)
        with self.session() as db:
            return [self._to_schema(r) for r in db.execute(stmt).scalars().all()]


class StaffRepository(BaseRepository):
    """Repository for the staff roster."""

    model = models.Staff

    @staticmethod
    def _to_schema(row: models.Staff) -> StaffMember:
        return StaffMember(
            staff_id=row.id,
            name=row.name or "",
            base_salary=row.base_salary,
            kra_pin=row.kra_pin,
            nssf_number=row.nssf_number,
            sha_number=row.sha_number,
            is_active=bool(row.is_active),
        )

    def upsert(self, staff: StaffMember) -> Dict[str, int]:
        with self.session() as db:
            with db.begin():
                row = self._find_row(db, "id", staff.staff_id)
                created = row is None
                if created:
                    row = models.Staff(id=staff.staff_id, school_id=self.school_id)
                    db.add(row)
                row.name = staff.name
                row.base_salary = staff.base_salary
                row.kra_pin = staff.kra_pin
                row.nssf_number = staff.nssf_number
                row.sha_number = staff.sha_number
                row.is_active = staff.is_active
        return {"created": int(created), "updated": int(not created)}

    def find_by_key(self, key_field: str, key_value: Any) -> Optional[StaffMember]:
        """Find staff member by key field (``id``, ``kra_pin``, ...)."""
        with self.session() as db:
            row = self._find_row(db, key_field, key_value)
            return self._to_schema(row) if row else None

    def get_active(self) -> List[StaffMember]:
        with self.session() as db:
            stmt = (
                select(self.model)
                .where(self.model.school_id == self.school_id, self.model.is_active.is_(True))
                .order_by(self.model.name, self.model.id)
            )
            return [self._to_schema(r) for r in db.execute(stmt).scalars().all()]


class PayrollItemsRepository(BaseRepository):
    """Repository for recurring earning/deduction templates."""

    model = models.PayrollItem

    @staticmethod
    def _to_schema(row: models.PayrollItem) -> PayrollItemTemplate:
        if row.calculation == "PercentOfBasic":
            calculation = PercentOfBasic(rate=row.value)
        else:
            calculation = FixedAmount(amount=row.value)
        return PayrollItemTemplate(
            id=row.id,
            name=row.name,
            category=ItemCategory(row.category),
            calculation=calculation,
            is_recurring=bool(row.is_recurring),
        )

    @staticmethod
    def _apply(row: models.PayrollItem, item: PayrollItemTemplate):
        row.name = item.name
        row.category = item.category.value
        row.calculation = item.calculation.kind
        row.value = item.calculation.amount if isinstance(item.calculation, FixedAmount) else item.calculation.rate
        row.is_recurring = item.is_recurring

    def create(self, item: PayrollItemTemplate) -> PayrollItemTemplate:
        item_id = item.id or str(uuid4())
        with self.session() as db:
            with db.begin():
                row = models.PayrollItem(id=item_id, school_id=self.school_id)
                self._apply(row, item)
                db.add(row)
        return item.model_copy(update={"id": item_id})

    def replace(self, item: PayrollItemTemplate) -> PayrollItemTemplate:
        with self.session() as db:
            with db.begin():
                row = self._find_row(db, "id", item.id)
                if row is None:
                    raise NotFoundError(f"Payroll item with ID {item.id} not found")
                self._apply(row, item)
        return item

    def delete(self, item_id: str) -> None:
        with self.session() as db:
            with db.begin():
                row = self._find_row(db, "id", item_id)
                if row is None:
                    raise NotFoundError(f"Payroll item with ID {item_id} not found")
                db.delete(row)

    def find_by_key(self, key_field: str, key_value: Any) -> Optional[PayrollItemTemplate]:
        with self.session() as db:
            row = self._find_row(db, key_field, key_value)
            return self._to_schema(row) if row else None

    def load_all(self) -> List[PayrollItemTemplate]:
        with self.session() as db:
            stmt = select(self.model).where(self.model.school_id == self.school_id).order_by(self.model.created_at, self.model.name)
            return [self._to_schema(r) for r in db.execute(stmt).scalars().all()]


class PayrollRunsRepository(BaseRepository):
    """Append-only payroll history. One batch per period."""

    model = models.Payroll

    @staticmethod
    def _to_schema(row: models.Payroll) -> PayrollRecord:
        earnings = tuple(PayLine(name=l.name, amount=l.amount) for l in row.lines if l.category == EARNING)
        deductions = tuple(PayLine(name=l.name, amount=l.amount) for l in row.lines if l.category == DEDUCTION)
        return PayrollRecord(
            id=row.id,
            staff_id=row.staff_id,
            staff_name=row.staff_name or "",
            period=row.period,
            pay_date=row.pay_date,
            earnings=earnings,
            deductions=deductions,
            gross_pay=row.gross_pay,
            total_deductions=row.total_deductions,
            net_pay=row.net_pay,
            finalized_at=row.finalized_at,
        )

    def _to_row(self, record: PayrollRecord) -> models.Payroll:
        row = models.Payroll(
            id=record.id,
            school_id=self.school_id,
            staff_id=record.staff_id,
            staff_name=record.staff_name,
            period=record.period,
            pay_date=record.pay_date,
            gross_pay=record.gross_pay,
            total_deductions=record.total_deductions,
            net_pay=record.net_pay,
            finalized_at=record.finalized_at,
        )
        tagged = [(EARNING, l) for l in record.earnings] + [(DEDUCTION, l) for l in record.deductions]
        row.lines = [
            models.PayrollLine(category=category, position=i, name=line.name, amount=line.amount)
            for i, (category, line) in enumerate(tagged)
        ]
        return row

    def has_period(self, period: str) -> bool:
        with self.session() as db:
            stmt = select(func.count()).select_from(self.model).where(
                self.model.school_id == self.school_id, self.model.period == period
            )
            return db.execute(stmt).scalar_one() > 0

    def append_batch(self, period: str, records: Iterable[PayrollRecord]) -> int:
        """Store a whole period in one database transaction."""
        records = list(records)
        try:
            with self.session() as db:
                with db.begin():
                    stmt = select(func.count()).select_from(self.model).where(
                        self.model.school_id == self.school_id, self.model.period == period
                    )
                    if db.execute(stmt).scalar_one() > 0:
                        raise AlreadyFinalizedError(f"Payroll for {period} is already finalized")
                    db.add_all([self._to_row(r) for r in records])
        except IntegrityError as e:
            raise AlreadyFinalizedError(f"Payroll for {period} is already finalized") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not store payroll for {period}: {e}") from e
        return len(records)

    def find_by_key(self, key_field: str, key_value: Any) -> Optional[PayrollRecord]:
        with self.session() as db:
            column = getattr(self.model, key_field)
            stmt = (
                select(self.model)
                .options(selectinload(self.model.lines))
                .where(self.model.school_id == self.school_id, column == key_value)
            )
            row = db.execute(stmt).scalars().first()
            return self._to_schema(row) if row else None

    def query(
        self,
        staff_id: Optional[str] = None,
        period: Optional[str] = None,
        year: Optional[int] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Tuple[List[PayrollRecord], int]:
        """Filtered history, newest pay date first, with the unpaged total."""
        filters = [self.model.school_id == self.school_id]
        if staff_id:
            filters.append(self.model.staff_id == staff_id)
        if period:
            filters.append(self.model.period == period)
        if year:
            filters.append(self.model.period.like(f"{year:04d}-%"))
        with self.session() as db:
            total = db.execute(select(func.count()).select_from(self.model).where(*filters)).scalar_one()
            stmt = (
                select(self.model)
                .options(selectinload(self.model.lines))
                .where(*filters)
                .order_by(self.model.pay_date.desc(), self.model.staff_name, self.model.staff_id)
            )
            if limit:
                stmt = stmt.offset((max(page, 1) - 1) * limit).limit(limit)
            rows = db.execute(stmt).scalars().all()
            return [self._to_schema(r) for r in rows], total
