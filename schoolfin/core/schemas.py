"""
Domain types for the fee ledger and the payroll run.
Inputs are validated here, at the boundary; the calculators trust them.
"""
import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from .exceptions import NotFoundError
from .utils import ZERO, money_sum, to_money

PERIOD_PATTERN = re.compile(r"^[0-9]{4}-(0[1-9]|1[0-2])$")


def _new_id() -> str:
    return str(uuid4())


# --- Fee ledger ---

class TransactionKind(str, Enum):
    """Ledger entry kinds. Each member declares its effect on the balance."""

    INVOICE = ("Invoice", 1)
    PAYMENT = ("Payment", -1)
    MANUAL_DEBIT = ("ManualDebit", 1)
    MANUAL_CREDIT = ("ManualCredit", -1)

    def __new__(cls, value: str, sign: int):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.sign = sign
        return obj

    @property
    def is_debit(self) -> bool:
        return self.sign > 0

    @property
    def is_payment(self) -> bool:
        return self is TransactionKind.PAYMENT


class PaymentMethod(str, Enum):
    MPESA = "MPesa"
    CASH = "Cash"
    CHECK = "Check"


class Transaction(BaseModel):
    """Immutable ledger entry. ``amount`` is always positive; ``kind`` gives the sign."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    student_id: str = Field(..., min_length=1)
    kind: TransactionKind
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    date: date
    description: str = ""
    method: Optional[PaymentMethod] = None
    reference: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def quantize_money(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount * self.kind.sign


class StudentFinancialSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    student_id: Optional[str] = None
    balance: Decimal = ZERO
    overpayment: Decimal = ZERO
    last_payment_date: Optional[date] = None

    @property
    def net(self) -> Decimal:
        """Signed position: positive when owing, negative when in credit."""
        return self.balance - self.overpayment


class StatementLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction: Transaction
    running_balance: Decimal

    @property
    def debit(self) -> Decimal:
        return self.transaction.amount if self.transaction.kind.is_debit else ZERO

    @property
    def credit(self) -> Decimal:
        return ZERO if self.transaction.kind.is_debit else self.transaction.amount


# --- Payroll configuration ---

class ItemCategory(str, Enum):
    EARNING = "Earning"
    DEDUCTION = "Deduction"


class FixedAmount(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["Fixed"] = "Fixed"
    amount: Decimal = Field(..., ge=0)

    def amount_for(self, base_salary: Decimal) -> Decimal:
        return to_money(self.amount)


class PercentOfBasic(BaseModel):
    """Percentage of base salary. ``rate`` is a percent: 10 means 10%."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["PercentOfBasic"] = "PercentOfBasic"
    rate: Decimal = Field(..., ge=0)

    def amount_for(self, base_salary: Decimal) -> Decimal:
        return to_money(self.rate / Decimal(100) * base_salary)


ItemCalculation = Annotated[Union[FixedAmount, PercentOfBasic], Field(discriminator="kind")]


class PayrollItemTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    category: ItemCategory
    calculation: ItemCalculation
    is_recurring: bool = False

    def amount_for(self, base_salary: Decimal) -> Decimal:
        return self.calculation.amount_for(base_salary)


class StaffMember(BaseModel):
    """Roster entry. Statutory numbers are carried for payslips and forms only."""

    model_config = ConfigDict(frozen=True)

    staff_id: str = Field(..., min_length=1)
    name: str = ""
    base_salary: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    kra_pin: Optional[str] = None
    nssf_number: Optional[str] = None
    sha_number: Optional[str] = None
    is_active: bool = True

    @field_validator("base_salary")
    @classmethod
    def quantize_money(cls, v: Decimal) -> Decimal:
        return to_money(v)


# --- Payroll run ---

class PayLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)

    @field_validator("amount")
    @classmethod
    def quantize_money(cls, v: Decimal) -> Decimal:
        return to_money(v)


def _check_period(value: str) -> str:
    if not PERIOD_PATTERN.match(value):
        raise ValueError("period must be YYYY-MM")
    return value


class PayrollEntry(BaseModel):
    """Draft payroll for one staff member. Totals are re-summed from the lines on every read."""

    staff_id: str = Field(..., min_length=1)
    staff_name: str = ""
    period: str
    pay_date: date
    earnings: List[PayLine] = Field(default_factory=list)
    deductions: List[PayLine] = Field(default_factory=list)

    @field_validator("period")
    @classmethod
    def valid_period(cls, v: str) -> str:
        return _check_period(v)

    @computed_field
    @property
    def gross_pay(self) -> Decimal:
        return money_sum(line.amount for line in self.earnings)

    @computed_field
    @property
    def total_deductions(self) -> Decimal:
        return money_sum(line.amount for line in self.deductions)

    @computed_field
    @property
    def net_pay(self) -> Decimal:
        return self.gross_pay - self.total_deductions

    def deduction_index(self, name: str) -> int:
        for i, line in enumerate(self.deductions):
            if line.name == name:
                return i
        raise NotFoundError(f"No deduction '{name}' for staff {self.staff_id}")

    def deduction_amount(self, name: str) -> Decimal:
        return self.deductions[self.deduction_index(name)].amount


class PayrollRecord(BaseModel):
    """Finalized, immutable payroll history row."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    staff_id: str
    staff_name: str = ""
    period: str
    pay_date: date
    earnings: Tuple[PayLine, ...]
    deductions: Tuple[PayLine, ...]
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    finalized_at: datetime = Field(default_factory=datetime.now)

    @field_validator("period")
    @classmethod
    def valid_period(cls, v: str) -> str:
        return _check_period(v)

    @model_validator(mode="after")
    def check_totals(self):
        if self.gross_pay != money_sum(line.amount for line in self.earnings):
            raise ValueError("gross_pay does not match earnings")
        if self.total_deductions != money_sum(line.amount for line in self.deductions):
            raise ValueError("total_deductions does not match deductions")
        if self.net_pay != self.gross_pay - self.total_deductions:
            raise ValueError("net_pay does not match gross_pay - total_deductions")
        return self

    @classmethod
    def from_entry(cls, entry: PayrollEntry, finalized_at: Optional[datetime] = None) -> "PayrollRecord":
        return cls(
            staff_id=entry.staff_id,
            staff_name=entry.staff_name,
            period=entry.period,
            pay_date=entry.pay_date,
            earnings=tuple(entry.earnings),
            deductions=tuple(entry.deductions),
            gross_pay=entry.gross_pay,
            total_deductions=entry.total_deductions,
            net_pay=entry.net_pay,
            finalized_at=finalized_at or datetime.now(),
        )

    def deduction_amount(self, name: str) -> Decimal:
        for line in self.deductions:
            if line.name == name:
                return line.amount
        return ZERO
