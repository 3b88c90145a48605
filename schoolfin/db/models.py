from sqlalchemy import (
    Column, String, Integer, Numeric, ForeignKey, Date, DateTime, Boolean, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from schoolfin.db.session import Base

MONEY = Numeric(12, 2)


class StudentTransaction(Base):
    __tablename__ = "transactions"
    # seq records arrival order; same-day entries are replayed in this order
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True)
    school_id = Column(String, nullable=False, index=True)
    student_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)  # Invoice / Payment / ManualDebit / ManualCredit
    amount = Column(MONEY, nullable=False)
    date = Column(Date, nullable=False)
    description = Column(String, default="")
    method = Column(String, nullable=True)
    reference = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Staff(Base):
    __tablename__ = "staff"
    id = Column(String, primary_key=True)
    school_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    base_salary = Column(MONEY, nullable=False, default=0)
    kra_pin = Column(String, nullable=True)
    nssf_number = Column(String, nullable=True)
    sha_number = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PayrollItem(Base):
    __tablename__ = "payroll_items"
    id = Column(String, primary_key=True)
    school_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=False)  # Earning / Deduction
    calculation = Column(String, nullable=False)  # Fixed / PercentOfBasic
    value = Column(Numeric(12, 4), nullable=False, default=0)
    is_recurring = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Payroll(Base):
    __tablename__ = "payrolls"
    __table_args__ = (UniqueConstraint("school_id", "staff_id", "period", name="uq_payroll_staff_period"),)
    id = Column(String, primary_key=True)
    school_id = Column(String, nullable=False, index=True)
    staff_id = Column(String, nullable=False, index=True)
    staff_name = Column(String, default="")
    period = Column(String, nullable=False, index=True)  # YYYY-MM
    pay_date = Column(Date, nullable=False)
    gross_pay = Column(MONEY, nullable=False)
    total_deductions = Column(MONEY, nullable=False)
    net_pay = Column(MONEY, nullable=False)
    finalized_at = Column(DateTime, default=datetime.utcnow)

    lines = relationship(
        "PayrollLine",
        back_populates="payroll",
        cascade="all, delete-orphan",
        order_by="PayrollLine.position",
    )


class PayrollLine(Base):
    __tablename__ = "payroll_lines"
    id = Column(Integer, primary_key=True, autoincrement=True)
    payroll_id = Column(String, ForeignKey("payrolls.id"), nullable=False, index=True)
    category = Column(String, nullable=False)  # Earning / Deduction
    position = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    amount = Column(MONEY, nullable=False)

    payroll = relationship("Payroll", back_populates="lines")
