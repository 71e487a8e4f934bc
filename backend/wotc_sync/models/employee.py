"""
Employee and hours records written by the connector adapters.

Only the columns the sync engine reads or writes live here. Screening
outcomes are written by the questionnaire side of the platform and read here
only to push results back to the originating ATS or HRIS.
"""

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, Text, ForeignKey, UniqueConstraint,
)
from sqlalchemy.sql import func

from wotc_sync.db.base_class import Base


class Employee(Base):
    __tablename__ = "employees"  # type: ignore[assignment]

    id = Column(Integer, primary_key=True, autoincrement=True)
    employer_id = Column(String(64), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(30), nullable=True)
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(2), nullable=True)
    zip_code = Column(String(10), nullable=True)
    job_title = Column(String(150), nullable=True)
    department = Column(String(150), nullable=True)
    hire_date = Column(Date, nullable=True)
    start_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="active")
    screening_status = Column(String(20), nullable=False, default="pending")
    target_group = Column(String(100), nullable=True)
    certification_number = Column(String(50), nullable=True)
    credit_amount = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class HoursWorked(Base):
    __tablename__ = "hours_worked"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("employee_id", "period_start", "period_end", name="uq_hours_worked_period"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    employer_id = Column(String(64), nullable=False, index=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    hours = Column(Numeric(8, 2), nullable=False, default=0)
    wages = Column(Numeric(12, 2), nullable=True)
    source = Column(String(20), nullable=False, default="manual")  # manual, payroll_system
    source_reference = Column(String(255), nullable=True)  # provider payroll id
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
