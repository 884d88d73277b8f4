from datetime import datetime, timezone
from pms_api.extensions import db

from .components import FREQUENCIES

PAYROLL_STATUSES = (
    "DRAFT", "PENDING", "APPROVED", "REJECTED",
    "PENDING_PAYMENT", "PAID", "CANCELLED", "FAILED", "ARCHIVED",
)


class Payroll(db.Model):
    """One employee's computed pay for one period."""
    __tablename__ = "payrolls"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), index=True)
    salary_grade_id = db.Column(db.Integer, db.ForeignKey("salary_grades.id", ondelete="SET NULL"))

    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    frequency = db.Column(db.Enum(*FREQUENCIES, name="payroll_freq_enum"), nullable=False, default="monthly")
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)

    basic_salary = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_allowances = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_bonuses = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    overtime_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    gross_earnings = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    taxable_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    pensionable_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    pension_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    nhf_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    loan_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    other_deductions = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_deductions = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    net_pay = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    status = db.Column(db.Enum(*PAYROLL_STATUSES, name="payroll_status_enum"), nullable=False, default="DRAFT")
    approval_level = db.Column(db.String(32))    # sign-off level awaited while PENDING

    bank_snapshot = db.Column(db.JSON)     # {"bank_name", "account_number", "account_name"}
    payment_reference = db.Column(db.String(64))
    payment_initiated_at = db.Column(db.DateTime(timezone=True))
    paid_at = db.Column(db.DateTime(timezone=True))
    failure_reason = db.Column(db.String(255))
    remarks = db.Column(db.String(255))
    calc_meta = db.Column(db.JSON)         # rule set and trace used for the computation

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("employee_id", "month", "year", "frequency", name="uq_payroll_emp_period"),
        db.Index("ix_payroll_period_status", "year", "month", "status"),
    )

    employee = db.relationship("Employee", lazy="joined")
    department = db.relationship("Department", lazy="joined")
    salary_grade = db.relationship("SalaryGrade", lazy="joined")
    lines = db.relationship(
        "PayrollLine",
        back_populates="payroll",
        order_by="PayrollLine.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    approvals = db.relationship(
        "PayrollApproval",
        back_populates="payroll",
        order_by="PayrollApproval.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class PayrollLine(db.Model):
    __tablename__ = "payroll_lines"

    id = db.Column(db.Integer, primary_key=True)
    payroll_id = db.Column(db.Integer, db.ForeignKey("payrolls.id", ondelete="CASCADE"), nullable=False, index=True)
    category = db.Column(db.Enum("earning", "allowance", "bonus", "deduction", name="payroll_line_cat_enum"), nullable=False)
    code = db.Column(db.String(50), nullable=False)      # BASIC, OVERTIME, PAYE, PENSION, NHF, LOAN ...
    name = db.Column(db.String(120), nullable=False)
    source = db.Column(db.String(30))                     # grade_component / allowance / bonus / employee_deduction / statutory
    source_id = db.Column(db.Integer)
    calculation_method = db.Column(db.String(20))
    value = db.Column(db.Numeric(14, 2))
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    taxable = db.Column(db.Boolean, default=False)

    __table_args__ = (
        db.Index("ix_payroll_line_source", "source", "source_id"),
    )

    payroll = db.relationship("Payroll", back_populates="lines")


class PayrollApproval(db.Model):
    """Append-only history of status changes."""
    __tablename__ = "payroll_approvals"

    id = db.Column(db.Integer, primary_key=True)
    payroll_id = db.Column(db.Integer, db.ForeignKey("payrolls.id", ondelete="CASCADE"), nullable=False, index=True)
    level = db.Column(db.String(30))            # approval level, or role of the acting user
    action = db.Column(db.String(30), nullable=False)
    from_status = db.Column(db.String(20))
    to_status = db.Column(db.String(20), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    remarks = db.Column(db.String(255))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    payroll = db.relationship("Payroll", back_populates="approvals")


class PayrollPeriod(db.Model):
    """Cached per-period totals for the dashboard."""
    __tablename__ = "payroll_periods"

    id = db.Column(db.Integer, primary_key=True)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    employee_count = db.Column(db.Integer, nullable=False, default=0)
    payroll_count = db.Column(db.Integer, nullable=False, default=0)
    total_net_salary = db.Column(db.Numeric(16, 2), nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("month", "year", name="uq_payroll_period"),
    )
