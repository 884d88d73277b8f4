from datetime import datetime, timezone, date
from pms_api.extensions import db

CALC_FIXED = "fixed"
CALC_PERCENTAGE = "percentage"
CALC_METHODS = (CALC_FIXED, CALC_PERCENTAGE)

APPROVAL_STATES = ("pending", "approved", "rejected")
FREQUENCIES = ("weekly", "biweekly", "monthly", "quarterly", "annual")


class SalaryGrade(db.Model):
    __tablename__ = "salary_grades"

    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.String(20), unique=True, nullable=False)   # GL-01, GL-02 ...
    description = db.Column(db.String(255))
    basic_salary = db.Column(db.Numeric(14, 2), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    components = db.relationship(
        "SalaryComponent",
        back_populates="grade",
        order_by="SalaryComponent.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    department = db.relationship("Department", lazy="joined")


class SalaryComponent(db.Model):
    __tablename__ = "salary_components"

    id = db.Column(db.Integer, primary_key=True)
    grade_id = db.Column(db.Integer, db.ForeignKey("salary_grades.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)                 # Housing, Transport, ...
    type = db.Column(db.Enum("allowance", "deduction", name="component_type_enum"), nullable=False)
    calculation_method = db.Column(db.Enum(*CALC_METHODS, name="calc_method_enum"), nullable=False, default=CALC_FIXED)
    value = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    taxable = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    position = db.Column(db.Integer, nullable=False, default=100)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("grade_id", "name", "type", name="uq_grade_component_name"),
    )

    grade = db.relationship("SalaryGrade", back_populates="components")


class Allowance(db.Model):
    """Additional, employee-specific allowance on top of the grade structure."""
    __tablename__ = "allowances"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(255))
    calculation_method = db.Column(db.Enum(*CALC_METHODS, name="allowance_calc_enum"), nullable=False, default=CALC_FIXED)
    value = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    frequency = db.Column(db.Enum(*FREQUENCIES, name="allowance_freq_enum"), nullable=False, default="monthly")
    taxable = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    approval_status = db.Column(db.Enum(*APPROVAL_STATES, name="allowance_approval_enum"), nullable=False, default="pending")
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    approved_at = db.Column(db.DateTime(timezone=True))

    effective_date = db.Column(db.Date, nullable=False, default=date.today)
    expiry_date = db.Column(db.Date)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    employee = db.relationship("Employee", lazy="joined")
