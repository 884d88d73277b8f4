from datetime import datetime, timezone
from pms_api.extensions import db

EMPLOYEE_STATUSES = ("active", "inactive", "suspended", "offboarded")


class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    department_id   = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=True)
    salary_grade_id = db.Column(db.Integer, db.ForeignKey("salary_grades.id", ondelete="RESTRICT"), nullable=True)
    user_id         = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True)

    code  = db.Column(db.String(32), unique=True, nullable=False)   # EMP001
    email = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name  = db.Column(db.String(80), nullable=True)
    phone      = db.Column(db.String(20), nullable=True)
    position   = db.Column(db.String(120), nullable=True)

    # statutory ids; NHF applies only when a number is on file
    nhf_number     = db.Column(db.String(40), nullable=True)
    pension_number = db.Column(db.String(40), nullable=True)
    tax_id         = db.Column(db.String(40), nullable=True)

    # overtime for the current period
    overtime_hours = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    overtime_rate  = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    doj = db.Column(db.Date, nullable=True)   # date of joining
    dol = db.Column(db.Date, nullable=True)   # date of leaving (null if active)
    status = db.Column(db.String(16), default="active", nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_emp_dept_id", "department_id"),
        db.Index("ix_emp_grade_id", "salary_grade_id"),
        db.Index("ix_emp_status", "status"),
    )

    department   = db.relationship("Department", lazy="joined")
    salary_grade = db.relationship("SalaryGrade", lazy="joined")
    user         = db.relationship("User", lazy="joined")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def primary_bank(self):
        from pms_api.models.employee_bank import EmployeeBankAccount
        return (
            EmployeeBankAccount.query
            .filter_by(employee_id=self.id)
            .order_by(EmployeeBankAccount.is_primary.desc(), EmployeeBankAccount.id.asc())
            .first()
        )
