from datetime import datetime, timezone, date
from pms_api.extensions import db

DEDUCTION_KINDS = ("loan", "union_dues", "cooperative", "other")


class EmployeeDeduction(db.Model):
    """Loans and ad hoc deductions; amounts are taken verbatim each period."""
    __tablename__ = "employee_deductions"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = db.Column(db.Enum(*DEDUCTION_KINDS, name="emp_deduction_kind_enum"), nullable=False, default="other")
    description = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    start_date = db.Column(db.Date, nullable=False, default=date.today)
    end_date = db.Column(db.Date)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    employee = db.relationship("Employee", lazy="joined")
