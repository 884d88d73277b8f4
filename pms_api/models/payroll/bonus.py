from datetime import datetime, timezone, date
from pms_api.extensions import db

from .components import APPROVAL_STATES

BONUS_TYPES = ("performance", "thirteenth_month", "special", "achievement", "retention", "project")


class Bonus(db.Model):
    __tablename__ = "bonuses"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"))
    type = db.Column(db.Enum(*BONUS_TYPES, name="bonus_type_enum"), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    description = db.Column(db.String(255))

    payment_date = db.Column(db.Date)
    effective_date = db.Column(db.Date, nullable=False, default=date.today)
    expiry_date = db.Column(db.Date)

    taxable = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    approval_status = db.Column(db.Enum(*APPROVAL_STATES, name="bonus_approval_enum"), nullable=False, default="pending")
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    approved_at = db.Column(db.DateTime(timezone=True))

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_bonus_emp_status", "employee_id", "approval_status"),
    )

    employee = db.relationship("Employee", lazy="joined")
