from datetime import datetime, timezone
from pms_api.extensions import db


class EmployeeBankAccount(db.Model):
    __tablename__ = "employee_bank_accounts"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bank_name = db.Column(db.String(80), nullable=False)
    account_number = db.Column(db.String(40), nullable=False)
    account_name = db.Column(db.String(160), nullable=False)

    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_empbank_primary", "employee_id", "is_primary"),
    )

    def snapshot(self) -> dict:
        return {
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "account_name": self.account_name,
        }
