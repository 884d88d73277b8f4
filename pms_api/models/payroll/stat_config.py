from datetime import datetime, timezone, date
from pms_api.extensions import db

STAT_TYPES = ("PAYE", "PENSION", "NHF", "RELIEF")


class StatConfig(db.Model):
    """
    Effective-dated statutory deduction parameter.

    value_json shapes:
    - PAYE:    {"brackets": [{"from": 0, "to": 30000, "rate": 7}, ..., {"from": 160001, "to": null, "rate": 21}]}
    - PENSION: {"rate": 8, "pensionable_components": ["Housing", "Transport"]}
    - NHF:     {"rate": 2.5}
    - RELIEF:  {"fixed": 0, "rate": 0}   (rate is % of gross earnings)
    """
    __tablename__ = "stat_configs"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Enum(*STAT_TYPES, name="statconfig_type"), nullable=False)
    key = db.Column(db.String(80), nullable=False)
    value_json = db.Column(db.JSON, nullable=False)

    # department scope; NULL means global
    scope_department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=100)

    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    effective_to = db.Column(db.Date)

    created_by = db.Column(db.Integer)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    closed_by = db.Column(db.Integer)
    closed_at = db.Column(db.DateTime(timezone=True))

    __table_args__ = (
        db.Index(
            "ix_statcfg_resolve",
            "type",
            "scope_department_id",
            "effective_from",
            "effective_to",
            "priority",
        ),
    )
