from decimal import Decimal
from typing import List, Optional

from pms_api.extensions import db
from pms_api.models.payroll.payroll import Payroll, PayrollLine, PayrollPeriod
from pms_api.services.payroll_stats import period_summary

# Default statutory parameters used by `flask seed-deductions`
DEFAULT_PAYE = {
    "brackets": [
        {"from": 0, "to": 30000, "rate": 7},
        {"from": 30001, "to": 60000, "rate": 11},
        {"from": 60001, "to": 110000, "rate": 15},
        {"from": 110001, "to": 160000, "rate": 19},
        {"from": 160001, "to": None, "rate": 21},
    ]
}
DEFAULT_PENSION = {"rate": 8, "pensionable_components": []}
DEFAULT_NHF = {"rate": 2.5}
DEFAULT_RELIEF = {"fixed": 0, "rate": 0}


def get_payrolls_for_period(month: int, year: int, department_id: Optional[int] = None) -> List[Payroll]:
    q = Payroll.query.filter(Payroll.month == month, Payroll.year == year)
    if department_id is not None:
        q = q.filter(Payroll.department_id == department_id)
    return q.order_by(Payroll.id.asc()).all()


def refresh_period(month: int, year: int) -> PayrollPeriod:
    """Recompute the cached PayrollPeriod row for (month, year). Caller commits."""
    rows = get_payrolls_for_period(month, year)
    summary = period_summary(rows)
    period = PayrollPeriod.query.filter_by(month=month, year=year).first()
    if period is None:
        period = PayrollPeriod(month=month, year=year)
        db.session.add(period)
    period.employee_count = summary["employee_count"]
    period.payroll_count = summary["payroll_count"]
    period.total_net_salary = Decimal(str(summary["total_net_salary"]))
    return period


def period_row(p: PayrollPeriod) -> dict:
    return {
        "month": p.month,
        "year": p.year,
        "employee_count": p.employee_count,
        "payroll_count": p.payroll_count,
        "total_net_salary": float(p.total_net_salary or 0),
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }


def source_in_use(source: str, source_id: int) -> bool:
    """True when any stored payroll line was computed from this record."""
    return db.session.query(
        PayrollLine.query.filter_by(source=source, source_id=source_id).exists()
    ).scalar()
