from datetime import datetime, date, timezone

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required

from pms_api.common.auth import requires_perms, current_user, scope_to_department
from pms_api.models.employee import Employee
from pms_api.models.payroll.bonus import Bonus
from pms_api.models.payroll.components import Allowance
from pms_api.models.payroll.payroll import Payroll
from pms_api.services.payroll_stats import summarize, department_breakdown, period_summary

bp = Blueprint("dashboard", __name__, url_prefix="/api/v1/dashboard")


def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def _fail(msg, status=400):
    return jsonify({"success": False, "error": {"message": msg}}), status


@bp.get("")
@jwt_required()
@requires_perms("VIEW_PAYROLL_STATS", "VIEW_ALL_PAYROLL", "VIEW_DEPARTMENT_PAYROLL")
def get_dashboard():
    """
    Payroll dashboard for one period (?month=&year=, default current month).
    Department admins only see their own department.
    """
    today = date.today()
    month = request.args.get("month", default=today.month, type=int)
    year = request.args.get("year", default=today.year, type=int)
    if not 1 <= month <= 12:
        return _fail("month must be between 1 and 12", 422)

    user = current_user()

    # 1. Period payrolls
    rows = scope_to_department(
        Payroll.query.filter(Payroll.month == month, Payroll.year == year),
        Payroll.department_id, user,
    ).all()

    # 2. Headcount
    emp_q = scope_to_department(Employee.query, Employee.department_id, user)
    total_emps = emp_q.count()
    active_emps = emp_q.filter(Employee.status == "active").count()

    # 3. Approvals waiting
    pending_allowances = scope_to_department(
        Allowance.query.join(Employee, Employee.id == Allowance.employee_id)
        .filter(Allowance.approval_status == "pending"),
        Employee.department_id, user,
    ).count()
    pending_bonuses = scope_to_department(
        Bonus.query.filter(Bonus.approval_status == "pending"), Bonus.department_id, user,
    ).count()

    return _ok({
        "context": {
            "month": month,
            "year": year,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        },
        "headcount": {
            "total": total_emps,
            "active": active_emps,
            "inactive": total_emps - active_emps,
            "without_payroll": max(active_emps - len({r.employee_id for r in rows}), 0),
        },
        "period": period_summary(rows),
        "stats": summarize(rows),
        "departments": department_breakdown(rows),
        "pending_approvals": {
            "allowances": pending_allowances,
            "bonuses": pending_bonuses,
        },
    })
