# pms_api/blueprints/payrolls.py
from __future__ import annotations

from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required

from pms_api.common.auth import (
    requires_perms, current_user, scope_to_department, in_department_scope, user_has_any,
)
from pms_api.common.http import ok, fail
from pms_api.common.paging import page_limit, period_args
from pms_api.extensions import db
from pms_api.models.employee import Employee
from pms_api.models.payroll.components import FREQUENCIES
from pms_api.models.payroll.payroll import Payroll, PayrollPeriod, PAYROLL_STATUSES
from pms_api.services import payroll_processing as proc
from pms_api.services.payroll_common import period_row, refresh_period
from pms_api.services.payroll_stats import summarize, department_breakdown
from pms_api.services.payroll_status import ACTIONS, APPROVAL_LEVELS, DRAFT, TRANSITIONS

bp = Blueprint("payrolls", __name__, url_prefix="/api/v1/payrolls")

VIEW_PERMS = ("VIEW_ALL_PAYROLL", "VIEW_DEPARTMENT_PAYROLL")

# payment steps are organisation level; sign-off is further limited by approval level
ACTION_PERMS = {
    "submit": ("SUBMIT_PAYROLL",),
    "approve": ("APPROVE_PAYROLL", "APPROVE_DEPARTMENT_PAYROLL"),
    "reject": ("APPROVE_PAYROLL", "APPROVE_DEPARTMENT_PAYROLL"),
    "initiate_payment": ("APPROVE_PAYROLL",),
    "mark_paid": ("APPROVE_PAYROLL",),
    "mark_failed": ("APPROVE_PAYROLL",),
    "cancel": ("EDIT_PAYROLL", "DELETE_PAYROLL"),
    "archive": ("DELETE_PAYROLL",),
}


def _line_row(x):
    return {
        "id": x.id,
        "category": x.category,
        "code": x.code,
        "name": x.name,
        "source": x.source,
        "source_id": x.source_id,
        "calculation_method": x.calculation_method,
        "value": float(x.value) if x.value is not None else None,
        "amount": float(x.amount or 0),
        "taxable": bool(x.taxable),
    }


def _approval_row(a):
    return {
        "id": a.id,
        "level": a.level,
        "action": a.action,
        "from_status": a.from_status,
        "to_status": a.to_status,
        "user_id": a.user_id,
        "remarks": a.remarks,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }


def payroll_row(p: Payroll, detail: bool = False):
    emp = p.employee
    out = {
        "id": p.id,
        "employee_id": p.employee_id,
        "employee_code": emp.code if emp else None,
        "employee_name": emp.full_name if emp else None,
        "department_id": p.department_id,
        "department_name": p.department.name if p.department else None,
        "salary_grade": p.salary_grade.level if p.salary_grade else None,
        "month": p.month,
        "year": p.year,
        "frequency": p.frequency,
        "period_start": p.period_start.isoformat() if p.period_start else None,
        "period_end": p.period_end.isoformat() if p.period_end else None,
        "basic_salary": float(p.basic_salary or 0),
        "total_allowances": float(p.total_allowances or 0),
        "total_bonuses": float(p.total_bonuses or 0),
        "overtime_amount": float(p.overtime_amount or 0),
        "gross_earnings": float(p.gross_earnings or 0),
        "taxable_amount": float(p.taxable_amount or 0),
        "pensionable_amount": float(p.pensionable_amount or 0),
        "tax_amount": float(p.tax_amount or 0),
        "pension_amount": float(p.pension_amount or 0),
        "nhf_amount": float(p.nhf_amount or 0),
        "loan_amount": float(p.loan_amount or 0),
        "other_deductions": float(p.other_deductions or 0),
        "total_deductions": float(p.total_deductions or 0),
        "net_pay": float(p.net_pay or 0),
        "status": p.status,
        "approval_level": p.approval_level,
        "allowed_transitions": sorted(TRANSITIONS.get(p.status, ())),
        "payment_reference": p.payment_reference,
        "paid_at": p.paid_at.isoformat() if p.paid_at else None,
        "failure_reason": p.failure_reason,
        "remarks": p.remarks,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }
    if detail:
        out["bank_snapshot"] = p.bank_snapshot
        out["calc_meta"] = p.calc_meta
        out["lines"] = [_line_row(x) for x in p.lines]
        out["approvals"] = [_approval_row(a) for a in p.approvals]
    return out


def _body_period(data: dict):
    """month/year/frequency from a JSON body; raises ValueError."""
    try:
        month = int(data.get("month"))
        year = int(data.get("year"))
    except (TypeError, ValueError):
        raise ValueError("month and year are required integers")
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    frequency = (data.get("frequency") or "monthly").strip().lower()
    if frequency not in FREQUENCIES:
        raise ValueError(f"frequency must be one of {', '.join(FREQUENCIES)}")
    return month, year, frequency


def _scoped_payroll(payroll_id: int):
    p = db.session.get(Payroll, payroll_id)
    if not p or not in_department_scope(current_user(), p.department_id):
        return None
    return p


def _scoped_employee(emp_id):
    try:
        e = db.session.get(Employee, int(emp_id))
    except (TypeError, ValueError):
        return None
    if not e or not in_department_scope(current_user(), e.department_id):
        return None
    return e


def _filtered_query():
    """Payroll query with the common ?month&year&status&approval_level&department_id&employee_id filters."""
    q = scope_to_department(Payroll.query, Payroll.department_id, current_user())
    month = request.args.get("month", type=int)
    year = request.args.get("year", type=int)
    if month:
        q = q.filter(Payroll.month == month)
    if year:
        q = q.filter(Payroll.year == year)
    status = (request.args.get("status") or "").strip().upper()
    if status:
        if status not in PAYROLL_STATUSES:
            raise ValueError(f"status must be one of {', '.join(PAYROLL_STATUSES)}")
        q = q.filter(Payroll.status == status)
    level = (request.args.get("approval_level") or "").strip().upper()
    if level:
        if level not in APPROVAL_LEVELS:
            raise ValueError(f"approval_level must be one of {', '.join(APPROVAL_LEVELS)}")
        q = q.filter(Payroll.approval_level == level)
    dept_id = request.args.get("department_id", type=int)
    if dept_id:
        q = q.filter(Payroll.department_id == dept_id)
    emp_id = request.args.get("employee_id", type=int)
    if emp_id:
        q = q.filter(Payroll.employee_id == emp_id)
    return q


# ---------- compute ----------
@bp.post("/preview")
@jwt_required()
@requires_perms("CREATE_PAYROLL", "EDIT_PAYROLL")
def preview_payroll():
    """Compute without saving. JSON: { employee_id, month, year, frequency? }"""
    data = request.get_json(silent=True, force=True) or {}
    try:
        month, year, frequency = _body_period(data)
    except ValueError as e:
        return fail(str(e), 422)
    emp = _scoped_employee(data.get("employee_id"))
    if not emp:
        return fail("Employee not found", 404)
    result = proc.preview(emp, month, year, frequency)
    return ok(result.to_dict())


@bp.post("")
@jwt_required()
@requires_perms("CREATE_PAYROLL")
def create_payroll():
    data = request.get_json(silent=True, force=True) or {}
    try:
        month, year, frequency = _body_period(data)
    except ValueError as e:
        return fail(str(e), 422)
    emp = _scoped_employee(data.get("employee_id"))
    if not emp:
        return fail("Employee not found", 404)
    p = proc.create_payroll(emp, month, year, frequency, user=current_user())
    return ok(payroll_row(p, detail=True), 201)


@bp.post("/process")
@jwt_required()
@requires_perms("CREATE_PAYROLL")
def process_batch():
    """
    Batch run. JSON: { month, year, frequency?, department_id? | employee_ids? }
    Per-employee problems land in skipped/failed; the batch itself always completes.
    """
    data = request.get_json(silent=True, force=True) or {}
    try:
        month, year, frequency = _body_period(data)
    except ValueError as e:
        return fail(str(e), 422)

    user = current_user()
    q = scope_to_department(Employee.query, Employee.department_id, user)
    ids = data.get("employee_ids")
    if ids:
        if not isinstance(ids, list):
            return fail("employee_ids must be a list", 422)
        try:
            ids = [int(i) for i in ids]
        except (TypeError, ValueError):
            return fail("employee_ids must be integers", 422)
        q = q.filter(Employee.id.in_(ids))
    elif data.get("department_id"):
        try:
            dept_id = int(data["department_id"])
        except (TypeError, ValueError):
            return fail("department_id must be an integer", 422)
        q = q.filter(Employee.department_id == dept_id)
    employees = q.order_by(Employee.code.asc()).all()
    if not employees:
        return fail("No employees matched", 404)

    result = proc.process_employees(employees, month, year, frequency, user=user)
    return ok(result.as_dict())


# ---------- read ----------
@bp.get("")
@jwt_required()
@requires_perms(*VIEW_PERMS)
def list_payrolls():
    try:
        q = _filtered_query()
    except ValueError as e:
        return fail(str(e), 422)
    page, size = page_limit()
    total = q.count()
    items = (
        q.order_by(Payroll.year.desc(), Payroll.month.desc(), Payroll.id.desc())
        .offset((page - 1) * size).limit(size).all()
    )
    return ok([payroll_row(p) for p in items], page=page, size=size, total=total)


@bp.get("/<int:payroll_id>")
@jwt_required()
@requires_perms(*VIEW_PERMS)
def get_payroll(payroll_id: int):
    p = _scoped_payroll(payroll_id)
    if not p:
        return fail("Payroll not found", 404)
    return ok(payroll_row(p, detail=True))


@bp.get("/stats")
@jwt_required()
@requires_perms("VIEW_PAYROLL_STATS", "VIEW_ALL_PAYROLL", "VIEW_PAYROLL_REPORTS")
def payroll_stats():
    try:
        rows = _filtered_query().all()
    except ValueError as e:
        return fail(str(e), 422)
    return ok({"summary": summarize(rows), "departments": department_breakdown(rows)})


@bp.get("/periods")
@jwt_required()
@requires_perms(*VIEW_PERMS)
def list_periods():
    q = PayrollPeriod.query
    year = request.args.get("year", type=int)
    if year:
        q = q.filter(PayrollPeriod.year == year)
    items = q.order_by(PayrollPeriod.year.desc(), PayrollPeriod.month.desc()).all()
    return ok([period_row(p) for p in items])


@bp.post("/periods/refresh")
@jwt_required()
@requires_perms("VIEW_ALL_PAYROLL", "MANAGE_PAYROLL_SETTINGS")
def refresh_period_cache():
    try:
        month, year = period_args()
    except ValueError as e:
        return fail(str(e), 422)
    period = refresh_period(month, year)
    db.session.commit()
    return ok(period_row(period))


# ---------- change ----------
@bp.post("/<int:payroll_id>/recalculate")
@jwt_required()
@requires_perms("EDIT_PAYROLL")
def recalculate_payroll(payroll_id: int):
    p = _scoped_payroll(payroll_id)
    if not p:
        return fail("Payroll not found", 404)
    p = proc.recalculate(p, user=current_user())
    return ok(payroll_row(p, detail=True))


@bp.delete("/<int:payroll_id>")
@jwt_required()
@requires_perms("DELETE_PAYROLL")
def delete_payroll(payroll_id: int):
    """Only drafts are removed; anything further along is cancelled or archived instead."""
    p = _scoped_payroll(payroll_id)
    if not p:
        return fail("Payroll not found", 404)
    if p.status != DRAFT:
        return fail(f"Only DRAFT payrolls can be deleted (status is {p.status})", 409, code="INVALID_TRANSITION")
    month, year = p.month, p.year
    db.session.delete(p)
    db.session.flush()
    refresh_period(month, year)
    db.session.commit()
    current_app.logger.info("deleted draft payroll %s", payroll_id)
    return ok({"id": payroll_id, "deleted": True})


@bp.post("/<int:payroll_id>/<action>")
@jwt_required()
@requires_perms(*sorted({p for perms in ACTION_PERMS.values() for p in perms}))
def payroll_action(payroll_id: int, action: str):
    """
    Status actions: submit, approve, reject, initiate_payment, mark_paid,
    mark_failed, cancel, archive. JSON: { "remarks": "..." } (required for reject).
    """
    action = action.replace("-", "_").lower()
    if action not in ACTIONS:
        return fail(f"unknown payroll action {action!r}", 404)
    user = current_user()
    if not user_has_any(user, *ACTION_PERMS[action]):
        current_app.logger.warning("user %s denied payroll action %s", user.id if user else None, action)
        return fail("Forbidden", status=403, code="FORBIDDEN_PERMISSION")

    p = _scoped_payroll(payroll_id)
    if not p and action in ("approve", "reject"):
        # HR and finance sign-off reaches outside the approver's own department
        p = db.session.get(Payroll, payroll_id)
        if p and not proc.can_approve(user, p):
            p = None
    if not p:
        return fail("Payroll not found", 404)

    remarks = ((request.get_json(silent=True) or {}).get("remarks") or "").strip() or None
    if action == "reject" and not remarks:
        return fail("a reason is required to reject a payroll", 422)
    p = proc.transition(p, action, user=user, remarks=remarks)
    return ok(payroll_row(p, detail=True))


@bp.post("/mark-paid")
@jwt_required()
@requires_perms("APPROVE_PAYROLL")
def mark_paid_batch():
    """JSON: { "ids": [1, 2, 3] } ; items not awaiting payment are skipped with a reason."""
    data = request.get_json(silent=True, force=True) or {}
    ids = data.get("ids")
    if not isinstance(ids, list) or not ids:
        return fail("ids must be a non-empty list", 422)
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        return fail("ids must be integers", 422)
    result = proc.mark_paid_batch(ids, user=current_user())
    return ok(result.as_dict())
