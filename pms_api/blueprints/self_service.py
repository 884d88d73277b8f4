from functools import wraps

from flask import Blueprint, request, g
from flask_jwt_extended import jwt_required

from pms_api.blueprints.allowances import allowance_row, allowance_fields
from pms_api.blueprints.bonuses import bonus_row
from pms_api.blueprints.payroll_payslips import payslip_service
from pms_api.common.auth import requires_perms, current_user
from pms_api.common.http import ok, fail
from pms_api.common.paging import page_limit
from pms_api.extensions import db
from pms_api.models.payroll.bonus import Bonus
from pms_api.models.payroll.components import Allowance
from pms_api.models.payroll.deductions import EmployeeDeduction
from pms_api.models.payroll.payroll import Payroll, PayrollLine
from pms_api.services.payslip_service import PAYSLIP_STATUSES

self_service_bp = Blueprint("self_service", __name__, url_prefix="/api/v1/self")


def employee_required(fn):
    """Resolve the caller's Employee record into g.employee, 403 when not linked."""
    @wraps(fn)
    def inner(*args, **kwargs):
        user = current_user()
        emp = user.employee if user else None
        if emp is None:
            return fail("User is not linked to an employee record", 403, code="NO_EMPLOYEE")
        g.employee = emp
        return fn(*args, **kwargs)
    return inner


# ---------- payslips ----------
@self_service_bp.get("/payslips")
@jwt_required()
@requires_perms("VIEW_OWN_PAYSLIP")
@employee_required
def list_own_payslips():
    """Own payslips, latest first; only approved payrolls onwards are visible."""
    query = Payroll.query.filter(
        Payroll.employee_id == g.employee.id,
        Payroll.status.in_(PAYSLIP_STATUSES),
    )
    year = request.args.get("year", type=int)
    if year:
        query = query.filter(Payroll.year == year)
    month = request.args.get("month", type=int)
    if month:
        query = query.filter(Payroll.month == month)

    page, size = page_limit()
    total = query.count()
    items = (
        query.order_by(Payroll.year.desc(), Payroll.month.desc())
        .offset((page - 1) * size).limit(size).all()
    )
    return ok([
        {
            "payroll_id": p.id,
            "year": p.year,
            "month": p.month,
            "gross_pay": float(p.gross_earnings or 0),
            "net_pay": float(p.net_pay or 0),
            "status": p.status,
            "paid_at": p.paid_at.isoformat() if p.paid_at else None,
        }
        for p in items
    ], page=page, size=size, total=total)


@self_service_bp.get("/payslips/<int:payroll_id>")
@jwt_required()
@requires_perms("VIEW_OWN_PAYSLIP")
@employee_required
def get_own_payslip(payroll_id: int):
    p = db.session.get(Payroll, payroll_id)
    if not p or p.employee_id != g.employee.id or p.status not in PAYSLIP_STATUSES:
        return fail("Payslip not found", 404)
    return ok(payslip_service().build_payslip_dto(p))


# ---------- bonuses ----------
@self_service_bp.get("/bonuses")
@jwt_required()
@requires_perms("VIEW_OWN_BONUS")
@employee_required
def list_own_bonuses():
    items = (
        Bonus.query.filter_by(employee_id=g.employee.id, is_active=True)
        .order_by(Bonus.effective_date.desc(), Bonus.id.desc())
        .all()
    )
    approved = [b for b in items if b.approval_status == "approved"]
    return ok({
        "items": [bonus_row(b) for b in items],
        "total_approved": float(sum((b.amount for b in approved), 0)),
    })


# ---------- allowances ----------
@self_service_bp.get("/allowances")
@jwt_required()
@requires_perms("VIEW_OWN_ALLOWANCES")
@employee_required
def list_own_allowances():
    emp = g.employee
    grade = emp.salary_grade
    grade_components = []
    if grade is not None:
        grade_components = [
            {
                "name": c.name,
                "calculation_method": c.calculation_method,
                "value": float(c.value or 0),
                "taxable": c.taxable,
            }
            for c in grade.components
            if c.type == "allowance" and c.is_active
        ]
    extra = Allowance.query.filter_by(employee_id=emp.id).order_by(Allowance.id.desc()).all()
    return ok({
        "grade": grade.level if grade else None,
        "grade_allowances": grade_components,
        "additional_allowances": [allowance_row(a) for a in extra],
    })


@self_service_bp.post("/allowances")
@jwt_required()
@requires_perms("REQUEST_ALLOWANCES")
@employee_required
def request_allowance():
    """Employee-initiated allowance request; always lands as pending."""
    try:
        fields = allowance_fields(request.get_json(silent=True, force=True) or {})
    except ValueError as e:
        return fail(str(e), 422)
    user = current_user()
    a = Allowance(employee_id=g.employee.id, approval_status="pending", created_by=user.id, **fields)
    db.session.add(a)
    db.session.commit()
    return ok(allowance_row(a), 201)


# ---------- deductions ----------
@self_service_bp.get("/deductions")
@jwt_required()
@requires_perms("VIEW_OWN_DEDUCTIONS")
@employee_required
def list_own_deductions():
    """Standing deductions plus the statutory lines of the latest visible payroll."""
    emp = g.employee
    standing = (
        EmployeeDeduction.query.filter_by(employee_id=emp.id)
        .order_by(EmployeeDeduction.start_date.desc())
        .all()
    )
    latest = (
        Payroll.query.filter(Payroll.employee_id == emp.id, Payroll.status.in_(PAYSLIP_STATUSES))
        .order_by(Payroll.year.desc(), Payroll.month.desc())
        .first()
    )
    lines = []
    if latest is not None:
        lines = [
            {"code": x.code, "name": x.name, "amount": float(x.amount or 0)}
            for x in PayrollLine.query.filter_by(payroll_id=latest.id, category="deduction")
            .order_by(PayrollLine.id.asc()).all()
        ]
    return ok({
        "standing": [
            {
                "id": d.id,
                "kind": d.kind,
                "description": d.description,
                "amount": float(d.amount or 0),
                "is_active": d.is_active,
                "start_date": d.start_date.isoformat() if d.start_date else None,
                "end_date": d.end_date.isoformat() if d.end_date else None,
            }
            for d in standing
        ],
        "latest_period": {"month": latest.month, "year": latest.year} if latest else None,
        "latest_lines": lines,
    })


# ---------- profile ----------
@self_service_bp.get("/profile")
@jwt_required()
@requires_perms("VIEW_PERSONAL_INFO")
@employee_required
def get_profile():
    emp = g.employee
    bank = emp.primary_bank()
    return ok({
        "employee_id": emp.id,
        "code": emp.code,
        "name": emp.full_name,
        "email": emp.email,
        "phone": emp.phone,
        "position": emp.position,
        "department": emp.department.name if emp.department else None,
        "grade": emp.salary_grade.level if emp.salary_grade else None,
        "nhf_number": emp.nhf_number,
        "pension_number": emp.pension_number,
        "bank": bank.snapshot() if bank else None,
    })


@self_service_bp.put("/profile")
@jwt_required()
@requires_perms("EDIT_PERSONAL_INFO")
@employee_required
def update_profile():
    """Employees may only change their contact phone; everything else goes through HR."""
    data = request.get_json(silent=True, force=True) or {}
    if "phone" not in data:
        return fail("nothing to update", 422)
    g.employee.phone = (data.get("phone") or "").strip() or None
    db.session.commit()
    return ok({"employee_id": g.employee.id, "phone": g.employee.phone})
