from __future__ import annotations

from datetime import datetime, date, timezone

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from pms_api.common.auth import requires_perms, current_user, scope_to_department, in_department_scope
from pms_api.common.http import ok, fail
from pms_api.common.paging import page_limit, bool_arg, parse_date, parse_decimal, parse_int
from pms_api.extensions import db
from pms_api.models.employee import Employee
from pms_api.models.payroll.components import (
    Allowance, APPROVAL_STATES, CALC_METHODS, CALC_PERCENTAGE, FREQUENCIES,
)
from pms_api.services.payroll_common import source_in_use

bp = Blueprint("allowances", __name__, url_prefix="/api/v1/allowances")

VIEW_PERMS = ("VIEW_ALLOWANCES", "VIEW_DEPARTMENT_ALLOWANCES", "MANAGE_ALLOWANCES", "MANAGE_DEPARTMENT_ALLOWANCES")
EDIT_PERMS = ("CREATE_ALLOWANCES", "EDIT_ALLOWANCES", "MANAGE_ALLOWANCES", "MANAGE_DEPARTMENT_ALLOWANCES")


def allowance_row(a: Allowance):
    emp = a.employee
    return {
        "id": a.id,
        "employee_id": a.employee_id,
        "employee_code": emp.code if emp else None,
        "employee_name": emp.full_name if emp else None,
        "department_id": emp.department_id if emp else None,
        "name": a.name,
        "description": a.description,
        "calculation_method": a.calculation_method,
        "value": float(a.value or 0),
        "frequency": a.frequency,
        "taxable": a.taxable,
        "is_active": a.is_active,
        "approval_status": a.approval_status,
        "approved_by": a.approved_by,
        "approved_at": a.approved_at.isoformat() if a.approved_at else None,
        "effective_date": a.effective_date.isoformat() if a.effective_date else None,
        "expiry_date": a.expiry_date.isoformat() if a.expiry_date else None,
    }


def allowance_fields(data: dict, partial: bool = False) -> dict:
    """Validated Allowance attributes from JSON; raises ValueError."""
    out = {}
    if not partial or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("name is required")
        out["name"] = name
    if not partial or "calculation_method" in data:
        method = (data.get("calculation_method") or "fixed").strip().lower()
        if method not in CALC_METHODS:
            raise ValueError("calculation_method must be fixed or percentage")
        out["calculation_method"] = method
    if not partial or "value" in data:
        value = parse_decimal(data.get("value"))
        if value is None or value < 0:
            raise ValueError("value must be a number >= 0")
        if out.get("calculation_method") == CALC_PERCENTAGE and value > 100:
            raise ValueError("percentage value cannot exceed 100")
        out["value"] = value
    if not partial or "frequency" in data:
        freq = (data.get("frequency") or "monthly").strip().lower()
        if freq not in FREQUENCIES:
            raise ValueError(f"frequency must be one of {', '.join(FREQUENCIES)}")
        out["frequency"] = freq
    if "description" in data:
        out["description"] = (data.get("description") or "").strip() or None
    if "taxable" in data:
        out["taxable"] = bool(data.get("taxable"))
    if not partial or "effective_date" in data:
        out["effective_date"] = parse_date(data.get("effective_date")) or date.today()
    if "expiry_date" in data:
        out["expiry_date"] = parse_date(data.get("expiry_date"))
    eff, exp = out.get("effective_date"), out.get("expiry_date")
    if eff and exp and exp < eff:
        raise ValueError("expiry_date cannot be before effective_date")
    return out


def _scoped(alw_id: int):
    a = db.session.get(Allowance, alw_id)
    if not a or not in_department_scope(current_user(), a.employee.department_id if a.employee else None):
        return None
    return a


@bp.get("")
@jwt_required()
@requires_perms(*VIEW_PERMS)
def list_allowances():
    q = scope_to_department(
        Allowance.query.join(Employee, Employee.id == Allowance.employee_id),
        Employee.department_id, current_user(),
    )
    emp_id = request.args.get("employee_id", type=int)
    if emp_id:
        q = q.filter(Allowance.employee_id == emp_id)
    status = (request.args.get("approval_status") or "").strip().lower()
    if status:
        if status not in APPROVAL_STATES:
            return fail(f"approval_status must be one of {', '.join(APPROVAL_STATES)}", 422)
        q = q.filter(Allowance.approval_status == status)
    try:
        active = bool_arg("is_active")
    except ValueError as e:
        return fail(str(e), 422)
    if active is not None:
        q = q.filter(Allowance.is_active.is_(active))

    page, size = page_limit()
    total = q.count()
    items = q.order_by(Allowance.id.desc()).offset((page - 1) * size).limit(size).all()
    return ok([allowance_row(a) for a in items], page=page, size=size, total=total)


@bp.get("/<int:alw_id>")
@jwt_required()
@requires_perms(*VIEW_PERMS)
def get_allowance(alw_id: int):
    a = _scoped(alw_id)
    if not a:
        return fail("Allowance not found", 404)
    return ok(allowance_row(a))


@bp.post("")
@jwt_required()
@requires_perms(*EDIT_PERMS)
def create_allowance():
    """New allowances start as pending; approval makes them count in payroll."""
    data = request.get_json(silent=True, force=True) or {}
    emp = db.session.get(Employee, parse_int(data.get("employee_id")) or 0)
    user = current_user()
    if not emp or not in_department_scope(user, emp.department_id):
        return fail("employee_id invalid", 422)
    try:
        fields = allowance_fields(data)
    except ValueError as e:
        return fail(str(e), 422)
    a = Allowance(employee_id=emp.id, approval_status="pending", created_by=user.id if user else None, **fields)
    db.session.add(a)
    db.session.commit()
    return ok(allowance_row(a), 201)


@bp.put("/<int:alw_id>")
@jwt_required()
@requires_perms(*EDIT_PERMS)
def update_allowance(alw_id: int):
    a = _scoped(alw_id)
    if not a:
        return fail("Allowance not found", 404)
    data = request.get_json(silent=True, force=True) or {}
    if "value" in data and "calculation_method" not in data:
        data = {**data, "calculation_method": a.calculation_method}
    try:
        fields = allowance_fields(data, partial=True)
    except ValueError as e:
        return fail(str(e), 422)
    for k, v in fields.items():
        setattr(a, k, v)
    # edited amounts need a fresh approval
    if {"value", "calculation_method"} & fields.keys() and a.approval_status == "approved":
        a.approval_status, a.approved_by, a.approved_at = "pending", None, None
    db.session.commit()
    return ok(allowance_row(a))


def _decide(alw_id: int, status: str):
    a = _scoped(alw_id)
    if not a:
        return fail("Allowance not found", 404)
    if a.approval_status != "pending":
        return fail(f"Allowance is already {a.approval_status}", 409)
    user = current_user()
    a.approval_status = status
    a.approved_by = user.id if user else None
    a.approved_at = datetime.now(timezone.utc)
    db.session.commit()
    return ok(allowance_row(a))


@bp.post("/<int:alw_id>/approve")
@jwt_required()
@requires_perms("APPROVE_ALLOWANCES")
def approve_allowance(alw_id: int):
    return _decide(alw_id, "approved")


@bp.post("/<int:alw_id>/reject")
@jwt_required()
@requires_perms("APPROVE_ALLOWANCES")
def reject_allowance(alw_id: int):
    return _decide(alw_id, "rejected")


@bp.post("/<int:alw_id>/toggle")
@jwt_required()
@requires_perms(*EDIT_PERMS)
def toggle_allowance(alw_id: int):
    a = _scoped(alw_id)
    if not a:
        return fail("Allowance not found", 404)
    a.is_active = not a.is_active
    db.session.commit()
    return ok(allowance_row(a))


@bp.delete("/<int:alw_id>")
@jwt_required()
@requires_perms("DELETE_ALLOWANCES", "MANAGE_ALLOWANCES")
def delete_allowance(alw_id: int):
    a = _scoped(alw_id)
    if not a:
        return fail("Allowance not found", 404)
    if source_in_use("allowance", a.id):
        return fail("Allowance was used in a payroll; deactivate it instead", 409, code="ALLOWANCE_IN_USE")
    db.session.delete(a)
    db.session.commit()
    return ok({"id": alw_id, "deleted": True})
