from __future__ import annotations

from datetime import datetime, date, timezone

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from pms_api.common.auth import requires_perms, current_user, scope_to_department, in_department_scope
from pms_api.common.http import ok, fail
from pms_api.common.paging import page_limit, parse_date, parse_decimal, parse_int
from pms_api.extensions import db
from pms_api.models.employee import Employee
from pms_api.models.payroll.bonus import Bonus, BONUS_TYPES
from pms_api.models.payroll.components import APPROVAL_STATES
from pms_api.services.payroll_common import source_in_use

bp = Blueprint("bonuses", __name__, url_prefix="/api/v1/bonuses")

VIEW_PERMS = ("VIEW_BONUSES", "VIEW_DEPARTMENT_BONUSES", "MANAGE_BONUSES", "MANAGE_DEPARTMENT_BONUSES")
EDIT_PERMS = ("CREATE_BONUSES", "EDIT_BONUSES", "MANAGE_BONUSES", "MANAGE_DEPARTMENT_BONUSES")


def bonus_row(b: Bonus):
    emp = b.employee
    return {
        "id": b.id,
        "employee_id": b.employee_id,
        "employee_code": emp.code if emp else None,
        "employee_name": emp.full_name if emp else None,
        "department_id": b.department_id,
        "type": b.type,
        "amount": float(b.amount or 0),
        "description": b.description,
        "payment_date": b.payment_date.isoformat() if b.payment_date else None,
        "effective_date": b.effective_date.isoformat() if b.effective_date else None,
        "expiry_date": b.expiry_date.isoformat() if b.expiry_date else None,
        "taxable": b.taxable,
        "is_active": b.is_active,
        "approval_status": b.approval_status,
        "approved_by": b.approved_by,
        "approved_at": b.approved_at.isoformat() if b.approved_at else None,
    }


def _fields(data: dict, partial: bool = False) -> dict:
    out = {}
    if not partial or "type" in data:
        btype = (data.get("type") or "").strip().lower()
        if btype not in BONUS_TYPES:
            raise ValueError(f"type must be one of {', '.join(BONUS_TYPES)}")
        out["type"] = btype
    if not partial or "amount" in data:
        amount = parse_decimal(data.get("amount"))
        if amount is None or amount <= 0:
            raise ValueError("amount must be a number > 0")
        out["amount"] = amount
    if "description" in data:
        out["description"] = (data.get("description") or "").strip() or None
    if "taxable" in data:
        out["taxable"] = bool(data.get("taxable"))
    if "payment_date" in data:
        out["payment_date"] = parse_date(data.get("payment_date"))
    if not partial or "effective_date" in data:
        out["effective_date"] = parse_date(data.get("effective_date")) or date.today()
    if "expiry_date" in data:
        out["expiry_date"] = parse_date(data.get("expiry_date"))
    eff, exp = out.get("effective_date"), out.get("expiry_date")
    if eff and exp and exp < eff:
        raise ValueError("expiry_date cannot be before effective_date")
    return out


def _scoped(bonus_id: int):
    b = db.session.get(Bonus, bonus_id)
    if not b or not in_department_scope(current_user(), b.department_id):
        return None
    return b


@bp.get("")
@jwt_required()
@requires_perms(*VIEW_PERMS)
def list_bonuses():
    q = scope_to_department(Bonus.query, Bonus.department_id, current_user())
    emp_id = request.args.get("employee_id", type=int)
    if emp_id:
        q = q.filter(Bonus.employee_id == emp_id)
    btype = (request.args.get("type") or "").strip().lower()
    if btype:
        q = q.filter(Bonus.type == btype)
    status = (request.args.get("approval_status") or "").strip().lower()
    if status:
        if status not in APPROVAL_STATES:
            return fail(f"approval_status must be one of {', '.join(APPROVAL_STATES)}", 422)
        q = q.filter(Bonus.approval_status == status)

    page, size = page_limit()
    total = q.count()
    items = q.order_by(Bonus.effective_date.desc(), Bonus.id.desc()).offset((page - 1) * size).limit(size).all()
    return ok([bonus_row(b) for b in items], page=page, size=size, total=total)


@bp.get("/<int:bonus_id>")
@jwt_required()
@requires_perms(*VIEW_PERMS)
def get_bonus(bonus_id: int):
    b = _scoped(bonus_id)
    if not b:
        return fail("Bonus not found", 404)
    return ok(bonus_row(b))


@bp.post("")
@jwt_required()
@requires_perms(*EDIT_PERMS)
def create_bonus():
    data = request.get_json(silent=True, force=True) or {}
    emp = db.session.get(Employee, parse_int(data.get("employee_id")) or 0)
    user = current_user()
    if not emp or not in_department_scope(user, emp.department_id):
        return fail("employee_id invalid", 422)
    try:
        fields = _fields(data)
    except ValueError as e:
        return fail(str(e), 422)
    b = Bonus(
        employee_id=emp.id,
        department_id=emp.department_id,
        approval_status="pending",
        created_by=user.id if user else None,
        **fields,
    )
    db.session.add(b)
    db.session.commit()
    return ok(bonus_row(b), 201)


@bp.put("/<int:bonus_id>")
@jwt_required()
@requires_perms(*EDIT_PERMS)
def update_bonus(bonus_id: int):
    b = _scoped(bonus_id)
    if not b:
        return fail("Bonus not found", 404)
    if b.approval_status != "pending":
        return fail("Only pending bonuses can be edited", 409)
    try:
        fields = _fields(request.get_json(silent=True, force=True) or {}, partial=True)
    except ValueError as e:
        return fail(str(e), 422)
    for k, v in fields.items():
        setattr(b, k, v)
    db.session.commit()
    return ok(bonus_row(b))


def _decide(bonus_id: int, status: str):
    b = _scoped(bonus_id)
    if not b:
        return fail("Bonus not found", 404)
    if b.approval_status != "pending":
        return fail(f"Bonus is already {b.approval_status}", 409)
    user = current_user()
    b.approval_status = status
    b.approved_by = user.id if user else None
    b.approved_at = datetime.now(timezone.utc)
    db.session.commit()
    return ok(bonus_row(b))


@bp.post("/<int:bonus_id>/approve")
@jwt_required()
@requires_perms("MANAGE_BONUSES")
def approve_bonus(bonus_id: int):
    return _decide(bonus_id, "approved")


@bp.post("/<int:bonus_id>/reject")
@jwt_required()
@requires_perms("MANAGE_BONUSES")
def reject_bonus(bonus_id: int):
    return _decide(bonus_id, "rejected")


@bp.delete("/<int:bonus_id>")
@jwt_required()
@requires_perms("DELETE_BONUSES")
def delete_bonus(bonus_id: int):
    b = _scoped(bonus_id)
    if not b:
        return fail("Bonus not found", 404)
    if source_in_use("bonus", b.id):
        return fail("Bonus was paid in a payroll and cannot be deleted", 409, code="BONUS_IN_USE")
    db.session.delete(b)
    db.session.commit()
    return ok({"id": bonus_id, "deleted": True})
