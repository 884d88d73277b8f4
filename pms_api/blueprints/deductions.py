from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required

from pms_api.common.auth import requires_perms, current_user, scope_to_department, in_department_scope
from pms_api.common.paging import page_limit, bool_arg, parse_date, parse_decimal, parse_int
from pms_api.extensions import db
from pms_api.models.employee import Employee
from pms_api.models.master import Department
from pms_api.models.payroll.deductions import EmployeeDeduction, DEDUCTION_KINDS
from pms_api.models.payroll.stat_config import StatConfig, STAT_TYPES
from pms_api.services.deduction_rules import resolve_configs, load_rules
from pms_api.services.payroll_common import source_in_use

bp = Blueprint("deductions", __name__, url_prefix="/api/v1/deductions")


# ---------- tiny helpers ----------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta: payload["meta"] = meta
    return jsonify(payload), status


def _fail(message, status=400, code=None, detail=None):
    payload = {"success": False, "error": {"message": message}}
    if code: payload["error"]["code"] = code
    if detail: payload["error"]["detail"] = detail
    return jsonify(payload), status


def _rate(x, label: str) -> Decimal:
    r = parse_decimal(x)
    if r is None or r < 0 or r > 100:
        raise ValueError(f"{label} must be a percentage between 0 and 100")
    return r


def _validate_value(cfg_type: str, value) -> dict:
    """
    Check a StatConfig payload for its type (shapes documented on StatConfig).
    Raises ValueError; returns the payload unchanged when valid.
    """
    if not isinstance(value, dict):
        raise ValueError("value_json must be an object")
    if cfg_type == "PAYE":
        brackets = value.get("brackets")
        if not isinstance(brackets, list) or not brackets:
            raise ValueError("PAYE needs a non-empty brackets list")
        prev = None
        for i, b in enumerate(brackets):
            if not isinstance(b, dict):
                raise ValueError(f"bracket {i} must be an object")
            lower = parse_decimal(b.get("from"))
            if lower is None or lower < 0:
                raise ValueError(f"bracket {i}: from must be a number >= 0")
            if prev is not None and lower <= prev:
                raise ValueError("brackets must be in ascending order of 'from'")
            _rate(b.get("rate"), f"bracket {i} rate")
            if b.get("to") is None and i != len(brackets) - 1:
                raise ValueError("only the last bracket may be open-ended")
            prev = lower
    elif cfg_type in ("PENSION", "NHF"):
        _rate(value.get("rate"), f"{cfg_type} rate")
        comps = value.get("pensionable_components")
        if comps is not None and not isinstance(comps, list):
            raise ValueError("pensionable_components must be a list of component names")
    elif cfg_type == "RELIEF":
        fixed = parse_decimal(value.get("fixed", 0))
        if fixed is None or fixed < 0:
            raise ValueError("RELIEF fixed must be a number >= 0")
        _rate(value.get("rate", 0), "RELIEF rate")
    return value


def _cfg_row(c: StatConfig):
    return {
        "id": c.id,
        "type": c.type,
        "key": c.key,
        "value_json": c.value_json,
        "scope_department_id": c.scope_department_id,
        "priority": c.priority,
        "effective_from": c.effective_from.isoformat() if c.effective_from else None,
        "effective_to": c.effective_to.isoformat() if c.effective_to else None,
        "closed_at": c.closed_at.isoformat() if c.closed_at else None,
    }


def _ded_row(d: EmployeeDeduction):
    emp = d.employee
    return {
        "id": d.id,
        "employee_id": d.employee_id,
        "employee_code": emp.code if emp else None,
        "employee_name": emp.full_name if emp else None,
        "kind": d.kind,
        "description": d.description,
        "amount": float(d.amount or 0),
        "is_active": d.is_active,
        "start_date": d.start_date.isoformat() if d.start_date else None,
        "end_date": d.end_date.isoformat() if d.end_date else None,
    }


# ======================================================================
# Statutory configuration (PAYE / PENSION / NHF / RELIEF)
# ======================================================================

@bp.get("/statutory")
@jwt_required()
@requires_perms("VIEW_DEDUCTIONS", "MANAGE_DEDUCTIONS", "MANAGE_TAX_SETTINGS")
def list_statutory():
    q = StatConfig.query
    cfg_type = (request.args.get("type") or "").strip().upper()
    if cfg_type:
        if cfg_type not in STAT_TYPES:
            return _fail(f"type must be one of {', '.join(STAT_TYPES)}", 422)
        q = q.filter(StatConfig.type == cfg_type)
    if request.args.get("include_closed") not in ("1", "true", "yes"):
        q = q.filter(StatConfig.closed_at.is_(None))
    items = q.order_by(StatConfig.type.asc(), StatConfig.effective_from.desc(), StatConfig.id.desc()).all()
    return _ok([_cfg_row(c) for c in items])


@bp.get("/statutory/effective")
@jwt_required()
@requires_perms("VIEW_DEDUCTIONS", "VIEW_DEPARTMENT_DEDUCTIONS", "MANAGE_DEDUCTIONS")
def effective_statutory():
    """?department_id=&on=YYYY-MM-DD : the rule set payroll would use, plus the candidate rows."""
    on = parse_date(request.args.get("on")) or date.today()
    dept_id = request.args.get("department_id", type=int)
    rules = load_rules(dept_id, on)
    return _ok({
        "on": on.isoformat(),
        "department_id": dept_id,
        "rules": rules.as_meta() if rules else None,
        "candidates": {t: [_cfg_row(c) for c in resolve_configs(t, dept_id, on)] for t in STAT_TYPES},
    })


@bp.post("/statutory")
@jwt_required()
@requires_perms("MANAGE_DEDUCTIONS", "MANAGE_TAX_SETTINGS")
def create_statutory():
    """
    JSON: { "type": "PAYE", "value_json": {...}, "effective_from": "2025-01-01",
            "effective_to": null, "scope_department_id": null, "priority": 100 }
    """
    data = request.get_json(silent=True, force=True) or {}
    cfg_type = (data.get("type") or "").strip().upper()
    if cfg_type not in STAT_TYPES:
        return _fail(f"type must be one of {', '.join(STAT_TYPES)}", 422)
    try:
        value = _validate_value(cfg_type, data.get("value_json"))
    except ValueError as e:
        return _fail(str(e), 422)

    eff_from = parse_date(data.get("effective_from")) or date.today()
    eff_to = parse_date(data.get("effective_to"))
    if eff_to and eff_to < eff_from:
        return _fail("effective_to cannot be before effective_from", 422)
    dept_id = None
    if data.get("scope_department_id"):
        dept_id = parse_int(data.get("scope_department_id"))
        if dept_id is None or not db.session.get(Department, dept_id):
            return _fail("scope_department_id invalid", 422)
    try:
        priority = int(data.get("priority", 100))
    except (TypeError, ValueError):
        return _fail("priority must be integer", 422)

    user = current_user()
    c = StatConfig(
        type=cfg_type,
        key=(data.get("key") or f"PMS_{cfg_type}").strip(),
        value_json=value,
        scope_department_id=dept_id,
        priority=priority,
        effective_from=eff_from,
        effective_to=eff_to,
        created_by=user.id if user else None,
    )
    db.session.add(c)
    db.session.commit()
    return _ok(_cfg_row(c), 201)


@bp.put("/statutory/<int:cfg_id>")
@jwt_required()
@requires_perms("EDIT_DEDUCTIONS", "MANAGE_TAX_SETTINGS")
def update_statutory(cfg_id: int):
    c = db.session.get(StatConfig, cfg_id)
    if not c or c.closed_at:
        return _fail("Config not found", 404)
    data = request.get_json(silent=True, force=True) or {}
    if "value_json" in data:
        try:
            c.value_json = _validate_value(c.type, data.get("value_json"))
        except ValueError as e:
            return _fail(str(e), 422)
    if "effective_to" in data:
        eff_to = parse_date(data.get("effective_to"))
        if eff_to and eff_to < c.effective_from:
            return _fail("effective_to cannot be before effective_from", 422)
        c.effective_to = eff_to
    if "priority" in data:
        try:
            c.priority = int(data.get("priority"))
        except (TypeError, ValueError):
            return _fail("priority must be integer", 422)
    db.session.commit()
    return _ok(_cfg_row(c))


@bp.post("/statutory/<int:cfg_id>/close")
@jwt_required()
@requires_perms("MANAGE_DEDUCTIONS", "MANAGE_TAX_SETTINGS")
def close_statutory(cfg_id: int):
    """Retire a config; existing payrolls keep the values recorded in their calc_meta."""
    c = db.session.get(StatConfig, cfg_id)
    if not c:
        return _fail("Config not found", 404)
    if c.closed_at:
        return _fail("Config already closed", 409)
    user = current_user()
    c.closed_at = datetime.now(timezone.utc)
    c.closed_by = user.id if user else None
    db.session.commit()
    return _ok(_cfg_row(c))


# ======================================================================
# Employee deductions (loans, union dues, ...)
# ======================================================================

def _scoped(ded_id: int):
    d = db.session.get(EmployeeDeduction, ded_id)
    if not d or not in_department_scope(current_user(), d.employee.department_id if d.employee else None):
        return None
    return d


def _ded_fields(data: dict, partial: bool = False) -> dict:
    out = {}
    if not partial or "kind" in data:
        kind = (data.get("kind") or "other").strip().lower()
        if kind not in DEDUCTION_KINDS:
            raise ValueError(f"kind must be one of {', '.join(DEDUCTION_KINDS)}")
        out["kind"] = kind
    if not partial or "description" in data:
        desc = (data.get("description") or "").strip()
        if not desc:
            raise ValueError("description is required")
        out["description"] = desc
    if not partial or "amount" in data:
        amount = parse_decimal(data.get("amount"))
        if amount is None or amount <= 0:
            raise ValueError("amount must be a number > 0")
        out["amount"] = amount
    if not partial or "start_date" in data:
        out["start_date"] = parse_date(data.get("start_date")) or date.today()
    if "end_date" in data:
        out["end_date"] = parse_date(data.get("end_date"))
    if out.get("start_date") and out.get("end_date") and out["end_date"] < out["start_date"]:
        raise ValueError("end_date cannot be before start_date")
    return out


@bp.get("/employee")
@jwt_required()
@requires_perms("VIEW_DEDUCTIONS", "VIEW_DEPARTMENT_DEDUCTIONS")
def list_employee_deductions():
    q = scope_to_department(
        EmployeeDeduction.query.join(Employee, Employee.id == EmployeeDeduction.employee_id),
        Employee.department_id, current_user(),
    )
    emp_id = request.args.get("employee_id", type=int)
    if emp_id:
        q = q.filter(EmployeeDeduction.employee_id == emp_id)
    kind = (request.args.get("kind") or "").strip().lower()
    if kind:
        q = q.filter(EmployeeDeduction.kind == kind)
    try:
        active = bool_arg("is_active")
    except ValueError as e:
        return _fail(str(e), 422)
    if active is not None:
        q = q.filter(EmployeeDeduction.is_active.is_(active))

    page, size = page_limit()
    total = q.count()
    items = q.order_by(EmployeeDeduction.id.desc()).offset((page - 1) * size).limit(size).all()
    return _ok([_ded_row(d) for d in items], page=page, size=size, total=total)


@bp.post("/employee")
@jwt_required()
@requires_perms("MANAGE_DEDUCTIONS", "MANAGE_DEPARTMENT_DEDUCTIONS")
def create_employee_deduction():
    data = request.get_json(silent=True, force=True) or {}
    emp = db.session.get(Employee, parse_int(data.get("employee_id")) or 0)
    user = current_user()
    if not emp or not in_department_scope(user, emp.department_id):
        return _fail("employee_id invalid", 422)
    try:
        fields = _ded_fields(data)
    except ValueError as e:
        return _fail(str(e), 422)
    d = EmployeeDeduction(employee_id=emp.id, created_by=user.id if user else None, **fields)
    db.session.add(d)
    db.session.commit()
    return _ok(_ded_row(d), 201)


@bp.put("/employee/<int:ded_id>")
@jwt_required()
@requires_perms("EDIT_DEDUCTIONS", "MANAGE_DEPARTMENT_DEDUCTIONS")
def update_employee_deduction(ded_id: int):
    d = _scoped(ded_id)
    if not d:
        return _fail("Deduction not found", 404)
    try:
        fields = _ded_fields(request.get_json(silent=True, force=True) or {}, partial=True)
    except ValueError as e:
        return _fail(str(e), 422)
    for k, v in fields.items():
        setattr(d, k, v)
    db.session.commit()
    return _ok(_ded_row(d))


@bp.post("/employee/<int:ded_id>/toggle")
@jwt_required()
@requires_perms("EDIT_DEDUCTIONS", "MANAGE_DEPARTMENT_DEDUCTIONS")
def toggle_employee_deduction(ded_id: int):
    d = _scoped(ded_id)
    if not d:
        return _fail("Deduction not found", 404)
    d.is_active = not d.is_active
    db.session.commit()
    return _ok(_ded_row(d))


@bp.delete("/employee/<int:ded_id>")
@jwt_required()
@requires_perms("MANAGE_DEDUCTIONS")
def delete_employee_deduction(ded_id: int):
    d = _scoped(ded_id)
    if not d:
        return _fail("Deduction not found", 404)
    if source_in_use("employee_deduction", d.id):
        return _fail("Deduction was applied in a payroll; deactivate it instead", 409, code="DEDUCTION_IN_USE")
    db.session.delete(d)
    db.session.commit()
    return _ok({"id": ded_id, "deleted": True})
