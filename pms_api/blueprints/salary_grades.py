# pms_api/blueprints/salary_grades.py
from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from pms_api.common.auth import requires_perms, current_user
from pms_api.common.http import ok as _ok, fail as _fail
from pms_api.common.paging import page_limit, text_q, bool_arg, parse_decimal, parse_int
from pms_api.extensions import db
from pms_api.models.employee import Employee
from pms_api.models.master import Department
from pms_api.models.payroll.components import SalaryGrade, SalaryComponent, CALC_METHODS, CALC_PERCENTAGE
from pms_api.models.payroll.payroll import Payroll
from pms_api.services.payroll_common import source_in_use

bp = Blueprint("salary_grades", __name__, url_prefix="/api/v1/salary-grades")

COMPONENT_TYPES = ("allowance", "deduction")


def _component_row(c: SalaryComponent):
    return {
        "id": c.id,
        "grade_id": c.grade_id,
        "name": c.name,
        "type": c.type,
        "calculation_method": c.calculation_method,
        "value": float(c.value or 0),
        "taxable": c.taxable,
        "is_active": c.is_active,
        "position": c.position,
    }


def _row(g: SalaryGrade):
    return {
        "id": g.id,
        "level": g.level,
        "description": g.description,
        "basic_salary": float(g.basic_salary or 0),
        "department_id": g.department_id,
        "department_name": g.department.name if g.department else None,
        "is_active": g.is_active,
        "components": [_component_row(c) for c in g.components],
        "created_at": g.created_at.isoformat() if g.created_at else None,
    }


def _component_fields(data: dict, partial: bool = False) -> dict:
    """Validated component attributes from JSON; raises ValueError."""
    out = {}
    if not partial or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("component name is required")
        out["name"] = name
    if not partial or "type" in data:
        ctype = (data.get("type") or "allowance").strip().lower()
        if ctype not in COMPONENT_TYPES:
            raise ValueError("component type must be allowance or deduction")
        out["type"] = ctype
    if not partial or "calculation_method" in data:
        method = (data.get("calculation_method") or "fixed").strip().lower()
        if method not in CALC_METHODS:
            raise ValueError("calculation_method must be fixed or percentage")
        out["calculation_method"] = method
    if not partial or "value" in data:
        value = parse_decimal(data.get("value"))
        if value is None or value < 0:
            raise ValueError("component value must be a number >= 0")
        out["value"] = value
    method = out.get("calculation_method")
    if method == CALC_PERCENTAGE and out.get("value", 0) > 100:
        raise ValueError("percentage value cannot exceed 100")
    for flag in ("taxable", "is_active"):
        if flag in data:
            out[flag] = bool(data.get(flag))
    if "position" in data:
        try:
            out["position"] = int(data.get("position"))
        except (TypeError, ValueError):
            raise ValueError("position must be integer")
    return out


def _basic(data: dict):
    basic = parse_decimal(data.get("basic_salary"))
    if basic is None or basic <= 0:
        raise ValueError("basic_salary must be a number > 0")
    return basic


# ---------- grades ----------
@bp.get("")
@jwt_required()
@requires_perms("VIEW_SALARY_STRUCTURE", "MANAGE_SALARY_STRUCTURE", "EDIT_SALARY_STRUCTURE")
def list_grades():
    q = SalaryGrade.query
    try:
        active = bool_arg("is_active")
    except ValueError as e:
        return _fail(str(e), 422)
    if active is not None:
        q = q.filter(SalaryGrade.is_active.is_(active))
    dept_id = request.args.get("department_id", type=int)
    if dept_id:
        q = q.filter(or_(SalaryGrade.department_id == dept_id, SalaryGrade.department_id.is_(None)))
    s = text_q()
    if s:
        like = f"%{s}%"
        q = q.filter(or_(SalaryGrade.level.ilike(like), SalaryGrade.description.ilike(like)))

    page, size = page_limit()
    total = q.count()
    items = q.order_by(SalaryGrade.level.asc()).offset((page - 1) * size).limit(size).all()
    return _ok([_row(g) for g in items], page=page, size=size, total=total)


@bp.get("/<int:grade_id>")
@jwt_required()
@requires_perms("VIEW_SALARY_STRUCTURE", "MANAGE_SALARY_STRUCTURE", "EDIT_SALARY_STRUCTURE")
def get_grade(grade_id: int):
    g = db.session.get(SalaryGrade, grade_id)
    if not g:
        return _fail("Salary grade not found", 404)
    return _ok(_row(g))


@bp.post("")
@jwt_required()
@requires_perms("MANAGE_SALARY_STRUCTURE")
def create_grade():
    """
    JSON: { "level": "GL-08", "basic_salary": 250000, "description": "...",
            "department_id": 1, "components": [{ "name": "Housing", "value": 50000 }, ...] }
    """
    data = request.get_json(silent=True, force=True) or {}
    level = (data.get("level") or "").strip().upper()
    if not level:
        return _fail("level is required", 422)
    if SalaryGrade.query.filter_by(level=level).first():
        return _fail("Salary grade level already exists", 409)

    dept_id = None
    if data.get("department_id"):
        dept_id = parse_int(data.get("department_id"))
        if dept_id is None or not db.session.get(Department, dept_id):
            return _fail("department_id invalid", 422)

    try:
        basic = _basic(data)
        comps = [_component_fields(c) for c in (data.get("components") or [])]
    except ValueError as e:
        return _fail(str(e), 422)
    keys = [(c["name"].lower(), c["type"]) for c in comps]
    if len(keys) != len(set(keys)):
        return _fail("duplicate component names", 422)

    user = current_user()
    g = SalaryGrade(
        level=level,
        description=(data.get("description") or "").strip() or None,
        basic_salary=basic,
        department_id=dept_id,
        is_active=bool(data.get("is_active", True)),
        created_by=user.id if user else None,
    )
    for pos, c in enumerate(comps, start=1):
        c.setdefault("position", pos)
        g.components.append(SalaryComponent(**c))
    db.session.add(g)
    db.session.commit()
    return _ok(_row(g), 201)


@bp.put("/<int:grade_id>")
@jwt_required()
@requires_perms("MANAGE_SALARY_STRUCTURE", "EDIT_SALARY_STRUCTURE")
def update_grade(grade_id: int):
    g = db.session.get(SalaryGrade, grade_id)
    if not g:
        return _fail("Salary grade not found", 404)
    data = request.get_json(silent=True, force=True) or {}

    if "level" in data:
        level = (data.get("level") or "").strip().upper()
        if not level:
            return _fail("level cannot be empty", 422)
        if SalaryGrade.query.filter(SalaryGrade.level == level, SalaryGrade.id != g.id).first():
            return _fail("Salary grade level already exists", 409)
        g.level = level
    if "basic_salary" in data:
        try:
            g.basic_salary = _basic(data)
        except ValueError as e:
            return _fail(str(e), 422)
    if "description" in data:
        g.description = (data.get("description") or "").strip() or None
    if "department_id" in data:
        dept_id = None
        if data.get("department_id"):
            dept_id = parse_int(data.get("department_id"))
            if dept_id is None or not db.session.get(Department, dept_id):
                return _fail("department_id invalid", 422)
        g.department_id = dept_id
    if "is_active" in data:
        g.is_active = bool(data.get("is_active"))

    db.session.commit()
    return _ok(_row(g))


@bp.delete("/<int:grade_id>")
@jwt_required()
@requires_perms("MANAGE_SALARY_STRUCTURE")
def delete_grade(grade_id: int):
    """Hard delete only when no employee or payroll references the grade; otherwise deactivate it."""
    g = db.session.get(SalaryGrade, grade_id)
    if not g:
        return _fail("Salary grade not found", 404)
    in_use = (
        Employee.query.filter_by(salary_grade_id=g.id).first() is not None
        or Payroll.query.filter_by(salary_grade_id=g.id).first() is not None
    )
    if in_use:
        return _fail("Salary grade is in use; deactivate it instead", 409, code="GRADE_IN_USE")
    db.session.delete(g)
    db.session.commit()
    return _ok({"id": grade_id, "deleted": True})


# ---------- components ----------
def _get_component(grade_id: int, comp_id: int):
    c = db.session.get(SalaryComponent, comp_id)
    if not c or c.grade_id != grade_id:
        return None
    return c


@bp.post("/<int:grade_id>/components")
@jwt_required()
@requires_perms("MANAGE_SALARY_STRUCTURE", "EDIT_SALARY_STRUCTURE")
def add_component(grade_id: int):
    g = db.session.get(SalaryGrade, grade_id)
    if not g:
        return _fail("Salary grade not found", 404)
    try:
        fields = _component_fields(request.get_json(silent=True, force=True) or {})
    except ValueError as e:
        return _fail(str(e), 422)
    if any(c.name.lower() == fields["name"].lower() and c.type == fields["type"] for c in g.components):
        return _fail("Component already exists on this grade", 409)
    fields.setdefault("position", len(g.components) + 1)
    c = SalaryComponent(grade_id=g.id, **fields)
    db.session.add(c)
    db.session.commit()
    return _ok(_component_row(c), 201)


@bp.put("/<int:grade_id>/components/<int:comp_id>")
@jwt_required()
@requires_perms("MANAGE_SALARY_STRUCTURE", "EDIT_SALARY_STRUCTURE")
def update_component(grade_id: int, comp_id: int):
    c = _get_component(grade_id, comp_id)
    if not c:
        return _fail("Component not found", 404)
    data = request.get_json(silent=True, force=True) or {}
    if "value" in data and "calculation_method" not in data:
        data = {**data, "calculation_method": c.calculation_method}
    try:
        fields = _component_fields(data, partial=True)
    except ValueError as e:
        return _fail(str(e), 422)
    for k, v in fields.items():
        setattr(c, k, v)
    db.session.commit()
    return _ok(_component_row(c))


@bp.post("/<int:grade_id>/components/<int:comp_id>/toggle")
@jwt_required()
@requires_perms("MANAGE_SALARY_STRUCTURE", "EDIT_SALARY_STRUCTURE")
def toggle_component(grade_id: int, comp_id: int):
    c = _get_component(grade_id, comp_id)
    if not c:
        return _fail("Component not found", 404)
    c.is_active = not c.is_active
    db.session.commit()
    return _ok(_component_row(c))


@bp.delete("/<int:grade_id>/components/<int:comp_id>")
@jwt_required()
@requires_perms("MANAGE_SALARY_STRUCTURE")
def delete_component(grade_id: int, comp_id: int):
    c = _get_component(grade_id, comp_id)
    if not c:
        return _fail("Component not found", 404)
    if source_in_use("grade_component", c.id):
        return _fail("Component was used in a payroll; deactivate it instead", 409, code="COMPONENT_IN_USE")
    db.session.delete(c)
    db.session.commit()
    return _ok({"id": comp_id, "deleted": True})
