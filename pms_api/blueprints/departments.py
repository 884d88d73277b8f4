# pms_api/blueprints/departments.py
from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import jwt_required
from sqlalchemy import or_, asc, desc, func

from pms_api.common.auth import requires_perms
from pms_api.common.paging import page_limit, sort_params, text_q, bool_arg
from pms_api.extensions import db
from pms_api.models.employee import Employee
from pms_api.models.master import Department
from pms_api.models.user import User

bp = Blueprint("departments", __name__, url_prefix="/api/v1/departments")


# ---------- uniform envelopes ----------
def _ok(data=None, status=200, **meta):
    from flask import jsonify
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def _fail(message, status=400, code=None, detail=None):
    from flask import jsonify
    err = {"message": message}
    if code: err["code"] = code
    if detail: err["detail"] = detail
    return jsonify({"success": False, "error": err}), status


# ---------- row shape ----------
def _row(x: Department, employee_count: int | None = None):
    out = {
        "id": x.id,
        "code": x.code,
        "name": x.name,
        "description": x.description,
        "head_user_id": x.head_user_id,
        "head_name": x.head.full_name if x.head else None,
        "is_active": x.is_active,
        "created_at": x.created_at.isoformat() if x.created_at else None,
    }
    if employee_count is not None:
        out["employee_count"] = employee_count
    return out


def _employee_counts(ids):
    if not ids:
        return {}
    rows = (
        db.session.query(Employee.department_id, func.count(Employee.id))
        .filter(Employee.department_id.in_(ids), Employee.status == "active")
        .group_by(Employee.department_id)
        .all()
    )
    return {dept_id: n for dept_id, n in rows}


# ---------- routes ----------
@bp.get("")
@jwt_required()
@requires_perms("VIEW_ALL_DEPARTMENTS", "MANAGE_DEPARTMENT_USERS", "VIEW_ALL_USERS")
def list_departments():
    q = Department.query
    try:
        active = bool_arg("is_active")
    except ValueError as e:
        return _fail(str(e), 422)
    if active is not None:
        q = q.filter(Department.is_active.is_(active))

    s = text_q()
    if s:
        like = f"%{s}%"
        q = q.filter(or_(Department.name.ilike(like), Department.code.ilike(like)))

    order = sort_params({"name": Department.name, "code": Department.code, "created_at": Department.created_at})
    if order:
        q = q.order_by(*[asc(c) if is_asc else desc(c) for c, is_asc in order])
    else:
        q = q.order_by(Department.name.asc())

    page, size = page_limit()
    total = q.count()
    items = q.offset((page - 1) * size).limit(size).all()
    counts = _employee_counts([d.id for d in items])
    return _ok([_row(d, counts.get(d.id, 0)) for d in items], page=page, size=size, total=total)


@bp.get("/<int:dept_id>")
@jwt_required()
@requires_perms("VIEW_ALL_DEPARTMENTS", "MANAGE_DEPARTMENT_USERS", "VIEW_ALL_USERS")
def get_department(dept_id: int):
    d = db.session.get(Department, dept_id)
    if not d:
        return _fail("Department not found", 404)
    return _ok(_row(d, _employee_counts([d.id]).get(d.id, 0)))


@bp.post("")
@jwt_required()
@requires_perms("CREATE_DEPARTMENT")
def create_department():
    data = request.get_json(silent=True, force=True) or {}
    name = (data.get("name") or "").strip()
    code = (data.get("code") or "").strip().upper() or None
    if not name:
        return _fail("name is required", 422)
    if Department.query.filter(func.lower(Department.name) == name.lower()).first():
        return _fail("Department name already exists", 409)
    if code and Department.query.filter_by(code=code).first():
        return _fail("Department code already exists", 409)

    head_id = data.get("head_user_id")
    if head_id and not db.session.get(User, int(head_id)):
        return _fail("head_user_id not found", 422)

    d = Department(
        code=code,
        name=name,
        description=(data.get("description") or "").strip() or None,
        head_user_id=int(head_id) if head_id else None,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(d)
    db.session.commit()
    return _ok(_row(d, 0), 201)


@bp.put("/<int:dept_id>")
@jwt_required()
@requires_perms("EDIT_DEPARTMENT", "ASSIGN_DEPARTMENT_ADMIN")
def update_department(dept_id: int):
    d = db.session.get(Department, dept_id)
    if not d:
        return _fail("Department not found", 404)
    data = request.get_json(silent=True, force=True) or {}

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return _fail("name cannot be empty", 422)
        clash = Department.query.filter(func.lower(Department.name) == name.lower(), Department.id != d.id).first()
        if clash:
            return _fail("Department name already exists", 409)
        d.name = name
    if "code" in data:
        code = (data.get("code") or "").strip().upper() or None
        if code and Department.query.filter(Department.code == code, Department.id != d.id).first():
            return _fail("Department code already exists", 409)
        d.code = code
    if "description" in data:
        d.description = (data.get("description") or "").strip() or None
    if "head_user_id" in data:
        head_id = data.get("head_user_id")
        if head_id and not db.session.get(User, int(head_id)):
            return _fail("head_user_id not found", 422)
        d.head_user_id = int(head_id) if head_id else None
    if "is_active" in data:
        d.is_active = bool(data.get("is_active"))
        if d.is_active:
            d.deleted_at = None

    db.session.commit()
    return _ok(_row(d))


@bp.delete("/<int:dept_id>")
@jwt_required()
@requires_perms("DELETE_DEPARTMENT")
def delete_department(dept_id: int):
    """Soft delete; departments with active employees are kept."""
    d = db.session.get(Department, dept_id)
    if not d:
        return _fail("Department not found", 404)
    active = _employee_counts([d.id]).get(d.id, 0)
    if active:
        return _fail("Department still has active employees", 409, detail=f"{active} active employee(s)")
    d.soft_delete()
    db.session.commit()
    return _ok({"id": d.id, "deleted": True})
