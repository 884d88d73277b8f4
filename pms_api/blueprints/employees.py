from __future__ import annotations

from datetime import date

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import or_, func

from pms_api.common.auth import requires_perms, current_user, scope_to_department, in_department_scope
from pms_api.common.paging import page_limit, parse_date, parse_decimal
from pms_api.extensions import db
from pms_api.models.employee import Employee, EMPLOYEE_STATUSES
from pms_api.models.employee_bank import EmployeeBankAccount
from pms_api.models.master import Department
from pms_api.models.payroll.components import SalaryGrade
from pms_api.models.user import User

bp = Blueprint("employees", __name__, url_prefix="/api/v1/employees")


# ---------- envelopes ----------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta: payload["meta"] = meta
    return jsonify(payload), status


def _fail(msg, status=400, code=None, detail=None):
    err = {"message": msg}
    if code: err["code"] = code
    if detail: err["detail"] = detail
    return jsonify({"success": False, "error": err}), status


# ---------- helpers ----------
def _int_arg(*names: str):
    """
    Return first present arg among names (camelCase/snake_case),
    cast to int. If present but invalid -> ValueError (422).
    """
    for n in names:
        if n in request.args:
            v = request.args.get(n)
            if v in (None, "", "null"): return None
            try:
                return int(v)
            except ValueError:
                raise ValueError(f"{n} must be integer")
    return None


def _as_int(val, field_name):
    if val is None or val == "":
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be integer")


def _bank_row(b: EmployeeBankAccount):
    return {
        "id": b.id,
        "bank_name": b.bank_name,
        "account_number": b.account_number,
        "account_name": b.account_name,
        "is_primary": b.is_primary,
    }


def _row(x: Employee, with_banks: bool = False):
    out = {
        "id": x.id,
        "code": x.code,
        "email": x.email,
        "first_name": x.first_name,
        "last_name": x.last_name,
        "full_name": x.full_name,
        "phone": x.phone,
        "position": x.position,
        "department_id": x.department_id,
        "department_name": x.department.name if x.department else None,
        "salary_grade_id": x.salary_grade_id,
        "salary_grade_level": x.salary_grade.level if x.salary_grade else None,
        "user_id": x.user_id,
        "nhf_number": x.nhf_number,
        "pension_number": x.pension_number,
        "tax_id": x.tax_id,
        "overtime_hours": float(x.overtime_hours or 0),
        "overtime_rate": float(x.overtime_rate or 0),
        "doj": x.doj.isoformat() if x.doj else None,
        "dol": x.dol.isoformat() if x.dol else None,
        "status": x.status,
    }
    if with_banks:
        out["bank_accounts"] = [
            _bank_row(b) for b in
            EmployeeBankAccount.query.filter_by(employee_id=x.id).order_by(EmployeeBankAccount.id.asc()).all()
        ]
    return out


def _validate_refs(department_id, salary_grade_id, user_id):
    if department_id is not None:
        d = db.session.get(Department, department_id)
        if not d or not d.is_active:
            raise ValueError("department_id invalid or inactive")
    if salary_grade_id is not None and not db.session.get(SalaryGrade, salary_grade_id):
        raise ValueError("salary_grade_id invalid")
    if user_id is not None and not db.session.get(User, user_id):
        raise ValueError("user_id invalid")


def _scoped_get(emp_id: int):
    e = db.session.get(Employee, emp_id)
    if not e or not in_department_scope(current_user(), e.department_id):
        return None
    return e


# ---------- list/get ----------
@bp.get("")
@jwt_required()
@requires_perms("VIEW_ALL_USERS", "MANAGE_DEPARTMENT_USERS")
def list_employees():
    try:
        dept_id = _int_arg("department_id", "departmentId")
        grade_id = _int_arg("salary_grade_id", "salaryGradeId")
    except ValueError as e:
        return _fail(str(e), 422)

    q = scope_to_department(Employee.query, Employee.department_id, current_user())
    if dept_id is not None:
        q = q.filter(Employee.department_id == dept_id)
    if grade_id is not None:
        q = q.filter(Employee.salary_grade_id == grade_id)

    status = (request.args.get("status") or "").strip().lower()
    if status:
        if status not in EMPLOYEE_STATUSES:
            return _fail(f"status must be one of {', '.join(EMPLOYEE_STATUSES)}", 422)
        q = q.filter(Employee.status == status)

    s = (request.args.get("q") or "").strip()
    if s:
        like = f"%{s}%"
        q = q.filter(or_(
            Employee.code.ilike(like), Employee.email.ilike(like),
            Employee.first_name.ilike(like), Employee.last_name.ilike(like),
        ))

    page, size = page_limit()
    total = q.count()
    items = q.order_by(Employee.code.asc()).offset((page - 1) * size).limit(size).all()
    return _ok([_row(x) for x in items], page=page, size=size, total=total)


@bp.get("/<int:emp_id>")
@jwt_required()
@requires_perms("VIEW_ALL_USERS", "MANAGE_DEPARTMENT_USERS")
def get_employee(emp_id: int):
    e = _scoped_get(emp_id)
    if not e:
        return _fail("Employee not found", 404)
    return _ok(_row(e, with_banks=True))


# ---------- create/update ----------
@bp.post("")
@jwt_required()
@requires_perms("CREATE_USER", "MANAGE_ONBOARDING")
def create_employee():
    data = request.get_json(silent=True, force=True) or {}
    code = (data.get("code") or "").strip().upper()
    email = (data.get("email") or "").strip().lower()
    first_name = (data.get("first_name") or "").strip()
    if not code or not email or not first_name:
        return _fail("code, email and first_name are required", 422)

    try:
        dept_id = _as_int(data.get("department_id"), "department_id")
        grade_id = _as_int(data.get("salary_grade_id"), "salary_grade_id")
        user_id = _as_int(data.get("user_id"), "user_id")
        _validate_refs(dept_id, grade_id, user_id)
    except ValueError as e:
        return _fail(str(e), 422)

    if not in_department_scope(current_user(), dept_id):
        return _fail("Cannot create employees outside your department", 403, code="FORBIDDEN_SCOPE")
    if Employee.query.filter(or_(Employee.code == code, func.lower(Employee.email) == email)).first():
        return _fail("Employee code or email already exists", 409)

    ot_hours = parse_decimal(data.get("overtime_hours")) or 0
    ot_rate = parse_decimal(data.get("overtime_rate")) or 0
    if ot_hours < 0 or ot_rate < 0:
        return _fail("overtime values must be >= 0", 422)

    e = Employee(
        code=code,
        email=email,
        first_name=first_name,
        last_name=(data.get("last_name") or "").strip() or None,
        phone=(data.get("phone") or "").strip() or None,
        position=(data.get("position") or "").strip() or None,
        department_id=dept_id,
        salary_grade_id=grade_id,
        user_id=user_id,
        nhf_number=(data.get("nhf_number") or "").strip() or None,
        pension_number=(data.get("pension_number") or "").strip() or None,
        tax_id=(data.get("tax_id") or "").strip() or None,
        overtime_hours=ot_hours,
        overtime_rate=ot_rate,
        doj=parse_date(data.get("doj")) or date.today(),
        status="active",
    )
    db.session.add(e)
    db.session.flush()

    bank = data.get("bank_account")
    if isinstance(bank, dict) and bank.get("account_number"):
        db.session.add(EmployeeBankAccount(
            employee_id=e.id,
            bank_name=(bank.get("bank_name") or "").strip(),
            account_number=str(bank.get("account_number")).strip(),
            account_name=(bank.get("account_name") or e.full_name).strip(),
            is_primary=True,
        ))
    db.session.commit()
    return _ok(_row(e, with_banks=True), 201)


UPDATABLE_TEXT = ("first_name", "last_name", "phone", "position", "nhf_number", "pension_number", "tax_id")


@bp.put("/<int:emp_id>")
@jwt_required()
@requires_perms("EDIT_USER", "MANAGE_DEPARTMENT_USERS")
def update_employee(emp_id: int):
    e = _scoped_get(emp_id)
    if not e:
        return _fail("Employee not found", 404)
    data = request.get_json(silent=True, force=True) or {}

    for field_name in UPDATABLE_TEXT:
        if field_name in data:
            val = (data.get(field_name) or "").strip() or None
            if field_name == "first_name" and not val:
                return _fail("first_name cannot be empty", 422)
            setattr(e, field_name, val)

    if "email" in data:
        email = (data.get("email") or "").strip().lower()
        if not email:
            return _fail("email cannot be empty", 422)
        if Employee.query.filter(func.lower(Employee.email) == email, Employee.id != e.id).first():
            return _fail("Employee email already exists", 409)
        e.email = email

    try:
        dept_id = _as_int(data["department_id"], "department_id") if "department_id" in data else e.department_id
        grade_id = _as_int(data["salary_grade_id"], "salary_grade_id") if "salary_grade_id" in data else e.salary_grade_id
        user_id = _as_int(data["user_id"], "user_id") if "user_id" in data else e.user_id
        _validate_refs(
            dept_id if dept_id != e.department_id else None,
            grade_id if grade_id != e.salary_grade_id else None,
            user_id if user_id != e.user_id else None,
        )
    except ValueError as ex:
        return _fail(str(ex), 422)
    if dept_id != e.department_id and not in_department_scope(current_user(), dept_id):
        return _fail("Cannot move employees outside your department", 403, code="FORBIDDEN_SCOPE")
    e.department_id, e.salary_grade_id, e.user_id = dept_id, grade_id, user_id

    if "status" in data:
        status = (data.get("status") or "").strip().lower()
        if status not in EMPLOYEE_STATUSES:
            return _fail(f"status must be one of {', '.join(EMPLOYEE_STATUSES)}", 422)
        e.status = status
    if "doj" in data:
        e.doj = parse_date(data.get("doj"))

    db.session.commit()
    return _ok(_row(e))


@bp.put("/<int:emp_id>/overtime")
@jwt_required()
@requires_perms("MANAGE_OVERTIME", "EDIT_PAYROLL")
def set_overtime(emp_id: int):
    """JSON: { "hours": 10, "rate": 1500 }; used by the next payroll computation."""
    e = _scoped_get(emp_id)
    if not e:
        return _fail("Employee not found", 404)
    data = request.get_json(silent=True, force=True) or {}
    hours = parse_decimal(data.get("hours"))
    rate = parse_decimal(data.get("rate"))
    if hours is None or rate is None or hours < 0 or rate < 0:
        return _fail("hours and rate must be numbers >= 0", 422)
    e.overtime_hours, e.overtime_rate = hours, rate
    db.session.commit()
    return _ok(_row(e))


@bp.delete("/<int:emp_id>")
@jwt_required()
@requires_perms("DELETE_USER", "MANAGE_OFFBOARDING")
def offboard_employee(emp_id: int):
    """Employees are never physically removed; payroll history keeps pointing at them."""
    e = _scoped_get(emp_id)
    if not e:
        return _fail("Employee not found", 404)
    e.status = "offboarded"
    e.dol = parse_date((request.get_json(silent=True) or {}).get("dol")) or date.today()
    db.session.commit()
    return _ok({"id": e.id, "status": e.status, "dol": e.dol.isoformat()})


# ---------- bank accounts ----------
@bp.get("/<int:emp_id>/bank-accounts")
@jwt_required()
@requires_perms("VIEW_ALL_USERS", "MANAGE_DEPARTMENT_USERS")
def list_bank_accounts(emp_id: int):
    e = _scoped_get(emp_id)
    if not e:
        return _fail("Employee not found", 404)
    return _ok(_row(e, with_banks=True)["bank_accounts"])


@bp.post("/<int:emp_id>/bank-accounts")
@jwt_required()
@requires_perms("EDIT_USER", "MANAGE_DEPARTMENT_USERS")
def add_bank_account(emp_id: int):
    e = _scoped_get(emp_id)
    if not e:
        return _fail("Employee not found", 404)
    data = request.get_json(silent=True, force=True) or {}
    bank_name = (data.get("bank_name") or "").strip()
    number = str(data.get("account_number") or "").strip()
    if not bank_name or not number:
        return _fail("bank_name and account_number are required", 422)

    existing = EmployeeBankAccount.query.filter_by(employee_id=e.id).all()
    primary = bool(data.get("is_primary")) or not existing
    if primary:
        for b in existing:
            b.is_primary = False
    b = EmployeeBankAccount(
        employee_id=e.id,
        bank_name=bank_name,
        account_number=number,
        account_name=(data.get("account_name") or e.full_name).strip(),
        is_primary=primary,
    )
    db.session.add(b)
    db.session.commit()
    return _ok(_bank_row(b), 201)


@bp.delete("/<int:emp_id>/bank-accounts/<int:bank_id>")
@jwt_required()
@requires_perms("EDIT_USER", "MANAGE_DEPARTMENT_USERS")
def delete_bank_account(emp_id: int, bank_id: int):
    e = _scoped_get(emp_id)
    b = db.session.get(EmployeeBankAccount, bank_id)
    if not e or not b or b.employee_id != e.id:
        return _fail("Bank account not found", 404)
    db.session.delete(b)
    db.session.commit()
    return _ok({"id": bank_id, "deleted": True})
