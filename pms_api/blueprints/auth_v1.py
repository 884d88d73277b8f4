from flask import Blueprint, request, current_app
from flask_jwt_extended import (
    create_access_token, create_refresh_token,
    jwt_required, get_jwt_identity
)

from pms_api.common.http import ok, fail
from pms_api.extensions import db
from pms_api.models.user import User
from pms_api.models.security import user_permission_codes

bp = Blueprint("auth_v1", __name__, url_prefix="/api/v1/auth")


def _user_payload(u: User, perms=None):
    emp = u.employee
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name,
        "role": u.role,
        "permissions": sorted(perms if perms is not None else user_permission_codes(u.id)),
        "employee_id": emp.id if emp else None,
        "department_id": emp.department_id if emp else None,
    }


def _claims(u: User, perms):
    return {"role": u.role, "perms": sorted(perms), "email": u.email, "name": u.full_name}


@bp.post("/login")
def login():
    data = request.get_json(silent=True, force=True)
    if not isinstance(data, dict):
        data = {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    u = User.query.filter_by(email=email).first()
    if not u or not u.check_password(password):
        current_app.logger.info("failed login for %s", email or "<blank>")
        return fail("Invalid credentials", status=401)
    if u.status != "active":
        return fail("Account disabled", status=403, code="ACCOUNT_DISABLED")

    perms = user_permission_codes(u.id)
    access = create_access_token(identity=str(u.id), additional_claims=_claims(u, perms))
    refresh = create_refresh_token(identity=str(u.id), additional_claims={"role": u.role})
    return ok({"access": access, "refresh": refresh, "user": _user_payload(u, perms)})


@bp.post("/refresh")
@jwt_required(refresh=True)
def refresh():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid else None
    if not u:
        return fail("User not found", status=404)
    perms = user_permission_codes(u.id)
    return ok({"access": create_access_token(identity=str(u.id), additional_claims=_claims(u, perms))})


@bp.get("/me")
@jwt_required()
def me():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid else None
    if not u:
        return fail("User not found", status=404)
    return ok(_user_payload(u))
