# pms_api/rbac.py
from __future__ import annotations

from flask import current_app, request, Blueprint
from flask_jwt_extended import jwt_required

from pms_api.common.auth import requires_perms, requires_roles, current_user
from pms_api.common.http import ok as _ok, fail as _fail
from pms_api.common.paging import parse_int
from pms_api.extensions import db
from pms_api.models.user import User, ROLES, ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN
from pms_api.models.security import Permission, UserPermission, user_permission_codes
from pms_api.seed_rbac import grant, revoke, apply_role_defaults, ROLE_PERM_MAP

bp = Blueprint("rbac", __name__, url_prefix="/api/v1/rbac")


def _json():
    return (request.get_json(silent=True) or {}) if request.is_json else {}


def _perm_row(p: Permission):
    return {"id": p.id, "code": p.code, "name": p.name or p.code}


def _user_row(u: User):
    return {"id": u.id, "email": u.email, "name": u.full_name, "role": u.role, "status": u.status}


def _find_user(j) -> User | None:
    user_id = j.get("user_id")
    if user_id:
        uid = parse_int(user_id)
        return db.session.get(User, uid) if uid is not None else None
    email = (j.get("email") or "").strip().lower()
    return User.query.filter_by(email=email).first() if email else None


def _may_manage(actor: User | None, role: str) -> bool:
    """Only SUPER_ADMIN manages admins; ADMIN may manage plain users."""
    if actor is None:
        return False
    if actor.role == ROLE_SUPER_ADMIN:
        return True
    return actor.role == ROLE_ADMIN and role == ROLE_USER


# -------- PERMISSIONS --------
@bp.get("/perms")
@jwt_required()
@requires_perms("MANAGE_SYSTEM", "MANAGE_USER_SETTINGS")
def rbac_list_perms():
    rows = Permission.query.order_by(Permission.code.asc()).all()
    return _ok([_perm_row(p) for p in rows])


@bp.post("/perms")
@jwt_required()
@requires_roles(ROLE_SUPER_ADMIN)
def rbac_create_perm():
    """
    JSON: { "code": "VIEW_PAYROLL_STATS", "name": "View Payroll Stats" }
    Idempotent.
    """
    j = _json()
    code = (j.get("code") or "").strip().upper()
    if not code:
        return _fail("code required", 422)
    name = (j.get("name") or "").strip() or code.replace("_", " ").title()

    p = Permission.query.filter_by(code=code).first()
    if not p:
        p = Permission(code=code, name=name)
        db.session.add(p)
    elif j.get("name"):
        p.name = name
    db.session.commit()
    return _ok(_perm_row(p), 201)


@bp.delete("/perms/<perm_code>")
@jwt_required()
@requires_roles(ROLE_SUPER_ADMIN)
def rbac_delete_perm(perm_code: str):
    p = Permission.query.filter_by(code=perm_code.upper()).first()
    if not p:
        return _fail("permission not found", 404)
    UserPermission.query.filter_by(permission_id=p.id).delete()
    db.session.delete(p)
    db.session.commit()
    return _ok({"deleted": p.code})


@bp.get("/roles")
@jwt_required()
@requires_perms("MANAGE_SYSTEM", "MANAGE_USER_SETTINGS")
def rbac_list_roles():
    return _ok([{"code": r, "default_perms": sorted(ROLE_PERM_MAP.get(r, []))} for r in ROLES])


# -------- USERS --------
@bp.post("/users")
@jwt_required()
@requires_perms("CREATE_USER", "CREATE_ADMIN")
def rbac_create_user():
    """
    Create a login user with exactly one role; the role's default
    permission bundle is granted once, at creation.
    JSON: { "email", "password", "name", "role": "USER" | "ADMIN" | "SUPER_ADMIN" }
    """
    j = _json()
    email = (j.get("email") or "").strip().lower()
    password = j.get("password") or ""
    name = (j.get("name") or "").strip() or email
    role = (j.get("role") or ROLE_USER).strip().upper()

    if not email or not password:
        return _fail("email and password required", 422)
    if len(password) < 6:
        return _fail("password too short (min 6)", 422)
    if role not in ROLES:
        return _fail(f"role must be one of {', '.join(ROLES)}", 422)
    if not _may_manage(current_user(), role):
        return _fail(f"not allowed to create {role} users", 403)
    if User.query.filter_by(email=email).first():
        return _fail("user already exists", 409)

    u = User(email=email, full_name=name, role=role, status="active")
    u.set_password(password)
    db.session.add(u)
    db.session.flush()
    granted = apply_role_defaults(u)
    db.session.commit()
    current_app.logger.info("created %s user %s with %d default permissions", role, email, granted)
    return _ok({**_user_row(u), "perms": sorted(user_permission_codes(u.id))}, 201)


@bp.post("/users/role")
@jwt_required()
@requires_roles(ROLE_SUPER_ADMIN)
def rbac_set_role():
    """
    JSON: { "email" | "user_id", "role" }
    Changing the role does not touch stored permission grants.
    """
    j = _json()
    role = (j.get("role") or "").strip().upper()
    if role not in ROLES:
        return _fail(f"role must be one of {', '.join(ROLES)}", 422)
    u = _find_user(j)
    if not u:
        return _fail("user not found", 404)
    u.role = role
    db.session.commit()
    return _ok(_user_row(u))


def _change_perms(grant_mode: bool):
    j = _json()
    codes = [str(c).strip().upper() for c in (j.get("perms") or []) if str(c).strip()]
    if not codes:
        return _fail("perms required", 422)
    u = _find_user(j)
    if not u:
        return _fail("user not found", 404)
    if not _may_manage(current_user(), u.role):
        return _fail(f"not allowed to manage {u.role} users", 403)

    if grant_mode:
        unknown = [c for c in codes if not Permission.query.filter_by(code=c).first()]
        if unknown:
            return _fail("unknown permission(s)", 404, detail=", ".join(unknown))
        changed = grant(u, codes)
    else:
        changed = revoke(u, codes)
    db.session.commit()
    return _ok({"user": _user_row(u), "changed": changed, "perms": sorted(user_permission_codes(u.id))})


@bp.post("/users/grant")
@jwt_required()
@requires_perms("EDIT_USER", "EDIT_ADMIN")
def rbac_grant_perms():
    """JSON: { "email" | "user_id", "perms": ["VIEW_OWN_BONUS", ...] }"""
    return _change_perms(True)


@bp.post("/users/revoke")
@jwt_required()
@requires_perms("EDIT_USER", "EDIT_ADMIN")
def rbac_revoke_perms():
    """JSON: { "email" | "user_id", "perms": [...] }"""
    return _change_perms(False)


@bp.get("/users/inspect")
@jwt_required()
@requires_perms("VIEW_ALL_USERS", "VIEW_ALL_ADMINS")
def rbac_user_inspect():
    """Query params (one of): email=..., user_id=..."""
    u = _find_user({
        "email": request.args.get("email"),
        "user_id": request.args.get("user_id", type=int),
    })
    if not u:
        return _fail("user not found", 404)
    perms = sorted(user_permission_codes(u.id))
    return _ok({"user": _user_row(u), "perms": perms, "counts": {"perms": len(perms)}})


@bp.post("/users/reset-password")
@jwt_required()
@requires_perms("EDIT_USER", "EDIT_ADMIN")
def rbac_user_reset_password():
    """JSON: { "email" | "user_id", "new_password" }"""
    j = _json()
    new_pw = j.get("new_password") or ""
    if len(new_pw) < 6:
        return _fail("password too short (min 6)", 422)
    u = _find_user(j)
    if not u:
        return _fail("user not found", 404)
    if not _may_manage(current_user(), u.role):
        return _fail(f"not allowed to manage {u.role} users", 403)
    u.set_password(new_pw)
    db.session.commit()
    return _ok({"user": _user_row(u), "reset": True})
