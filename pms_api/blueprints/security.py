from flask import Blueprint, current_app, request
from flask_jwt_extended import jwt_required, verify_jwt_in_request

from pms_api.common.auth import current_user
from pms_api.common.http import ok, fail
from pms_api.models.security import user_permission_codes
from pms_api.services.route_access import AuthState, Principal, resolve_navigation

bp = Blueprint("security", __name__, url_prefix="/api/v1/security")


def _auth_state() -> AuthState:
    """Signed-in principal from the stored role and grants; anonymous when no valid token."""
    verify_jwt_in_request(optional=True)
    user = current_user()
    if user is None or user.status != "active":
        return AuthState(user=None)
    return AuthState(user=Principal(role=user.role, permissions=frozenset(user_permission_codes(user.id))))


@bp.get("/me-permissions")
@jwt_required()
def me_permissions():
    user = current_user()
    if not user:
        return fail("User not found", status=404, code="user.not_found")
    return ok({"role": user.role, "permissions": sorted(user_permission_codes(user.id))})


@bp.route("/route-access", methods=["GET", "POST"])
def route_access():
    """
    Decide client navigation for one or more /pms paths.

    GET  ?path=/pms/payroll/process
    POST { "path": "/pms/payroll" } or { "paths": ["/pms/dashboard", "/pms/settings"] }

    Each decision is one of ALLOW, REDIRECT_SIGNIN (with `from`) or
    REDIRECT_DEFAULT (with `redirect_to`); never an error for a denied path.
    """
    j = (request.get_json(silent=True) or {}) if request.method == "POST" else {}
    paths = j.get("paths") or ([j["path"]] if j.get("path") else [])
    if not paths and request.args.get("path"):
        paths = [request.args["path"]]
    if not paths or not all(isinstance(p, str) for p in paths):
        return fail("path required", status=422)

    landing = current_app.config.get("PMS_DEFAULT_LANDING", "/pms/dashboard")
    signin = current_app.config.get("PMS_SIGNIN_PATH", "/auth/signin")
    auth = _auth_state()
    decisions = {p: resolve_navigation(auth, p, landing=landing, signin=signin).as_dict() for p in paths}

    if len(paths) == 1 and "paths" not in j:
        return ok({"path": paths[0], **decisions[paths[0]]})
    return ok(decisions)
