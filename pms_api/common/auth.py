# pms_api/common/auth.py
from __future__ import annotations

from functools import wraps
from typing import Iterable, Optional, Set

from flask import current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from sqlalchemy import false

from pms_api.common.http import fail
from pms_api.extensions import db
from pms_api.models.user import User, ROLE_SUPER_ADMIN
from pms_api.models.security import user_permission_codes


# ---------- helpers ----------

def _has_any_perm(user_perms: Set[str], required_perms: Iterable[str]) -> bool:
    if not required_perms:
        return True
    if not user_perms:
        return False
    return any(req in user_perms for req in required_perms)


def current_user() -> Optional[User]:
    """User for the JWT identity of the current request (None if unknown)."""
    uid = get_jwt_identity()
    if uid is None:
        return None
    try:
        return db.session.get(User, int(uid))
    except (TypeError, ValueError):
        return None


def _live_user():
    """Stored user behind the token; (user, None) or (None, error response)."""
    user = current_user()
    if not user:
        return None, fail("Unauthorized", status=401)
    if user.status != "active":
        return None, fail("Account is not active", status=403, code="ACCOUNT_DISABLED")
    return user, None


# ---------- decorators ----------

def requires_roles(*roles: str):
    """
    Require that the current user's role is one of `roles`.
    The stored role decides; the role claim in the token is informational only.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            user, err = _live_user()
            if err:
                return err
            if user.role not in roles:
                current_app.logger.warning("user %s (%s) denied, needs role in %s", user.id, user.role, roles)
                return fail("Forbidden", status=403, code="FORBIDDEN_ROLE")
            return fn(*args, **kwargs)
        return inner
    return outer


def requires_perms(*perm_codes: str):
    """
    Require that the current user has ANY of the given permission tokens.

    Checked against the stored role and grants on every request, so a revoked
    grant or a demotion takes effect before the token expires.
    SUPER_ADMIN always passes.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            user, err = _live_user()
            if err:
                return err
            if not perm_codes or user.role == ROLE_SUPER_ADMIN:
                return fn(*args, **kwargs)

            if not _has_any_perm(user_permission_codes(user.id), perm_codes):
                current_app.logger.warning("user %s denied, needs one of %s", user.id, perm_codes)
                return fail("Forbidden", status=403, code="FORBIDDEN_PERMISSION")

            return fn(*args, **kwargs)
        return inner
    return outer


# ---------- department scope ----------

def managed_department_id(user: Optional[User]) -> Optional[int]:
    """Department an ADMIN manages: the one they head, else their own employee record's."""
    if user is None:
        return None
    from pms_api.models.master import Department
    head_of = Department.query.filter_by(head_user_id=user.id, is_active=True).first()
    if head_of:
        return head_of.id
    emp = user.employee
    return emp.department_id if emp else None


def scope_to_department(q, column, user: Optional[User]):
    """Restrict a query to the caller's department unless they are SUPER_ADMIN."""
    if user is not None and user.is_super_admin:
        return q
    dept_id = managed_department_id(user)
    if dept_id is None:
        return q.filter(false())
    return q.filter(column == dept_id)


def in_department_scope(user: Optional[User], department_id: Optional[int]) -> bool:
    if user is not None and user.is_super_admin:
        return True
    dept_id = managed_department_id(user)
    return dept_id is not None and dept_id == department_id


def user_has_any(user: Optional[User], *perm_codes: str) -> bool:
    """Stored-grant check for handlers that pick the required permission at runtime."""
    if user is None:
        return False
    if user.is_super_admin:
        return True
    return _has_any_perm(user_permission_codes(user.id), perm_codes)
