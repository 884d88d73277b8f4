# pms_api/seed_rbac.py
from pms_api.extensions import db
from pms_api.models.security import Permission, UserPermission
from pms_api.models.user import User, ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN

SELF_SERVICE_PERMS = [
    "VIEW_DASHBOARD",
    "VIEW_PERSONAL_INFO", "EDIT_PERSONAL_INFO",
    "REQUEST_LEAVE", "VIEW_OWN_LEAVE", "CANCEL_OWN_LEAVE",
    "VIEW_OWN_PAYSLIP", "VIEW_OWN_ALLOWANCES", "REQUEST_ALLOWANCES",
    "VIEW_OWN_DEDUCTIONS", "VIEW_OWN_BONUS",
    "SUBMIT_FEEDBACK",
]

ADMIN_PERMS = [
    # Employees
    "VIEW_ALL_USERS", "MANAGE_DEPARTMENT_USERS",
    "MANAGE_ONBOARDING", "VIEW_ONBOARDING", "MANAGE_OFFBOARDING", "VIEW_OFFBOARDING",
    "APPROVE_LEAVE", "VIEW_TEAM_LEAVE",

    # Payroll (department scope)
    "VIEW_DEPARTMENT_PAYROLL", "CREATE_PAYROLL", "EDIT_PAYROLL", "SUBMIT_PAYROLL", "GENERATE_PAYSLIP",
    "APPROVE_DEPARTMENT_PAYROLL",
    "VIEW_SALARY_STRUCTURE",
    "VIEW_DEDUCTIONS", "VIEW_DEPARTMENT_DEDUCTIONS", "MANAGE_DEPARTMENT_DEDUCTIONS",
    "VIEW_ALLOWANCES", "VIEW_DEPARTMENT_ALLOWANCES", "MANAGE_DEPARTMENT_ALLOWANCES",
    "CREATE_ALLOWANCES", "EDIT_ALLOWANCES",
    "VIEW_BONUSES", "VIEW_DEPARTMENT_BONUSES", "MANAGE_DEPARTMENT_BONUSES", "CREATE_BONUSES", "EDIT_BONUSES",

    # Reports / settings
    "VIEW_REPORTS", "VIEW_PAYROLL_REPORTS", "VIEW_EMPLOYEE_REPORTS", "VIEW_PAYROLL_STATS",
    "MANAGE_DEPARTMENT_SETTINGS", "MANAGE_NOTIFICATION_SETTINGS",
]

SUPER_ADMIN_PERMS = [
    # Users / departments
    "CREATE_ADMIN", "EDIT_ADMIN", "DELETE_ADMIN", "VIEW_ALL_ADMINS",
    "CREATE_USER", "EDIT_USER", "DELETE_USER",
    "CREATE_DEPARTMENT", "EDIT_DEPARTMENT", "DELETE_DEPARTMENT", "VIEW_ALL_DEPARTMENTS",
    "ASSIGN_DEPARTMENT_ADMIN", "VIEW_ALL_LEAVE", "APPROVE_OFFBOARDING",

    # Payroll (organisation scope)
    "VIEW_ALL_PAYROLL", "DELETE_PAYROLL", "APPROVE_PAYROLL",
    "MANAGE_SALARY_STRUCTURE", "EDIT_SALARY_STRUCTURE",
    "MANAGE_DEDUCTIONS", "EDIT_DEDUCTIONS",
    "MANAGE_ALLOWANCES", "DELETE_ALLOWANCES", "APPROVE_ALLOWANCES",
    "MANAGE_BONUSES", "DELETE_BONUSES", "MANAGE_OVERTIME",

    # Reports / system
    "VIEW_TAX_REPORTS", "VIEW_AUDIT_LOGS", "MANAGE_SYSTEM", "VIEW_SYSTEM_HEALTH",
    "MANAGE_SYSTEM_SETTINGS", "MANAGE_USER_SETTINGS", "MANAGE_PAYROLL_SETTINGS",
    "MANAGE_LEAVE_SETTINGS", "MANAGE_DOCUMENT_SETTINGS", "MANAGE_INTEGRATION_SETTINGS",
    "MANAGE_TAX_SETTINGS", "MANAGE_COMPLIANCE_SETTINGS", "MANAGE_COMPANY_PROFILE",
    "MANAGE_FEEDBACK", "APPROVE_FEEDBACK",
]

DEFAULT_PERMS = sorted(set(SELF_SERVICE_PERMS + ADMIN_PERMS + SUPER_ADMIN_PERMS))

# default bundles applied when a user is created; stored grants win afterwards
ROLE_PERM_MAP = {
    ROLE_USER: SELF_SERVICE_PERMS,
    ROLE_ADMIN: SELF_SERVICE_PERMS + ADMIN_PERMS,
    ROLE_SUPER_ADMIN: DEFAULT_PERMS,
}


def _ensure_permissions(codes=None):
    code_to_perm = {}
    for code in (DEFAULT_PERMS if codes is None else codes):
        p = Permission.query.filter_by(code=code).first()
        if not p:
            p = Permission(code=code, name=code.replace("_", " ").title())
            db.session.add(p)
            db.session.flush()
        code_to_perm[code] = p
    return code_to_perm


def grant(user: User, codes) -> int:
    """Grant permission tokens to a user; returns how many were new. Caller commits."""
    code_to_perm = _ensure_permissions(list(codes))
    existing = {up.permission_id for up in user.user_permissions}
    added = 0
    for p in code_to_perm.values():
        if p.id not in existing:
            db.session.add(UserPermission(user_id=user.id, permission_id=p.id))
            existing.add(p.id)
            added += 1
    return added


def revoke(user: User, codes) -> int:
    codes = set(codes)
    removed = 0
    for up in list(user.user_permissions):
        if up.permission and up.permission.code in codes:
            db.session.delete(up)
            removed += 1
    return removed


def apply_role_defaults(user: User) -> int:
    return grant(user, ROLE_PERM_MAP.get(user.role, []))


def run():
    code_to_perm = _ensure_permissions()
    db.session.commit()
    return {"ok": True, "perms": len(code_to_perm)}
