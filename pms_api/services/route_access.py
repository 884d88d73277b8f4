"""
Navigation access decisions for the /pms client routes.

`resolve_access` answers one guard (one route level); `resolve_navigation`
walks the nested route table the way the client mounts its guards (layout,
section, page) and returns the first denial. Both are pure: no request,
session or database access, and authorization failure is a decision, never
an exception.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

ALLOW = "ALLOW"
REDIRECT_SIGNIN = "REDIRECT_SIGNIN"
REDIRECT_DEFAULT = "REDIRECT_DEFAULT"
PENDING = "PENDING"

SIGNIN_PATH = "/auth/signin"
DEFAULT_LANDING = "/pms/dashboard"

SUPER_ADMIN = "SUPER_ADMIN"
ADMIN = "ADMIN"
USER = "USER"


@dataclass(frozen=True)
class Principal:
    role: str
    permissions: FrozenSet[str] = frozenset()

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN

    def has_any(self, perms: Iterable[str]) -> bool:
        return any(p in self.permissions for p in perms)

    def has_all(self, perms: Iterable[str]) -> bool:
        return all(p in self.permissions for p in perms)


@dataclass(frozen=True)
class AuthState:
    loading: bool = False
    user: Optional[Principal] = None


@dataclass(frozen=True)
class RouteRequirement:
    roles: FrozenSet[str] = frozenset()
    permissions: Tuple[str, ...] = ()
    require_all: bool = False


@dataclass(frozen=True)
class AccessDecision:
    outcome: str
    redirect_to: Optional[str] = None
    from_path: Optional[str] = None
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == ALLOW

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "allowed": self.allowed,
            "redirect_to": self.redirect_to,
            "from": self.from_path,
            "reason": self.reason,
        }


# ---------- tier rule tables ----------

# SUPER_ADMIN self-service pages still need the matching "view own" grant
SUPER_ADMIN_SELF_SERVICE = (
    ("my-bonus", "VIEW_OWN_BONUS"),
    ("my-payslips", "VIEW_OWN_PAYSLIP"),
    ("my-leave", "VIEW_OWN_LEAVE"),
)

OWN_LEAVE_PERMS = ("REQUEST_LEAVE", "VIEW_OWN_LEAVE", "CANCEL_OWN_LEAVE")
TEAM_LEAVE_PERMS = ("VIEW_TEAM_LEAVE", "APPROVE_LEAVE")

ADMIN_EMPLOYEE_PERMS = (
    "VIEW_ALL_USERS",
    "MANAGE_DEPARTMENT_USERS",
    "MANAGE_ONBOARDING",
    "VIEW_ONBOARDING",
    "MANAGE_OFFBOARDING",
    "VIEW_OFFBOARDING",
)
ADMIN_PAYROLL_PERMS = (
    "VIEW_ALL_PAYROLL",
    "VIEW_DEPARTMENT_PAYROLL",
    "CREATE_PAYROLL",
    "EDIT_PAYROLL",
    "VIEW_SALARY_STRUCTURE",
    "EDIT_SALARY_STRUCTURE",
    "VIEW_ALLOWANCES",
    "EDIT_ALLOWANCES",
    "VIEW_DEDUCTIONS",
    "EDIT_DEDUCTIONS",
    "VIEW_DEPARTMENT_ALLOWANCES",
    "VIEW_DEPARTMENT_DEDUCTIONS",
    "VIEW_DEPARTMENT_BONUSES",
    "MANAGE_DEPARTMENT_BONUSES",
)
ADMIN_SETTINGS_PERMS = (
    "MANAGE_SYSTEM_SETTINGS",
    "MANAGE_DEPARTMENT_SETTINGS",
    "MANAGE_USER_SETTINGS",
    "MANAGE_PAYROLL_SETTINGS",
    "MANAGE_LEAVE_SETTINGS",
    "MANAGE_DOCUMENT_SETTINGS",
    "MANAGE_NOTIFICATION_SETTINGS",
)
ADMIN_REPORT_PERMS = (
    "VIEW_REPORTS",
    "VIEW_PAYROLL_REPORTS",
    "VIEW_EMPLOYEE_REPORTS",
    "VIEW_TAX_REPORTS",
)

# allowed for ADMIN without any permission check
ADMIN_SELF_SERVICE = (
    "/pms/payroll/my-payslips",
    "/pms/payroll/my-allowances",
    "/pms/payroll/my-deductions",
    "/pms/payroll/my-bonus",
    "/pms/settings/notifications",
    "/pms/settings/profile",
)

# USER allow-list inside the restricted sub-trees: path prefix -> any-of permissions
USER_SELF_SERVICE = (
    ("/pms/payroll/my-payslips", ("VIEW_OWN_PAYSLIP",)),
    ("/pms/payroll/my-allowances", ("VIEW_OWN_ALLOWANCES", "REQUEST_ALLOWANCES")),
    ("/pms/payroll/my-deductions", ("VIEW_OWN_DEDUCTIONS",)),
    ("/pms/payroll/my-bonus", ("VIEW_OWN_BONUS",)),
    ("/pms/employees/my-leave", OWN_LEAVE_PERMS),
    ("/pms/leave/my-leave", OWN_LEAVE_PERMS),
    ("/pms/settings/notifications", ()),
)
USER_RESTRICTED_TREES = ("/pms/payroll", "/pms/leave", "/pms/settings", "/pms/employees")
PROFILE_PERMS = ("VIEW_PERSONAL_INFO", "EDIT_PERSONAL_INFO")


# ---------- helpers ----------

def normalize_path(path: str) -> str:
    p = (path or "/").split("?", 1)[0].split("#", 1)[0].strip().lower()
    if len(p) > 1:
        p = p.rstrip("/")
    return p or "/"


def _under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def _segments(path: str) -> List[str]:
    return [s for s in path.split("/") if s]


def _allow(reason: str | None = None) -> AccessDecision:
    return AccessDecision(ALLOW, reason=reason)


def _deny(reason: str, landing: str = DEFAULT_LANDING) -> AccessDecision:
    return AccessDecision(REDIRECT_DEFAULT, redirect_to=landing, reason=reason)


# ---------- role tiers ----------
# Each returns a final decision, or None to continue with the generic check.

def _super_admin_tier(user: Principal, path: str, landing: str) -> Optional[AccessDecision]:
    segs = _segments(path)
    for seg, perm in SUPER_ADMIN_SELF_SERVICE:
        if seg in segs:
            if perm in user.permissions:
                return _allow(f"self-service page {seg}")
            return _deny(f"missing {perm}", landing)
    return _allow("super admin")


def _admin_tier(user: Principal, path: str, landing: str) -> Optional[AccessDecision]:
    for prefix in ADMIN_SELF_SERVICE:
        if _under(path, prefix):
            return _allow("admin self-service page")

    if _under(path, "/pms/employees"):
        if _under(path, "/pms/employees/team-leave"):
            if not user.has_any(TEAM_LEAVE_PERMS):
                return _deny("no team leave permissions", landing)
        elif _under(path, "/pms/employees/my-leave"):
            if not user.has_any(OWN_LEAVE_PERMS):
                return _deny("no own leave permissions", landing)
        elif not user.has_any(ADMIN_EMPLOYEE_PERMS):
            return _deny("no employee management permissions", landing)

    elif _under(path, "/pms/payroll"):
        if not user.has_any(ADMIN_PAYROLL_PERMS):
            return _deny("no payroll management permissions", landing)

    elif _under(path, "/pms/settings"):
        if not user.has_any(ADMIN_SETTINGS_PERMS):
            return _deny("no settings permissions", landing)

    elif _under(path, "/pms/reports"):
        if not user.has_any(ADMIN_REPORT_PERMS):
            return _deny("no report viewing permissions", landing)

    return None


def _user_tier(user: Principal, path: str, landing: str) -> Optional[AccessDecision]:
    if any(_under(path, tree) for tree in USER_RESTRICTED_TREES):
        for prefix, perms in USER_SELF_SERVICE:
            if _under(path, prefix):
                if perms and not user.has_any(perms):
                    return _deny(f"missing any of {', '.join(perms)}", landing)
                return None
        return _deny("not a self-service page", landing)

    if _under(path, "/pms/profile") and not user.has_any(PROFILE_PERMS):
        return _deny("cannot view profile", landing)
    return None


_TIERS = {
    SUPER_ADMIN: _super_admin_tier,
    ADMIN: _admin_tier,
    USER: _user_tier,
}


# ---------- public ----------

def resolve_access(
    auth: AuthState,
    path: str,
    requirement: RouteRequirement | None = None,
    landing: str = DEFAULT_LANDING,
    signin: str = SIGNIN_PATH,
) -> AccessDecision:
    """Decide one route guard for `path`."""
    if auth.loading:
        return AccessDecision(PENDING)

    user = auth.user
    if user is None:
        return AccessDecision(REDIRECT_SIGNIN, redirect_to=signin, from_path=path, reason="not signed in")

    p = normalize_path(path)
    req = requirement or RouteRequirement()

    if req.roles and user.role not in req.roles:
        return _deny("invalid role", landing)

    # substring overrides; department-process is the more specific one
    if "department-process" in p:
        if user.role not in (ADMIN, SUPER_ADMIN):
            return _deny("department processing requires ADMIN or SUPER_ADMIN", landing)
    elif "process" in p and not user.is_super_admin:
        return _deny("payment processing requires SUPER_ADMIN", landing)

    tier = _TIERS.get(user.role)
    if tier is None:
        return _deny(f"unknown role {user.role}", landing)
    decided = tier(user, p, landing)
    if decided is not None:
        return decided

    if req.permissions:
        ok = user.has_all(req.permissions) if req.require_all else user.has_any(req.permissions)
        if not ok:
            return _deny("insufficient permissions", landing)

    return _allow()


# ---------- route table ----------

@dataclass(frozen=True)
class Route:
    path: str
    requirement: RouteRequirement
    children: Tuple["Route", ...] = field(default_factory=tuple)


def _r(path: str, roles: Sequence[str], perms: Sequence[str] = (), require_all: bool = False,
       children: Sequence[Route] = ()) -> Route:
    return Route(path, RouteRequirement(frozenset(roles), tuple(perms), require_all), tuple(children))


ALL_ROLES = (SUPER_ADMIN, ADMIN, USER)
MANAGERS = (SUPER_ADMIN, ADMIN)

PMS_LAYOUT = RouteRequirement(frozenset(ALL_ROLES), ("VIEW_DASHBOARD",), True)

ROUTES: Tuple[Route, ...] = (
    _r("dashboard", ALL_ROLES, ["VIEW_DASHBOARD"], True),
    _r("employees", ALL_ROLES, children=[
        _r("list", MANAGERS, ["VIEW_ALL_USERS"], True),
        _r("onboarding", MANAGERS, ["MANAGE_ONBOARDING"], True),
        _r("offboarding", MANAGERS, ["MANAGE_OFFBOARDING"], True),
        _r("team-leave", MANAGERS, TEAM_LEAVE_PERMS),
        _r("my-leave", ALL_ROLES, OWN_LEAVE_PERMS),
    ]),
    _r("payroll", ALL_ROLES, [
        "VIEW_ALL_PAYROLL", "VIEW_DEPARTMENT_PAYROLL", "CREATE_PAYROLL", "EDIT_PAYROLL",
        "DELETE_PAYROLL", "SUBMIT_PAYROLL", "VIEW_DEPARTMENT_DEDUCTIONS",
        "VIEW_DEPARTMENT_ALLOWANCES", "VIEW_DEPARTMENT_BONUSES", "VIEW_OWN_PAYSLIP",
        "VIEW_OWN_ALLOWANCES", "REQUEST_ALLOWANCES", "VIEW_OWN_DEDUCTIONS", "VIEW_OWN_BONUS",
    ], children=[
        _r("structure", MANAGERS, ["VIEW_SALARY_STRUCTURE", "EDIT_SALARY_STRUCTURE"]),
        _r("deductions", MANAGERS, [
            "VIEW_DEDUCTIONS", "EDIT_DEDUCTIONS", "MANAGE_DEPARTMENT_DEDUCTIONS", "VIEW_DEPARTMENT_DEDUCTIONS",
        ]),
        _r("allowances", MANAGERS, [
            "VIEW_ALLOWANCES", "EDIT_ALLOWANCES", "MANAGE_DEPARTMENT_ALLOWANCES", "VIEW_DEPARTMENT_ALLOWANCES",
        ]),
        _r("bonuses", MANAGERS, [
            "VIEW_BONUSES", "MANAGE_BONUSES", "MANAGE_DEPARTMENT_BONUSES", "VIEW_DEPARTMENT_BONUSES",
            "CREATE_BONUSES", "DELETE_BONUSES", "EDIT_BONUSES",
        ]),
        _r("process", (SUPER_ADMIN,), [
            "CREATE_PAYROLL", "EDIT_PAYROLL", "DELETE_PAYROLL", "SUBMIT_PAYROLL",
            "VIEW_ALL_PAYROLL", "GENERATE_PAYSLIP",
        ]),
        _r("department-process", (ADMIN, SUPER_ADMIN), [
            "CREATE_PAYROLL", "EDIT_PAYROLL", "DELETE_PAYROLL", "SUBMIT_PAYROLL",
            "VIEW_DEPARTMENT_PAYROLL", "GENERATE_PAYSLIP",
        ]),
        _r("my-payslips", ALL_ROLES, ["VIEW_OWN_PAYSLIP"], True),
        _r("my-allowances", ALL_ROLES, ["VIEW_OWN_ALLOWANCES", "REQUEST_ALLOWANCES"], True),
        _r("my-deductions", ALL_ROLES, ["VIEW_OWN_DEDUCTIONS"], True),
        _r("my-bonus", ALL_ROLES, ["VIEW_OWN_BONUS"], True),
    ]),
    _r("reports", MANAGERS, ["VIEW_REPORTS", "VIEW_PAYROLL_REPORTS"], children=[
        _r("payroll", MANAGERS, ["VIEW_PAYROLL_REPORTS"], True),
        _r("audit", (SUPER_ADMIN,), ["VIEW_AUDIT_LOGS"], True),
    ]),
    _r("settings", ALL_ROLES, children=[
        _r("", MANAGERS, ["MANAGE_SYSTEM_SETTINGS"], True),
        _r("company", (SUPER_ADMIN,), ["MANAGE_COMPANY_PROFILE"], True),
        _r("integrations", (SUPER_ADMIN,), ["MANAGE_INTEGRATION_SETTINGS"], True),
        _r("notifications", ALL_ROLES),
    ]),
    _r("profile", ALL_ROLES, PROFILE_PERMS),
    _r("feedback", ALL_ROLES, ["MANAGE_FEEDBACK"], True),
)


def route_chain(path: str) -> Optional[List[RouteRequirement]]:
    """Requirements from the /pms layout down to the matched page, or None if no route matches."""
    segs = _segments(normalize_path(path))
    if not segs or segs[0] != "pms":
        return None
    chain = [PMS_LAYOUT]
    rest = segs[1:]
    if not rest:
        return chain

    section = next((r for r in ROUTES if r.path == rest[0]), None)
    if section is None:
        return None
    chain.append(section.requirement)

    child_key = rest[1] if len(rest) > 1 else ""
    child = next((c for c in section.children if c.path == child_key), None)
    if child is not None:
        chain.append(child.requirement)
    elif child_key:
        return None
    return chain


def resolve_navigation(auth: AuthState, path: str, landing: str = DEFAULT_LANDING,
                       signin: str = SIGNIN_PATH) -> AccessDecision:
    """Evaluate every guard along the route chain for `path`; the first non-ALLOW wins."""
    if auth.loading:
        return AccessDecision(PENDING)
    if auth.user is None:
        return AccessDecision(REDIRECT_SIGNIN, redirect_to=signin, from_path=path, reason="not signed in")

    chain = route_chain(path)
    if chain is None:
        return _deny("unknown route", landing)

    decision = _allow()
    for req in chain:
        decision = resolve_access(auth, path, req, landing=landing, signin=signin)
        if not decision.allowed:
            return decision
    return decision
