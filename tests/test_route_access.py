import pytest

from pms_api.seed_rbac import ROLE_PERM_MAP
from pms_api.services.route_access import (
    ALLOW, PENDING, REDIRECT_DEFAULT, REDIRECT_SIGNIN,
    AuthState, Principal, RouteRequirement,
    normalize_path, resolve_access, resolve_navigation, route_chain,
)


def _auth(role, perms=None):
    if perms is None:
        perms = ROLE_PERM_MAP[role]
    return AuthState(user=Principal(role=role, permissions=frozenset(perms)))


def test_loading_is_pending():
    d = resolve_navigation(AuthState(loading=True), "/pms/payroll")
    assert d.outcome == PENDING
    assert not d.allowed


def test_anonymous_goes_to_signin_with_origin():
    d = resolve_navigation(AuthState(), "/pms/payroll/my-payslips")
    assert d.outcome == REDIRECT_SIGNIN
    assert d.redirect_to == "/auth/signin"
    assert d.from_path == "/pms/payroll/my-payslips"
    assert d.as_dict()["from"] == "/pms/payroll/my-payslips"


@pytest.mark.parametrize("path", [
    "/pms/payroll/process",
    "/pms/settings/company",
    "/pms/reports/audit",
    "/pms/employees/list",
])
def test_super_admin_passes_without_grants(path):
    d = resolve_navigation(_auth("SUPER_ADMIN", ["VIEW_DASHBOARD"]), path)
    assert d.outcome == ALLOW, d.reason


def test_super_admin_self_service_needs_own_grant():
    denied = resolve_navigation(_auth("SUPER_ADMIN", ["VIEW_DASHBOARD"]), "/pms/payroll/my-payslips")
    assert denied.outcome == REDIRECT_DEFAULT
    assert denied.redirect_to == "/pms/dashboard"
    assert "VIEW_OWN_PAYSLIP" in denied.reason

    allowed = resolve_navigation(
        _auth("SUPER_ADMIN", ["VIEW_DASHBOARD", "VIEW_OWN_PAYSLIP"]), "/pms/payroll/my-payslips"
    )
    assert allowed.allowed


def test_admin_process_pages():
    admin = _auth("ADMIN")
    assert resolve_navigation(admin, "/pms/payroll/process").outcome == REDIRECT_DEFAULT
    assert resolve_navigation(admin, "/pms/payroll/department-process").allowed


def test_admin_self_service_skips_permission_checks():
    admin = _auth("ADMIN", ["VIEW_DASHBOARD"])
    assert resolve_navigation(admin, "/pms/payroll/my-bonus").allowed
    assert resolve_navigation(admin, "/pms/settings/notifications").allowed


def test_admin_settings_and_reports():
    bare = _auth("ADMIN", ["VIEW_DASHBOARD"])
    d = resolve_navigation(bare, "/pms/settings")
    assert d.outcome == REDIRECT_DEFAULT
    assert d.reason == "no settings permissions"

    admin = _auth("ADMIN")
    # the settings index wants MANAGE_SYSTEM_SETTINGS on top of the tier check
    assert resolve_navigation(admin, "/pms/settings").reason == "insufficient permissions"
    assert resolve_navigation(_auth("ADMIN", ["VIEW_DASHBOARD", "MANAGE_SYSTEM_SETTINGS"]), "/pms/settings").allowed
    # company profile is SUPER_ADMIN only
    assert not resolve_navigation(admin, "/pms/settings/company").allowed
    assert resolve_navigation(admin, "/pms/reports/payroll").allowed
    assert not resolve_navigation(admin, "/pms/reports/audit").allowed


def test_admin_team_leave_requires_leave_grants():
    assert resolve_navigation(_auth("ADMIN"), "/pms/employees/team-leave").allowed
    d = resolve_navigation(_auth("ADMIN", ["VIEW_DASHBOARD", "VIEW_ALL_USERS"]), "/pms/employees/team-leave")
    assert d.reason == "no team leave permissions"


@pytest.mark.parametrize("path", [
    "/pms/dashboard",
    "/pms/payroll/my-payslips",
    "/pms/payroll/my-allowances",
    "/pms/payroll/my-deductions",
    "/pms/payroll/my-bonus",
    "/pms/employees/my-leave",
    "/pms/settings/notifications",
    "/pms/profile",
])
def test_user_allow_list(path):
    d = resolve_navigation(_auth("USER"), path)
    assert d.outcome == ALLOW, d.reason


@pytest.mark.parametrize("path", [
    "/pms/payroll",
    "/pms/payroll/structure",
    "/pms/payroll/process",
    "/pms/payroll/department-process",
    "/pms/employees/list",
    "/pms/settings",
    "/pms/reports",
])
def test_user_is_kept_out_of_management_pages(path):
    d = resolve_navigation(_auth("USER"), path)
    assert d.outcome == REDIRECT_DEFAULT
    assert d.redirect_to == "/pms/dashboard"


def test_user_notifications_need_no_grant():
    assert resolve_navigation(_auth("USER", ["VIEW_DASHBOARD"]), "/pms/settings/notifications").allowed


def test_user_profile_needs_personal_info_grant():
    d = resolve_navigation(_auth("USER", ["VIEW_DASHBOARD"]), "/pms/profile")
    assert d.reason == "cannot view profile"


def test_dashboard_layout_requires_view_dashboard():
    d = resolve_navigation(_auth("USER", ["VIEW_OWN_PAYSLIP"]), "/pms/payroll/my-payslips")
    assert d.outcome == REDIRECT_DEFAULT
    assert d.reason == "insufficient permissions"


def test_unknown_routes_are_denied():
    assert resolve_navigation(_auth("SUPER_ADMIN"), "/pms/nowhere").reason == "unknown route"
    assert resolve_navigation(_auth("SUPER_ADMIN"), "/pms/payroll/nowhere").reason == "unknown route"
    assert resolve_navigation(_auth("USER"), "/elsewhere").reason == "unknown route"


def test_custom_landing_page():
    d = resolve_navigation(_auth("USER"), "/pms/payroll/structure", landing="/pms/profile")
    assert d.redirect_to == "/pms/profile"


def test_single_guard_role_and_all_of():
    user = _auth("USER", ["A", "B"])
    assert resolve_access(user, "/pms/dashboard", RouteRequirement(frozenset({"ADMIN"}))).reason == "invalid role"
    assert resolve_access(user, "/pms/dashboard", RouteRequirement(permissions=("A", "C"))).allowed
    assert not resolve_access(
        user, "/pms/dashboard", RouteRequirement(permissions=("A", "C"), require_all=True)
    ).allowed


def test_path_normalisation():
    assert normalize_path("/PMS/Payroll/My-Payslips/?tab=2#top") == "/pms/payroll/my-payslips"
    assert normalize_path("") == "/"
    assert len(route_chain("/pms/payroll/my-payslips")) == 3
    assert len(route_chain("/pms")) == 1
    assert route_chain("/pms/payroll/unknown") is None
