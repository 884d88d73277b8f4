from datetime import datetime, timezone
from pms_api.extensions import db
from werkzeug.security import generate_password_hash, check_password_hash

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN)


class User(db.Model):
    __tablename__ = "users"

    id           = db.Column(db.Integer, primary_key=True)
    email        = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash= db.Column(db.String(255), nullable=False)
    full_name    = db.Column(db.String(255), nullable=False)
    role         = db.Column(db.Enum(*ROLES, name="user_role_enum"), nullable=False, default=ROLE_USER)
    status       = db.Column(db.String(20), default="active")
    created_at   = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # --- helpers ---
    def set_password(self, raw: str):
        self.password_hash = generate_password_hash(raw)

    def check_password(self, raw: str) -> bool:
        return check_password_hash(self.password_hash, raw)

    permissions = db.relationship(
        "Permission",
        secondary="user_permissions",
        lazy="joined",
        viewonly=True,
        overlaps="user_permissions,user,permission,users",
    )

    def permission_codes(self):
        return sorted(p.code for p in self.permissions)

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    @property
    def employee(self):
        """First Employee linked via Employee.user_id, or None."""
        from pms_api.models.employee import Employee  # late import to avoid circulars
        return Employee.query.filter_by(user_id=self.id).first()

    @property
    def employee_id(self):
        emp = self.employee
        return emp.id if emp else None
