# pms_api/models/security.py
from pms_api.extensions import db


class Permission(db.Model):
    __tablename__ = "permissions"
    id   = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(120), unique=True, nullable=False)  # e.g., "VIEW_ALL_PAYROLL"
    name = db.Column(db.String(150), nullable=True)  # optional human label

    users = db.relationship(
        "UserPermission",
        back_populates="permission",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Permission id={self.id} code={self.code!r}>"


class UserPermission(db.Model):
    """Explicit grant of one permission token to one user.

    A user's stored grants are authoritative at check time; role bundles
    only seed them when the user is created.
    """
    __tablename__ = "user_permissions"
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    permission_id = db.Column(
        db.Integer,
        db.ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
    )

    permission = db.relationship("Permission", back_populates="users")
    user = db.relationship(
        "User",
        backref=db.backref(
            "user_permissions",
            cascade="all, delete-orphan",
            passive_deletes=True,
        ),
    )

    def __repr__(self) -> str:
        return f"<UserPermission user_id={self.user_id} permission_id={self.permission_id}>"


def user_permission_codes(user_id: int) -> set[str]:
    """Return the set of permission codes stored for the given user."""
    q = (
        db.session.query(Permission.code)
        .join(UserPermission, UserPermission.permission_id == Permission.id)
        .filter(UserPermission.user_id == user_id)
    )
    return {row[0] for row in q.all()}
