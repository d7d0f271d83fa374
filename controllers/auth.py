from functools import wraps
from flask import Blueprint, jsonify, request
from flask_login import LoginManager, UserMixin, login_user, logout_user, login_required, current_user
from models.users_db import get_user, verify_password
from models.audit_store import audit
from services.metrics import LOGIN_SUCCESSES, LOGIN_FAILURES, FORBIDDEN

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, username, role, tenant_id):
        self.id = username
        self.username = username
        self.role = role
        self.tenant_id = tenant_id

    @property
    def is_admin(self):
        return self.role == "admin"


@login_manager.user_loader
def load_user(user_id):
    row = get_user(user_id)
    if not row:
        return None
    return User(row["username"], row["role"], row["tenant_id"])


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify(error="unauthorized", message="login required"), 401


def admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not getattr(current_user, "is_admin", False):
            FORBIDDEN.inc()
            audit(
                "auth.forbidden",
                tenant_id=current_user.tenant_id,
                target_type="user", target_id=current_user.username,
                outcome="failure", status=403,
                extra={"reason": "not_admin"}
            )
            return jsonify(error="permission_denied", message="admin role required"), 403
        return f(*args, **kwargs)
    return wrapper


def _credentials():
    data = request.get_json(silent=True) or request.form
    return (data.get("username") or "").strip(), data.get("password") or ""


@auth_bp.post("/login")
def login_post():
    u, p = _credentials()
    if not verify_password(u, p):
        LOGIN_FAILURES.labels(reason="bad_credentials").inc()
        audit(
            "auth.login.failure",
            target_type="user", target_id=(u or "unknown"),
            outcome="failure", status=401,
            error_code="bad_credentials", actor=u or "anonymous",
            extra={"reason": "bad_credentials"}
        )
        return jsonify(error="bad_credentials", message="Invalid username or password."), 401

    row = get_user(u)
    login_user(User(row["username"], row["role"], row["tenant_id"]))
    LOGIN_SUCCESSES.inc()
    audit(
        "auth.login.success",
        tenant_id=row["tenant_id"],
        target_type="user", target_id=row["username"],
        outcome="success", status=200, actor=row["username"], actor_role=row["role"],
    )
    return jsonify(username=row["username"], role=row["role"], tenant_id=row["tenant_id"])


@auth_bp.post("/logout")
@login_required
def logout():
    audit(
        "auth.logout",
        tenant_id=current_user.tenant_id,
        target_type="user", target_id=current_user.username,
        outcome="success", status=200
    )
    logout_user()
    return jsonify(ok=True)


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(username=current_user.username, role=current_user.role,
                   tenant_id=current_user.tenant_id)
