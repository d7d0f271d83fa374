# models/users_db.py (Postgres / SQLAlchemy)
from __future__ import annotations
import re
from datetime import datetime, timezone
from typing import Optional

from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import select
from models.base import session_scope
from models.schema import User

USERNAME_RX = re.compile(r"^[a-z0-9._-]{3,40}$")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_user(username: str) -> Optional[dict]:
    if not username:
        return None
    with session_scope() as s:
        u = s.get(User, username)
        if not u:
            return None
        return {
            "username": u.username,
            "password_hash": u.password_hash,
            "role": u.role,
            "tenant_id": u.tenant_id,
            "created_at": u.created_at,
        }


def create_user(username: str, password: str, role: str = "user",
                tenant_id: str = "default") -> bool:
    if not username or not password or role not in {"user", "admin"}:
        return False
    if not tenant_id or not USERNAME_RX.match(username.strip().lower()):
        return False
    with session_scope() as s:
        if s.get(User, username.strip()):
            return False
        s.add(User(
            username=username.strip(),
            password_hash=generate_password_hash(password),
            role=role,
            tenant_id=tenant_id,
            created_at=_now_utc(),
        ))
    return True


def verify_password(username: str, password: str) -> bool:
    if not username:
        return False
    with session_scope() as s:
        u = s.get(User, username)
        return bool(u and check_password_hash(u.password_hash, password))


def list_users(tenant_id: str | None = None, limit: int = 1000) -> list[dict]:
    with session_scope() as s:
        q = select(User.username, User.role, User.tenant_id,
                   User.created_at).order_by(User.username).limit(limit)
        if tenant_id is not None:
            q = q.where(User.tenant_id == tenant_id)
        rows = s.execute(q).all()
        return [{"username": r.username, "role": r.role, "tenant_id": r.tenant_id,
                 "created_at": r.created_at} for r in rows]
