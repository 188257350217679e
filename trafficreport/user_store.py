from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from trafficreport.db import Database

log = logging.getLogger("uvicorn.error")

PBKDF_ITERATIONS = 120_000


class DuplicateEmailError(ValueError):
    """Raised when registering an email that already has an account."""


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="microseconds") + "Z"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


# ---------------------------------------------------------------------------
# Password helpers
# ---------------------------------------------------------------------------


def _hash_password(password: str, *, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF_ITERATIONS)


def hash_password_hex(password: str, *, salt: bytes) -> str:
    return _hash_password(password, salt=salt).hex()


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def init_db(db: Database) -> None:
    id_column = "id SERIAL PRIMARY KEY" if db.use_postgres else "id INTEGER PRIMARY KEY AUTOINCREMENT"
    with db.connect() as conn:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS users (
                {id_column},
                email TEXT NOT NULL UNIQUE,
                name TEXT,
                salt TEXT NOT NULL,
                password_hash TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)")


def _row_to_dict(row: Any) -> Dict[str, Any]:
    data = dict(row)
    return {
        "id": data["id"],
        "email": data["email"],
        "name": data.get("name"),
        "salt": data["salt"],
        "password_hash": data["password_hash"],
        "created_at": data.get("created_at"),
        "updated_at": data.get("updated_at"),
    }


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": user["id"], "email": user["email"], "name": user.get("name")}


# ---------------------------------------------------------------------------
# User operations
# ---------------------------------------------------------------------------


def list_users(db: Database) -> List[Dict[str, Any]]:
    with db.connect() as conn:
        rows = conn.execute("SELECT * FROM users ORDER BY email ASC").fetchall()
    return [_row_to_dict(row) for row in rows]


def get_user_by_email(db: Database, email: str) -> Optional[Dict[str, Any]]:
    normalized = normalize_email(email)
    if not normalized:
        return None
    with db.connect() as conn:
        row = conn.execute("SELECT * FROM users WHERE email = ?", (normalized,)).fetchone()
    return _row_to_dict(row) if row else None


def get_user_by_id(db: Database, user_id: int) -> Optional[Dict[str, Any]]:
    with db.connect() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return _row_to_dict(row) if row else None


def create_user(db: Database, *, email: str, password: str, name: Optional[str] = None) -> Dict[str, Any]:
    normalized = normalize_email(email)
    if not normalized:
        raise ValueError("Email is required")
    if not password:
        raise ValueError("Password is required")
    if get_user_by_email(db, normalized):
        raise DuplicateEmailError(f"User with email '{normalized}' already exists")
    cleaned_name = (name or "").strip() or None
    salt = secrets.token_bytes(16)
    now = _now()
    try:
        with db.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (email, name, salt, password_hash, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (normalized, cleaned_name, salt.hex(), hash_password_hex(password, salt=salt), now, now),
            )
            user_id = cursor.lastrowid
    except db.integrity_errors as exc:
        # Lost a race with a concurrent registration of the same email.
        raise DuplicateEmailError(f"User with email '{normalized}' already exists") from exc
    record = get_user_by_id(db, int(user_id)) if user_id is not None else None
    if not record:
        record = get_user_by_email(db, normalized)
    if not record:
        raise RuntimeError("Failed to create user record")
    log.info("Created user %s", normalized)
    return record


def set_password(db: Database, user_id: int, password: str) -> None:
    if not password:
        raise ValueError("Password is required")
    salt = secrets.token_bytes(16)
    with db.connect() as conn:
        conn.execute(
            "UPDATE users SET salt = ?, password_hash = ?, updated_at = ? WHERE id = ?",
            (salt.hex(), hash_password_hex(password, salt=salt), _now(), user_id),
        )


def verify_credentials(db: Database, email: str, password: str) -> Optional[Dict[str, Any]]:
    user = get_user_by_email(db, email)
    if not user or not password:
        return None
    try:
        salt = bytes.fromhex(user["salt"])
        expected = bytes.fromhex(user["password_hash"])
    except ValueError:
        return None
    candidate = _hash_password(password, salt=salt)
    if not hmac.compare_digest(candidate, expected):
        return None
    return user


__all__ = [
    "DuplicateEmailError",
    "PBKDF_ITERATIONS",
    "create_user",
    "get_user_by_email",
    "get_user_by_id",
    "hash_password_hex",
    "init_db",
    "list_users",
    "normalize_email",
    "public_user",
    "set_password",
    "verify_credentials",
]
