from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from trafficreport.constants import PRIORITY_DEFAULT, STATUS_DEFAULT
from trafficreport.db import Database

log = logging.getLogger("uvicorn.error")

# Every read and write below is predicated on the owner's email; nothing is
# looked up by problem id alone.

UPDATABLE_FIELDS = (
    "title",
    "description",
    "problem_type",
    "proposed_solution",
    "priority",
    "status",
    "latitude",
    "longitude",
    "image_url",
)

_SELECT = """
    SELECT p.id, p.title, p.description, p.problem_type, p.proposed_solution, p.priority, p.status,
           p.latitude, p.longitude, p.image_url, p.created_at, p.updated_at, p.user_id,
           u.email AS owner_email, u.name AS owner_name
    FROM problems p
    JOIN users u ON u.id = p.user_id
"""

_OWNED_BY = "user_id IN (SELECT id FROM users WHERE email = ?)"


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="microseconds") + "Z"


def init_db(db: Database) -> None:
    coordinate = "DOUBLE PRECISION" if db.use_postgres else "REAL"
    with db.connect() as conn:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS problems (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                problem_type TEXT NOT NULL,
                proposed_solution TEXT,
                priority TEXT NOT NULL DEFAULT '{PRIORITY_DEFAULT}',
                status TEXT NOT NULL DEFAULT '{STATUS_DEFAULT}',
                latitude {coordinate} NOT NULL,
                longitude {coordinate} NOT NULL,
                image_url TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_problems_owner ON problems(user_id, created_at)")


def _row_to_dict(row: Any) -> Dict[str, Any]:
    data = dict(row)
    return {
        "id": data["id"],
        "title": data["title"],
        "description": data.get("description"),
        "problem_type": data["problem_type"],
        "proposed_solution": data.get("proposed_solution"),
        "priority": data["priority"],
        "status": data["status"],
        "latitude": float(data["latitude"]),
        "longitude": float(data["longitude"]),
        "image_url": data.get("image_url"),
        "created_at": data["created_at"],
        "updated_at": data["updated_at"],
        "user_id": data["user_id"],
        "owner_email": data["owner_email"],
        "owner_name": data.get("owner_name"),
    }


def _select_owned(conn: Any, problem_id: str, owner_email: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        _SELECT + " WHERE p.id = ? AND u.email = ?",
        (problem_id, owner_email),
    ).fetchone()
    return _row_to_dict(row) if row else None


def create_problem(
    db: Database,
    *,
    owner_email: str,
    title: str,
    problem_type: str,
    latitude: float,
    longitude: float,
    description: Optional[str] = None,
    proposed_solution: Optional[str] = None,
    priority: str = PRIORITY_DEFAULT,
    status: str = STATUS_DEFAULT,
    image_url: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Insert a problem owned by ``owner_email``.

    Returns ``None`` when no user has that email, in which case nothing is
    written.
    """
    problem_id = uuid.uuid4().hex
    now = _now()
    with db.connect() as conn:
        cursor = conn.execute(
            """
            INSERT INTO problems
                (id, title, description, problem_type, proposed_solution, priority, status,
                 latitude, longitude, image_url, created_at, updated_at, user_id)
            SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, u.id
            FROM users u
            WHERE u.email = ?
            """,
            (
                problem_id,
                title,
                description,
                problem_type,
                proposed_solution,
                priority,
                status,
                latitude,
                longitude,
                image_url,
                now,
                now,
                owner_email,
            ),
        )
        if not cursor.rowcount:
            return None
        return _select_owned(conn, problem_id, owner_email)


def list_problems(db: Database, *, owner_email: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = _SELECT + " WHERE u.email = ?"
    params: List[Any] = [owner_email]
    if status:
        sql += " AND p.status = ?"
        params.append(status)
    sql += " ORDER BY p.created_at DESC"
    with db.connect() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_row_to_dict(row) for row in rows]


def get_problem(db: Database, problem_id: str, *, owner_email: str) -> Optional[Dict[str, Any]]:
    with db.connect() as conn:
        return _select_owned(conn, problem_id, owner_email)


def update_problem(
    db: Database,
    problem_id: str,
    *,
    owner_email: str,
    changes: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    """Apply ``changes`` to an owned problem; ``None`` if it is not visible."""
    updates = {key: value for key, value in changes.items() if key in UPDATABLE_FIELDS}
    with db.connect() as conn:
        existing = _select_owned(conn, problem_id, owner_email)
        if existing is None:
            return None
        if not updates:
            return existing
        updates["updated_at"] = _now()
        columns = ", ".join(f"{key} = ?" for key in updates)
        conn.execute(
            f"UPDATE problems SET {columns} WHERE id = ? AND {_OWNED_BY}",
            [*updates.values(), problem_id, owner_email],
        )
        return _select_owned(conn, problem_id, owner_email)


def delete_problem(db: Database, problem_id: str, *, owner_email: str) -> bool:
    with db.connect() as conn:
        if _select_owned(conn, problem_id, owner_email) is None:
            return False
        conn.execute(
            f"DELETE FROM problems WHERE id = ? AND {_OWNED_BY}",
            (problem_id, owner_email),
        )
    log.info("Deleted problem %s for %s", problem_id, owner_email)
    return True


__all__ = [
    "UPDATABLE_FIELDS",
    "create_problem",
    "delete_problem",
    "get_problem",
    "init_db",
    "list_problems",
    "update_problem",
]
