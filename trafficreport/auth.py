from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Request

from trafficreport import problem_store, user_store
from trafficreport.auth_tokens import TokenError, decode_access_token
from trafficreport.db import Database
from trafficreport.errors import NotFound, Unauthorized

log = logging.getLogger("uvicorn.error")

SESSION_USER_KEY = "user"


class OwnerScope:
    """Problem access bound to one authenticated owner.

    Handlers only ever reach problems through an instance of this class, so a
    problem owned by somebody else looks exactly like a problem that does not
    exist.
    """

    def __init__(self, db: Database, user: Dict[str, Any]) -> None:
        self._db = db
        self.user = user

    @property
    def email(self) -> str:
        return self.user["email"]

    def list_problems(self, *, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return problem_store.list_problems(self._db, owner_email=self.email, status=status)

    def get_problem(self, problem_id: str) -> Dict[str, Any]:
        record = problem_store.get_problem(self._db, problem_id, owner_email=self.email)
        if record is None:
            raise NotFound()
        return record

    def create_problem(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        record = problem_store.create_problem(self._db, owner_email=self.email, **fields)
        if record is None:
            raise Unauthorized()
        return record

    def update_problem(self, problem_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        record = problem_store.update_problem(self._db, problem_id, owner_email=self.email, changes=changes)
        if record is None:
            raise NotFound()
        return record

    def delete_problem(self, problem_id: str) -> None:
        if not problem_store.delete_problem(self._db, problem_id, owner_email=self.email):
            raise NotFound()


def _extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    parts = header.split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, value = parts[0].strip(), parts[1].strip()
    if scheme.lower() != "bearer":
        return None
    return value or None


def resolve_identity(request: Request) -> Optional[str]:
    """Return the caller's normalised email from a bearer token or the session."""
    bearer = _extract_bearer_token(request)
    if bearer:
        try:
            payload = decode_access_token(bearer, secret=request.app.state.settings.jwt_secret)
        except TokenError:
            return None
        subject = payload.get("sub")
        if not isinstance(subject, str):
            return None
        return user_store.normalize_email(subject) or None
    email = request.session.get(SESSION_USER_KEY)
    if not isinstance(email, str):
        return None
    return user_store.normalize_email(email) or None


def require_user(request: Request) -> Dict[str, Any]:
    email = resolve_identity(request)
    if not email:
        raise Unauthorized()
    user = user_store.get_user_by_email(request.app.state.db, email)
    if not user:
        request.session.clear()
        raise Unauthorized()
    return user


def require_scope(request: Request) -> OwnerScope:
    return OwnerScope(request.app.state.db, require_user(request))


def start_session(request: Request, user: Dict[str, Any]) -> None:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user["email"]


def end_session(request: Request) -> None:
    request.session.clear()


__all__ = [
    "OwnerScope",
    "end_session",
    "require_scope",
    "require_user",
    "resolve_identity",
    "start_session",
]
