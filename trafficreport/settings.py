from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

log = logging.getLogger("uvicorn.error")

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DATA_DIR = REPO_ROOT / "data"
DEFAULT_UPLOAD_DIR = REPO_ROOT / "uploads"
DEFAULT_FONT_CANDIDATES = [
    REPO_ROOT / "fonts" / "DejaVuSans.ttf",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
    Path("/usr/share/fonts/dejavu/DejaVuSans.ttf"),
]

_INSECURE_SECRET = "dev-secret-key"
_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    app_env: str = "development"
    session_secret: str = _INSECURE_SECRET
    jwt_secret: str = _INSECURE_SECRET
    jwt_access_ttl: int = 3600

    data_dir: Path = DEFAULT_DATA_DIR
    db_host: Optional[str] = None
    db_name: str = "trafficreport"
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_port: int = 5432
    db_sslmode: str = "require"
    db_pool_max: int = 10

    upload_dir: Path = DEFAULT_UPLOAD_DIR
    report_font_path: Optional[Path] = None
    image_fetch_timeout: float = 10.0
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def use_postgres(self) -> bool:
        return bool(self.db_host)

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / "trafficreport.db"

    def postgres_config(self) -> Dict[str, Any]:
        return {
            "host": self.db_host,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
            "port": self.db_port,
            "sslmode": self.db_sslmode,
        }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        app_env = (env.get("APP_ENV") or "development").strip().lower()
        allow_sqlite = (env.get("ALLOW_SQLITE") or "").strip().lower() in _TRUTHY
        db_host = (env.get("DB_HOST") or "").strip() or None

        if not db_host and app_env in {"production", "staging"} and not allow_sqlite:
            raise RuntimeError(
                "DB_HOST is required when APP_ENV is set to production or staging. "
                "Set DB_* variables or explicitly opt into SQLite with ALLOW_SQLITE=1."
            )
        if db_host:
            missing = [name for name in ("DB_USER", "DB_PASSWORD") if not env.get(name)]
            if missing:
                raise RuntimeError(
                    f"PostgreSQL backend enabled but missing environment variables: {', '.join(missing)}"
                )

        session_secret = env.get("SESSION_SECRET")
        if not session_secret:
            if app_env == "production":
                raise RuntimeError("SESSION_SECRET must be set in production")
            session_secret = _INSECURE_SECRET
            log.warning("SESSION_SECRET not set; using insecure default. Set SESSION_SECRET in production.")

        font_path = env.get("REPORT_FONT_PATH")
        origins = [item.strip() for item in (env.get("CORS_ORIGINS") or "").split(",") if item.strip()]

        values: Dict[str, Any] = {
            "app_env": app_env,
            "session_secret": session_secret,
            "jwt_secret": env.get("JWT_SECRET") or session_secret,
            "jwt_access_ttl": int(env.get("JWT_ACCESS_TTL", "3600")),
            "data_dir": Path(env.get("DATA_DIR") or DEFAULT_DATA_DIR),
            "db_host": db_host,
            "db_name": env.get("DB_NAME", "trafficreport"),
            "db_user": env.get("DB_USER"),
            "db_password": env.get("DB_PASSWORD"),
            "db_port": int(env.get("DB_PORT", "5432")),
            "db_sslmode": env.get("DB_SSLMODE", "require"),
            "db_pool_max": int(env.get("DB_POOL_MAX", "10")),
            "upload_dir": Path(env.get("UPLOAD_DIR") or DEFAULT_UPLOAD_DIR),
            "report_font_path": Path(font_path) if font_path else None,
            "image_fetch_timeout": float(env.get("IMAGE_FETCH_TIMEOUT", "10")),
        }
        if origins:
            values["cors_origins"] = origins
        return cls(**values)


__all__ = ["Settings", "DEFAULT_FONT_CANDIDATES", "REPO_ROOT"]
