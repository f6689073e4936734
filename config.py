# config.py
import os
from dataclasses import dataclass
from typing import Optional


def _flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or "").lower() in ("1", "true", "yes")


@dataclass
class CBTConfig:
    """Process-wide settings. Built once by create_app() and passed down."""
    base_path: str = ""
    secret_key: str = "dev-secret"

    # DB (see db.connection_kwargs for precedence)
    database_url: Optional[str] = None
    database_url_local: Optional[str] = None
    instance_connection_name: Optional[str] = None
    db_user: Optional[str] = None
    db_pass: Optional[str] = None
    db_name: Optional[str] = None
    db_host: Optional[str] = None
    db_port: Optional[str] = None
    force_tcp: bool = False
    pool_max_size: int = 6
    ensure_schema: bool = True

    # Exam engine
    default_passing_score: float = 50
    leaderboard_limit: int = 10
    autosubmit: bool = True

    @classmethod
    def from_env(cls) -> "CBTConfig":
        return cls(
            base_path=(os.getenv("BASE_PATH", "") or "").rstrip("/"),
            secret_key=os.getenv("SECRET_KEY", "dev-secret"),
            database_url=os.getenv("DATABASE_URL"),
            database_url_local=os.getenv("DATABASE_URL_LOCAL"),
            instance_connection_name=os.getenv("INSTANCE_CONNECTION_NAME"),
            db_user=os.getenv("DB_USER"),
            db_pass=os.getenv("DB_PASS") or os.getenv("DB_PASSWORD"),  # support either name
            db_name=os.getenv("DB_NAME"),
            db_host=os.getenv("DB_HOST"),
            db_port=os.getenv("DB_PORT"),
            force_tcp=_flag("FORCE_TCP", ""),
            pool_max_size=int(os.getenv("DB_POOL_MAX") or 6),
            ensure_schema=_flag("CBT_ENSURE_SCHEMA", "1"),
            default_passing_score=float(os.getenv("CBT_DEFAULT_PASSING_SCORE") or 50),
            leaderboard_limit=int(os.getenv("CBT_LEADERBOARD_LIMIT") or 10),
            autosubmit=_flag("CBT_AUTOSUBMIT", "1"),
        )
