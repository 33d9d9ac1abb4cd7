"""Engine and session factory."""
from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from sentinel.core.config import Settings, settings


def build_engine(config: Settings) -> Engine:
    """Create an engine whose store calls are bounded in time."""
    kwargs: Dict[str, Any] = {"pool_pre_ping": True, "future": True}
    if config.database_url.startswith("postgresql"):
        kwargs["pool_timeout"] = config.db_pool_timeout_seconds
        kwargs["connect_args"] = {
            "connect_timeout": max(1, int(config.db_pool_timeout_seconds)),
            "options": f"-c statement_timeout={config.db_statement_timeout_ms}",
        }
    return create_engine(config.database_url, **kwargs)


engine = build_engine(settings)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
