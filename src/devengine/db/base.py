"""Database configuration and session management."""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Dict

from dotenv import load_dotenv
from sqlalchemy import DateTime, MetaData, create_engine, func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

# Load environment variables
load_dotenv()

class Base(DeclarativeBase):
    """Shared base for all models."""

    metadata = MetaData()

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

# Configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///devengine.db")


def build_engine(url: str) -> Engine:
    """Create an engine with settings tuned for the target dialect."""
    connect_args: Dict[str, Any] = {}
    engine_kwargs: Dict[str, Any] = {
        "echo": False,
        "future": True,
    }

    if url.startswith("postgresql"):
        # Production PostgreSQL Settings
        engine_kwargs.update({
            "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "20")),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "3600")),
            "pool_pre_ping": True,
        })

        ssl_mode = os.getenv("DB_SSL_MODE", "prefer") # 'require' for strict RDS
        if ssl_mode:
            connect_args["sslmode"] = ssl_mode
            engine_kwargs["connect_args"] = connect_args
    else:
        # SQLite Settings for Dev
        connect_args["check_same_thread"] = False
        engine_kwargs["connect_args"] = connect_args
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool

    return create_engine(url, **engine_kwargs)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
