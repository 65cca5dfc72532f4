from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from pharmaflow.core.config import settings


def build_engine(database_url: str) -> Engine:
    engine_kwargs: dict[str, object] = {
        # Detect and recover from stale pooled connections.
        "pool_pre_ping": True,
    }

    if database_url.lower().startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        # Tune SQLAlchemy pool for networked databases (e.g., Postgres).
        engine_kwargs.update(
            {
                "pool_size": settings.db_pool_size,
                "max_overflow": settings.db_max_overflow,
                "pool_timeout": settings.db_pool_timeout_seconds,
                "pool_recycle": settings.db_pool_recycle_seconds,
            }
        )

    return create_engine(database_url, **engine_kwargs)


def is_single_connection_sqlite(engine: Engine | None) -> bool:
    """In-memory SQLite lives on one connection and cannot serve parallel readers."""
    if engine is None or engine.dialect.name != "sqlite":
        return False
    return engine.url.database in (None, "", ":memory:")


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
