from sqlalchemy import Engine, create_engine, event

from app.core.config import Settings, settings as default_settings


def build_engine(settings: Settings | None = None, *, url: str | None = None, **overrides) -> Engine:
    settings = settings or default_settings
    database_url = url or settings.database_url

    engine_kwargs: dict[str, object] = {
        # Detect and recover from stale pooled connections.
        "pool_pre_ping": True,
    }

    if database_url.lower().startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        # Tune SQLAlchemy pool for networked databases (hosted Postgres).
        engine_kwargs.update(
            {
                "pool_size": settings.db_pool_size,
                "max_overflow": settings.db_max_overflow,
                "pool_timeout": settings.db_pool_timeout_seconds,
                "pool_recycle": settings.db_pool_recycle_seconds,
            }
        )

    engine_kwargs.update(overrides)
    engine = create_engine(database_url, **engine_kwargs)
    if database_url.lower().startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
