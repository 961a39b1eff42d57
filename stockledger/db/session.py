from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker

from stockledger.core.config import settings

WRITE_LOCK_OPTION = "stockledger_write_lock"

# lock_not_available, deadlock_detected, serialization_failure
_CONFLICT_SQLSTATES = {"55P03", "40P01", "40001"}


def is_lock_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    message = str(orig).lower()
    return "database is locked" in message or "lock timeout" in message


def _enable_sqlite_write_serialization(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, which would let two ledger
    # transactions read the same stock row before either one takes the lock.
    # Only connections flagged with WRITE_LOCK_OPTION take the write lock up front.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def create_db_engine(database_url: str, **overrides: object) -> Engine:
    engine_kwargs: dict[str, object] = {
        # Detect and recover from stale pooled connections.
        "pool_pre_ping": True,
        "echo": settings.database_echo,
    }
    is_sqlite = database_url.lower().startswith("sqlite")

    if is_sqlite:
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.sqlite_busy_timeout_seconds,
        }
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
    engine_kwargs.update(overrides)

    engine = create_engine(database_url, **engine_kwargs)
    if is_sqlite:
        _enable_sqlite_write_serialization(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


engine = create_db_engine(settings.database_url)

SessionLocal = create_session_factory(engine)
