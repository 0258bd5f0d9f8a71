from datetime import datetime, timezone

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core.config import DATABASE_URL, DB_MAX_OVERFLOW, DB_POOL_RECYCLE, DB_POOL_SIZE

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}

    engine_kwargs = {
        "connect_args": connect_args,
        "pool_pre_ping": True,
        "pool_recycle": DB_POOL_RECYCLE,
    }
    if not is_sqlite:
        engine_kwargs.update(
            {
                "pool_size": DB_POOL_SIZE,
                "max_overflow": DB_MAX_OVERFLOW,
            }
        )

    engine = create_engine(database_url, **engine_kwargs)
    if is_sqlite:
        # Cascading deregistration relies on the FK constraints.
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def store_now(db: Session) -> datetime:
    """Current time on the shared store, as naive UTC.

    Every node compares heartbeats and request deadlines against this clock, so
    hosts with drifting clocks still agree on what is stale or expired.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        value = db.execute(select(func.strftime("%Y-%m-%d %H:%M:%f", "now"))).scalar_one()
        return datetime.strptime(value, "%Y-%m-%d %H:%M:%S.%f")
    if dialect == "postgresql":
        statement = select(func.timezone("UTC", func.now()))
    elif dialect in ("mysql", "mariadb"):
        statement = select(func.utc_timestamp(6))
    else:
        statement = select(func.current_timestamp())
    value = db.execute(statement).scalar_one()
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)
