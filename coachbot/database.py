from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Integer, create_engine, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from coachbot.config import settings
from coachbot.logging_config import get_logger

logger = get_logger("database")

# Arbitrary but stable key; every process bootstrapping the schema contends on it.
SCHEMA_LOCK_KEY = 584221

# Portable column types: BIGSERIAL/JSONB on Postgres, INTEGER/JSON on SQLite.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(postgresql.JSONB(), "postgresql")

engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_size=settings.database_pool_size,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def insert_for(db: Session, model):
    """INSERT construct supporting ON CONFLICT for the session's dialect."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


def init_schema(bind: Engine | None = None) -> None:
    """Create missing tables. Concurrent processes serialize on an advisory lock."""
    from coachbot import models  # noqa: F401  (register mappers)

    bind = bind or engine
    with bind.begin() as conn:
        if conn.dialect.name == "postgresql":
            conn.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": SCHEMA_LOCK_KEY})
        Base.metadata.create_all(conn)
    logger.info("Schema ready", extra={"context": {"dialect": bind.dialect.name}})


def ping_database(db: Session) -> None:
    db.execute(text("SELECT 1"))
