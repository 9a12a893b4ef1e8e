from sqlalchemy import create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from analysis_quota.core.settings import settings

SQLALCHEMY_DATABASE_URL = settings.database_url


def build_connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Busy timeout: concurrent ledger writers wait for the lock instead of failing.
        return {"check_same_thread": False, "timeout": settings.db_lock_timeout_s}
    try:
        url = make_url(database_url)
    except ArgumentError:
        return {}
    if (url.drivername or "").startswith("postgresql"):
        return {"options": f"-c statement_timeout={int(settings.db_statement_timeout_ms)}"}
    return {}


engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=build_connect_args(SQLALCHEMY_DATABASE_URL),
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dialect_insert(db: Session, model):
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    name = db.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported database dialect for upserts: {name}")
    return insert(model)
