"""SQLAlchemy engine and sessions for the deposit reconciliation store."""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from chargeflow.common.config import settings


def make_engine(dsn: str) -> Engine:
    """In-memory SQLite keeps one shared connection so every session sees the same tables."""

    if dsn in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(dsn, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker[Session]:
    # Rows are read after commit by the reconciliation worker.
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


engine = make_engine(settings.database_dsn)
SessionLocal = make_session_factory(engine)
