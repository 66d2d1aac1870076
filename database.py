from datetime import datetime, timezone

from sqlmodel import Session, SQLModel, create_engine

from config import DATABASE_POOL_TIMEOUT_SECONDS, DATABASE_URL


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_timeout": DATABASE_POOL_TIMEOUT_SECONDS}


engine = create_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))


def init_db():
    # Register the tables on the metadata before creating them
    import records  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    return Session(engine)


def get_db():
    """FastAPI dependency yielding one session per request."""
    with get_session() as session:
        yield session


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite stores naive datetime, so replace tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
