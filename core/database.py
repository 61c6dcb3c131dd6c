from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from core.config import Config
from core.logger import get_logger

log = get_logger("DB")


def make_engine(url: str = None):
    url = url or Config.DB_URL
    kwargs = {"echo": False}
    if url.startswith("sqlite"):
        # The poller runs on an APScheduler worker thread.
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


try:
    engine = make_engine()
except SQLAlchemyError as exc:
    log.error(f"Failed to initialize database engine: {exc}")
    engine = None


def init_db(target_engine=None):
    import models  # noqa: F401 - registers the tables on SQLModel.metadata

    target_engine = target_engine or engine
    if target_engine is None:
        log.error("Database engine unavailable; cannot initialize tables.")
        return

    try:
        SQLModel.metadata.create_all(target_engine)
        log.info(f"Database initialized at {target_engine.url}")
    except SQLAlchemyError as exc:
        log.error(f"Failed to create database tables: {exc}")
        raise


def get_session(target_engine=None) -> Session:
    target_engine = target_engine or engine
    if target_engine is None:
        raise RuntimeError("Database engine is not available; session cannot be created.")

    try:
        return Session(target_engine, expire_on_commit=False)
    except SQLAlchemyError as exc:
        log.error(f"Failed to open database session: {exc}")
        raise


if __name__ == "__main__":
    init_db()
