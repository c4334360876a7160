from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from config.engine_config import get_engine_config

Base = declarative_base()


def _apply_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    # Workers and request handlers write concurrently; readers must not block them
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(db_path: Path) -> Engine:
    """SQLite engine for the queue, watch and notification tables at db_path"""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db_engine = create_engine(
        f'sqlite:///{db_path}',
        connect_args={'check_same_thread': False},
        echo=False,
        # One connection per transcode slot, the watcher and request threads
        pool_size=20,
        max_overflow=30,
        pool_pre_ping=True,
        pool_recycle=3600,
    )
    event.listen(db_engine, "connect", _apply_sqlite_pragmas)
    return db_engine


DB_PATH = get_engine_config().db_path
engine = build_engine(DB_PATH)
SessionLocal = sessionmaker(bind=engine)


def get_db():
    """Request-scoped session for routers that query tables directly"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
