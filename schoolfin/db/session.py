from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from schoolfin.core.config import settings

Base = declarative_base()


def make_engine(db_url: Optional[str] = None) -> Engine:
    url = db_url or settings.DB_URL
    # Use connect_args for SQLite so sessions can be used from worker threads
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, future=True, connect_args=connect_args)


def make_session_factory(db_url: Optional[str] = None, engine: Optional[Engine] = None) -> sessionmaker:
    bind = engine or make_engine(db_url)
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False, future=True)


# Default to sqlite file in data/, override via env DB_URL
engine = make_engine()
SessionLocal = make_session_factory(engine=engine)


def init_db(bind: Optional[Engine] = None):
    bind = bind or engine
    database = bind.url.database
    if bind.url.get_backend_name() == "sqlite" and database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)
    # Import models here so they are registered on Base
    import schoolfin.db.models as _models  # noqa: F401
    Base.metadata.create_all(bind=bind)
