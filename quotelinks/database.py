import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from quotelinks.config import DATA_DIR, ENVIRONMENT


def make_engine(environment: str, database_url: str | None) -> Engine:
    """Prod needs an explicit DATABASE_URL; dev falls back to a local SQLite file."""
    if environment == "prod":
        if not database_url:
            raise RuntimeError("DATABASE_URL must be set in production")
        return create_engine(database_url, pool_pre_ping=True)

    if not database_url:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        database_url = f"sqlite:///{DATA_DIR / 'quotelinks_dev.db'}"
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # needed for SQLite + FastAPI
    return create_engine(database_url, connect_args=connect_args)


engine = make_engine(ENVIRONMENT, os.getenv("DATABASE_URL"))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
