from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from app.core.config import get_settings


settings = get_settings()

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # Request handlers run in a threadpool
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    # Models must be imported so their tables are registered on Base.metadata
    from app.models import game, transaction, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
