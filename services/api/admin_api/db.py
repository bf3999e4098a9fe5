# services/api/admin_api/db.py

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session as OrmSession, sessionmaker

from .config import settings

class Base(DeclarativeBase):
    pass

def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # worker thread + request threads share the file; wait on locks instead of failing
        return {"connect_args": {"check_same_thread": False, "timeout": 15}}
    return {"pool_pre_ping": True}

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

def get_db() -> Generator[OrmSession, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
