# db.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


def build_engine(database_url: str, pool_size: int = 5, max_overflow: int = 2) -> Engine:
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=1800,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    # Rows are handed back to routes after the session closes
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
