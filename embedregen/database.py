"""
Database schema and connection management.

Uses SQLAlchemy for the embedding_jobs checkpoint table. SQLite by default;
any SQLAlchemy URL works, so dashboards can share a Postgres instance.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

_engines: Dict[str, Engine] = {}


class EmbeddingJob(Base):
    """Persisted checkpoint of one regeneration job."""

    __tablename__ = "embedding_jobs"

    job_id = Column(String, primary_key=True)  # embedding-<table>-<ns>
    status = Column(String, nullable=False, default="running")  # running, completed
    table_name = Column(String, nullable=False)
    model = Column(String, nullable=False)
    dimensions = Column(Integer, nullable=False)
    start_offset = Column(Integer, nullable=False, default=0)
    current_offset = Column(Integer, nullable=False, default=0)
    total_processed = Column(Integer, nullable=False, default=0)
    total_count = Column(Integer, nullable=False, default=0)
    percentage = Column(Float, nullable=False, default=0.0)
    start_time = Column(DateTime, nullable=True)
    elapsed_minutes = Column(Float, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    job_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


def sqlite_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


def get_engine(db_url: str) -> Engine:
    """Return a cached engine for the URL, creating SQLite parent dirs on first use."""
    engine = _engines.get(db_url)
    if engine is None:
        if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
            Path(db_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(db_url)
        _engines[db_url] = engine
    return engine


def init_database(db_url: str) -> None:
    """
    Initialize database and create tables.

    Args:
        db_url: SQLAlchemy database URL
    """
    Base.metadata.create_all(get_engine(db_url))


def get_session(db_url: str):
    """
    Get database session.

    Args:
        db_url: SQLAlchemy database URL

    Returns:
        SQLAlchemy session
    """
    Session = sessionmaker(bind=get_engine(db_url))
    return Session()


def dispose_engines() -> None:
    """Close pooled connections (used by tests between temp databases)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
