"""Database connection and session management."""
import os
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import NullPool, StaticPool
from storygate.core.config import settings
from storygate.models.usage import Base


def create_engine_for(database_url: str) -> Engine:
    """Create engine: SQLite uses NullPool and check_same_thread=False; PostgreSQL uses pooling."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        database_path = url.database
        if not database_path or database_path == ":memory:":
            # One shared connection, otherwise every session sees its own empty database
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        # File-based SQLite: ensure parent directory exists
        parent = os.path.dirname(database_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=NullPool,
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


engine = create_engine_for(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None):
    """Initialize database tables."""
    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Session:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
