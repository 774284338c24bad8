from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import settings


def create_db_engine(url: str, echo: bool = False):
    """Create an engine; SQLite gets WAL mode and cross-thread connections"""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    db_engine = create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=echo
    )

    # Enable WAL Mode for SQLite Concurrency
    if url.startswith("sqlite"):
        @event.listens_for(db_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


# Create engine
engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()

# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
