import logging

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from arkan.core.config import settings
from arkan.db.base import Base

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

if not DATABASE_URL:
    raise ValueError("[ERROR] DATABASE_URL not found!")

_is_sqlite = "sqlite" in DATABASE_URL.lower()

if _is_sqlite:
    _sqlite_kwargs = {"connect_args": {"check_same_thread": False}}  # SQLite multi-thread
    if ":memory:" in DATABASE_URL:
        _sqlite_kwargs["poolclass"] = StaticPool
    engine = create_engine(DATABASE_URL, echo=False, **_sqlite_kwargs)
else:
    engine = create_engine(
        DATABASE_URL,
        connect_args={
            "connect_timeout": 10,
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        pool_timeout=30,
    )

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


def get_db():
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def test_connection() -> bool:
    """Test database connection - NON-BLOCKING."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.info(f"[OK] Database connected: {DATABASE_URL.split('@')[-1]}")
        return True
    except Exception as e:
        logger.warning(f"[WARN] Database connection failed (continuing): {e}")
        return False


def init_db(bind=None) -> bool:
    """Create all tables - NON-BLOCKING."""
    try:
        # Import all models so they're registered with Base
        import arkan.models  # noqa: F401

        Base.metadata.create_all(bind=bind or engine)
        logger.info("[OK] Database tables initialized!")
        return True
    except Exception as e:
        logger.warning(f"[WARN] Database init warning: {e}")
        return False


def close_db_connection() -> None:
    """Close database connections."""
    try:
        engine.dispose()
        logger.info("[OK] Database connections closed")
    except Exception as e:
        logger.warning(f"[WARN] Error closing DB: {e}")
