from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker

from storebot.config import settings
from storebot.logging_config import get_logger

logger = get_logger("database")

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Enable pgvector and create missing tables."""
    import storebot.models  # noqa: F401  register mappers on Base.metadata

    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")
