from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base

from facebank.core.config import settings
from facebank.core.logging import get_logger

logger = get_logger(__name__)

# pool_pre_ping=True validates connections before use so a restarted
# PostgreSQL container does not surface as a failed recognition request.
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=15
)

# SessionLocal is a factory for new Session objects
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all declarative SQLAlchemy models
Base = declarative_base()

def init_db(bind=None):
    """
    Initializes database prerequisites.

    Enables the pgvector extension (face embeddings and centroids are stored
    as ``vector`` columns) and creates any missing tables. Must run before
    the first query touches the ``people`` or ``faces`` tables.
    """
    bind = bind or engine

    # Register mappers on Base.metadata
    import facebank.models.identity  # noqa: F401
    import facebank.models.face  # noqa: F401

    try:

        with bind.connect() as connection:

            connection.execute(text("CREATE EXTENSION IF NOT EXISTS vector;"))

            connection.commit()

        Base.metadata.create_all(bind=bind)

        logger.info("Successfully verified pgvector extension and face tables.")

    except Exception as e:

        logger.error(f"Failed to initialize database: {e}")

        raise


def get_db():
    """
    Yields a session and closes it once the caller is done, so every
    recognition or labeling request gets its own unit of work.
    """
    db = SessionLocal()
    try:

        yield db

    finally:

        db.close()
