import json

import pytest
import numpy as np
from sqlalchemy import create_engine, event, Text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

# Import all models FIRST to ensure Base.metadata is populated
from facebank.core.database import Base
import facebank.models.identity
import facebank.models.face


# EMBEDDING FIXTURES
# Fixtures defined here are automatically available to all test files in the backend/tests/ directory.

@pytest.fixture
def unit_vector_128() -> np.ndarray:
    """
    Returns a reproducible L2-normalized 128D vector.
    Identical calls produce the same vector (seeded RNG).
    Simulates a confirmed embedding already stored in a bank.
    """
    rng = np.random.default_rng(seed=42)
    vec = rng.standard_normal(128)
    return vec / np.linalg.norm(vec)


@pytest.fixture
def similar_vector_128(unit_vector_128) -> np.ndarray:
    """
    Returns a vector close to unit_vector_128 with small Gaussian noise.
    Same person, different photo. Expected cosine vs unit_vector_128: ~0.99,
    well below the 0.9995 duplicate threshold.
    """
    rng = np.random.default_rng(seed=99)
    noisy = unit_vector_128 + rng.standard_normal(128) * 0.01
    return noisy / np.linalg.norm(noisy)


@pytest.fixture
def near_duplicate_vector_128(unit_vector_128) -> np.ndarray:
    """
    Returns unit_vector_128 with negligible noise (cosine > 0.99999).
    Simulates the same labeling event submitted twice.
    """
    rng = np.random.default_rng(seed=7)
    return unit_vector_128 + rng.standard_normal(128) * 1e-4


@pytest.fixture
def different_vector_128() -> np.ndarray:
    """
    Returns a random unit vector seeded differently from unit_vector_128.
    Simulates an embedding of a different person.
    Expected cosine vs unit_vector_128: ~0.0 +/- 0.1.
    """
    rng = np.random.default_rng(seed=777)
    vec = rng.standard_normal(128)
    return vec / np.linalg.norm(vec)


@pytest.fixture
def zero_vector_128() -> np.ndarray:
    """
    Zero vector. Used to test division-by-zero guards in cosine similarity.
    """
    return np.zeros(128)


# DATABASE FIXTURES

class VectorAsText(TypeDecorator):
    """
    SQLite-compatible replacement for pgvector's Vector type.
    Stores the embedding as a JSON string in SQLite.
    In production PostgreSQL, the real Vector type is used.
    """
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, np.ndarray):
            value = value.tolist()
        return json.dumps(list(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return json.loads(value)


def _patch_vector_columns():
    """
    Patches pgvector columns to SQLite-compatible types.
    Models are imported at the top of the file so their mappers are
    registered before iterating Base.registry.mappers.
    """
    from pgvector.sqlalchemy import Vector

    for mapper in Base.registry.mappers:
        for column in mapper.local_table.columns:
            if isinstance(column.type, Vector):
                column.type = VectorAsText()


def _enable_foreign_keys(engine):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Use a SHARED in-memory database so all connections see the same data
SQLITE_URL = "sqlite:///:memory:?cache=shared"


@pytest.fixture(scope="function")
def db_session():
    """
    Creates a fresh SQLite in-memory database for each test function.
    """
    # Patch BEFORE creating engine and tables
    _patch_vector_columns()

    engine = create_engine(
        SQLITE_URL,
        connect_args={"check_same_thread": False, "uri": True},
        poolclass=StaticPool,
    )
    _enable_foreign_keys(engine)

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:

        yield session

    finally:

        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """
    Session factory over a file-backed SQLite database. Each session gets
    its own connection, which lets a test interleave two writers.
    """
    _patch_vector_columns()

    engine = create_engine(f"sqlite:///{tmp_path / 'facebank.db'}")
    _enable_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)

    try:

        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    finally:

        engine.dispose()
