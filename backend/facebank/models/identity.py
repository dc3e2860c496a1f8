from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector

from facebank.core.database import Base
from facebank.services.face_math import normalize_embedding_bank


class Identity(Base):
    """
    A labeled person, scoped to one owner.

    ``embeddings`` is the learning memory: one vector per confirmed label
    event, oldest first. Rows written before banks existed hold a single
    flat vector; readers normalize both shapes.
    """
    __tablename__ = "people"
    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_people_owner_name"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Owner scope. Users live in the external account service.
    owner_id = Column(Integer, nullable=False, index=True)

    # Trimmed, lower-cased label
    name = Column(String(100), nullable=False)

    # Bank of embeddings: list of equal-length float lists.
    embeddings = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list)

    # Coordinate-wise mean of the bank, refreshed on every append.
    centroid = Column(Vector(), nullable=True)

    image_url = Column(String, nullable=True)

    # Optimistic concurrency: SQLAlchemy adds "WHERE version = :old" to every
    # UPDATE and raises StaleDataError when another writer got there first.
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    faces = relationship("Face", back_populates="identity")

    __mapper_args__ = {"version_id_col": version}

    @property
    def embeddings_count(self) -> int:
        return len(normalize_embedding_bank(self.embeddings))

    def __repr__(self) -> str:
        return f"<Identity(id={self.id}, owner_id={self.owner_id}, name={self.name})>"
