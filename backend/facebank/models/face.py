from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector

from facebank.core.database import Base


class Face(Base):
    """
    One detected face within one photo.

    ``identity_id`` is filled by automatic resolution or by a user label.
    ``learning_confirmed`` becomes True only when a human approved the
    link; only confirmed faces are ever folded into an identity's bank,
    so the engine never learns from its own guesses.
    """

    __tablename__ = "faces"

    id = Column(Integer, primary_key=True, index=True)

    owner_id = Column(Integer, nullable=False, index=True)

    # Photo identifier issued by the external photo store.
    photo_id = Column(String(64), nullable=False, index=True)

    box_x = Column(Float, nullable=False, default=0.0)
    box_y = Column(Float, nullable=False, default=0.0)
    box_width = Column(Float, nullable=False, default=1.0)
    box_height = Column(Float, nullable=False, default=1.0)

    # SET NULL: deleting a person leaves the face as unresolved.
    identity_id = Column(
        Integer,
        ForeignKey("people.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    embedding = Column(Vector(), nullable=True)

    detector_confidence = Column(Float, nullable=False, default=0.0)

    learning_confirmed = Column(Boolean, nullable=False, default=False)

    # Presentational position within the photo (face #1, #2, ...)
    order_index = Column(Integer, nullable=False, default=0)

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True
    )

    identity = relationship("Identity", back_populates="faces")

    def __repr__(self) -> str:
        return (
            f"<Face("
            f"id={self.id}, "
            f"photo_id={self.photo_id}, "
            f"identity_id={self.identity_id}, "
            f"learning_confirmed={self.learning_confirmed})>"
        )
