from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime

from facebank.core.errors import InvalidLabel
from facebank.schemas.face_schema import CamelModel

# Placeholder names the UI shows for unresolved faces; never valid labels.
RESERVED_LABELS = frozenset({"unknown", "unknown_person", "unknown person"})


def normalize_person_name(value: Optional[str]) -> str:
    """Labels are stored trimmed and lower-cased, one row per owner and name."""
    return str(value or "").strip().lower()


def validate_label(name: Optional[str]) -> str:
    """
    Normalizes a person label.

    Raises:
        InvalidLabel: Blank, or one of the reserved "unknown" placeholders.
    """
    normalized = normalize_person_name(name)
    if not normalized:
        raise InvalidLabel("Name is required.")
    if normalized in RESERVED_LABELS:
        raise InvalidLabel('Please enter a real person name. "unknown" labels are not allowed.')
    return normalized


class LabelRequest(BaseModel):
    """
    A user's explicit confirmation that a detected face belongs to ``name``.
    """
    face_id: int = Field(..., ge=1, description="Face record being labeled")
    name: str = Field(..., min_length=1, max_length=100, description="Person label")

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        try:
            return validate_label(value)
        except InvalidLabel as e:
            raise ValueError(str(e)) from e


class LabelResult(CamelModel):
    face_id: int
    person_id: int
    name: str
    embeddings_count: int
    learning_confirmed: bool
    appended: bool = Field(
        ...,
        description="False when the face repeated a vector already in the bank"
    )


class IdentityResponse(BaseModel):
    """
    Labeled person as returned to the caller. Bank vectors are never
    included; only their count.
    """
    id: int
    owner_id: int
    name: str
    image_url: Optional[str] = None
    embeddings_count: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PersonSummary(CamelModel):
    person_id: int
    name: str
    photos: int = 0
    embeddings_count: int = 0
    sample_image_url: Optional[str] = None
    last_labeled_at: Optional[datetime] = None
