from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from facebank.core.config import settings
from facebank.core.errors import (
    DuplicateIdentity,
    EnrollmentRejected,
    FaceNotFound,
    InvalidEmbedding,
    StoreUnavailable,
)
from facebank.core.logging import get_logger
from facebank.models.face import Face
from facebank.schemas.face_schema import DetectedFace
from facebank.schemas.identity_schema import IdentityResponse, LabelResult, validate_label
from facebank.services.face_math import validate_embedding
from facebank.services.identity_store import IdentityStore

logger = get_logger(__name__)


def confirm_face_label(
    db: Session,
    face_id: int,
    name: str,
    store: Optional[IdentityStore] = None,
) -> LabelResult:
    """
    Records a user's confirmation that ``face_id`` shows ``name``.

    This is the only path through which an embedding is learned: the face's
    vector is appended to the person's bank (creating the person on first
    use), then the face is linked and marked ``learning_confirmed``.

    Args:
        db: Active SQLAlchemy session.
        face_id: Face record to label.
        name: Person label, normalized before use.
        store: Identity store bound to ``db``; built on demand.

    Returns:
        LabelResult: Linked person and resulting bank size.

    Raises:
        InvalidLabel, FaceNotFound, InvalidEmbedding, DimensionMismatch:
            Raised before the bank is touched; nothing is written.
        StoreUnavailable: The bank append or the face link failed. The
            bank append commits first, so when only the face link fails
            the person has already learned the vector while the face
            stays unconfirmed. That case is logged as an error.
    """
    label = validate_label(name)
    store = store or IdentityStore(db, duplicate_threshold=settings.EMBEDDING_DUPLICATE_SIMILARITY_THRESHOLD)

    try:
        face = db.get(Face, face_id)
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"Face store read failed: {e}", cause=e) from e
    if face is None:
        raise FaceNotFound(f"Face record {face_id} not found.")

    try:
        embedding = validate_embedding(face.embedding)
    except InvalidEmbedding as e:
        raise InvalidEmbedding("Face embedding is missing or invalid.") from e

    update = store.get_or_create_and_append(face.owner_id, label, embedding)

    owner_id = face.owner_id
    face.identity_id = update.identity_id
    face.learning_confirmed = True
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Bank of '{update.name}' learned face {face_id} (appended={update.appended}) "
            f"but the face link failed; face {face_id} is left unconfirmed: {e}",
            extra={"owner_id": owner_id, "identity_id": update.identity_id},
        )
        raise StoreUnavailable(f"Face store write failed: {e}", cause=e) from e

    logger.info(
        f"Face {face_id} labeled as '{update.name}' "
        f"(bank size {update.embeddings_count}, appended={update.appended}).",
        extra={"owner_id": owner_id, "identity_id": update.identity_id},
    )
    return LabelResult(
        face_id=face.id,
        person_id=update.identity_id,
        name=update.name,
        embeddings_count=update.embeddings_count,
        learning_confirmed=True,
        appended=update.appended,
    )


def enroll_identity(
    db: Session,
    owner_id: int,
    name: str,
    faces: Sequence[DetectedFace],
    image_url: Optional[str] = None,
    min_confidence: Optional[float] = None,
    store: Optional[IdentityStore] = None,
) -> IdentityResponse:
    """
    Creates a person from one clear reference photo.

    Exactly one detector-accepted face is required, and its detector
    confidence must reach ``LABEL_MIN_FACE_CONFIDENCE``. A name already
    used by the owner is rejected rather than merged.

    Raises:
        InvalidLabel: Blank or reserved name.
        EnrollmentRejected: Wrong face count, unclear face, or existing name.
    """
    label = validate_label(name)
    store = store or IdentityStore(db, duplicate_threshold=settings.EMBEDDING_DUPLICATE_SIMILARITY_THRESHOLD)
    min_confidence = settings.LABEL_MIN_FACE_CONFIDENCE if min_confidence is None else min_confidence

    if store.find_by_name(owner_id, label) is not None:
        raise EnrollmentRejected("A person with this label already exists.")

    accepted = [face for face in faces if face.accepted]
    if len(accepted) != 1:
        raise EnrollmentRejected("Label photo must contain exactly one person.")

    face = accepted[0]
    if face.detector_confidence < min_confidence:
        raise EnrollmentRejected(
            f"Face is not clear enough. Please upload a clearer photo "
            f"(confidence >= {min_confidence})."
        )

    try:
        update = store.create_identity(
            owner_id, label, face.embedding, image_url=image_url, merge_on_conflict=False
        )
    except DuplicateIdentity as e:
        raise EnrollmentRejected("A person with this label already exists.") from e

    logger.info(
        f"Enrolled person '{update.name}' from a reference photo.",
        extra={"owner_id": owner_id, "identity_id": update.identity_id},
    )
    return IdentityResponse.model_validate(store.get_identity(update.identity_id))
