from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from facebank.core.config import settings
from facebank.core.errors import InvalidEmbedding
from facebank.core.logging import get_logger
from facebank.models.face import Face
from facebank.schemas.face_schema import BatchResolutionResponse, ImageDetection
from facebank.services.face_math import validate_embedding
from facebank.services.identity_store import IdentityStore
from facebank.services.policy import MatchThresholds
from facebank.services.resolver import FaceResolution, FaceResolver, ImageResolution

logger = get_logger(__name__)


def _storable_embedding(raw) -> Optional[list]:
    """Detector vector as stored on the face row; None when it is unusable."""
    try:
        return validate_embedding(raw).tolist()
    except InvalidEmbedding:
        return None


def _face_record(owner_id: int, photo_id: str, resolution: FaceResolution) -> Face:
    box = resolution.face.box
    identity = resolution.identity
    return Face(
        owner_id=owner_id,
        photo_id=photo_id,
        box_x=box.x,
        box_y=box.y,
        box_width=box.width or 1.0,
        box_height=box.height or 1.0,
        identity_id=identity.identity_id if identity else None,
        embedding=_storable_embedding(resolution.face.embedding),
        detector_confidence=resolution.face.detector_confidence,
        # Automatic matches are suggestions until a human confirms them
        learning_confirmed=False,
        order_index=resolution.order_index,
    )


def record_image_resolution(db: Session, owner_id: int, image: ImageResolution) -> dict:
    """
    Persists every resolved face of one image as an unconfirmed Face row.

    Each face is committed on its own so one failing row never drops its
    siblings. Identity banks are never touched here.

    Returns:
        dict: ``order_index -> face id`` for the faces that were stored.
    """
    stored = {}
    for resolution in image.faces:
        record = _face_record(owner_id, image.image_id, resolution)
        try:
            db.add(record)
            db.flush()
            # Read before commit expires the instance
            face_id = record.id
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(
                f"Face record persist failed for face #{resolution.order_index}: {e}",
                extra={"owner_id": owner_id, "image_id": image.image_id, "face_index": resolution.order_index},
            )
            continue
        stored[resolution.order_index] = face_id
    return stored


def recognize_photos(
    db: Session,
    owner_id: int,
    images: Sequence[ImageDetection],
    face_order: Optional[str] = None,
    thresholds: Optional[MatchThresholds] = None,
) -> BatchResolutionResponse:
    """
    Resolves and records every face of a batch of uploaded photos.

    Args:
        db: Active SQLAlchemy session.
        owner_id: Owner whose labeled people are matched against.
        images: Detector output, one entry per photo.
        face_order: ``left_to_right`` (default) or ``right_to_left``.
        thresholds: Overrides for the configured thresholds.

    Returns:
        BatchResolutionResponse: Per-photo, per-face results with the stored
                                 face ids filled in.
    """
    thresholds = thresholds or MatchThresholds.from_settings(settings)
    store = IdentityStore(db, duplicate_threshold=thresholds.duplicate_similarity_threshold)
    resolver = FaceResolver(thresholds)

    batch = resolver.resolve_batch(images, lambda: store.list_identities(owner_id), face_order)
    response = batch.to_response()

    for image, photo in zip(batch.images, response.photos):
        stored = record_image_resolution(db, owner_id, image)
        for face in photo.faces:
            face.face_id = stored.get(face.order_index)

    logger.info(
        f"Upload recognition completed: photos={response.count} "
        f"persons={response.persons_detected} confirmed={response.faces_confirmed}",
        extra={"owner_id": owner_id},
    )
    return response
