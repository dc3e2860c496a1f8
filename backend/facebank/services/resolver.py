"""
Batch resolution of every detected face in one or more images.

For each image the faces are put in a deterministic presentational order,
every accepted face is ranked against the owner's identities, and the
decision policy is applied. With a single labeled person, the faces of an
image are decided together through the cross-face gate so a group photo
cannot be labeled entirely as that person.

Failures stay local: a face whose ranking blows up, or an image whose
identity snapshot cannot be loaded, degrades to ``unknown`` with the
reason attached while every sibling face and image is still resolved.
"""
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from facebank.core.logging import get_logger
from facebank.schemas.face_schema import (
    BatchResolutionResponse,
    CandidateName,
    DetectedFace,
    ImageDetection,
    ImageResolutionResponse,
    ResolvedFace,
)
from facebank.services.matcher import (
    DISPLAY_DECIMALS,
    CandidateIndex,
    CandidateRanking,
    IdentitySnapshot,
    LinearScanIndex,
)
from facebank.services.policy import (
    Ambiguous,
    Decision,
    Matched,
    MatchStatus,
    MatchThresholds,
    Strategy,
    Unknown,
    decide,
    gate_single_reference,
)

logger = get_logger(__name__)

LEFT_TO_RIGHT = "left_to_right"
RIGHT_TO_LEFT = "right_to_left"
FACE_ORDERS = (LEFT_TO_RIGHT, RIGHT_TO_LEFT)

# Faces whose horizontal centres are this close are ordered top to bottom.
CENTER_TIE_TOLERANCE_PX = 2.0

UNCERTAIN_ONLY_MESSAGE = (
    "We detected people but couldn't confirm clear faces. "
    "Try uploading a closer or cropped photo."
)
COMPLETED_MESSAGE = "Face detection and recognition completed."


def resolve_face_order(raw_order: Optional[str]) -> str:
    """Normalizes a caller's order flag; anything unrecognised reads left to right."""
    normalized = str(raw_order or "").strip().lower()
    return normalized if normalized in FACE_ORDERS else LEFT_TO_RIGHT


def sort_faces(faces: Sequence[DetectedFace], face_order: str = LEFT_TO_RIGHT) -> List[DetectedFace]:
    """
    Orders faces by horizontal box centre, vertical centre breaking ties.

    Python's sort is stable, so the same input always yields the same order.
    """
    direction = -1 if resolve_face_order(face_order) == RIGHT_TO_LEFT else 1

    def compare(a: DetectedFace, b: DetectedFace) -> int:
        delta_x = a.box.center_x - b.box.center_x
        if abs(delta_x) > CENTER_TIE_TOLERANCE_PX:
            return direction if delta_x > 0 else -direction
        delta_y = a.box.center_y - b.box.center_y
        if delta_y == 0:
            return 0
        return 1 if delta_y > 0 else -1

    return sorted(faces, key=cmp_to_key(compare))


def _round(value: float) -> float:
    return round(float(value), DISPLAY_DECIMALS)


@dataclass
class FaceResolution:
    """Resolution of one detected face, before it is shaped for the UI."""

    order_index: int
    face: DetectedFace
    ranking: CandidateRanking
    decision: Decision

    @property
    def status(self) -> MatchStatus:
        return self.decision.status

    @property
    def identity(self) -> Optional[IdentitySnapshot]:
        if isinstance(self.decision, Matched):
            return self.decision.identity
        return None

    @property
    def name(self) -> str:
        if isinstance(self.decision, Matched):
            return self.decision.identity.name
        if isinstance(self.decision, Ambiguous) and self.decision.suggested_name:
            return self.decision.suggested_name
        return "unknown"

    @property
    def error(self) -> Optional[str]:
        if isinstance(self.decision, Unknown):
            return self.decision.error
        return None

    def to_response(self) -> ResolvedFace:
        identity = self.identity
        similarity = _round(self.ranking.best_score)
        second_best = _round(self.ranking.second_best_score)
        return ResolvedFace(
            identity_id=identity.identity_id if identity else None,
            name=self.name,
            status=self.status,
            similarity=similarity,
            second_best_similarity=second_best,
            similarity_gap=_round(self.ranking.best_score - self.ranking.second_best_score),
            top_candidates=[
                CandidateName(name=c.name, similarity=c.display_similarity)
                for c in self.ranking.top_candidates
                if c.name.strip()
            ],
            order_index=self.order_index,
            box=self.face.box,
            confidence=_round(self.face.detector_confidence),
            people_compared=self.ranking.people_compared,
            strategy=self.decision.strategy.value,
            error=self.error,
        )


@dataclass
class ImageResolution:
    image_id: str
    face_order: str
    faces: List[FaceResolution] = field(default_factory=list)

    @property
    def total_persons(self) -> int:
        return len(self.faces)

    @property
    def valid_faces(self) -> int:
        return sum(1 for f in self.faces if f.face.accepted)

    @property
    def uncertain_persons(self) -> int:
        return self.total_persons - self.valid_faces

    def to_response(self) -> ImageResolutionResponse:
        return ImageResolutionResponse(
            image_id=self.image_id,
            face_order=self.face_order,
            total_persons=self.total_persons,
            valid_faces=self.valid_faces,
            uncertain_persons=self.uncertain_persons,
            faces=[f.to_response() for f in self.faces],
        )


@dataclass
class BatchResolution:
    images: List[ImageResolution] = field(default_factory=list)

    @property
    def persons_detected(self) -> int:
        return sum(i.total_persons for i in self.images)

    @property
    def faces_confirmed(self) -> int:
        return sum(i.valid_faces for i in self.images)

    @property
    def uncertain(self) -> int:
        return sum(i.uncertain_persons for i in self.images)

    @property
    def message(self) -> str:
        if self.persons_detected > 0 and self.faces_confirmed == 0 and self.uncertain > 0:
            return UNCERTAIN_ONLY_MESSAGE
        return COMPLETED_MESSAGE

    def to_response(self) -> BatchResolutionResponse:
        return BatchResolutionResponse(
            message=self.message,
            count=len(self.images),
            persons_detected=self.persons_detected,
            faces_confirmed=self.faces_confirmed,
            uncertain=self.uncertain,
            photos=[i.to_response() for i in self.images],
        )


class FaceResolver:
    """
    Resolves detected faces against a snapshot of the owner's identities.

    The resolver holds no mutable state between calls; one instance can
    serve any number of images concurrently.
    """

    def __init__(
        self,
        thresholds: Optional[MatchThresholds] = None,
        index_factory: Optional[Callable[[Sequence[IdentitySnapshot], int], CandidateIndex]] = None,
    ):
        self.thresholds = thresholds or MatchThresholds()
        self.index_factory = index_factory or LinearScanIndex

    def _rank_face(
        self,
        index: CandidateIndex,
        face: DetectedFace,
        order_index: int,
        image_id: str
    ) -> Tuple[CandidateRanking, Optional[str]]:
        # Any index backend failure stays local to this face
        try:
            return index.rank(face.embedding), None
        except Exception as e:
            logger.warning(
                f"Face recognition match failed for face #{order_index}: {type(e).__name__}: {e}",
                extra={"image_id": image_id, "face_index": order_index},
            )
            return CandidateRanking.not_evaluable(Strategy.MATCH_FAILED.value), str(e)

    def resolve_image(
        self,
        detection: ImageDetection,
        identities: Sequence[IdentitySnapshot],
        face_order: Optional[str] = LEFT_TO_RIGHT,
    ) -> ImageResolution:
        """
        Resolves every face of one image.

        Args:
            detection: Detector output for the image.
            identities: Snapshot of the owner's labeled people.
            face_order: ``left_to_right`` or ``right_to_left``.

        Returns:
            ImageResolution: One FaceResolution per detected face, in
                             presentational order.
        """
        order = resolve_face_order(face_order)
        ordered = sort_faces(detection.faces, order)
        index = self.index_factory(identities, self.thresholds.top_candidates)

        rankings: List[Optional[CandidateRanking]] = []
        errors: Dict[int, str] = {}
        for order_index, face in enumerate(ordered):
            if not face.accepted:
                rankings.append(None)
                continue
            ranking, error = self._rank_face(index, face, order_index, detection.image_id)
            if error is not None:
                errors[order_index] = error
            rankings.append(ranking)
            logger.debug(
                f"Face recognition evaluated: face #{order_index} "
                f"similarity={ranking.best_score:.6f} second={ranking.second_best_score:.6f} "
                f"compared={ranking.people_compared} reason={ranking.reason}",
                extra={"image_id": detection.image_id, "face_index": order_index},
            )

        decisions = self._decide_all(rankings, errors, detection.image_id)

        faces = [
            FaceResolution(
                order_index=order_index,
                face=face,
                ranking=rankings[order_index] or CandidateRanking.not_evaluable(Strategy.DETECTOR_REJECTED.value),
                decision=decisions[order_index],
            )
            for order_index, face in enumerate(ordered)
        ]
        return ImageResolution(image_id=detection.image_id, face_order=order, faces=faces)

    def _decide_all(
        self,
        rankings: Sequence[Optional[CandidateRanking]],
        errors: Dict[int, str],
        image_id: str
    ) -> List[Decision]:
        decisions: List[Optional[Decision]] = [None] * len(rankings)

        single_reference = [
            i for i, r in enumerate(rankings)
            if r is not None and r.evaluable and r.people_compared == 1
        ]
        if single_reference:
            gate = gate_single_reference([rankings[i] for i in single_reference], self.thresholds)
            for position, face_index in enumerate(single_reference):
                decisions[face_index] = gate.decisions[position]
            winner = single_reference[gate.winner_index] if gate.accepted else None
            logger.info(
                f"Single-reference disambiguation: candidates={len(single_reference)} "
                f"best={gate.best_score:.6f} runner_up={gate.runner_up_score:.6f} "
                f"margin={gate.margin:.6f} accepted={gate.accepted} face={winner}",
                extra={"image_id": image_id, "strategy": Strategy.SINGLE_REFERENCE.value},
            )

        for face_index, ranking in enumerate(rankings):
            if decisions[face_index] is not None:
                continue
            if ranking is None:
                decisions[face_index] = Unknown(
                    ranking=CandidateRanking.not_evaluable(Strategy.DETECTOR_REJECTED.value),
                    strategy=Strategy.DETECTOR_REJECTED,
                )
            elif face_index in errors:
                decisions[face_index] = Unknown(
                    ranking=ranking, strategy=Strategy.MATCH_FAILED, error=errors[face_index]
                )
            else:
                decisions[face_index] = decide(ranking, self.thresholds)

        return decisions

    def _unresolvable_image(
        self,
        detection: ImageDetection,
        face_order: str,
        error: Exception,
        strategy: Strategy = Strategy.STORE_UNAVAILABLE,
    ) -> ImageResolution:
        """Every accepted face of the image becomes unknown with ``error`` attached."""
        order = resolve_face_order(face_order)
        faces = []
        for order_index, face in enumerate(sort_faces(detection.faces, order)):
            if face.accepted:
                ranking = CandidateRanking.not_evaluable(strategy.value)
                decision = Unknown(ranking=ranking, strategy=strategy, error=str(error))
            else:
                ranking = CandidateRanking.not_evaluable(Strategy.DETECTOR_REJECTED.value)
                decision = Unknown(ranking=ranking, strategy=Strategy.DETECTOR_REJECTED)
            faces.append(FaceResolution(order_index, face, ranking, decision))
        return ImageResolution(image_id=detection.image_id, face_order=order, faces=faces)

    def resolve_batch(
        self,
        images: Sequence[ImageDetection],
        load_identities: Callable[[], Sequence[IdentitySnapshot]],
        face_order: Optional[str] = LEFT_TO_RIGHT,
    ) -> BatchResolution:
        """
        Resolves a batch of images.

        ``load_identities`` is called once per image so every image is
        matched against a fresh snapshot. A failure to load it leaves that
        image's faces unknown (``store_unavailable``); a failure while
        resolving it leaves them unknown (``match_failed``). Either way the
        next image is still resolved.
        """
        order = resolve_face_order(face_order)
        batch = BatchResolution()

        for detection in images:
            try:
                identities = load_identities()
            except Exception as e:
                logger.warning(
                    f"Identity snapshot unavailable for image {detection.image_id}: {type(e).__name__}: {e}",
                    extra={"image_id": detection.image_id, "strategy": Strategy.STORE_UNAVAILABLE.value},
                )
                batch.images.append(self._unresolvable_image(detection, order, e))
                continue

            try:
                image = self.resolve_image(detection, identities, order)
            except Exception as e:
                logger.error(
                    f"Image resolution failed for image {detection.image_id}: {type(e).__name__}: {e}",
                    extra={"image_id": detection.image_id, "strategy": Strategy.MATCH_FAILED.value},
                )
                image = self._unresolvable_image(detection, order, e, Strategy.MATCH_FAILED)
            batch.images.append(image)

        logger.info(
            f"Batch resolved: images={len(batch.images)} persons={batch.persons_detected} "
            f"valid={batch.faces_confirmed} uncertain={batch.uncertain}"
        )
        return batch
