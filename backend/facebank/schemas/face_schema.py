from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, List, Optional

from facebank.services.policy import MatchStatus

class CamelModel(BaseModel):
    """
    Base for payloads exchanged with the labeling UI.
    Field names serialize in camelCase (``secondBestSimilarity``) and can be
    populated with either spelling.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FaceBox(CamelModel):
    """
    Bounding box of a detected face in image pixel coordinates.
    """
    x: float = Field(..., description="Left edge in pixels")
    y: float = Field(..., description="Top edge in pixels")
    width: float = Field(..., ge=0.0, description="Box width in pixels")
    height: float = Field(..., ge=0.0, description="Box height in pixels")

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2


class DetectedFace(CamelModel):
    """
    One face as returned by the external detector.
    """
    box: FaceBox
    # Validated per face at resolution time, not here
    embedding: List[Any] = Field(
        default_factory=list,
        description="Fixed-length feature vector for this face"
    )
    detector_confidence: float = Field(
        0.0,
        ge=0.0,
        le=1.0,
        description="Detector score for this box"
    )
    accepted: bool = Field(
        True,
        description="False when the detector judged the face too unclear to use"
    )


class ImageDetection(CamelModel):
    """
    Detector output for one uploaded image.
    """
    image_id: str = Field(..., description="Caller-side identifier of the photo")
    faces: List[DetectedFace] = Field(default_factory=list)


class CandidateName(CamelModel):
    name: str
    similarity: float


class ResolvedFace(CamelModel):
    """
    Per-face result rendered by the labeling UI.

    ``identityId``, ``name``, ``status``, ``similarity``,
    ``secondBestSimilarity``, ``similarityGap`` and ``topCandidates`` are a
    frozen contract; renaming any of them needs a version bump.
    """
    identity_id: Optional[int] = None
    name: str = "unknown"
    status: MatchStatus = MatchStatus.UNKNOWN
    similarity: float = 0.0
    second_best_similarity: float = 0.0
    similarity_gap: float = 0.0
    top_candidates: List[CandidateName] = Field(default_factory=list)

    order_index: int = 0
    box: Optional[FaceBox] = None
    confidence: float = 0.0
    people_compared: int = 0
    strategy: Optional[str] = None
    error: Optional[str] = None
    face_id: Optional[int] = None


class ImageResolutionResponse(CamelModel):
    image_id: str
    face_order: str
    total_persons: int = 0
    valid_faces: int = 0
    uncertain_persons: int = 0
    faces: List[ResolvedFace] = Field(default_factory=list)


class BatchResolutionResponse(CamelModel):
    message: str
    count: int = 0
    persons_detected: int = 0
    faces_confirmed: int = 0
    uncertain: int = 0
    photos: List[ImageResolutionResponse] = Field(default_factory=list)
