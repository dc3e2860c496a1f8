import numpy as np
from typing import Any, List, Optional

from facebank.core.errors import DimensionMismatch
from facebank.core.logging import get_logger
from facebank.services.face_math import (
    DEFAULT_DUPLICATE_THRESHOLD,
    compute_centroid,
    is_duplicate_embedding,
    normalize_embedding_bank,
    validate_embedding,
)

logger = get_logger(__name__)


class EmbeddingBank:
    """
    Reference vectors recorded for one identity plus their cached centroid.

    One vector is appended per confirmed labeling event. Order is
    append-only (oldest first) so the centroid is reproducible; matching
    only cares about membership. The bank never holds two vectors that are
    duplicates of each other, and every vector shares one dimension.
    """

    def __init__(self, vectors: Optional[List[np.ndarray]] = None):
        self._vectors: List[np.ndarray] = []
        for vector in vectors or []:
            array = validate_embedding(vector)
            if self._vectors and array.size != self.dimension:
                raise DimensionMismatch(self.dimension, array.size)
            self._vectors.append(array)
        self.centroid = compute_centroid(self._vectors)

    @classmethod
    def from_storage(cls, embeddings: Any) -> "EmbeddingBank":
        """
        Builds a bank from a stored value, normalizing the legacy flat shape.

        Vectors whose dimension differs from the first stored vector are
        left out and logged; they would otherwise poison the centroid.
        """
        vectors = normalize_embedding_bank(embeddings)
        if not vectors:
            return cls()

        dimension = vectors[0].size
        kept = [v for v in vectors if v.size == dimension]
        if len(kept) != len(vectors):
            logger.warning(
                f"Dropped {len(vectors) - len(kept)} stored bank vector(s) "
                f"with a dimension other than {dimension}."
            )
        return cls(kept)

    @property
    def vectors(self) -> List[np.ndarray]:
        return list(self._vectors)

    @property
    def dimension(self) -> Optional[int]:
        if not self._vectors:
            return None
        return int(self._vectors[0].size)

    def __len__(self) -> int:
        return len(self._vectors)

    def is_empty(self) -> bool:
        return not self._vectors

    def is_duplicate(self, vector: Any, threshold: float = DEFAULT_DUPLICATE_THRESHOLD) -> bool:
        return is_duplicate_embedding(self._vectors, vector, threshold)

    def append(self, vector: Any, duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD) -> bool:
        """
        Adds a confirmed sample to the bank.

        Args:
            vector: The new embedding.
            duplicate_threshold: Cosine similarity at or above which the
                                 vector repeats an existing sample.

        Returns:
            bool: True if the bank grew, False if the vector was a
                  duplicate (the bank and centroid are left untouched).

        Raises:
            InvalidEmbedding: Empty, non-numeric or non-finite vector.
            DimensionMismatch: Length differs from the bank's dimension.
        """
        array = validate_embedding(vector)

        if self._vectors and array.size != self.dimension:
            raise DimensionMismatch(self.dimension, array.size)

        if is_duplicate_embedding(self._vectors, array, duplicate_threshold):
            return False

        self._vectors.append(array)
        self.recompute_centroid()
        return True

    def recompute_centroid(self) -> np.ndarray:
        self.centroid = compute_centroid(self._vectors)
        return self.centroid

    def comparison_points(self) -> List[np.ndarray]:
        """Every exemplar plus the centroid; an identity scores its best point."""
        points = list(self._vectors)
        if self.centroid.size:
            points.append(self.centroid)
        return points

    def to_storage(self) -> List[List[float]]:
        return [v.tolist() for v in self._vectors]

    def centroid_for_storage(self) -> Optional[List[float]]:
        if not self.centroid.size:
            return None
        return self.centroid.tolist()

    def __repr__(self) -> str:
        return f"<EmbeddingBank(size={len(self)}, dimension={self.dimension})>"
