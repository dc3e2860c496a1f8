import numpy as np
from numbers import Number
from typing import Any, List, Optional, Sequence, Tuple

from facebank.core.errors import InvalidEmbedding

# Decimal places used to build the exact-equality key of a vector.
EMBEDDING_KEY_DECIMALS = 6

# Centroids are stored rounded so repeated recomputation is byte-stable.
CENTROID_DECIMALS = 8

DEFAULT_DUPLICATE_THRESHOLD = 0.9995


def _as_flat_array(value: Any) -> Optional[np.ndarray]:
    """Best-effort conversion to a 1D float array; None when not numeric."""
    if value is None:
        return None
    try:
        array = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if array.ndim != 1:
        return None
    return array


def validate_embedding(value: Any) -> np.ndarray:
    """
    Converts a raw embedding into a 1D float64 array.

    Args:
        value: Sequence of numbers (list, tuple, ndarray, pgvector value).

    Returns:
        np.ndarray: The embedding as a flat float64 array.

    Raises:
        InvalidEmbedding: If the vector is empty, not numeric, not 1D
                          or contains NaN / infinity.
    """
    if isinstance(value, (str, bytes)):
        raise InvalidEmbedding("Embedding must be a sequence of numbers.")

    array = _as_flat_array(value)
    if array is None:
        raise InvalidEmbedding("Embedding must be a flat sequence of numbers.")
    if array.size == 0:
        raise InvalidEmbedding("Embedding is empty.")
    if not np.all(np.isfinite(array)):
        raise InvalidEmbedding("Embedding contains non-finite values.")
    return array


def compute_cosine_similarity(vector1: Any, vector2: Any) -> float:
    """
    Computes the cosine similarity between two embedding vectors.

    Unlike a plain dot product this never assumes the inputs are
    L2-normalized. It also never raises: empty inputs, non-numeric inputs,
    mismatched dimensions and zero-norm vectors all score 0.0, the lowest
    value a candidate can get, so a malformed vector cannot win a match.

    Args:
        vector1: The first embedding (e.g. a bank vector).
        vector2: The second embedding (e.g. a freshly detected face).

    Returns:
        float: Similarity between -1.0 and 1.0. Higher means more similar.
    """
    vec1 = _as_flat_array(vector1)
    vec2 = _as_flat_array(vector2)

    if vec1 is None or vec2 is None:
        return 0.0
    if vec1.size == 0 or vec1.shape != vec2.shape:
        return 0.0
    if not (np.all(np.isfinite(vec1)) and np.all(np.isfinite(vec2))):
        return 0.0

    dot_product = np.dot(vec1, vec2)
    norm_vec1 = np.linalg.norm(vec1)
    norm_vec2 = np.linalg.norm(vec2)

    # Prevent division by zero
    if norm_vec1 == 0 or norm_vec2 == 0:
        return 0.0

    return float(dot_product / (norm_vec1 * norm_vec2))


def embedding_key(vector: Any) -> Tuple[float, ...]:
    """Rounded-value key used for exact duplicate detection."""
    array = validate_embedding(vector)
    return tuple(np.round(array, EMBEDDING_KEY_DECIMALS).tolist())


def is_duplicate_embedding(
    existing: Sequence[np.ndarray],
    candidate: Any,
    threshold: float = DEFAULT_DUPLICATE_THRESHOLD
) -> bool:
    """
    Checks whether ``candidate`` repeats a vector already in ``existing``.

    A vector is a duplicate when its rounded values equal an existing
    vector's, or when its cosine similarity to one reaches ``threshold``.
    Vectors of another dimension are never duplicates.
    """
    vector = validate_embedding(candidate)
    key = tuple(np.round(vector, EMBEDDING_KEY_DECIMALS).tolist())

    for item in existing:
        if len(item) != vector.size:
            continue
        if embedding_key(item) == key:
            return True
        if compute_cosine_similarity(item, vector) >= threshold:
            return True
    return False


def compute_centroid(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """
    Coordinate-wise arithmetic mean of a bank, rounded to CENTROID_DECIMALS.

    Returns an empty array for an empty bank. All vectors must share one
    dimension; callers enforce that before they get here.
    """
    if len(vectors) == 0:
        return np.empty(0, dtype=np.float64)

    stacked = np.vstack([np.asarray(v, dtype=np.float64) for v in vectors])
    return np.round(stacked.mean(axis=0), CENTROID_DECIMALS)


def normalize_embedding_bank(value: Any) -> List[np.ndarray]:
    """
    Normalizes a stored bank into a list of 1D vectors.

    Legacy rows stored a single flat vector instead of a list of vectors;
    those are read as a bank of size one. Empty or unreadable entries are
    skipped.

    Args:
        value: ``None``, a flat vector, a list of vectors or a 2D array.

    Returns:
        List[np.ndarray]: Bank vectors in stored order (oldest first).
    """
    if value is None:
        return []

    if isinstance(value, np.ndarray):
        if value.size == 0:
            return []
        value = value.tolist()

    if not isinstance(value, (list, tuple)) or len(value) == 0:
        return []

    # Legacy shape: one flat vector
    if isinstance(value[0], Number) and not isinstance(value[0], bool):
        try:
            return [validate_embedding(value)]
        except InvalidEmbedding:
            return []

    bank: List[np.ndarray] = []
    for item in value:
        if isinstance(item, (str, bytes)):
            continue
        try:
            bank.append(validate_embedding(item))
        except InvalidEmbedding:
            continue
    return bank
