"""
Similarity matching of one query embedding against every known identity.

The ranking is produced by a ``CandidateIndex``. ``LinearScanIndex`` does an
exact comparison against every bank vector and centroid, which is correct
for a single owner's set of labeled people. An approximate index only has
to return the same ``CandidateRanking`` to plug into the decision policy.
"""
import numpy as np
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Protocol, Sequence, Tuple

from facebank.core.errors import InvalidEmbedding, NoIdentitiesToCompare
from facebank.services.embedding_bank import EmbeddingBank
from facebank.services.face_math import compute_cosine_similarity, validate_embedding

DEFAULT_TOP_CANDIDATES = 3

# Scores are rounded this far in everything shown to the labeling UI.
DISPLAY_DECIMALS = 6


@dataclass(frozen=True)
class IdentitySnapshot:
    """Read-only view of one labeled person used during matching."""

    identity_id: Optional[int]
    name: str
    bank: EmbeddingBank = field(default_factory=EmbeddingBank, compare=False)

    @classmethod
    def from_record(cls, identity_id: Optional[int], name: str, embeddings: Any) -> "IdentitySnapshot":
        return cls(identity_id=identity_id, name=name, bank=EmbeddingBank.from_storage(embeddings))


@dataclass(frozen=True)
class Candidate:
    identity: IdentitySnapshot
    similarity: float

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def display_similarity(self) -> float:
        return round(self.similarity, DISPLAY_DECIMALS)


@dataclass(frozen=True)
class CandidateRanking:
    """
    Every compared identity's best score, sorted by score descending.

    ``evaluable`` is False when no comparison could be made (no identities
    with a non-empty bank, or an unusable query); ``reason`` then says why.
    """

    candidates: Tuple[Candidate, ...] = ()
    people_compared: int = 0
    evaluable: bool = True
    reason: Optional[str] = None
    top_limit: int = DEFAULT_TOP_CANDIDATES

    @classmethod
    def not_evaluable(cls, reason: str, people_compared: int = 0) -> "CandidateRanking":
        return cls(candidates=(), people_compared=people_compared, evaluable=False, reason=reason)

    @property
    def best(self) -> Optional[Candidate]:
        return self.candidates[0] if self.candidates else None

    @property
    def best_score(self) -> float:
        return self.candidates[0].similarity if self.candidates else 0.0

    @property
    def second_best_score(self) -> float:
        return self.candidates[1].similarity if len(self.candidates) > 1 else 0.0

    @property
    def margin(self) -> float:
        return self.best_score - self.second_best_score

    @property
    def top_candidates(self) -> Tuple[Candidate, ...]:
        return self.candidates[: self.top_limit]


class CandidateIndex(Protocol):
    def rank(self, query: Any) -> CandidateRanking:
        ...


def score_identity(query: np.ndarray, bank: EmbeddingBank) -> float:
    """
    Best similarity between the query and any exemplar or the centroid.

    Scores are floored at 0.0 so an anti-correlated face never ranks above
    a mismatched-dimension one.
    """
    best = 0.0
    for point in bank.comparison_points():
        similarity = compute_cosine_similarity(query, point)
        if similarity > best:
            best = similarity
    return best


class LinearScanIndex:
    """Exact matcher: compares the query with every vector of every bank."""

    def __init__(self, identities: Iterable[IdentitySnapshot], top_limit: int = DEFAULT_TOP_CANDIDATES):
        # Identities with an empty bank never score and never match
        self.identities: List[IdentitySnapshot] = [i for i in identities if not i.bank.is_empty()]
        self.top_limit = top_limit

    def __len__(self) -> int:
        return len(self.identities)

    def rank(self, query: Any) -> CandidateRanking:
        if not self.identities:
            return CandidateRanking.not_evaluable(NoIdentitiesToCompare.reason)

        try:
            vector = validate_embedding(query)
        except InvalidEmbedding:
            return CandidateRanking.not_evaluable(InvalidEmbedding.reason)

        scored = [
            Candidate(identity=identity, similarity=score_identity(vector, identity.bank))
            for identity in self.identities
        ]
        # Stable sort keeps input order between equal scores
        scored.sort(key=lambda c: c.similarity, reverse=True)

        return CandidateRanking(
            candidates=tuple(scored),
            people_compared=len(self.identities),
            evaluable=True,
            top_limit=self.top_limit,
        )


def rank_candidates(
    query: Any,
    identities: Sequence[IdentitySnapshot],
    top_limit: int = DEFAULT_TOP_CANDIDATES
) -> CandidateRanking:
    """
    Scores ``query`` against every identity and ranks them.

    Args:
        query: The face embedding to resolve.
        identities: Known people for the owner.
        top_limit: Length of ``CandidateRanking.top_candidates``.

    Returns:
        CandidateRanking: Sorted scores, or a not-evaluable ranking when
                          there is nothing to compare against.
    """
    return LinearScanIndex(identities, top_limit=top_limit).rank(query)
