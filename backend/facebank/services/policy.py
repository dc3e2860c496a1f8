"""
Decision policy: turns a candidate ranking into matched / ambiguous / unknown.

Two regimes apply depending on how many people the owner has labeled.

* Multi-reference (two or more people): the best identity must clear
  ``match_threshold`` and beat the runner-up identity by ``min_margin``.
  A face that clears the score but not the margin is ambiguous.
* Single-reference (exactly one person): the runner-up identity does not
  exist, so the competition is between faces of the same image instead.
  See ``gate_single_reference``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, List, Optional, Sequence, Tuple, Union

from facebank.core.config import Settings
from facebank.services.matcher import Candidate, CandidateRanking, IdentitySnapshot


class MatchStatus(str, Enum):
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    UNKNOWN = "unknown"


class Strategy(str, Enum):
    MULTI_REFERENCE = "multi_reference"
    SINGLE_REFERENCE = "single_reference"
    NO_IDENTITIES = "no_identities"
    INVALID_EMBEDDING = "invalid_embedding"
    DETECTOR_REJECTED = "detector_rejected"
    STORE_UNAVAILABLE = "store_unavailable"
    MATCH_FAILED = "match_failed"


@dataclass(frozen=True)
class MatchThresholds:
    """Tunable thresholds, snapshotted from Settings for one resolution run."""

    match_threshold: float = 0.95
    min_margin: float = 0.08
    single_reference_threshold: float = 0.55
    single_reference_margin: float = 0.03
    single_reference_confirm_threshold: float = 0.95
    single_reference_confirm_margin: float = 0.02
    duplicate_similarity_threshold: float = 0.9995
    top_candidates: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "MatchThresholds":
        return cls(
            match_threshold=settings.FACE_SIMILARITY_THRESHOLD,
            min_margin=settings.FACE_SIMILARITY_MARGIN,
            single_reference_threshold=settings.FACE_SIMILARITY_SINGLE_PERSON_THRESHOLD,
            single_reference_margin=settings.SINGLE_REFERENCE_BEST_MARGIN,
            single_reference_confirm_threshold=settings.SINGLE_REFERENCE_CONFIRM_THRESHOLD,
            single_reference_confirm_margin=settings.SINGLE_REFERENCE_CONFIRM_MARGIN,
            duplicate_similarity_threshold=settings.EMBEDDING_DUPLICATE_SIMILARITY_THRESHOLD,
            top_candidates=settings.TOP_CANDIDATES_LIMIT,
        )


@dataclass(frozen=True)
class Matched:
    status: ClassVar[MatchStatus] = MatchStatus.MATCHED

    identity: IdentitySnapshot
    ranking: CandidateRanking
    strategy: Strategy


@dataclass(frozen=True)
class Ambiguous:
    status: ClassVar[MatchStatus] = MatchStatus.AMBIGUOUS

    candidates: Tuple[Candidate, ...]
    ranking: CandidateRanking
    strategy: Strategy

    @property
    def candidate_names(self) -> List[str]:
        return [c.name for c in self.candidates]

    @property
    def suggested_name(self) -> Optional[str]:
        return self.candidates[0].name if self.candidates else None


@dataclass(frozen=True)
class Unknown:
    status: ClassVar[MatchStatus] = MatchStatus.UNKNOWN

    ranking: CandidateRanking
    strategy: Strategy
    error: Optional[str] = None


Decision = Union[Matched, Ambiguous, Unknown]


def _strategy_for(ranking: CandidateRanking) -> Strategy:
    if ranking.evaluable:
        return Strategy.SINGLE_REFERENCE if ranking.people_compared == 1 else Strategy.MULTI_REFERENCE
    if ranking.reason == Strategy.INVALID_EMBEDDING.value:
        return Strategy.INVALID_EMBEDDING
    if ranking.reason == Strategy.STORE_UNAVAILABLE.value:
        return Strategy.STORE_UNAVAILABLE
    if ranking.reason == Strategy.MATCH_FAILED.value:
        return Strategy.MATCH_FAILED
    return Strategy.NO_IDENTITIES


def decide_multi_reference(ranking: CandidateRanking, thresholds: MatchThresholds) -> Decision:
    """
    Multi-reference rule: matched only when score AND margin both hold.
    """
    best = ranking.best
    if best is None:
        return Unknown(ranking=ranking, strategy=_strategy_for(ranking))

    clears_score = ranking.best_score >= thresholds.match_threshold
    clears_margin = ranking.margin >= thresholds.min_margin

    if clears_score and clears_margin:
        return Matched(identity=best.identity, ranking=ranking, strategy=Strategy.MULTI_REFERENCE)
    if clears_score:
        return Ambiguous(
            candidates=ranking.top_candidates,
            ranking=ranking,
            strategy=Strategy.MULTI_REFERENCE,
        )
    return Unknown(ranking=ranking, strategy=Strategy.MULTI_REFERENCE)


@dataclass(frozen=True)
class SingleReferenceGate:
    """Outcome of the cross-face gate for one image."""

    decisions: Tuple[Decision, ...]
    winner_index: Optional[int]
    best_score: float
    runner_up_score: float
    accepted: bool

    @property
    def margin(self) -> float:
        return self.best_score - self.runner_up_score


def gate_single_reference(
    rankings: Sequence[CandidateRanking],
    thresholds: MatchThresholds
) -> SingleReferenceGate:
    """
    Cross-face gate for the single-reference regime.

    With one labeled person, any face above a loose threshold would match,
    so a group photo would be labeled entirely as that person. Instead the
    faces of one image compete with each other: only the best-scoring face
    may match, and only if

    * its score clears ``single_reference_threshold`` and
      ``single_reference_confirm_threshold``, and
    * it beats the runner-up *face* by both ``single_reference_margin``
      and ``single_reference_confirm_margin``.

    Faces that clear ``single_reference_threshold`` but are not the
    accepted winner are ambiguous (the lone person is offered as a quick
    pick); the rest are unknown.

    Args:
        rankings: One single-reference ranking per face, in face order.
        thresholds: Active thresholds.

    Returns:
        SingleReferenceGate: Per-face decisions aligned with ``rankings``.
    """
    if not rankings:
        return SingleReferenceGate((), None, 0.0, 0.0, False)

    order = sorted(range(len(rankings)), key=lambda i: rankings[i].best_score, reverse=True)
    winner = order[0]
    best_score = rankings[winner].best_score
    runner_up_score = rankings[order[1]].best_score if len(order) > 1 else 0.0
    margin = best_score - runner_up_score

    accepted = (
        best_score >= thresholds.single_reference_threshold
        and best_score >= thresholds.single_reference_confirm_threshold
        and margin >= thresholds.single_reference_margin
        and margin >= thresholds.single_reference_confirm_margin
    )

    decisions: List[Decision] = []
    for index, ranking in enumerate(rankings):
        if accepted and index == winner:
            decisions.append(
                Matched(identity=ranking.best.identity, ranking=ranking, strategy=Strategy.SINGLE_REFERENCE)
            )
        elif ranking.best is not None and ranking.best_score >= thresholds.single_reference_threshold:
            decisions.append(
                Ambiguous(
                    candidates=ranking.top_candidates,
                    ranking=ranking,
                    strategy=Strategy.SINGLE_REFERENCE,
                )
            )
        else:
            decisions.append(Unknown(ranking=ranking, strategy=Strategy.SINGLE_REFERENCE))

    return SingleReferenceGate(
        decisions=tuple(decisions),
        winner_index=winner if accepted else None,
        best_score=best_score,
        runner_up_score=runner_up_score,
        accepted=accepted,
    )


def decide(ranking: CandidateRanking, thresholds: Optional[MatchThresholds] = None) -> Decision:
    """
    Classifies one face's ranking as Matched, Ambiguous or Unknown.

    A single-reference ranking is treated as the only face of its image;
    callers resolving several faces of one image must use
    ``gate_single_reference`` so the faces compete with each other.
    """
    thresholds = thresholds or MatchThresholds()

    if not ranking.evaluable or ranking.best is None:
        return Unknown(ranking=ranking, strategy=_strategy_for(ranking))

    if ranking.people_compared == 1:
        return gate_single_reference([ranking], thresholds).decisions[0]

    return decide_multi_reference(ranking, thresholds)
