"""
Entity Resolver.

Matches a free-text equipment mention against the live catalog and
returns a three-way ``MatchResult``: one candidate, none, or a
shortlist. It never picks arbitrarily among equals; anything short of a
single clear winner goes back to the human.

Matching order:
    1. exact (case/accent-insensitive) on name, nickname, aliases
    2. whole-token containment either way on name / nickname
    3. similarity score against every field, kept above the threshold

The resolver is pure: same identifier + same catalog = same result.
"""

from __future__ import annotations

from rapidfuzz import fuzz

from voice_intake.logging_config import get_logger
from voice_intake.schemas.catalog import EntityCandidate, MatchOutcome, MatchResult
from voice_intake.text_utils import normalize_name

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 0.70
# Shorter fragments match too much by containment ("a", "3")
MIN_CONTAINMENT_LENGTH = 3
_EPSILON = 1e-9


def _exact_keys(candidate: EntityCandidate) -> set[str]:
    keys = {normalize_name(f) for f in candidate.match_fields()}
    if candidate.parent_name:
        keys.add(normalize_name(f"{candidate.name} {candidate.parent_name}"))
    keys.discard("")
    return keys


def _containment_keys(candidate: EntityCandidate) -> list[str]:
    keys = [normalize_name(candidate.name)]
    if candidate.nickname:
        keys.append(normalize_name(candidate.nickname))
    return [k for k in keys if k]


def _has_token_run(tokens: list[str], run: list[str]) -> bool:
    width = len(run)
    return any(tokens[i:i + width] == run for i in range(len(tokens) - width + 1))


def _contains(identifier: str, key: str) -> bool:
    """Whole-token containment: "line 12" does not contain "line 1"."""
    shorter = min(len(identifier), len(key))
    if shorter < MIN_CONTAINMENT_LENGTH:
        return False
    needle, hay = identifier.split(), key.split()
    return _has_token_run(hay, needle) or _has_token_run(needle, hay)


def similarity(a: str, b: str) -> float:
    """Normalized 0-1 similarity (edit ratio or token-sorted ratio)."""
    a, b = normalize_name(a), normalize_name(b)
    if not a or not b:
        return 0.0
    return max(fuzz.ratio(a, b), fuzz.token_sort_ratio(a, b)) / 100.0


class EntityResolver:
    """Stateless matcher; thresholds come from settings at construction."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD, tie_margin: float = 0.0) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self.threshold = threshold
        self.tie_margin = tie_margin

    def resolve(self, identifier: str, candidates: list[EntityCandidate]) -> MatchResult:
        needle = normalize_name(identifier or "")
        if not needle or not candidates:
            return MatchResult(identifier=identifier or "", outcome=MatchOutcome.NONE)

        # 1. Exact
        exact = [c for c in candidates if needle in _exact_keys(c)]
        if exact:
            return self._from_hits(identifier, exact, method="exact")

        # 2. Containment
        contained = [
            c for c in candidates
            if any(_contains(needle, key) for key in _containment_keys(c))
        ]
        if contained:
            return self._from_hits(identifier, contained, method="substring")

        # 3. Similarity
        return self._score(identifier, candidates)

    def _from_hits(self, identifier: str, hits: list[EntityCandidate], method: str) -> MatchResult:
        outcome = MatchOutcome.UNIQUE if len(hits) == 1 else MatchOutcome.AMBIGUOUS
        logger.debug("entity_match_hits", method=method, identifier=identifier, hits=len(hits))
        return MatchResult(
            identifier=identifier,
            outcome=outcome,
            candidates=hits,
            method=method,
            score=1.0 if outcome == MatchOutcome.UNIQUE else None,
        )

    def _score(self, identifier: str, candidates: list[EntityCandidate]) -> MatchResult:
        scored: list[tuple[EntityCandidate, float]] = []
        for candidate in candidates:
            fields = candidate.match_fields()
            if candidate.parent_name:
                fields.append(f"{candidate.name} {candidate.parent_name}")
            best = max(similarity(identifier, f) for f in fields)
            if best + _EPSILON >= self.threshold:
                scored.append((candidate, round(best, 4)))

        if not scored:
            return MatchResult(identifier=identifier, outcome=MatchOutcome.NONE, method="similarity")

        top = max(score for _, score in scored)
        leaders = [c for c, score in scored if score + self.tie_margin + _EPSILON >= top]

        if len(leaders) == 1:
            return MatchResult(
                identifier=identifier,
                outcome=MatchOutcome.UNIQUE,
                candidates=leaders,
                method="similarity",
                score=top,
            )
        return MatchResult(
            identifier=identifier,
            outcome=MatchOutcome.AMBIGUOUS,
            candidates=leaders,
            method="similarity",
            score=top,
        )

    def resolve_secondary(
        self,
        identifiers: list[str],
        candidates: list[EntityCandidate],
        exclude_id: int | None = None,
    ) -> list[int]:
        """
        Best-effort resolution of additional affected equipment.

        Each identifier is resolved on its own; anything that is not a
        single clear match (or that repeats the primary) is dropped.
        """
        resolved: list[int] = []
        for identifier in identifiers:
            result = self.resolve(identifier, candidates)
            match = result.match
            if match is None:
                logger.info(
                    "secondary_entity_dropped",
                    identifier=identifier,
                    outcome=result.outcome.value,
                    options=len(result.candidates),
                )
                continue
            if match.id == exclude_id or match.id in resolved:
                continue
            resolved.append(match.id)
        return resolved
