"""
Data models for the equipment catalog and entity matching results.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class EntityCandidate(BaseModel):
    """Read-only catalog projection the resolver matches against."""

    id: int
    name: str
    nickname: Optional[str] = None
    aliases: list[str] = Field(default_factory=list)
    parent_name: Optional[str] = None  # area / sector grouping
    criticality_score: Optional[int] = Field(default=None, ge=0, le=100)

    def match_fields(self) -> list[str]:
        """All names this candidate can be referred to by."""
        fields = [self.name]
        if self.nickname:
            fields.append(self.nickname)
        fields.extend(a for a in self.aliases if a)
        return fields


class MatchOutcome(str, Enum):
    UNIQUE = "unique"
    NONE = "none"
    AMBIGUOUS = "ambiguous"


class MatchResult(BaseModel):
    """Three-way resolver output. Only UNIQUE may proceed without a human."""

    identifier: str
    outcome: MatchOutcome
    candidates: list[EntityCandidate] = Field(default_factory=list)
    method: Optional[str] = None  # exact | substring | similarity
    score: Optional[float] = None

    @property
    def match(self) -> EntityCandidate | None:
        if self.outcome == MatchOutcome.UNIQUE:
            return self.candidates[0]
        return None

    @property
    def is_unique(self) -> bool:
        return self.outcome == MatchOutcome.UNIQUE
