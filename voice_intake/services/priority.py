"""
Priority Calculator.

Derives a P1..P3 priority from weak, independent signals using an
explicit rule table evaluated top-down (first match wins). Each
assessment carries the reasons that drove it, for audit.

The orchestrator only depends on the ``PriorityPolicy`` protocol, so
sites can plug in their own rules.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import IntEnum
from typing import Callable, Optional, Protocol

from voice_intake.schemas.extraction import ExtractedDataBase
from voice_intake.schemas.records import Priority, PriorityAssessment
from voice_intake.text_utils import fold_text

# Matched as folded substrings ("electric" also hits "eléctrico")
SAFETY_KEYWORDS: tuple[str, ...] = (
    "peligro", "seguridad", "riesgo", "lesion", "accidente", "incendio",
    "fuga de gas", "gas leak", "electric", "shock", "atrapamiento", "quemadura",
    "danger", "safety", "hazard", "injur", "fire", "smoke", "humo",
    "burn", "trapped", "explos",
)

URGENT_DEADLINE_DAYS = 2
SOON_DEADLINE_DAYS = 5


class Criticality(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


def criticality_from_score(score: Optional[int]) -> Optional[Criticality]:
    """Map a 0-100 asset criticality score to a tier. Unknown stays unknown."""
    if score is None:
        return None
    if score >= 80:
        return Criticality.CRITICAL
    if score >= 60:
        return Criticality.HIGH
    if score >= 40:
        return Criticality.MEDIUM
    return Criticality.LOW


def detect_safety_keywords(*texts: str | None) -> list[str]:
    haystack = fold_text(" ".join(t for t in texts if t))
    return [kw for kw in SAFETY_KEYWORDS if kw in haystack]


@dataclass(frozen=True)
class PrioritySignals:
    criticality: Optional[Criticality] = None
    caused_interruption: bool = False
    is_recurring: bool = False
    safety_keywords: tuple[str, ...] = ()
    days_until_needed: Optional[int] = None

    @property
    def safety_hit(self) -> bool:
        return bool(self.safety_keywords)

    @classmethod
    def from_extraction(
        cls,
        extraction: ExtractedDataBase,
        criticality_score: Optional[int] = None,
        today: Optional[date] = None,
    ) -> "PrioritySignals":
        days = None
        needed_by = extraction.needed_by
        if needed_by is not None:
            days = (needed_by - (today or date.today())).days
        return cls(
            criticality=criticality_from_score(criticality_score),
            caused_interruption=extraction.caused_interruption,
            is_recurring=extraction.is_recurring,
            safety_keywords=tuple(detect_safety_keywords(extraction.title, extraction.description)),
            days_until_needed=days,
        )


class PriorityPolicy(Protocol):
    def assess(self, signals: PrioritySignals) -> PriorityAssessment: ...


@dataclass(frozen=True)
class PriorityRule:
    name: str
    priority: Priority
    applies: Callable[[PrioritySignals], bool]
    reason: Callable[[PrioritySignals], str]


def _deadline_within(days: int) -> Callable[[PrioritySignals], bool]:
    return lambda s: s.days_until_needed is not None and s.days_until_needed <= days


DEFAULT_RULES: tuple[PriorityRule, ...] = (
    PriorityRule(
        "safety",
        Priority.P1,
        lambda s: s.safety_hit,
        lambda s: f"Safety risk detected ({', '.join(s.safety_keywords)})",
    ),
    PriorityRule(
        "interruption_on_critical_asset",
        Priority.P1,
        lambda s: s.caused_interruption and s.criticality == Criticality.CRITICAL,
        lambda s: "Production stopped on a critical asset",
    ),
    PriorityRule(
        "urgent_deadline",
        Priority.P1,
        _deadline_within(URGENT_DEADLINE_DAYS),
        lambda s: f"Needed within {max(s.days_until_needed or 0, 0)} day(s)",
    ),
    PriorityRule(
        "interruption",
        Priority.P2,
        lambda s: s.caused_interruption,
        lambda s: "Production stopped",
    ),
    PriorityRule(
        "critical_asset",
        Priority.P2,
        lambda s: s.criticality == Criticality.CRITICAL,
        lambda s: "Critical asset",
    ),
    PriorityRule(
        "recurring_on_important_asset",
        Priority.P2,
        lambda s: s.is_recurring and s.criticality is not None and s.criticality >= Criticality.HIGH,
        lambda s: "Recurring problem on a high-criticality asset",
    ),
    PriorityRule(
        "soon_deadline",
        Priority.P2,
        _deadline_within(SOON_DEADLINE_DAYS),
        lambda s: f"Needed within {s.days_until_needed} days",
    ),
)


class RuleTablePriorityCalculator:
    """Default ``PriorityPolicy``: first matching rule wins, else P3."""

    def __init__(
        self,
        rules: tuple[PriorityRule, ...] = DEFAULT_RULES,
        default: Priority = Priority.P3,
    ) -> None:
        self.rules = rules
        self.default = default

    def assess(self, signals: PrioritySignals) -> PriorityAssessment:
        reasons: list[str] = []
        priority = self.default
        fired: str | None = None

        for rule in self.rules:
            if rule.applies(signals):
                priority = rule.priority
                fired = rule.name
                reasons.append(rule.reason(signals))
                break
        else:
            reasons.append("No urgency signals")

        if signals.criticality is None:
            reasons.append("Asset criticality unknown")
        if signals.is_recurring and fired != "recurring_on_important_asset":
            reasons.append("Reported as intermittent")

        return PriorityAssessment(priority=priority, reasons=reasons)
