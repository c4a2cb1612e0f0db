from datetime import date

import pytest

from voice_intake.schemas.extraction import FailureExtraction, PurchaseExtraction, StatedUrgency
from voice_intake.schemas.records import Priority
from voice_intake.services.priority import (
    Criticality,
    PrioritySignals,
    RuleTablePriorityCalculator,
    criticality_from_score,
    detect_safety_keywords,
)


@pytest.fixture
def calculator():
    return RuleTablePriorityCalculator()


class TestRuleTable:

    @pytest.mark.parametrize("criticality", [None, Criticality.LOW, Criticality.CRITICAL])
    @pytest.mark.parametrize("interrupted", [False, True])
    def test_safety_always_wins(self, calculator, criticality, interrupted):
        signals = PrioritySignals(
            criticality=criticality,
            caused_interruption=interrupted,
            safety_keywords=("fire",),
        )
        result = calculator.assess(signals)
        assert result.priority == Priority.P1
        assert "Safety risk detected (fire)" in result.reasons

    def test_interruption_on_critical_asset(self, calculator):
        result = calculator.assess(PrioritySignals(criticality=Criticality.CRITICAL, caused_interruption=True))
        assert result.priority == Priority.P1
        assert result.reasons == ["Production stopped on a critical asset"]

    def test_interruption_alone(self, calculator):
        result = calculator.assess(PrioritySignals(criticality=Criticality.MEDIUM, caused_interruption=True))
        assert result.priority == Priority.P2

    def test_critical_asset_without_interruption(self, calculator):
        result = calculator.assess(PrioritySignals(criticality=Criticality.CRITICAL))
        assert result.priority == Priority.P2

    def test_recurring_on_high_criticality(self, calculator):
        result = calculator.assess(PrioritySignals(criticality=Criticality.HIGH, is_recurring=True))
        assert result.priority == Priority.P2
        assert "Reported as intermittent" not in result.reasons

    def test_recurring_on_low_criticality_is_noted(self, calculator):
        result = calculator.assess(PrioritySignals(criticality=Criticality.LOW, is_recurring=True))
        assert result.priority == Priority.P3
        assert "Reported as intermittent" in result.reasons

    @pytest.mark.parametrize(
        "days, expected",
        [(-1, Priority.P1), (0, Priority.P1), (2, Priority.P1), (3, Priority.P2), (5, Priority.P2), (6, Priority.P3)],
    )
    def test_deadlines(self, calculator, days, expected):
        result = calculator.assess(PrioritySignals(criticality=Criticality.LOW, days_until_needed=days))
        assert result.priority == expected

    def test_no_signals_is_default(self, calculator):
        result = calculator.assess(PrioritySignals())
        assert result.priority == Priority.P3
        assert result.reasons == ["No urgency signals", "Asset criticality unknown"]

    def test_custom_default(self):
        calculator = RuleTablePriorityCalculator(rules=(), default=Priority.P2)
        assert calculator.assess(PrioritySignals(caused_interruption=True)).priority == Priority.P2


class TestSignals:

    @pytest.mark.parametrize(
        "score, expected",
        [(None, None), (0, Criticality.LOW), (40, Criticality.MEDIUM), (60, Criticality.HIGH), (80, Criticality.CRITICAL)],
    )
    def test_criticality_tiers(self, score, expected):
        assert criticality_from_score(score) == expected

    def test_safety_keywords_are_accent_insensitive(self):
        assert detect_safety_keywords("Riesgo de INCENDIO", None) == ["riesgo", "incendio"]
        assert detect_safety_keywords("Replace the gasket") == []

    def test_from_failure_extraction(self):
        extraction = FailureExtraction(
            primary_identifier="Pump L3",
            title="Pump smoking",
            description="Smoke coming out of the motor",
            caused_downtime=True,
            is_intermittent=True,
        )
        signals = PrioritySignals.from_extraction(extraction, criticality_score=65)

        assert signals.caused_interruption is True
        assert signals.is_recurring is True
        assert signals.criticality == Criticality.HIGH
        assert "smoke" in signals.safety_keywords
        assert signals.days_until_needed is None

    def test_from_purchase_extraction(self):
        extraction = PurchaseExtraction(
            primary_identifier="Press A",
            title="Oil",
            requested_by_date="2026-03-14",
            stated_urgency=StatedUrgency.HIGH,
        )
        signals = PrioritySignals.from_extraction(extraction, today=date(2026, 3, 10))

        assert signals.days_until_needed == 4
        assert signals.caused_interruption is False
        assert signals.criticality is None
