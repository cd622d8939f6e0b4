"""
Tests for the Rule Evaluator.

Covers:
- Label normalization (aliases, case, junk input)
- Danger classification, including the inactivity threshold boundary
- Severity grading for falls and inactivity
- Policy overrides
"""

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from carewatch.alerting.rules import RuleEvaluator, RulePolicy, alert_type_for, normalize
from carewatch.alerting.schemas import AlertSeverity, AlertType, EventType

THRESHOLD = 180_000


@pytest.fixture
def rules():
    return RuleEvaluator(RulePolicy())


# ── Normalization ──────────────────────────────────────────────────────


class TestNormalize:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("fall", EventType.FALL),
            ("Falls", EventType.FALL),
            ("  FALL ", EventType.FALL),
            ("inactivity", EventType.INACTIVITY),
            ("idle", EventType.INACTIVITY),
            ("Prolonged_Inactivity", EventType.INACTIVITY),
            ("normal", EventType.NORMAL),
            ("safe", EventType.NORMAL),
            ("walking", EventType.UNKNOWN),
            ("", EventType.UNKNOWN),
        ],
    )
    def test_aliases(self, raw, expected):
        assert normalize(raw) == expected

    @pytest.mark.parametrize("raw", [None, 42, 3.5, ["fall"], {"type": "fall"}])
    def test_non_string_is_unknown(self, raw):
        assert normalize(raw) == EventType.UNKNOWN

    def test_alert_type_mapping(self):
        assert alert_type_for(EventType.FALL) == AlertType.FALL
        assert alert_type_for(EventType.INACTIVITY) == AlertType.INACTIVITY
        assert alert_type_for(EventType.NORMAL) is None


# ── Danger ─────────────────────────────────────────────────────────────


class TestIsDangerous:
    @given(duration=st.integers(min_value=0, max_value=THRESHOLD - 1))
    @hyp_settings(max_examples=50)
    def test_inactivity_below_threshold_is_safe(self, duration):
        assert RuleEvaluator().is_dangerous(EventType.INACTIVITY, duration) is False

    @given(duration=st.integers(min_value=THRESHOLD, max_value=10**9))
    @hyp_settings(max_examples=50)
    def test_inactivity_at_or_above_threshold_is_dangerous(self, duration):
        assert RuleEvaluator().is_dangerous(EventType.INACTIVITY, duration) is True

    @given(duration=st.one_of(st.integers(), st.floats(allow_nan=True), st.none(), st.text()))
    @hyp_settings(max_examples=50)
    def test_fall_is_always_dangerous(self, duration):
        assert RuleEvaluator().is_dangerous(EventType.FALL, duration) is True

    @pytest.mark.parametrize("kind", [EventType.NORMAL, EventType.UNKNOWN])
    def test_other_types_never_dangerous(self, rules, kind):
        assert rules.is_dangerous(kind, 10**9) is False

    @pytest.mark.parametrize("duration", [None, "abc", float("nan"), -5])
    def test_bad_duration_is_not_dangerous(self, rules, duration):
        assert rules.is_dangerous(EventType.INACTIVITY, duration) is False


# ── Severity ───────────────────────────────────────────────────────────


class TestSeverity:
    @pytest.mark.parametrize(
        "confidence, expected",
        [
            (0.95, AlertSeverity.CRITICAL),
            (0.9, AlertSeverity.CRITICAL),
            (0.75, AlertSeverity.HIGH),
            (0.7, AlertSeverity.HIGH),
            (0.5, AlertSeverity.MEDIUM),
            (0.0, AlertSeverity.MEDIUM),
        ],
    )
    def test_fall_by_confidence(self, rules, confidence, expected):
        assert rules.severity_of(EventType.FALL, confidence, 0) == expected

    @given(duration=st.integers(min_value=0, max_value=10**8))
    @hyp_settings(max_examples=50)
    def test_fall_ignores_duration(self, duration):
        assert RuleEvaluator().severity_of(EventType.FALL, 0.95, duration) == AlertSeverity.CRITICAL

    @pytest.mark.parametrize(
        "duration, expected",
        [
            (400_000, AlertSeverity.HIGH),
            (360_000, AlertSeverity.HIGH),
            (359_999, AlertSeverity.MEDIUM),
            (180_000, AlertSeverity.MEDIUM),
            (179_999, AlertSeverity.LOW),
        ],
    )
    def test_inactivity_by_duration(self, rules, duration, expected):
        assert rules.severity_of(EventType.INACTIVITY, 0.0, duration) == expected

    def test_unknown_is_low(self, rules):
        assert rules.severity_of(EventType.UNKNOWN, 1.0, 10**9) == AlertSeverity.LOW

    def test_garbage_confidence_grades_medium(self, rules):
        assert rules.severity_of(EventType.FALL, "not-a-number", 0) == AlertSeverity.MEDIUM


class TestPolicy:
    def test_custom_thresholds(self):
        rules = RuleEvaluator(
            RulePolicy(
                inactivity_threshold_ms=60_000,
                fall_critical_confidence=0.99,
                fall_high_confidence=0.5,
                inactivity_high_multiplier=3.0,
            )
        )
        assert rules.is_dangerous(EventType.INACTIVITY, 60_000)
        assert rules.severity_of(EventType.FALL, 0.95, 0) == AlertSeverity.HIGH
        assert rules.severity_of(EventType.FALL, 0.55, 0) == AlertSeverity.HIGH
        assert rules.severity_of(EventType.INACTIVITY, 0, 150_000) == AlertSeverity.MEDIUM
        assert rules.severity_of(EventType.INACTIVITY, 0, 180_000) == AlertSeverity.HIGH

    def test_from_settings_uses_defaults(self):
        policy = RulePolicy.from_settings()
        assert policy.inactivity_threshold_ms == THRESHOLD
        assert policy.fall_critical_confidence == 0.9
