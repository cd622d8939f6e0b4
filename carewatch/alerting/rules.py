"""
Rule Evaluator — classify activity events as dangerous and grade severity.

Pure and deterministic. Never raises on bad input: unrecognised activity
types normalise to `unknown`, which is never dangerous.

Thresholds are policy, loaded from settings so operators can tune them
per deployment:
- inactivity threshold (ms): inactivity at or beyond it is dangerous
- fall confidence cut-points: critical / high / medium
- inactivity high multiplier: duration at which inactivity becomes high
"""

from dataclasses import dataclass
from typing import Any, Optional

from carewatch.alerting.schemas import AlertSeverity, AlertType, EventType
from carewatch.config import settings


_ALIASES: dict[str, EventType] = {
    "fall": EventType.FALL,
    "falls": EventType.FALL,
    "inactivity": EventType.INACTIVITY,
    "idle": EventType.INACTIVITY,
    "prolonged_inactivity": EventType.INACTIVITY,
    "normal": EventType.NORMAL,
    "safe": EventType.NORMAL,
}

_ALERT_TYPES: dict[EventType, AlertType] = {
    EventType.FALL: AlertType.FALL,
    EventType.INACTIVITY: AlertType.INACTIVITY,
}


@dataclass(frozen=True)
class RulePolicy:
    inactivity_threshold_ms: int = 180_000
    fall_critical_confidence: float = 0.9
    fall_high_confidence: float = 0.7
    inactivity_high_multiplier: float = 2.0

    @classmethod
    def from_settings(cls) -> "RulePolicy":
        return cls(
            inactivity_threshold_ms=settings.inactivity_threshold_ms,
            fall_critical_confidence=settings.fall_critical_confidence,
            fall_high_confidence=settings.fall_high_confidence,
            inactivity_high_multiplier=settings.inactivity_high_multiplier,
        )


def normalize(raw_type: Any) -> EventType:
    """Case-insensitive mapping of producer labels onto the known event types."""
    if not isinstance(raw_type, str):
        return EventType.UNKNOWN
    return _ALIASES.get(raw_type.strip().lower(), EventType.UNKNOWN)


def alert_type_for(event_type: EventType) -> Optional[AlertType]:
    return _ALERT_TYPES.get(event_type)


def _as_number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number == number else 0.0     # NaN → 0


class RuleEvaluator:
    """
    Classifies normalized events.

    Usage:
        rules = RuleEvaluator(RulePolicy.from_settings())
        kind = rules.normalize("Falls")
        if rules.is_dangerous(kind, duration_ms):
            severity = rules.severity_of(kind, confidence, duration_ms)
    """

    def __init__(self, policy: Optional[RulePolicy] = None):
        self.policy = policy or RulePolicy()

    normalize = staticmethod(normalize)

    def is_dangerous(self, event_type: EventType, duration_ms: Any) -> bool:
        if event_type == EventType.FALL:
            return True
        if event_type == EventType.INACTIVITY:
            return _as_number(duration_ms) >= self.policy.inactivity_threshold_ms
        return False

    def severity_of(
        self,
        event_type: EventType,
        confidence: Any,
        duration_ms: Any,
    ) -> AlertSeverity:
        if event_type == EventType.FALL:
            score = _as_number(confidence)
            if score >= self.policy.fall_critical_confidence:
                return AlertSeverity.CRITICAL
            if score >= self.policy.fall_high_confidence:
                return AlertSeverity.HIGH
            return AlertSeverity.MEDIUM

        if event_type == EventType.INACTIVITY:
            duration = _as_number(duration_ms)
            threshold = self.policy.inactivity_threshold_ms
            if duration >= threshold * self.policy.inactivity_high_multiplier:
                return AlertSeverity.HIGH
            if duration >= threshold:
                return AlertSeverity.MEDIUM
            return AlertSeverity.LOW

        return AlertSeverity.LOW
