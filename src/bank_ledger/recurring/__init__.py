"""Recurring charge and subscription detection."""

from .detector import (
    DetectionResult,
    RecurringDetector,
    RecurringMatch,
    amounts_similar,
    classify_gap,
    descriptions_similar,
    detect_recurring_pattern,
    group_key,
    infer_service_month,
    normalize_description,
)

__all__ = [
    "DetectionResult",
    "RecurringDetector",
    "RecurringMatch",
    "amounts_similar",
    "classify_gap",
    "descriptions_similar",
    "detect_recurring_pattern",
    "group_key",
    "infer_service_month",
    "normalize_description",
]
