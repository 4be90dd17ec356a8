"""Límites fisiológicos para descartar valores imposibles."""

from __future__ import annotations

GLUCOSE_MIN = 20.0
GLUCOSE_MAX = 600.0
INSULIN_BOLUS_MAX = 100.0
INSULIN_BASAL_RATE_MAX = 10.0
CARBS_MAX = 500.0


def is_valid_glucose(value: float) -> bool:
    """Glucose in mg/dL within sensor/meter range."""
    return GLUCOSE_MIN <= value <= GLUCOSE_MAX


def is_valid_insulin_bolus(value: float) -> bool:
    return 0 < value <= INSULIN_BOLUS_MAX


def is_valid_basal_rate(value: float) -> bool:
    return 0 <= value <= INSULIN_BASAL_RATE_MAX


def is_valid_carbs(value: float) -> bool:
    return 0 < value <= CARBS_MAX
