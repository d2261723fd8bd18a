"""MUAC threshold classification."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Literal


SeverityCode = Literal["MUAC-R1", "MUAC-Y1", "MUAC-G1", "MUAC-S1"]

CODE_SEVERE: SeverityCode = "MUAC-R1"
CODE_MODERATE: SeverityCode = "MUAC-Y1"
CODE_NORMAL: SeverityCode = "MUAC-G1"
CODE_FOLLOW_UP: SeverityCode = "MUAC-S1"

SEVERITY_CODES: tuple[SeverityCode, ...] = (CODE_SEVERE, CODE_MODERATE, CODE_NORMAL, CODE_FOLLOW_UP)

COLOR_RED = "#dc3545"
COLOR_YELLOW = "#ffc107"
COLOR_GREEN = "#28a745"
COLOR_BLUE = "#17a2b8"
COLOR_GRAY = "#6c757d"

PRIORITY_NORMAL = 1
PRIORITY_ATTENTION = 2
PRIORITY_URGENT = 3

MIN_VALID_VALUE = 0.0
MAX_VALID_VALUE = 50.0


@dataclass(frozen=True)
class ClassificationThresholds:
    """Clinical cut-offs in centimetres.

    ``moderate_threshold`` is the displayed upper end of the moderate band;
    classification itself only uses the severe and normal cut-offs.
    """

    severe_threshold: float = 11.5
    moderate_threshold: float = 12.4
    normal_threshold: float = 12.5

    def __post_init__(self) -> None:
        if not 0 < self.severe_threshold <= self.moderate_threshold <= self.normal_threshold:
            raise ValueError(
                "thresholds must satisfy 0 < severe <= moderate <= normal, got "
                f"{self.severe_threshold}/{self.moderate_threshold}/{self.normal_threshold}"
            )


DEFAULT_THRESHOLDS = ClassificationThresholds()


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one MUAC value."""

    severity_code: SeverityCode
    color: str
    priority: int

    @property
    def is_at_risk(self) -> bool:
        return self.severity_code in (CODE_SEVERE, CODE_MODERATE)


def is_valid_value(value: float) -> bool:
    """Return whether ``value`` is a plausible MUAC reading in cm."""

    if value is None or not math.isfinite(value):
        return False
    return MIN_VALID_VALUE < value <= MAX_VALID_VALUE


def classify(value: float, thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS) -> Classification:
    """Map a MUAC value to severity code, color and priority.

    Bounds are checked from the highest down so that values sitting exactly on
    a cut-off land in the better category.
    """

    if value >= thresholds.normal_threshold:
        return Classification(CODE_NORMAL, COLOR_GREEN, PRIORITY_NORMAL)
    if value >= thresholds.severe_threshold:
        return Classification(CODE_MODERATE, COLOR_YELLOW, PRIORITY_ATTENTION)
    return Classification(CODE_SEVERE, COLOR_RED, PRIORITY_URGENT)


def risk_level(value: float, thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS) -> str:
    code = classify(value, thresholds).severity_code
    if code == CODE_SEVERE:
        return "Severe Acute Malnutrition (SAM)"
    if code == CODE_MODERATE:
        return "Moderate Acute Malnutrition (MAM)"
    return "Adequate Nutritional Status"


def color_for_code(severity_code: str) -> str:
    return {
        CODE_SEVERE: COLOR_RED,
        CODE_MODERATE: COLOR_YELLOW,
        CODE_NORMAL: COLOR_GREEN,
        CODE_FOLLOW_UP: COLOR_BLUE,
    }.get(severity_code, COLOR_GRAY)
