"""Tests for MUAC threshold classification."""

import math

import pytest

from muac_monitor.classifier import (
    CODE_MODERATE,
    CODE_NORMAL,
    CODE_SEVERE,
    ClassificationThresholds,
    classify,
    color_for_code,
    is_valid_value,
    risk_level,
)


def test_classify_boundaries_land_in_better_category() -> None:
    assert classify(12.5).severity_code == CODE_NORMAL
    assert classify(12.499).severity_code == CODE_MODERATE
    assert classify(11.5).severity_code == CODE_MODERATE
    assert classify(11.499).severity_code == CODE_SEVERE


def test_classify_returns_color_and_priority() -> None:
    severe = classify(9.8)
    assert (severe.color, severe.priority) == ("#dc3545", 3)
    assert severe.is_at_risk

    moderate = classify(12.0)
    assert (moderate.color, moderate.priority) == ("#ffc107", 2)
    assert moderate.is_at_risk

    normal = classify(13.0)
    assert (normal.color, normal.priority) == ("#28a745", 1)
    assert not normal.is_at_risk


def test_classification_is_monotonic_in_value() -> None:
    order = {CODE_SEVERE: 0, CODE_MODERATE: 1, CODE_NORMAL: 2}
    values = [round(0.1 * step, 1) for step in range(1, 501)]
    ranks = [order[classify(value).severity_code] for value in values]
    assert ranks == sorted(ranks)


def test_is_valid_value_range() -> None:
    assert is_valid_value(0.01)
    assert is_valid_value(50.0)
    assert not is_valid_value(0)
    assert not is_valid_value(-1)
    assert not is_valid_value(50.01)
    assert not is_valid_value(math.nan)
    assert not is_valid_value(math.inf)
    assert not is_valid_value(None)


def test_custom_thresholds_shift_classification() -> None:
    thresholds = ClassificationThresholds(severe_threshold=11.0, moderate_threshold=12.0, normal_threshold=12.0)
    assert classify(12.0, thresholds).severity_code == CODE_NORMAL
    assert classify(11.2, thresholds).severity_code == CODE_MODERATE
    assert classify(10.9, thresholds).severity_code == CODE_SEVERE


def test_thresholds_must_be_ordered() -> None:
    with pytest.raises(ValueError):
        ClassificationThresholds(severe_threshold=12.6, moderate_threshold=12.4, normal_threshold=12.5)
    with pytest.raises(ValueError):
        ClassificationThresholds(severe_threshold=0.0)


def test_risk_level_and_code_colors() -> None:
    assert risk_level(10.0) == "Severe Acute Malnutrition (SAM)"
    assert risk_level(12.0) == "Moderate Acute Malnutrition (MAM)"
    assert risk_level(14.0) == "Adequate Nutritional Status"
    assert color_for_code("MUAC-S1") == "#17a2b8"
    assert color_for_code("unknown") == "#6c757d"
