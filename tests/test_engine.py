"""Tests for the classified measurement orchestrator."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import make_operator, make_patient, make_region
from muac_monitor.engine import MeasurementOrchestrator
from muac_monitor.errors import ConflictError, NotFoundError, ValidationError
from muac_monitor.labels import LabelResolver
from muac_monitor.models import Measurement, Recommendation, SeverityTag
from muac_monitor.repositories import (
    DirectoryRepository,
    MeasurementRepository,
    RecommendationRepository,
    SeverityTagRepository,
)


def _orchestrator(session: Session) -> MeasurementOrchestrator:
    tags = SeverityTagRepository(session)
    recommendations = RecommendationRepository(session)
    return MeasurementOrchestrator(
        measurements=MeasurementRepository(session),
        directory=DirectoryRepository(session),
        resolver=LabelResolver(tag_store=tags, recommendation_store=recommendations),
        tags=tags,
        recommendations=recommendations,
    )


def _count(session: Session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


@pytest.fixture()
def people(session: Session):
    region = make_region(session, "Norte", "-12.05", "-77.04")
    operator = make_operator(session, "Ana", region)
    return operator, make_patient(session, "Luis", operator), make_patient(session, "Rosa", operator)


@pytest.mark.parametrize("value", [0, -1, 50.01, float("nan")])
def test_invalid_values_are_rejected_without_writes(session: Session, value: float) -> None:
    with pytest.raises(ValidationError):
        _orchestrator(session).create_classified(value, "", "missing-patient", "missing-operator")

    assert _count(session, Measurement) == 0
    assert _count(session, SeverityTag) == 0
    assert _count(session, Recommendation) == 0


@pytest.mark.parametrize("operator_id", [None, "", "   ", "00000000-0000-0000-0000-000000000000"])
def test_missing_operator_is_rejected(session: Session, people, operator_id) -> None:
    _, patient, _ = people
    with pytest.raises(ValidationError):
        _orchestrator(session).create_classified(12.0, "", patient.id, operator_id)
    assert _count(session, Measurement) == 0


def test_unknown_patient_raises_not_found(session: Session, people) -> None:
    operator, _, _ = people
    with pytest.raises(NotFoundError):
        _orchestrator(session).create_classified(12.0, "", "no-such-patient", operator.id)
    assert _count(session, SeverityTag) == 0


def test_severe_value_creates_and_references_both_labels(session: Session, people) -> None:
    operator, patient, _ = people

    result = _orchestrator(session).create_classified(9.8, "thin arms", patient.id, operator.id)

    assert result.classification.severity_code == "MUAC-R1"
    assert result.classification.color == "#dc3545"
    assert result.classification.priority == 3
    assert result.risk_level == "Severe Acute Malnutrition (SAM)"
    assert result.labels_created == 2
    assert result.measurement.tag_id == result.tag.id
    assert result.measurement.recommendation_id == result.recommendation.id
    assert result.tag.severity_code == "MUAC-R1"
    assert result.recommendation.max_value == 11.5

    stored = MeasurementRepository(session).get_by_id(result.measurement.id)
    assert stored.value == 9.8
    assert stored.note == "thin arms"
    assert stored.tag.name == "🚨 RED ALERT"


def test_same_category_reuses_existing_labels(session: Session, people) -> None:
    operator, first_patient, second_patient = people
    orchestrator = _orchestrator(session)

    first = orchestrator.create_classified(13.0, None, first_patient.id, operator.id)
    second = orchestrator.create_classified(13.0, None, second_patient.id, operator.id)

    assert first.labels_created == 2
    assert second.labels_created == 0
    assert first.tag.id == second.tag.id
    assert first.recommendation.id == second.recommendation.id
    assert _count(session, SeverityTag) == 1
    assert _count(session, Recommendation) == 1
    assert second.measurement.note == ""


def test_list_for_patient_returns_newest_first(session: Session, people) -> None:
    operator, patient, _ = people
    orchestrator = _orchestrator(session)
    orchestrator.create_classified(
        12.0, None, patient.id, operator.id, measured_at=datetime(2024, 1, 1, tzinfo=timezone.utc)
    )
    orchestrator.create_classified(
        12.8, None, patient.id, operator.id, measured_at=datetime(2024, 2, 1, tzinfo=timezone.utc)
    )

    values = [item.value for item in orchestrator.list_for_patient(patient.id)]
    assert values == [12.8, 12.0]

    with pytest.raises(NotFoundError):
        orchestrator.list_for_patient("no-such-patient")


def test_assign_tag_and_recommendation(session: Session, people) -> None:
    operator, patient, _ = people
    orchestrator = _orchestrator(session)
    result = orchestrator.create_classified(12.0, None, patient.id, operator.id)
    follow_up = LabelResolver(
        tag_store=SeverityTagRepository(session),
        recommendation_store=RecommendationRepository(session),
    )

    tag = follow_up.resolve_tag("MUAC-S1").label
    recommendation = follow_up.resolve_recommendation("MUAC-S1").label

    updated = orchestrator.assign_tag(result.measurement.id, tag.id)
    assert updated.tag_id == tag.id
    updated = orchestrator.assign_recommendation(result.measurement.id, recommendation.id)
    assert updated.recommendation_id == recommendation.id
    assert updated.tag_id == tag.id

    with pytest.raises(NotFoundError):
        orchestrator.assign_tag(result.measurement.id, "no-such-tag")
    with pytest.raises(NotFoundError):
        orchestrator.assign_recommendation("no-such-measurement", recommendation.id)


def test_classification_recreates_a_deactivated_tag(session: Session, people) -> None:
    operator, first_patient, second_patient = people
    orchestrator = _orchestrator(session)
    first = orchestrator.create_classified(9.8, None, first_patient.id, operator.id)
    first.tag.active = False
    SeverityTagRepository(session).update(first.tag)

    second = orchestrator.create_classified(10.2, None, second_patient.id, operator.id)

    assert second.tag_created
    assert second.tag.id != first.tag.id
    assert second.recommendation.id == first.recommendation.id


def test_measurement_rows_require_an_existing_patient(session: Session, people) -> None:
    operator, _, _ = people
    orphan = Measurement(
        value=12.0,
        note="",
        patient_id="no-such-patient",
        operator_id=operator.id,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    with pytest.raises(ConflictError):
        MeasurementRepository(session).create(orphan)
    assert _count(session, Measurement) == 0
