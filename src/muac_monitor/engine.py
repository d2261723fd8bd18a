"""Measurement orchestration: validate, classify, label and persist."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol
import uuid

from .classifier import (
    DEFAULT_THRESHOLDS,
    MAX_VALID_VALUE,
    Classification,
    ClassificationThresholds,
    classify,
    is_valid_value,
    risk_level,
)
from .errors import ValidationError
from .labels import LabelResolver
from .models import Measurement, Operator, Patient, Recommendation, SeverityTag


class MeasurementStore(Protocol):
    def create(self, measurement: Measurement) -> Measurement: ...

    def get_by_id(self, measurement_id: str) -> Measurement: ...

    def list_for_patient(self, patient_id: str) -> list[Measurement]: ...

    def update_labels(
        self,
        measurement: Measurement,
        *,
        tag_id: str | None = None,
        recommendation_id: str | None = None,
    ) -> Measurement: ...


class Directory(Protocol):
    def get_patient(self, patient_id: str) -> Patient: ...

    def get_operator(self, operator_id: str) -> Operator: ...


class LabelLookup(Protocol):
    def get_by_id(self, label_id: str): ...


@dataclass(frozen=True)
class ClassifiedMeasurement:
    """Stored measurement together with everything resolved for it."""

    measurement: Measurement
    classification: Classification
    risk_level: str
    tag: SeverityTag
    recommendation: Recommendation
    tag_created: bool
    recommendation_created: bool
    conflicts_recovered: int

    @property
    def labels_created(self) -> int:
        return int(self.tag_created) + int(self.recommendation_created)


class MeasurementOrchestrator:
    """Creates classified measurements with automatically assigned labels."""

    def __init__(
        self,
        *,
        measurements: MeasurementStore,
        directory: Directory,
        resolver: LabelResolver,
        tags: LabelLookup,
        recommendations: LabelLookup,
        thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS,
    ) -> None:
        self._measurements = measurements
        self._directory = directory
        self._resolver = resolver
        self._tags = tags
        self._recommendations = recommendations
        self._thresholds = thresholds

    def create_classified(
        self,
        value: float,
        note: str | None,
        patient_id: str | None,
        operator_id: str | None,
        *,
        measured_at: datetime | None = None,
    ) -> ClassifiedMeasurement:
        """Validate, classify and store one measurement.

        Input is fully validated before the first store access, so a rejected
        request never writes anything. Resolving the labels may create up to
        two label rows on first use of a severity code.
        """

        self.validate(value, patient_id, operator_id)

        self._directory.get_patient(patient_id)
        self._directory.get_operator(operator_id)

        classification = classify(value, self._thresholds)
        tag = self._resolver.resolve_tag(classification)
        recommendation = self._resolver.resolve_recommendation(classification, value)

        now = datetime.now(tz=timezone.utc)
        measurement = Measurement(
            id=str(uuid.uuid4()),
            value=value,
            note=note or "",
            patient_id=patient_id,
            operator_id=operator_id,
            tag_id=tag.label.id,
            recommendation_id=recommendation.label.id,
            created_at=measured_at or now,
            updated_at=now,
        )
        stored = self._measurements.create(measurement)

        return ClassifiedMeasurement(
            measurement=stored,
            classification=classification,
            risk_level=risk_level(value, self._thresholds),
            tag=tag.label,
            recommendation=recommendation.label,
            tag_created=tag.created,
            recommendation_created=recommendation.created,
            conflicts_recovered=int(tag.recovered_conflict) + int(recommendation.recovered_conflict),
        )

    @staticmethod
    def validate(value: float, patient_id: str | None, operator_id: str | None) -> None:
        if not is_valid_value(value):
            raise ValidationError(f"invalid MUAC value {value!r}: must be > 0 and <= {MAX_VALID_VALUE:g} cm")
        if not operator_id or not operator_id.strip() or _is_nil_uuid(operator_id):
            raise ValidationError("operator_id is required")
        if not patient_id or not patient_id.strip() or _is_nil_uuid(patient_id):
            raise ValidationError("patient_id is required")

    def get_measurement(self, measurement_id: str) -> Measurement:
        return self._measurements.get_by_id(measurement_id)

    def list_for_patient(self, patient_id: str) -> list[Measurement]:
        self._directory.get_patient(patient_id)
        return self._measurements.list_for_patient(patient_id)

    def assign_tag(self, measurement_id: str, tag_id: str) -> Measurement:
        measurement = self._measurements.get_by_id(measurement_id)
        self._tags.get_by_id(tag_id)
        return self._measurements.update_labels(measurement, tag_id=tag_id)

    def assign_recommendation(self, measurement_id: str, recommendation_id: str) -> Measurement:
        measurement = self._measurements.get_by_id(measurement_id)
        self._recommendations.get_by_id(recommendation_id)
        return self._measurements.update_labels(measurement, recommendation_id=recommendation_id)


def _is_nil_uuid(value: str) -> bool:
    try:
        return uuid.UUID(value).int == 0
    except ValueError:
        return False
