"""Pydantic schemas for HTTP request and response models."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .classifier import SeverityCode


class CreateMeasurementRequest(BaseModel):
    """Raw observation submitted by a health worker.

    Range checks on ``value`` happen in the orchestrator so that rejected
    values surface as domain validation errors.
    """

    value: float
    note: str | None = Field(default=None, max_length=2000)
    patient_id: str = Field(min_length=1, max_length=36)
    operator_id: str = Field(min_length=1, max_length=36)


class SeverityTagItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    color: str
    severity_code: str | None
    priority: int
    active: bool


class RecommendationItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    body: str
    threshold_text: str
    min_value: float | None
    max_value: float | None
    priority: int
    color: str
    severity_code: str | None
    active: bool


class MeasurementItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    value: float
    note: str
    patient_id: str
    operator_id: str
    tag_id: str | None
    recommendation_id: str | None
    created_at: datetime
    tag: SeverityTagItem | None = None
    recommendation: RecommendationItem | None = None


class ClassificationItem(BaseModel):
    severity_code: SeverityCode
    color: str
    priority: int
    risk_level: str


class ClassifiedMeasurementData(BaseModel):
    measurement: MeasurementItem
    classification: ClassificationItem
    tag: SeverityTagItem
    recommendation: RecommendationItem
    labels_created: int = Field(ge=0, le=2)


class CreateMeasurementResponse(BaseModel):
    data: ClassifiedMeasurementData


class MeasurementResponse(BaseModel):
    data: MeasurementItem


class ListMeasurementsResponse(BaseModel):
    data: list[MeasurementItem]


class StatusCount(BaseModel):
    total: int = 0
    percentage: float = 0.0


class StatusDistribution(BaseModel):
    normal: StatusCount = Field(default_factory=StatusCount)
    moderate: StatusCount = Field(default_factory=StatusCount)
    severe: StatusCount = Field(default_factory=StatusCount)


class DashboardReport(BaseModel):
    total_patients: int
    total_measurements: int
    patients_at_risk: int
    total_operators: int
    status_distribution: StatusDistribution
    generated_at: datetime


class RegionData(BaseModel):
    region_id: str
    region_name: str
    total: int
    at_risk: int
    distribution: StatusDistribution


class PatientsByRegionReport(BaseModel):
    region_data: list[RegionData]
    generated_at: datetime


class RecentMeasurement(BaseModel):
    id: str
    patient_id: str
    patient_name: str
    patient_age: int | None
    value: float
    severity_code: SeverityCode
    color: str
    operator_name: str
    region_name: str | None
    created_at: datetime


class RecentMeasurementsReport(BaseModel):
    measurements: list[RecentMeasurement]
    generated_at: datetime


class RiskPatient(BaseModel):
    patient_id: str
    patient_name: str
    age: int | None
    gender: str | None
    value: float
    severity_code: SeverityCode
    region_name: str | None
    operator_name: str
    last_measure: datetime
    days_ago: int


class RiskPatientsReport(BaseModel):
    severe_cases: list[RiskPatient]
    moderate_cases: list[RiskPatient]
    generated_at: datetime


class OperatorStats(BaseModel):
    operator_id: str
    operator_name: str
    region_name: str | None
    total_patients: int
    total_measurements: int
    last_activity: datetime | None
    measurements_this_week: int


class OperatorActivityReport(BaseModel):
    operators: list[OperatorStats]
    generated_at: datetime


class RiskCoordinatesReport(BaseModel):
    coordinates: list[tuple[float, float]]
    generated_at: datetime


class NearbyLocationsRequest(BaseModel):
    """Coordinates arrive as strings, the way locations store them."""

    latitude: str = Field(min_length=1, max_length=100)
    longitude: str = Field(min_length=1, max_length=100)
    radius_km: float = 0.0


class LocationItem(BaseModel):
    id: str
    name: str
    latitude: str
    longitude: str
    description: str | None
    is_medical_center: bool
    phone_medical_center: str | None
    distance_km: float


class NearbyLocationsResponse(BaseModel):
    data: list[LocationItem]
    radius_km: float


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    service: str
    version: str
    timestamp: datetime


class ErrorBody(BaseModel):
    code: str
    message: str
    trace_id: str


class ErrorResponse(BaseModel):
    error: ErrorBody
