"""Classified measurement routes."""

import logging
from time import perf_counter
from uuid import uuid4

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db import get_db_session
from ..engine import ClassifiedMeasurement, MeasurementOrchestrator
from ..events import build_measurement_classified_event
from ..labels import LabelResolver
from ..observability import get_metrics, log_event
from ..repositories import (
    DirectoryRepository,
    MeasurementRepository,
    RecommendationRepository,
    SeverityTagRepository,
)
from ..schemas import (
    ClassificationItem,
    ClassifiedMeasurementData,
    CreateMeasurementRequest,
    CreateMeasurementResponse,
    ErrorResponse,
    ListMeasurementsResponse,
    MeasurementItem,
    MeasurementResponse,
    RecommendationItem,
    SeverityTagItem,
)

router = APIRouter(tags=["measurements"])
logger = logging.getLogger("muac_monitor")

_settings = get_settings()
_metrics = get_metrics()


def _build_orchestrator(session: Session) -> MeasurementOrchestrator:
    thresholds = _settings.thresholds
    tags = SeverityTagRepository(session)
    recommendations = RecommendationRepository(session)
    return MeasurementOrchestrator(
        measurements=MeasurementRepository(session),
        directory=DirectoryRepository(session),
        resolver=LabelResolver(tag_store=tags, recommendation_store=recommendations, thresholds=thresholds),
        tags=tags,
        recommendations=recommendations,
        thresholds=thresholds,
    )


def _to_classified_data(result: ClassifiedMeasurement) -> ClassifiedMeasurementData:
    return ClassifiedMeasurementData(
        measurement=MeasurementItem.model_validate(result.measurement),
        classification=ClassificationItem(
            severity_code=result.classification.severity_code,
            color=result.classification.color,
            priority=result.classification.priority,
            risk_level=result.risk_level,
        ),
        tag=SeverityTagItem.model_validate(result.tag),
        recommendation=RecommendationItem.model_validate(result.recommendation),
        labels_created=result.labels_created,
    )


@router.post(
    "/measurements",
    response_model=CreateMeasurementResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def create_measurement(
    payload: CreateMeasurementRequest,
    request: Request,
    session: Session = Depends(get_db_session),
) -> CreateMeasurementResponse:
    started = perf_counter()
    trace_id = request.headers.get("x-trace-id", "").strip() or uuid4().hex
    if _settings.metrics_enabled:
        _metrics.record_measurement_request()

    log_event(
        logger,
        "measurement_create_request",
        patient_id=payload.patient_id,
        operator_id=payload.operator_id,
        value=payload.value,
        trace_id=trace_id,
    )

    try:
        result = _build_orchestrator(session).create_classified(
            payload.value,
            payload.note,
            payload.patient_id,
            payload.operator_id,
        )
    except Exception as exc:
        latency_ms = (perf_counter() - started) * 1000.0
        if _settings.metrics_enabled:
            _metrics.record_measurement_error(latency_ms)
        log_event(
            logger,
            "measurement_create_error",
            level=logging.WARNING,
            patient_id=payload.patient_id,
            trace_id=trace_id,
            latency_ms=round(latency_ms, 3),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise

    latency_ms = (perf_counter() - started) * 1000.0
    if _settings.metrics_enabled:
        _metrics.record_measurement_success(latency_ms, result.classification.severity_code, result.labels_created)
        for _ in range(result.conflicts_recovered):
            _metrics.record_label_conflict_recovered()

    event = build_measurement_classified_event(
        measurement_id=result.measurement.id,
        patient_id=result.measurement.patient_id,
        operator_id=result.measurement.operator_id,
        value=result.measurement.value,
        severity_code=result.classification.severity_code,
        priority=result.classification.priority,
        tag_id=result.tag.id,
        recommendation_id=result.recommendation.id,
        measured_at=result.measurement.created_at,
        trace_id=trace_id,
        produced_by=_settings.event_produced_by,
    )
    log_event(
        logger,
        "measurement_classified_event",
        trace_id=trace_id,
        event_id=event["event_id"],
        measurement_id=result.measurement.id,
        severity_code=result.classification.severity_code,
        labels_created=result.labels_created,
        latency_ms=round(latency_ms, 3),
    )

    return CreateMeasurementResponse(data=_to_classified_data(result))


@router.get(
    "/measurements/{measurement_id}",
    response_model=MeasurementResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_measurement(measurement_id: str, session: Session = Depends(get_db_session)) -> MeasurementResponse:
    measurement = _build_orchestrator(session).get_measurement(measurement_id)
    return MeasurementResponse(data=MeasurementItem.model_validate(measurement))


@router.get(
    "/patients/{patient_id}/measurements",
    response_model=ListMeasurementsResponse,
    responses={404: {"model": ErrorResponse}},
)
def list_patient_measurements(
    patient_id: str, session: Session = Depends(get_db_session)
) -> ListMeasurementsResponse:
    measurements = _build_orchestrator(session).list_for_patient(patient_id)
    return ListMeasurementsResponse(data=[MeasurementItem.model_validate(item) for item in measurements])


@router.put(
    "/measurements/{measurement_id}/tag/{tag_id}",
    response_model=MeasurementResponse,
    responses={404: {"model": ErrorResponse}},
)
def assign_tag(measurement_id: str, tag_id: str, session: Session = Depends(get_db_session)) -> MeasurementResponse:
    measurement = _build_orchestrator(session).assign_tag(measurement_id, tag_id)
    return MeasurementResponse(data=MeasurementItem.model_validate(measurement))


@router.put(
    "/measurements/{measurement_id}/recommendation/{recommendation_id}",
    response_model=MeasurementResponse,
    responses={404: {"model": ErrorResponse}},
)
def assign_recommendation(
    measurement_id: str,
    recommendation_id: str,
    session: Session = Depends(get_db_session),
) -> MeasurementResponse:
    measurement = _build_orchestrator(session).assign_recommendation(measurement_id, recommendation_id)
    return MeasurementResponse(data=MeasurementItem.model_validate(measurement))
