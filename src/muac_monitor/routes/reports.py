"""Risk report routes."""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db import get_db_session
from ..exports import XLSX_MEDIA_TYPE, render_risk_patients_xlsx
from ..observability import get_metrics
from ..reports import ReportFilters, RiskAggregator
from ..repositories import ReportRepository
from ..schemas import (
    DashboardReport,
    ErrorResponse,
    OperatorActivityReport,
    PatientsByRegionReport,
    RecentMeasurementsReport,
    RiskCoordinatesReport,
    RiskPatientsReport,
)

router = APIRouter(prefix="/reports", tags=["reports"], responses={400: {"model": ErrorResponse}})

_settings = get_settings()
_metrics = get_metrics()


def get_report_filters(
    region_id: str | None = Query(default=None, min_length=1, max_length=36),
    operator_id: str | None = Query(default=None, min_length=1, max_length=36),
    days: int | None = Query(default=None),
    limit: int | None = Query(default=None),
) -> ReportFilters:
    return ReportFilters(region_id=region_id, operator_id=operator_id, days=days, limit=limit).validate()


def _aggregator(session: Session) -> RiskAggregator:
    if _settings.metrics_enabled:
        _metrics.record_report_request()
    return RiskAggregator(store=ReportRepository(session), thresholds=_settings.thresholds)


@router.get("/dashboard", response_model=DashboardReport)
def dashboard(
    filters: ReportFilters = Depends(get_report_filters),
    session: Session = Depends(get_db_session),
) -> DashboardReport:
    return _aggregator(session).dashboard(filters)


@router.get("/patients-by-region", response_model=PatientsByRegionReport)
def patients_by_region(
    filters: ReportFilters = Depends(get_report_filters),
    session: Session = Depends(get_db_session),
) -> PatientsByRegionReport:
    return _aggregator(session).patients_by_region(filters)


@router.get("/recent-measurements", response_model=RecentMeasurementsReport)
def recent_measurements(
    filters: ReportFilters = Depends(get_report_filters),
    session: Session = Depends(get_db_session),
) -> RecentMeasurementsReport:
    return _aggregator(session).recent_measurements(filters)


@router.get("/risk-patients", response_model=RiskPatientsReport)
def risk_patients(
    filters: ReportFilters = Depends(get_report_filters),
    session: Session = Depends(get_db_session),
) -> RiskPatientsReport:
    return _aggregator(session).risk_patients(filters)


@router.get("/risk-patients-coordinates", response_model=RiskCoordinatesReport)
def risk_patients_coordinates(
    filters: ReportFilters = Depends(get_report_filters),
    session: Session = Depends(get_db_session),
) -> RiskCoordinatesReport:
    return _aggregator(session).risk_coordinates(filters)


@router.get("/operator-activity", response_model=OperatorActivityReport)
def operator_activity(
    filters: ReportFilters = Depends(get_report_filters),
    session: Session = Depends(get_db_session),
) -> OperatorActivityReport:
    return _aggregator(session).operator_activity(filters)


@router.get(
    "/risk-patients/export",
    response_class=Response,
    responses={200: {"content": {XLSX_MEDIA_TYPE: {}}}},
)
def export_risk_patients(
    filters: ReportFilters = Depends(get_report_filters),
    session: Session = Depends(get_db_session),
) -> Response:
    report = _aggregator(session).risk_patients(filters)
    filename = f"risk_patients_{report.generated_at:%Y%m%d_%H%M%S}.xlsx"
    return Response(
        content=render_risk_patients_xlsx(report),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
