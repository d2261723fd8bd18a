"""Risk aggregation over each patient's latest measurement."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .classifier import (
    CODE_MODERATE,
    CODE_NORMAL,
    CODE_SEVERE,
    DEFAULT_THRESHOLDS,
    ClassificationThresholds,
    classify,
)
from .errors import ValidationError
from .proximity import parse_point
from .repositories import MeasurementSnapshot, OperatorSnapshot
from .schemas import (
    DashboardReport,
    OperatorActivityReport,
    OperatorStats,
    PatientsByRegionReport,
    RecentMeasurement,
    RecentMeasurementsReport,
    RegionData,
    RiskCoordinatesReport,
    RiskPatient,
    RiskPatientsReport,
    StatusCount,
    StatusDistribution,
)

MAX_WINDOW_DAYS = 365
MAX_LIMIT = 1000
DEFAULT_WINDOW_DAYS = 30
RECENT_WINDOW_DAYS = 7
RECENT_LIMIT = 50
RISK_LIMIT = 100
ACTIVITY_WEEK_DAYS = 7


@dataclass(frozen=True)
class ReportFilters:
    """Read-side report scope.

    ``days=None`` selects the report's own default window and ``days=0``
    disables windowing. ``limit=None`` or ``0`` selects the report default.
    """

    region_id: str | None = None
    operator_id: str | None = None
    days: int | None = None
    limit: int | None = None

    def validate(self) -> "ReportFilters":
        if self.days is not None:
            if self.days < 0:
                raise ValidationError("days filter cannot be negative")
            if self.days > MAX_WINDOW_DAYS:
                raise ValidationError(f"days filter cannot be greater than {MAX_WINDOW_DAYS}")
        if self.limit is not None:
            if self.limit < 0:
                raise ValidationError("limit cannot be negative")
            if self.limit > MAX_LIMIT:
                raise ValidationError(f"limit cannot be greater than {MAX_LIMIT}")
        return self

    def window_days(self, default: int | None) -> int | None:
        days = default if self.days is None else self.days
        return days or None

    def effective_limit(self, default: int | None) -> int | None:
        return self.limit or default


class ReportStore(Protocol):
    def measurement_snapshots(
        self,
        *,
        region_id: str | None = None,
        operator_id: str | None = None,
        by_measuring_operator: bool = False,
    ) -> list[MeasurementSnapshot]: ...

    def count_patients(self, *, region_id: str | None = None, operator_id: str | None = None) -> int: ...

    def count_operators(self, *, region_id: str | None = None, operator_id: str | None = None) -> int: ...

    def list_regions(self, *, region_id: str | None = None) -> list: ...

    def list_operators(
        self, *, region_id: str | None = None, operator_id: str | None = None
    ) -> list[OperatorSnapshot]: ...

    def patient_counts_by_operator(self) -> dict[str, int]: ...


def percentage(count: int, total: int) -> float:
    if total == 0:
        return 0.0
    return 100.0 * count / total


def latest_per_patient(snapshots: Iterable[MeasurementSnapshot]) -> list[MeasurementSnapshot]:
    """Keep only the most recent measurement of every patient."""

    latest: dict[str, MeasurementSnapshot] = {}
    for snapshot in snapshots:
        current = latest.get(snapshot.patient_id)
        if current is None or (snapshot.created_at, snapshot.measurement_id) > (
            current.created_at,
            current.measurement_id,
        ):
            latest[snapshot.patient_id] = snapshot
    return list(latest.values())


class RiskAggregator:
    """Builds dashboard and risk reports for health workers."""

    def __init__(
        self,
        *,
        store: ReportStore,
        thresholds: ClassificationThresholds = DEFAULT_THRESHOLDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._thresholds = thresholds
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def distribution(self, snapshots: Iterable[MeasurementSnapshot]) -> StatusDistribution:
        counts = {CODE_NORMAL: 0, CODE_MODERATE: 0, CODE_SEVERE: 0}
        for snapshot in snapshots:
            counts[classify(snapshot.value, self._thresholds).severity_code] += 1
        total = sum(counts.values())
        return StatusDistribution(
            normal=StatusCount(total=counts[CODE_NORMAL], percentage=percentage(counts[CODE_NORMAL], total)),
            moderate=StatusCount(
                total=counts[CODE_MODERATE], percentage=percentage(counts[CODE_MODERATE], total)
            ),
            severe=StatusCount(total=counts[CODE_SEVERE], percentage=percentage(counts[CODE_SEVERE], total)),
        )

    def dashboard(self, filters: ReportFilters | None = None) -> DashboardReport:
        filters = (filters or ReportFilters()).validate()
        now = self._clock()
        since = _since(now, filters.window_days(DEFAULT_WINDOW_DAYS))

        snapshots = self._store.measurement_snapshots(region_id=filters.region_id, operator_id=filters.operator_id)
        windowed = [item for item in snapshots if _in_window(item, since)]
        latest = [item for item in latest_per_patient(snapshots) if _in_window(item, since)]
        distribution = self.distribution(latest)

        return DashboardReport(
            total_patients=self._store.count_patients(region_id=filters.region_id, operator_id=filters.operator_id),
            total_measurements=len(windowed),
            patients_at_risk=distribution.moderate.total + distribution.severe.total,
            total_operators=self._store.count_operators(
                region_id=filters.region_id, operator_id=filters.operator_id
            ),
            status_distribution=distribution,
            generated_at=now,
        )

    def patients_by_region(self, filters: ReportFilters | None = None) -> PatientsByRegionReport:
        filters = (filters or ReportFilters()).validate()
        now = self._clock()
        since = _since(now, filters.window_days(DEFAULT_WINDOW_DAYS))

        snapshots = self._store.measurement_snapshots(region_id=filters.region_id, operator_id=filters.operator_id)
        latest = [item for item in latest_per_patient(snapshots) if _in_window(item, since)]

        by_region: dict[str, list[MeasurementSnapshot]] = {}
        for snapshot in latest:
            if snapshot.region_id is not None:
                by_region.setdefault(snapshot.region_id, []).append(snapshot)

        rows = []
        for region in self._store.list_regions(region_id=filters.region_id):
            members = by_region.get(region.id, [])
            distribution = self.distribution(members)
            rows.append(
                RegionData(
                    region_id=region.id,
                    region_name=region.name,
                    total=len(members),
                    at_risk=distribution.moderate.total + distribution.severe.total,
                    distribution=distribution,
                )
            )
        return PatientsByRegionReport(region_data=rows, generated_at=now)

    def recent_measurements(self, filters: ReportFilters | None = None) -> RecentMeasurementsReport:
        filters = (filters or ReportFilters()).validate()
        now = self._clock()
        since = _since(now, filters.window_days(RECENT_WINDOW_DAYS))
        limit = filters.effective_limit(RECENT_LIMIT)

        snapshots = self._store.measurement_snapshots(
            region_id=filters.region_id,
            operator_id=filters.operator_id,
            by_measuring_operator=True,
        )
        recent = sorted(
            (item for item in snapshots if _in_window(item, since)),
            key=lambda item: (item.created_at, item.measurement_id),
            reverse=True,
        )[:limit]

        measurements = []
        for item in recent:
            classification = classify(item.value, self._thresholds)
            measurements.append(
                RecentMeasurement(
                    id=item.measurement_id,
                    patient_id=item.patient_id,
                    patient_name=item.patient_name,
                    patient_age=item.patient_age,
                    value=item.value,
                    severity_code=classification.severity_code,
                    color=classification.color,
                    operator_name=item.operator_name,
                    region_name=item.region_name,
                    created_at=item.created_at,
                )
            )
        return RecentMeasurementsReport(measurements=measurements, generated_at=now)

    def risk_patients(self, filters: ReportFilters | None = None) -> RiskPatientsReport:
        filters = (filters or ReportFilters()).validate()
        now = self._clock()

        severe: list[RiskPatient] = []
        moderate: list[RiskPatient] = []
        for item in self._at_risk(filters, now):
            patient = RiskPatient(
                patient_id=item.patient_id,
                patient_name=item.patient_name,
                age=item.patient_age,
                gender=item.patient_gender,
                value=item.value,
                severity_code=classify(item.value, self._thresholds).severity_code,
                region_name=item.region_name,
                operator_name=item.operator_name,
                last_measure=item.created_at,
                days_ago=max((now - item.created_at).days, 0),
            )
            if item.value < self._thresholds.severe_threshold:
                severe.append(patient)
            else:
                moderate.append(patient)
        return RiskPatientsReport(severe_cases=severe, moderate_cases=moderate, generated_at=now)

    def risk_coordinates(self, filters: ReportFilters | None = None) -> RiskCoordinatesReport:
        """Region coordinates of at-risk patients, one pair per patient."""

        filters = (filters or ReportFilters()).validate()
        now = self._clock()
        coordinates = []
        for item in self._at_risk(filters, now):
            point = parse_point(item.region_latitude, item.region_longitude)
            if point is not None:
                coordinates.append(point)
        return RiskCoordinatesReport(coordinates=coordinates, generated_at=now)

    def operator_activity(self, filters: ReportFilters | None = None) -> OperatorActivityReport:
        filters = (filters or ReportFilters()).validate()
        now = self._clock()
        since = _since(now, filters.window_days(None))
        week_start = now - timedelta(days=ACTIVITY_WEEK_DAYS)

        snapshots = self._store.measurement_snapshots(
            region_id=filters.region_id,
            operator_id=filters.operator_id,
            by_measuring_operator=True,
        )
        by_operator: dict[str, list[MeasurementSnapshot]] = {}
        for snapshot in snapshots:
            by_operator.setdefault(snapshot.operator_id, []).append(snapshot)
        patient_counts = self._store.patient_counts_by_operator()

        stats = []
        for operator in self._store.list_operators(region_id=filters.region_id, operator_id=filters.operator_id):
            taken = by_operator.get(operator.operator_id, [])
            windowed = [item for item in taken if _in_window(item, since)]
            stats.append(
                OperatorStats(
                    operator_id=operator.operator_id,
                    operator_name=operator.operator_name,
                    region_name=operator.region_name,
                    total_patients=patient_counts.get(operator.operator_id, 0),
                    total_measurements=len(windowed),
                    last_activity=max((item.created_at for item in taken), default=None),
                    measurements_this_week=sum(1 for item in taken if item.created_at >= week_start),
                )
            )

        stats.sort(key=lambda item: (-item.total_measurements, item.operator_name))
        limit = filters.effective_limit(None)
        if limit:
            stats = stats[:limit]
        return OperatorActivityReport(operators=stats, generated_at=now)

    def _at_risk(self, filters: ReportFilters, now: datetime) -> list[MeasurementSnapshot]:
        since = _since(now, filters.window_days(None))
        snapshots = self._store.measurement_snapshots(region_id=filters.region_id, operator_id=filters.operator_id)
        at_risk = [
            item
            for item in latest_per_patient(snapshots)
            if item.value < self._thresholds.normal_threshold and _in_window(item, since)
        ]
        at_risk.sort(key=lambda item: (item.value, item.created_at))
        return at_risk[: filters.effective_limit(RISK_LIMIT)]


def _since(now: datetime, days: int | None) -> datetime | None:
    if days is None:
        return None
    return now - timedelta(days=days)


def _in_window(snapshot: MeasurementSnapshot, since: datetime | None) -> bool:
    return since is None or snapshot.created_at >= since
