"""Persistence operations for the MUAC monitoring context."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .errors import ConflictError, NotFoundError
from .models import Measurement, Operator, Patient, Recommendation, Region, SeverityTag


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps read back from SQLite."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _commit_new(session: Session, row, message: str):
    session.add(row)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(message) from exc

    session.refresh(row)
    return row


class MeasurementRepository:
    """Repository for classified measurements."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, measurement: Measurement) -> Measurement:
        return _commit_new(self.session, measurement, "Measurement already exists or violates constraints")

    def get_by_id(self, measurement_id: str) -> Measurement:
        stmt: Select[tuple[Measurement]] = (
            select(Measurement)
            .options(joinedload(Measurement.tag), joinedload(Measurement.recommendation))
            .where(Measurement.id == measurement_id)
        )
        measurement = self.session.scalar(stmt)
        if measurement is None:
            raise NotFoundError("Measurement not found")
        return measurement

    def list_for_patient(self, patient_id: str) -> list[Measurement]:
        stmt = (
            select(Measurement)
            .options(joinedload(Measurement.tag), joinedload(Measurement.recommendation))
            .where(Measurement.patient_id == patient_id)
            .order_by(Measurement.created_at.desc())
        )
        return list(self.session.scalars(stmt))

    def list_all(self) -> list[Measurement]:
        return list(self.session.scalars(select(Measurement).order_by(Measurement.created_at.desc())))

    def update_labels(
        self,
        measurement: Measurement,
        *,
        tag_id: str | None = None,
        recommendation_id: str | None = None,
    ) -> Measurement:
        if tag_id is not None:
            measurement.tag_id = tag_id
        if recommendation_id is not None:
            measurement.recommendation_id = recommendation_id
        measurement.updated_at = datetime.now(tz=timezone.utc)
        self.session.add(measurement)
        self.session.commit()
        self.session.refresh(measurement)
        return measurement


class DirectoryRepository:
    """Read access to the patients and operators owned by the CRUD layer."""

    def __init__(self, session: Session):
        self.session = session

    def get_patient(self, patient_id: str) -> Patient:
        patient = self.session.get(Patient, patient_id)
        if patient is None:
            raise NotFoundError("Patient not found")
        return patient

    def get_operator(self, operator_id: str) -> Operator:
        operator = self.session.get(Operator, operator_id)
        if operator is None:
            raise NotFoundError("Operator not found")
        return operator


class _LabelRepository:
    model: type[SeverityTag] | type[Recommendation]
    label_kind: str

    def __init__(self, session: Session):
        self.session = session

    def create(self, label):
        return _commit_new(self.session, label, f"{self.label_kind} already exists or violates constraints")

    def get_by_id(self, label_id: str):
        label = self.session.get(self.model, label_id)
        if label is None:
            raise NotFoundError(f"{self.label_kind} not found")
        return label

    def list_active(self) -> list:
        stmt = select(self.model).where(self.model.active.is_(True)).order_by(self.model.created_at)
        return list(self.session.scalars(stmt))

    def list_active_by_code(self, severity_code: str) -> list:
        stmt = (
            select(self.model)
            .where(self.model.active.is_(True), self.model.severity_code == severity_code)
            .order_by(self.model.priority.desc(), self.model.created_at)
        )
        return list(self.session.scalars(stmt))

    def update(self, label):
        self.session.add(label)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"{self.label_kind} update violates constraints") from exc
        self.session.refresh(label)
        return label


class SeverityTagRepository(_LabelRepository):
    """Repository for severity tags."""

    model = SeverityTag
    label_kind = "Severity tag"


class RecommendationRepository(_LabelRepository):
    """Repository for recommendations."""

    model = Recommendation
    label_kind = "Recommendation"


class LocationRepository:
    """Read access to registered regions used as locations."""

    def __init__(self, session: Session):
        self.session = session

    def list_all(self) -> list[Region]:
        return list(self.session.scalars(select(Region).order_by(Region.name)))


@dataclass(frozen=True)
class MeasurementSnapshot:
    """Flattened measurement row consumed by the risk aggregator."""

    measurement_id: str
    value: float
    created_at: datetime
    patient_id: str
    patient_name: str
    patient_age: int | None
    patient_gender: str | None
    operator_id: str
    operator_name: str
    region_id: str | None
    region_name: str | None
    region_latitude: str | None
    region_longitude: str | None


@dataclass(frozen=True)
class OperatorSnapshot:
    operator_id: str
    operator_name: str
    region_id: str | None
    region_name: str | None


class ReportRepository:
    """Read-only queries backing the risk reports.

    A patient belongs to the region of the operator that registered it, so
    region filters are applied through the patient's operator.
    """

    def __init__(self, session: Session):
        self.session = session

    def measurement_snapshots(
        self,
        *,
        region_id: str | None = None,
        operator_id: str | None = None,
        by_measuring_operator: bool = False,
    ) -> list[MeasurementSnapshot]:
        """Return every measurement joined with patient, operator and region.

        ``operator_id`` filters on the patient's owner unless
        ``by_measuring_operator`` asks for the operator who took the reading.
        """

        owner = Operator.__table__.alias("owner")
        measurer = Operator.__table__.alias("measurer")
        region = Region.__table__.alias("region")

        stmt = (
            select(
                Measurement.id,
                Measurement.value,
                Measurement.created_at,
                Patient.id,
                Patient.name,
                Patient.lastname,
                Patient.age,
                Patient.gender,
                measurer.c.id,
                measurer.c.name,
                measurer.c.lastname,
                region.c.id,
                region.c.name,
                region.c.latitude,
                region.c.longitude,
            )
            .join(Patient, Measurement.patient_id == Patient.id)
            .join(owner, Patient.operator_id == owner.c.id)
            .join(measurer, Measurement.operator_id == measurer.c.id)
            .outerjoin(region, owner.c.region_id == region.c.id)
        )
        if region_id:
            stmt = stmt.where(owner.c.region_id == region_id)
        if operator_id:
            column = measurer.c.id if by_measuring_operator else owner.c.id
            stmt = stmt.where(column == operator_id)

        rows = self.session.execute(stmt).all()
        return [
            MeasurementSnapshot(
                measurement_id=row[0],
                value=float(row[1]),
                created_at=as_utc(row[2]),
                patient_id=row[3],
                patient_name=f"{row[4]} {row[5]}".strip(),
                patient_age=row[6],
                patient_gender=row[7],
                operator_id=row[8],
                operator_name=f"{row[9]} {row[10]}".strip(),
                region_id=row[11],
                region_name=row[12],
                region_latitude=row[13],
                region_longitude=row[14],
            )
            for row in rows
        ]

    def count_patients(self, *, region_id: str | None = None, operator_id: str | None = None) -> int:
        stmt = select(func.count(Patient.id)).join(Operator, Patient.operator_id == Operator.id)
        if region_id:
            stmt = stmt.where(Operator.region_id == region_id)
        if operator_id:
            stmt = stmt.where(Patient.operator_id == operator_id)
        return int(self.session.scalar(stmt) or 0)

    def count_operators(self, *, region_id: str | None = None, operator_id: str | None = None) -> int:
        stmt = select(func.count(Operator.id))
        if region_id:
            stmt = stmt.where(Operator.region_id == region_id)
        if operator_id:
            stmt = stmt.where(Operator.id == operator_id)
        return int(self.session.scalar(stmt) or 0)

    def list_regions(self, *, region_id: str | None = None) -> list[Region]:
        stmt = select(Region).order_by(Region.name)
        if region_id:
            stmt = stmt.where(Region.id == region_id)
        return list(self.session.scalars(stmt))

    def list_operators(
        self, *, region_id: str | None = None, operator_id: str | None = None
    ) -> list[OperatorSnapshot]:
        stmt = select(Operator).options(joinedload(Operator.region)).order_by(Operator.name, Operator.lastname)
        if region_id:
            stmt = stmt.where(Operator.region_id == region_id)
        if operator_id:
            stmt = stmt.where(Operator.id == operator_id)
        return [
            OperatorSnapshot(
                operator_id=operator.id,
                operator_name=operator.full_name,
                region_id=operator.region_id,
                region_name=operator.region.name if operator.region is not None else None,
            )
            for operator in self.session.scalars(stmt)
        ]

    def patient_counts_by_operator(self) -> dict[str, int]:
        stmt = select(Patient.operator_id, func.count(Patient.id)).group_by(Patient.operator_id)
        return {operator_id: int(total) for operator_id, total in self.session.execute(stmt).all()}
