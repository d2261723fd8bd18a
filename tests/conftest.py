"""Shared fixtures for MUAC monitor tests."""

from collections.abc import Generator
from datetime import datetime, timezone
import os
import uuid

os.environ.setdefault("MUAC_MONITOR_DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from muac_monitor.db import Base, build_engine, get_db_session  # noqa: E402
from muac_monitor.main import app  # noqa: E402
from muac_monitor.models import Measurement, Operator, Patient, Region  # noqa: E402
from muac_monitor.observability import get_metrics  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics() -> None:
    get_metrics().reset()


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = build_engine("sqlite://", poolclass=StaticPool)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(session_factory: sessionmaker) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db_session] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def make_region(session: Session, name: str, latitude: str | None = None, longitude: str | None = None) -> Region:
    region = Region(id=str(uuid.uuid4()), name=name, latitude=latitude, longitude=longitude)
    session.add(region)
    session.commit()
    return region


def make_operator(session: Session, name: str, region: Region | None = None) -> Operator:
    operator = Operator(
        id=str(uuid.uuid4()),
        name=name,
        lastname="Health Worker",
        region_id=region.id if region is not None else None,
    )
    session.add(operator)
    session.commit()
    return operator


def make_patient(
    session: Session,
    name: str,
    operator: Operator,
    *,
    age: int = 3,
    gender: str = "F",
) -> Patient:
    patient = Patient(
        id=str(uuid.uuid4()),
        name=name,
        lastname="Child",
        age=age,
        gender=gender,
        operator_id=operator.id,
    )
    session.add(patient)
    session.commit()
    return patient


def add_measurement(
    session: Session,
    patient: Patient,
    value: float,
    created_at: datetime,
    operator: Operator | None = None,
) -> Measurement:
    measurement = Measurement(
        id=str(uuid.uuid4()),
        value=value,
        note="",
        patient_id=patient.id,
        operator_id=(operator or patient.operator).id,
        created_at=created_at,
        updated_at=datetime.now(tz=timezone.utc),
    )
    session.add(measurement)
    session.commit()
    return measurement
