"""Event payload builders for classified measurements."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4


def build_measurement_classified_event(
    *,
    measurement_id: str,
    patient_id: str,
    operator_id: str,
    value: float,
    severity_code: str,
    priority: int,
    tag_id: str,
    recommendation_id: str,
    measured_at: datetime,
    trace_id: str,
    produced_by: str,
) -> dict[str, Any]:
    """Build `measurement.classified` event envelope."""

    return {
        "event_id": str(uuid4()),
        "event_type": "measurement.classified",
        "event_version": "v1",
        "occurred_at": measured_at.isoformat(),
        "produced_by": produced_by,
        "trace_id": trace_id,
        "data": {
            "measurement_id": measurement_id,
            "patient_id": patient_id,
            "operator_id": operator_id,
            "value": value,
            "severity_code": severity_code,
            "priority": priority,
            "tag_id": tag_id,
            "recommendation_id": recommendation_id,
            "at_risk": severity_code in ("MUAC-R1", "MUAC-Y1"),
        },
    }
