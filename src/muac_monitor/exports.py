"""Spreadsheet rendering of risk reports."""

from __future__ import annotations

from datetime import timezone
from io import BytesIO

from openpyxl.styles import Font, PatternFill
import pandas as pd

from .schemas import RiskPatient, RiskPatientsReport

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
RISK_SHEET = "Risk Patients"
RISK_COLUMNS = [
    "Category",
    "Patient",
    "Age",
    "Gender",
    "MUAC (cm)",
    "Severity code",
    "Region",
    "Operator",
    "Last measurement (UTC)",
    "Days ago",
]

_HEADER_FONT = Font(bold=True)
_HEADER_FILL = PatternFill(fill_type="solid", start_color="CCCCCC", end_color="CCCCCC")


def _row(category: str, patient: RiskPatient) -> dict:
    return {
        "Category": category,
        "Patient": patient.patient_name,
        "Age": patient.age,
        "Gender": patient.gender,
        "MUAC (cm)": patient.value,
        "Severity code": patient.severity_code,
        "Region": patient.region_name,
        "Operator": patient.operator_name,
        # Excel cells cannot hold timezone-aware datetimes.
        "Last measurement (UTC)": patient.last_measure.astimezone(timezone.utc).replace(tzinfo=None),
        "Days ago": patient.days_ago,
    }


def render_risk_patients_xlsx(report: RiskPatientsReport) -> bytes:
    """Render severe cases followed by moderate cases as one worksheet."""

    rows = [_row("Severe", item) for item in report.severe_cases]
    rows.extend(_row("Moderate", item) for item in report.moderate_cases)
    frame = pd.DataFrame(rows, columns=RISK_COLUMNS)

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=RISK_SHEET, index=False)
        sheet = writer.sheets[RISK_SHEET]
        for cell in sheet[1]:
            cell.font = _HEADER_FONT
            cell.fill = _HEADER_FILL
        for index, column in enumerate(RISK_COLUMNS, start=1):
            sheet.column_dimensions[sheet.cell(row=1, column=index).column_letter].width = max(len(column) + 2, 12)
        sheet.freeze_panes = "A2"
    return buffer.getvalue()
