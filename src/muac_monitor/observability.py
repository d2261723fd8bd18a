"""Structured logging and in-memory metrics for the MUAC monitor service."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from threading import Lock
from typing import Any


def configure_logging(level: str) -> None:
    """Configure service logging format once."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
    )


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one structured JSON log line."""

    payload = {
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "event": event,
        **fields,
    }
    logger.log(level, json.dumps(payload, default=str, separators=(",", ":")))


class ServiceMetrics:
    """Thread-safe in-memory metrics collector."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.measurement_requests_total = 0
            self.measurement_success_total = 0
            self.measurement_errors_total = 0
            self.labels_created_total = 0
            self.label_conflicts_recovered_total = 0
            self.report_requests_total = 0
            self.latency_ms_sum = 0.0
            self.latency_ms_count = 0
            self.severity_counts: dict[str, int] = {}

    def record_measurement_request(self) -> None:
        with self._lock:
            self.measurement_requests_total += 1

    def record_measurement_success(self, latency_ms: float, severity_code: str, labels_created: int) -> None:
        with self._lock:
            self.measurement_success_total += 1
            self.labels_created_total += max(labels_created, 0)
            self.severity_counts[severity_code] = self.severity_counts.get(severity_code, 0) + 1
            self.latency_ms_sum += max(latency_ms, 0.0)
            self.latency_ms_count += 1

    def record_measurement_error(self, latency_ms: float) -> None:
        with self._lock:
            self.measurement_errors_total += 1
            self.latency_ms_sum += max(latency_ms, 0.0)
            self.latency_ms_count += 1

    def record_label_conflict_recovered(self) -> None:
        with self._lock:
            self.label_conflicts_recovered_total += 1

    def record_report_request(self) -> None:
        with self._lock:
            self.report_requests_total += 1

    def render_prometheus(self) -> str:
        with self._lock:
            lines = [
                "# HELP muac_monitor_measurement_requests_total Total classified measurement requests.",
                "# TYPE muac_monitor_measurement_requests_total counter",
                f"muac_monitor_measurement_requests_total {self.measurement_requests_total}",
                "# HELP muac_monitor_measurement_success_total Total measurements classified and stored.",
                "# TYPE muac_monitor_measurement_success_total counter",
                f"muac_monitor_measurement_success_total {self.measurement_success_total}",
                "# HELP muac_monitor_measurement_errors_total Total rejected or failed measurement requests.",
                "# TYPE muac_monitor_measurement_errors_total counter",
                f"muac_monitor_measurement_errors_total {self.measurement_errors_total}",
                "# HELP muac_monitor_labels_created_total Labels created as a side effect of classification.",
                "# TYPE muac_monitor_labels_created_total counter",
                f"muac_monitor_labels_created_total {self.labels_created_total}",
                "# HELP muac_monitor_label_conflicts_recovered_total Label creation races resolved by re-reading.",
                "# TYPE muac_monitor_label_conflicts_recovered_total counter",
                f"muac_monitor_label_conflicts_recovered_total {self.label_conflicts_recovered_total}",
                "# HELP muac_monitor_report_requests_total Total report requests served.",
                "# TYPE muac_monitor_report_requests_total counter",
                f"muac_monitor_report_requests_total {self.report_requests_total}",
                "# HELP muac_monitor_latency_ms_sum Sum of measurement request latency in milliseconds.",
                "# TYPE muac_monitor_latency_ms_sum counter",
                f"muac_monitor_latency_ms_sum {self.latency_ms_sum:.3f}",
                "# HELP muac_monitor_latency_ms_count Number of latency observations.",
                "# TYPE muac_monitor_latency_ms_count counter",
                f"muac_monitor_latency_ms_count {self.latency_ms_count}",
                "# HELP muac_monitor_classified_total Classified measurements by severity code.",
                "# TYPE muac_monitor_classified_total counter",
            ]
            for code in sorted(self.severity_counts):
                lines.append(f'muac_monitor_classified_total{{severity_code="{code}"}} {self.severity_counts[code]}')
        return "\n".join(lines) + "\n"


_metrics = ServiceMetrics()


def get_metrics() -> ServiceMetrics:
    """Return singleton metrics collector."""

    return _metrics
