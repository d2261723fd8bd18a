"""Runtime configuration for the MUAC monitor service."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from .classifier import ClassificationThresholds


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    service_name: str = "muac-monitor-service"
    service_version: str = "0.1.0"
    log_level: str = "INFO"
    metrics_enabled: bool = True
    database_url: str = "sqlite:///./muac_monitor.db"
    sql_echo: bool = False
    event_produced_by: str = "services/muac-monitor-service"

    severe_threshold: float = 11.5
    moderate_threshold: float = 12.4
    normal_threshold: float = 12.5
    default_nearby_radius_km: float = 10.0

    model_config = SettingsConfigDict(env_prefix="MUAC_MONITOR_", extra="ignore")

    @property
    def thresholds(self) -> ClassificationThresholds:
        return ClassificationThresholds(
            severe_threshold=self.severe_threshold,
            moderate_threshold=self.moderate_threshold,
            normal_threshold=self.normal_threshold,
        )


def get_settings() -> Settings:
    """Return settings object."""

    return Settings()
