from datetime import date
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env.production", ".env"),
        case_sensitive=False,
        extra="ignore",
    )

    api_prefix: str = "/api"
    log_level: str = "INFO"

    # Database
    database_url: Optional[str] = None
    database_ssl: bool = True

    # Firebase
    fb_project_id: Optional[str] = None
    fb_client_email: Optional[str] = None
    fb_private_key: Optional[str] = None

    # CORS, comma separated
    cors_origins: str = ""

    # Pipeline
    # Storage rows are scoped per workspace so every user sees the same pipeline.
    workspace_id: str = "default"
    forecast_year: Optional[int] = None
    hot_ratio_threshold: float = 2.0

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()


def current_year() -> int:
    """Year the forecast is computed for. FORECAST_YEAR pins it for back-testing."""
    return settings.forecast_year or date.today().year
