from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from afip_enrollment.config.paths import default_staging_dir, env_file_path

_UNSET = object()

AFIP_LANDING_URL = "https://www.afip.gob.ar/landing/default.asp"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(env_file_path()),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = "dev"
    log_level: str = "INFO"

    database_url: str | None = None

    portal_url: str = Field(default=AFIP_LANDING_URL, alias="PORTAL_URL")
    portal_headless: bool = Field(default=True, alias="PORTAL_HEADLESS")

    staging_dir: Path = Field(default_factory=default_staging_dir, alias="STAGING_DIR")
    csr_filename: str = Field(default="csr-creado.pem", alias="CSR_FILENAME")
    artifacts_dir: str = Field(default="artifacts", alias="ARTIFACTS_DIR")

    freshness_days: int = Field(default=14, alias="FRESHNESS_DAYS")
    max_concurrent_runs: int = Field(default=1, alias="MAX_CONCURRENT_RUNS")
    run_deadline_seconds: float | None = Field(default=900, alias="RUN_DEADLINE_SECONDS")


def require_database_url(value: object = _UNSET) -> str:
    """
    If `value` is provided (even None), use it. Otherwise fall back to settings.database_url.
    This makes the function unit-testable without depending on a local .env file.
    """
    url = settings.database_url if value is _UNSET else value

    if not isinstance(url, str) or not url.strip():
        raise RuntimeError(
            "DATABASE_URL is not set. Add it to .env (recommended) or set it as an environment variable."
        )

    return url


settings = Settings()
