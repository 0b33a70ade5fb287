from __future__ import annotations

from pathlib import Path


def app_base_dir() -> Path:
    """
    Returns the base directory for runtime files (.env, static/, artifacts/).

    Running from source: .../src/afip_enrollment/config/paths.py -> repo root is 3 parents up.
    """
    return Path(__file__).resolve().parents[3]


def env_file_path() -> Path:
    return app_base_dir() / ".env"


def default_staging_dir() -> Path:
    # static/uploads holds the CSR + key, static/downloads receives the signed certificate
    return app_base_dir() / "static"
