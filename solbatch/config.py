"""
Process-level settings.

Run-specific configuration (database credentials, procedures, paths) lives in
the YAML files passed on the command line; see ``solbatch.models.run_config``.
This module only carries what is read from the environment.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment settings (``SOLBATCH_`` prefix, optional ``.env`` file)."""

    model_config = SettingsConfigDict(
        env_prefix="SOLBATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
    LOG_FILE: Optional[str] = None

    # Include tracebacks when reporting fatal start-up errors.
    APP_DEBUG: bool = False


settings = Settings()
