"""buildstats application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

Every environment variable maps 1-to-1 to a field in :class:`Settings`.  The
field name is the **lowercase** version of the env-var name (e.g.
``BUILD_SERVER_URL`` → ``build_server_url``).

Only ``BUILD_SERVER_URL`` and ``TEAMCITY_TOKEN`` are required.  The Azure
file-share block is optional as a whole: when any part of it is missing the
disk-space job reports zero capacity instead of preventing startup.

Typical usage::

    from buildstats.core.settings import load_settings

    settings = load_settings()                    # raises ConfigError if invalid
    print(settings.base_url)                      # "https://teamcity.example.com"
    print(settings.azure_storage_configured)      # True / False
"""

from __future__ import annotations

import logging

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from buildstats.core.exceptions import ConfigError

__all__ = ["Settings", "load_settings"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Build server
    # ------------------------------------------------------------------
    build_server_url: str = Field(
        ...,
        min_length=1,
        description="Build server host (e.g. 'teamcity.example.com') or full base URL.",
    )
    teamcity_token: str = Field(
        ...,
        min_length=1,
        description="Access token sent as a bearer credential on every API call.",
    )
    use_ssl: bool = Field(
        default=True,
        description="Use https when BUILD_SERVER_URL carries no scheme.",
    )

    # ------------------------------------------------------------------
    # Scrape targets
    # ------------------------------------------------------------------
    muted_tests_project_id: str = Field(
        default="OctopusDeploy_OctopusServer",
        min_length=1,
        description="Project whose currently-muted tests are counted.",
    )

    # ------------------------------------------------------------------
    # Azure file share (disk-space job)
    # ------------------------------------------------------------------
    azure_file_share_subscription_id: str = Field(default="", description="Azure subscription id.")
    azure_file_share_resource_group_name: str = Field(
        default="", description="Resource group holding the storage account."
    )
    azure_file_share_storage_account_name: str = Field(
        default="", description="Storage account name."
    )
    azure_file_share_storage_share_name: str = Field(
        default="", description="File share whose capacity is reported."
    )

    # ------------------------------------------------------------------
    # Metrics endpoint
    # ------------------------------------------------------------------
    metrics_host: str = Field(default="0.0.0.0", description="Bind address of /metrics.")
    metrics_port: int = Field(default=9090, ge=1, le=65535, description="Port of /metrics.")

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------
    retry_delay_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Fixed back-off between attempts of a failed scrape.",
    )
    shutdown_grace_period_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="How long shutdown waits for job loops to exit.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")
    seq_url: str = Field(default="", description="Seq server URL for the external log sink.")
    seq_api_key: str = Field(default="", description="Seq API key (optional).")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("build_server_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("build_server_url must not be blank")
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        """Root URL of the build server.

        A value that already carries a scheme is used verbatim; a bare host
        is prefixed with ``https://`` or ``http://`` depending on
        :attr:`use_ssl`.
        """
        if "://" in self.build_server_url:
            return self.build_server_url
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.build_server_url}"

    @property
    def azure_storage_configured(self) -> bool:
        """``True`` if every Azure file-share identifier is set."""
        return all(
            (
                self.azure_file_share_subscription_id,
                self.azure_file_share_resource_group_name,
                self.azure_file_share_storage_account_name,
                self.azure_file_share_storage_share_name,
            )
        )

    @property
    def seq_configured(self) -> bool:
        """``True`` if the external log sink address is set."""
        return bool(self.seq_url)


def load_settings() -> Settings:
    """Load :class:`Settings` from the environment.

    Raises:
        ConfigError: If a required variable is missing or a value is invalid.
            The message lists every offending field.
    """
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']).upper()}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from exc
