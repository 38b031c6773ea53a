"""Key manager configuration."""

from functools import lru_cache
from typing import Any, Mapping, Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from keymanager.core.exceptions import ConfigurationError
from keymanager.core.kms.base import KMSBackend

# Label prefix marking a KMS key as owned by this key manager
DEFAULT_KEY_TAG = "SPIRE_SERVER_KEY:"


class Settings(BaseSettings):
    """Key manager settings loaded from environment variables."""

    # Which KMS to talk to. "local" keeps keys in process memory (development only)
    backend: KMSBackend = KMSBackend.AWS_KMS

    # AWS credentials. Leave both empty to use the default boto3 credential chain
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None

    # Region/endpoint selection
    region: str = ""
    endpoint: Optional[str] = None  # e.g. http://localhost:4566 for localstack

    # Ownership tag written into each key description as "<tag><key id>"
    key_tag: str = DEFAULT_KEY_TAG

    # ScheduleKeyDeletion waiting period (AWS allows 7-30 days)
    deletion_window_days: int = Field(default=30, ge=7, le=30)

    # Default timeout for a single key manager operation against the KMS
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Raise instead of logging when some keys could not be reconciled
    fail_on_partial_reconciliation: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_prefix="KEYMANAGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_required(self) -> "Settings":
        """Reject configurations the KMS client cannot be built from."""
        if not self.key_tag:
            raise ValueError("key_tag must not be empty")

        if self.backend == KMSBackend.AWS_KMS:
            missing = []
            if not self.region:
                missing.append("region")
            if bool(self.access_key_id) != bool(self.secret_access_key):
                missing.append(
                    "secret_access_key" if self.access_key_id else "access_key_id"
                )
            if missing:
                raise ValueError(f"Missing required configuration: {', '.join(missing)}")
        return self

    @property
    def has_static_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


def load_settings(config: "Settings | Mapping[str, Any] | None" = None) -> Settings:
    """Build validated settings from a mapping, an existing instance, or the environment.

    Raises:
        ConfigurationError: If required fields are missing or malformed
    """
    if isinstance(config, Settings):
        return config

    try:
        return Settings(**dict(config or {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid key manager configuration: {e}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
