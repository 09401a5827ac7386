"""
Settings loaded from environment variables.

Uses Pydantic Settings for type-safe configuration with validation. Every
setting can be set through a STRONGBOX_-prefixed environment variable or a
.env file in the working directory; command-line flags override both.
"""

from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.kms.naming import DEFAULT_LABEL, LABEL_PATTERN
from libs.secrets.algorithms import DEFAULT_ALGORITHM

DEFAULT_REGIONS = "us-east-1,us-west-1,us-west-2"


def split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    strongbox configuration.

    Example:
        >>> # STRONGBOX_FILENAME=secrets.yml STRONGBOX_REGIONS=us-east-1,eu-west-1
        >>> settings = get_settings()
        >>> settings.region_list
        ['us-east-1', 'eu-west-1']
    """

    model_config = SettingsConfigDict(
        env_prefix="STRONGBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Secrets file
    filename: str = Field(
        default="",
        description="Path of the YAML file holding the secrets",
    )

    # Key configuration
    regions: str = Field(
        default=DEFAULT_REGIONS,
        description="Comma-separated regions the key is provisioned in",
    )
    label: str = Field(
        default=DEFAULT_LABEL,
        description="Label distinguishing independent key sets (alias/strongbox-LABEL)",
    )
    algorithm: str = Field(
        default=DEFAULT_ALGORITHM,
        description="Encryption algorithm for new values",
    )
    key_manager: str = Field(
        default="kms",
        description="Key manager for values written with explicit --key-id",
    )

    # AWS
    aws_region: str = Field(
        default="",
        validation_alias=AliasChoices("STRONGBOX_AWS_REGION", "AWS_REGION", "AWS_DEFAULT_REGION"),
        description="Default region for API calls without a region in the key id",
    )
    aws_profile: str | None = Field(
        default=None,
        description="Named AWS profile (defaults to the standard credential chain)",
    )
    region_priority: str = Field(
        default="",
        description="Comma-separated regions to try first when decrypting (default: aws_region)",
    )

    # Timeouts
    command_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Overall deadline for one command; unset means no deadline",
    )
    stack_create_timeout_seconds: float = Field(
        default=3600,
        gt=0,
        description="Upper bound on waiting for a key stack to be created",
    )
    stack_delete_timeout_seconds: float = Field(
        default=7200,
        gt=0,
        description="Upper bound on waiting for a key stack to be deleted",
    )

    # Logging
    log_level: str = Field(
        default="WARNING",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: str = Field(
        default="text",
        description="Log output format on stderr: text or json",
    )

    @field_validator("label")
    @classmethod
    def _valid_label(cls, value: str) -> str:
        if not LABEL_PATTERN.match(value):
            raise ValueError("label may contain only letters, digits, '_' and '-'")
        return value

    @field_validator("log_format")
    @classmethod
    def _valid_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    @property
    def region_list(self) -> list[str]:
        return split_csv(self.regions)

    @property
    def region_priority_list(self) -> list[str]:
        priorities = split_csv(self.region_priority)
        if not priorities and self.aws_region:
            priorities = [self.aws_region]
        return priorities


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache so the environment and .env file are read once per process.
    """
    return Settings()
