"""
Configuration management for Permit Workflow.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="Permit Workflow")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./permit_workflow.db")

    # Blob storage for attachments and closure artifacts
    blob_store_uri: str = Field(default="file://./permit_blobs")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Lifecycle limits
    max_permit_span_hours: int = Field(
        default=168,
        gt=0,
        description="Longest allowed validFrom..validTo window of a permit (7 days).",
    )
    max_renewal_hours: int = Field(
        default=8,
        gt=0,
        description="Longest allowed window of a single renewal.",
    )

    # Identifier allocation
    permit_id_prefix: str = Field(default="WP")
    permit_id_start: int = Field(
        default=1000,
        ge=0,
        description="Suffix preceding the first allocated identifier (first permit is start + 1).",
    )

    # Signatures are rendered in the site's local time
    signature_timezone: str = Field(default="Asia/Kolkata")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
