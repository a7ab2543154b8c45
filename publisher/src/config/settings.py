"""
Application settings configuration for the update publisher.

Centralized settings loaded from environment variables (and an optional
``.env`` file in the working directory).
"""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


SUPPORTED_STORAGE_BACKENDS = ("local", "s3")


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        PUBLISHER_DB_URL: SQLAlchemy database URL (default: local SQLite file)
        PUBLISHER_STORAGE_BACKEND: Blob storage backend, "local" or "s3" (default: "local")
        PUBLISHER_STORAGE_ROOT: Root directory for the local backend (default: "./archive")
        PUBLISHER_S3_BUCKET: Bucket name for the s3 backend (required when backend is s3)
        PUBLISHER_S3_REGION: AWS region for the s3 backend (default: "us-east-1")
        PUBLISHER_S3_ENDPOINT_URL: Custom endpoint for S3-compatible storage (default: "")
        PUBLISHER_CDN_URL: Public base URL artifacts are served from.
            Empty = derived from the storage backend.
        PUBLISHER_APP_NAME: Value of the manifest "name" field (default: "App")
        PUBLISHER_PACKAGE_PREFIX: Filename prefix used to parse uploaded packages
            (default: "app", i.e. app-{version}-{arch}-{os}.{ext})
        PUBLISHER_API_KEY: Key required in the X-Publisher-Key header for admin
            endpoints. Empty = check disabled.
    """

    database_url: str = Field(
        default="sqlite:///./publisher.db",
        validation_alias="PUBLISHER_DB_URL",
    )

    storage_backend: str = Field(
        default="local",
        validation_alias="PUBLISHER_STORAGE_BACKEND",
        description="Blob storage backend: local or s3",
    )

    storage_root: str = Field(
        default="./archive",
        validation_alias="PUBLISHER_STORAGE_ROOT",
    )

    s3_bucket: str = Field(default="", validation_alias="PUBLISHER_S3_BUCKET")
    s3_region: str = Field(default="us-east-1", validation_alias="PUBLISHER_S3_REGION")
    s3_endpoint_url: str = Field(default="", validation_alias="PUBLISHER_S3_ENDPOINT_URL")

    cdn_url: str = Field(
        default="",
        validation_alias="PUBLISHER_CDN_URL",
        description="Public base URL for artifacts and manifests",
    )

    app_name: str = Field(
        default="App",
        validation_alias="PUBLISHER_APP_NAME",
        min_length=1,
    )

    package_prefix: str = Field(
        default="app",
        validation_alias="PUBLISHER_PACKAGE_PREFIX",
        min_length=1,
    )

    api_key: str = Field(
        default="",
        validation_alias="PUBLISHER_API_KEY",
        description="Admin API key. Empty disables the header check.",
    )

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        """Normalize and validate the storage backend name."""
        v = v.strip().lower()
        if v not in SUPPORTED_STORAGE_BACKENDS:
            raise ValueError(
                f"PUBLISHER_STORAGE_BACKEND must be one of: {', '.join(SUPPORTED_STORAGE_BACKENDS)}"
            )
        return v

    @model_validator(mode="after")
    def validate_s3_bucket(self) -> "AppSettings":
        """The s3 backend cannot work without a bucket."""
        if self.storage_backend == "s3" and not self.s3_bucket:
            raise ValueError("PUBLISHER_S3_BUCKET is required when PUBLISHER_STORAGE_BACKEND=s3")
        return self

    @property
    def api_key_configured(self) -> bool:
        """Check if the admin API key check is enabled."""
        return bool(self.api_key)


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
