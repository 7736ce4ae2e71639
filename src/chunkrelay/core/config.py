"""Configuration management for Chunk Relay."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "chunk-relay"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # GCP Configuration
    GCP_PROJECT_ID: str = ""

    # Blob store Configuration
    STORAGE_BACKEND: str = "local"  # "gcs" or "local"
    GCS_BUCKET_NAME: str = ""
    GCS_IMAGE_BUCKET_NAME: str = ""  # Falls back to GCS_BUCKET_NAME
    GCS_VIDEO_BUCKET_NAME: str = ""  # Falls back to GCS_BUCKET_NAME
    LOCAL_BLOB_PATH: str = "./data/published"

    # Staging Configuration
    CHUNK_STAGING_DIR: str = "./data/chunks"
    ASSEMBLY_DIR: str = "./data/assembled"

    # Upload Constraints
    UPLOAD_KEY_PREFIX: str = "uploads"
    DEFAULT_CONTENT_TYPE: str = "application/octet-stream"
    MAX_CHUNK_MB: int = 64
    MAX_CHUNKS_PER_UPLOAD: int = 10_000
    PUBLISH_TIMEOUT_SECONDS: float = 300.0

    # CORS
    ALLOWED_ORIGINS: str = ""  # Comma-separated, empty = CORS disabled

    @property
    def max_chunk_bytes(self) -> int:
        """Convert MAX_CHUNK_MB to bytes."""
        return self.MAX_CHUNK_MB * 1024 * 1024

    @property
    def allowed_origins(self) -> list[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def image_bucket(self) -> str:
        return self.GCS_IMAGE_BUCKET_NAME or self.GCS_BUCKET_NAME

    @property
    def video_bucket(self) -> str:
        return self.GCS_VIDEO_BUCKET_NAME or self.GCS_BUCKET_NAME


# Singleton settings instance
settings = Settings()
