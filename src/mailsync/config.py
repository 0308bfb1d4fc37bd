"""Worker configuration loaded from environment variables."""
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Sync worker configuration loaded from environment variables.

    Connection endpoints are read without prefix (``MONGODB_URI``,
    ``ELASTICSEARCH_URL``) and are required; everything else is tuned
    through ``SYNC_``-prefixed variables.

    Attributes:
        mongodb_uri: MongoDB connection string (required).
        mongodb_database: Database holding the source collection.
        mongodb_collection: Source collection name.
        elasticsearch_url: Elasticsearch node URL (required).
        elasticsearch_index: Target index name.
        request_timeout: Seconds before a backend request times out.
        batch_size: Cursor batch size for the backfill snapshot read.
        progress_interval: Log backfill progress every N documents.
        max_resume_attempts: Change stream resume attempts before giving up.
        resume_backoff: Base delay in seconds between resume attempts.
        shutdown_timeout: Seconds to wait for in-flight work on shutdown.
        debug: Enable debug-level logging.
        api_enabled: Serve the search and health HTTP API.
        host: Bind address for the HTTP API.
        port: Port number for the HTTP API.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    mongodb_uri: str = Field(
        validation_alias=AliasChoices("MONGODB_URI", "SYNC_MONGODB_URI"),
        min_length=1,
    )
    mongodb_database: str = Field(
        default="emaildb",
        validation_alias=AliasChoices("MONGODB_DATABASE", "SYNC_MONGODB_DATABASE"),
    )
    mongodb_collection: str = Field(
        default="emails",
        validation_alias=AliasChoices("MONGODB_COLLECTION", "SYNC_MONGODB_COLLECTION"),
    )
    elasticsearch_url: str = Field(
        validation_alias=AliasChoices("ELASTICSEARCH_URL", "SYNC_ELASTICSEARCH_URL"),
        min_length=1,
    )
    elasticsearch_index: str = Field(
        default="emaildb-email",
        validation_alias=AliasChoices(
            "ELASTICSEARCH_INDEX", "SYNC_ELASTICSEARCH_INDEX"
        ),
    )

    request_timeout: float = 30.0
    batch_size: int = Field(default=500, gt=0)
    progress_interval: int = Field(default=100, gt=0)
    max_resume_attempts: int = Field(default=3, ge=0)
    resume_backoff: float = Field(default=1.0, ge=0.0)
    shutdown_timeout: float = 30.0
    debug: bool = False

    api_enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
