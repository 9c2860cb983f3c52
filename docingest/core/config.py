"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openai_api_key: str = ""
    qdrant_url: str = "http://qdrant:6333"
    qdrant_collection_name: str = "documents"
    service_name: str = "ingestion-service"
    service_port: int = 8000

    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # Chunking configuration
    chunk_size: int = 1000
    chunk_overlap: int = 150
    chunking_strategy: str = "fixed"

    # Embedding batch configuration
    embedding_batch_size: int = 20
    embedding_concurrency: int = 2
    embedding_max_input_bytes: int = 32000

    # Vector store configuration
    upsert_batch_size: int = 100
    delete_batch_size: int = 100
    delete_query_limit: int = 1000
    purge_chunks_on_failure: bool = True

    # Timeouts
    fetch_timeout_seconds: float = 30.0
    embedding_timeout_seconds: float = 60.0
    vector_store_timeout_seconds: float = 30.0

    # Retry configuration
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 2.0

    # Blob storage cleanup
    blob_api_url: str = ""
    blob_api_token: str = ""
    blob_path_prefix: str = "documents/"


settings = Settings()
