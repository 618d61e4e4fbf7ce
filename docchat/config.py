from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    # MongoDB
    MONGODB_URI: str
    MONGODB_DATABASE: str = "docchat_db"

    # Voyage AI (Embeddings)
    VOYAGE_API_KEY: str
    VOYAGE_MODEL: str = "voyage-3-large"
    EMBEDDING_DIMENSION: int = 1024
    # Max texts per Voyage request; one logical embed call may span several
    EMBEDDING_BATCH_SIZE: int = 128

    # Gemini (LLM)
    GEMINI_API_KEY: str
    GEMINI_MODEL: str = "gemini-2.5-flash-lite"

    # Vector index (Atlas $vectorSearch)
    VECTOR_COLLECTION: str = "vectors"
    VECTOR_INDEX_NAME: str = "vector_index"
    VECTOR_NUM_CANDIDATES: int = 100
    UPSERT_BATCH_SIZE: int = 100
    RETRIEVAL_TOP_K: int = 3

    # Chunking (characters)
    CHUNK_SIZE: int = 2000
    CHUNK_OVERLAP: int = 200
    CHUNK_PREVIEW_LENGTH: int = 200

    # Queue / worker
    QUEUE_COLLECTION: str = "tasks"
    QUEUE_MAX_ATTEMPTS: int = 5
    QUEUE_BACKOFF_BASE_SECONDS: float = 3.0
    QUEUE_BACKOFF_JITTER: float = 0.3
    QUEUE_LEASE_SECONDS: int = 900
    WORKER_CONCURRENCY: int = 1
    WORKER_POLL_INTERVAL_SECONDS: float = 2.0

    # Outbound call timeouts (seconds)
    DOWNLOAD_TIMEOUT: float = 60.0
    EMBED_TIMEOUT: float = 120.0
    VECTOR_TIMEOUT: float = 30.0
    COMPLETION_TIMEOUT: float = 60.0

    # Upload limits
    MAX_DOCUMENTS_PER_CONVERSATION: int = 10
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    MAX_STATUS_IDS: int = 3

    # Operator endpoints (dead-letter inspection)
    ADMIN_API_KEY: str = "secret-admin-key"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

@lru_cache
def get_settings():
    return Settings()
