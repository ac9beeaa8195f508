from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    app_name: str = "Document RAG Service"

    GOOGLE_API_KEY: str

    # Database
    DATABASE_URL: str

    # Embeddings (one fixed model for indexing and querying)
    EMBEDDING_MODEL: str = "models/gemini-embedding-001"
    EMBEDDING_DIM: int = 3072
    EMBEDDING_MAX_ATTEMPTS: int = 3
    EMBEDDING_BACKOFF_SECONDS: float = 1.0
    EMBEDDING_CONCURRENCY: int = 5

    # Chunking / indexing
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    INSERT_BATCH_SIZE: int = 5
    INDEXING_STALE_AFTER_SECONDS: int = 30 * 60

    # Retrieval
    RETRIEVAL_TOP_K: int = 5
    FALLBACK_DISTANCE_THRESHOLD: float = 0.75

    # Chat completion
    CHAT_MODEL: str = "gemini-2.5-flash"
    CHAT_TEMPERATURE: float = 0.2
    CHAT_MAX_OUTPUT_TOKENS: int = 2048
    HISTORY_LIMIT: int = 10

    # Web search / scraping
    FIRECRAWL_API_KEY: Optional[str] = None
    FIRECRAWL_URL: str = "https://api.firecrawl.dev"
    SEARXNG_INSTANCES: List[str] = []
    WEB_SEARCH_LIMIT: int = 3
    WEB_SEARCH_TIMEOUT: float = 20.0
    WEB_SEARCH_BREAKER_THRESHOLD: int = 3
    WEB_SEARCH_BREAKER_COOLDOWN: float = 60.0

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
