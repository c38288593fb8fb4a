"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Embedding Store API"
    database_url: str = "sqlite+aiosqlite:///./data/embeddings.db"
    embedding_resource: str = "embeddings"
    openai_api_key: SecretStr | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    max_tokens_per_request: int = 8000
    default_search_limit: int = 10
    find_by_type_limit: int = 10
    find_by_origin_limit: int = 5


@lru_cache()
def get_settings() -> Settings:
    return Settings()
