from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    # MongoDB
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "dm_chat"
    # bound for every driver call (server selection, connect, socket)
    mongo_timeout_ms: int = 5000

    # realtime fanout; unset -> in-process only
    redis_url: Optional[str] = None

    # identity collaborator shares the token secret with us
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # messages
    max_body_length: int = 4000
    preview_length: int = 200
    default_page_size: int = 50
    max_page_size: int = 200

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
