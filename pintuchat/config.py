from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db: str = "pintuchat"
    redis_url: Optional[str] = None

    jwt_secret_key: SecretStr
    jwt_algorithm: str = "HS256"

    message_max_length: int = Field(2000, ge=1)
    thread_page_size: int = Field(50, ge=1)
    thread_page_max: int = Field(200, ge=1)

    # per-connection outbox; a client this far behind is evicted
    push_queue_size: int = Field(100, ge=1)
    push_send_timeout: float = Field(5.0, gt=0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
