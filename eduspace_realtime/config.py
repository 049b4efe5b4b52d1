from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings for the realtime service.

    Optional integrations (Redis, FCM) stay off when their variables are
    unset: the bus falls back to in-process delivery and push is skipped.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "eduspace"
    redis_url: Optional[str] = None

    fcm_service_account_file: Optional[str] = None
    fcm_project_id: Optional[str] = None

    typing_window_seconds: float = Field(default=3.0, gt=0)
    message_window_size: int = Field(default=200, ge=1)
    notification_page_size: int = Field(default=20, ge=1)
    conversation_list_size: int = Field(default=50, ge=1)

    log_level: str = "INFO"
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
