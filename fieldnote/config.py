"""
Configuration settings for Fieldnote.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Slack
    slack_bot_token: str
    slack_signing_secret: str
    slack_app_token: str
    slack_channel_ids: str = ""
    slack_primary_user_id: str = ""

    # OpenAI
    openai_api_key: str
    openai_model: str = "gpt-4o-mini-2024-07-18"

    # Supabase
    supabase_url: str
    supabase_key: str

    # Scheduling
    default_timezone: str = "America/Los_Angeles"
    daily_digest_hour: int = 18

    # Shared secret for the external cron trigger
    cron_secret: Optional[str] = None

    # Digest behavior
    max_hours_back: int = 24
    post_generation_mode: str = "combined"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def channel_ids(self) -> list[str]:
        """Channels to scan, from the comma-separated SLACK_CHANNEL_IDS."""
        return [c.strip() for c in self.slack_channel_ids.split(",") if c.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
