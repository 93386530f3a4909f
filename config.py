"""
Application configuration.

Values come from environment variables (and a `.env` file when present).
"""

from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field("mongodb://localhost:27017", description="MongoDB connection string")
    database_name: str = Field("personal-finance", description="Database holding the collections")
    server_selection_timeout_ms: int = Field(5000, ge=100, description="Upper bound for reaching the store")

    log_level: str = Field("INFO")
    log_json: bool = Field(True, description="Emit one JSON object per log line")

    port: int = Field(8000)
    cors_origins: str = Field("*", description="Comma-separated list of allowed origins")

    default_wallet_name: str = Field("default wallet", max_length=50)
    default_category_color: str = Field("#3B82F6")

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
