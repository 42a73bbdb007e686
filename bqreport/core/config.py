from dataclasses import dataclass
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PAGE_LIMIT = 100
MAX_PAGE_LIMIT = 10000
DEFAULT_PAGE_SIZE = 5000
DEFAULT_MAX_PAGES = 1000
MAX_PAGES_CEILING = 10000


@dataclass(frozen=True)
class FetchConfig:
    """Paging knobs handed to the pagination driver, already clamped."""

    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = DEFAULT_MAX_PAGES

    @classmethod
    def clamped(cls, page_size: Optional[int], max_pages: Optional[int]):
        if not page_size or page_size <= 0:
            page_size = DEFAULT_PAGE_SIZE
        if not max_pages or max_pages <= 0:
            max_pages = DEFAULT_MAX_PAGES
        return cls(
            page_size=min(page_size, MAX_PAGE_LIMIT),
            max_pages=min(max_pages, MAX_PAGES_CEILING),
        )


class Settings(BaseSettings):
    # Warehouse
    GOOGLE_CLOUD_PROJECT: str = Field(
        default="",
        validation_alias=AliasChoices("GOOGLE_CLOUD_PROJECT", "PROJECT_ID"),
    )
    BQ_LOCATION: str = ""  # US, EU, asia-south1, ...
    GOOGLE_APPLICATION_CREDENTIALS_JSON: str = ""
    GOOGLE_APPLICATION_CREDENTIALS: str = ""

    # Paging
    PAGE_SIZE: int = DEFAULT_PAGE_SIZE
    MAX_PAGES: int = DEFAULT_MAX_PAGES

    # Per-request deadlines (seconds)
    RAW_TIMEOUT_SECONDS: float = 60.0
    FULL_TIMEOUT_SECONDS: float = 300.0

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"
    STATIC_DIR: str = "static"
    INDEX_FILE: str = "static/index.html"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def fetch_config(self) -> FetchConfig:
        return FetchConfig.clamped(self.PAGE_SIZE, self.MAX_PAGES)


class QuerySettings(BaseSettings):
    """
    Values re-read on every request so the dashboard query can change
    without restarting the service.
    """

    DASH_QUERY: str = ""
    # Deterministic ordering for paged sub-queries, e.g. "id" or "created_at, id"
    DASH_ORDER_BY: str = ""
    REPORT_INCLUDE_SQL: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()


def get_settings() -> Settings:
    return settings


def get_query_settings() -> QuerySettings:
    return QuerySettings()
