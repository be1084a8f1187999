"""
Application configuration using Pydantic Settings.

Automatically loads environment variables from .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Literal values the grid seeded before real extraction existed. A stored
# value equal to one of these is treated as missing.
DEFAULT_PLACEHOLDER_VALUES: tuple[str, ...] = (
    "Important Document",
    "Contract Agreement",
    "Report Summary",
    "2024-01-15",
    "2023-12-01",
    "2024-03-22",
    "$1,250.00",
    "$899.99",
    "$15,000.00",
    "New York, NY",
    "Los Angeles, CA",
    "Chicago, IL",
    "John Smith",
    "Sarah Johnson",
    "Michael Brown",
    "Acme Corp",
    "TechStart Inc",
    "Global Solutions LLC",
    "Active",
    "Pending",
    "Completed",
    "Set A",
    "Category B",
    "Group 1",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    ai_timeout_seconds: float = 60.0
    ai_max_tokens: int = 2000

    # Database
    database_url: str = "sqlite:///./docgrid.db"

    # Blob storage downloads
    fetch_timeout_seconds: float = 30.0
    user_agent: str = "DocumentExtractor/1.0"

    # PDF text extraction
    min_text_length: int = 50
    max_text_chars: int = 15000
    max_pdf_pages: int = 20

    # Scanned PDF fallback (render pages and send them to the vision model)
    scanned_pdf_fallback: bool = False
    render_max_pages: int = 3
    render_dpi: int = 150

    # Strategy chain
    success_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_concurrent_documents: int = Field(default=5, ge=1)

    # Demo-data guard
    placeholder_values: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PLACEHOLDER_VALUES)
    )

    # Debug flags
    sql_debug: bool = False
    debug: bool = False

    model_config = SettingsConfigDict(
        # Load from .env file in the package directory
        env_file=Path(__file__).parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # Case insensitive environment variable names
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration loaded from environment.
    """
    return Settings()
