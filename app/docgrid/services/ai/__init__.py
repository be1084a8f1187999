"""
AI service package for column extraction.

This package provides the client side of the external inference contract:
- extraction: prompts, OpenAI calls and response parsing
- exceptions: error taxonomy of the service

The AIService class owns the OpenAI client and model configuration and
delegates to the extraction module.
"""

import logging
from typing import Any

from ...config import get_settings
from ...models import ColumnDefinition
from .exceptions import AIServiceError, ServiceResponseError, ServiceTimeoutError
from .extraction import (
    batch_model,
    build_column_prompt,
    build_text_prompt,
    build_visual_prompt,
    extract_column_from_url as _extract_column_from_url,
    extract_from_text as _extract_from_text,
    extract_from_visual as _extract_from_visual,
    parse_column_extraction,
    parse_extractions,
    transcribe_document as _transcribe_document,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AIService",
    "AIServiceError",
    "ServiceResponseError",
    "ServiceTimeoutError",
    "batch_model",
    "build_column_prompt",
    "build_text_prompt",
    "build_visual_prompt",
    "get_ai_service",
    "parse_column_extraction",
    "parse_extractions",
]


class AIService:
    """
    Client for the external inference service.

    Uses OpenAI chat completions (JSON mode) with vision input for:
    - Batched multimodal extraction over a document URL or rendered pages
    - Batched text-grounded extraction over extracted text
    - Per-column extraction by document reference
    - Full-text transcription of a document
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_tokens: int | None = None,
        use_mock: bool = False,
    ):
        """
        Initialize the AI service.

        Args:
            api_key: OpenAI API key. If None, reads from settings.
            model: OpenAI model to use (must support vision).
            timeout: Per-call timeout in seconds.
            max_tokens: Completion budget for batched calls.
            use_mock: If True, return mock data instead of calling OpenAI.
        """
        settings = get_settings()
        if api_key is None:
            api_key = settings.openai_api_key

        self.api_key = api_key
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.ai_timeout_seconds
        self.max_tokens = max_tokens or settings.ai_max_tokens
        self.use_mock = use_mock or not self.api_key
        self._client = None

        if self.use_mock:
            logger.warning(
                "AI Service running in MOCK MODE. Set OPENAI_API_KEY in .env for real extraction."
            )

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise AIServiceError(
                    "OpenAI API key not provided. Set OPENAI_API_KEY environment variable."
                )
            from openai import AsyncOpenAI

            # Fallback is handled by the strategy chain, not by client retries
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def _client_or_none(self):
        return None if self.use_mock else self.client

    async def extract_from_visual(
        self, columns: list[ColumnDefinition], image_urls: list[str]
    ) -> list[dict[str, Any]]:
        """Batched multimodal extraction over one or more image URLs."""
        return await _extract_from_visual(
            columns,
            image_urls,
            client=self._client_or_none(),
            model=batch_model(columns, self.model),
            max_tokens=self.max_tokens,
            use_mock=self.use_mock,
            get_mock_extractions=self._get_mock_extractions,
        )

    async def extract_from_text(
        self, columns: list[ColumnDefinition], text: str, truncated: bool = False
    ) -> list[dict[str, Any]]:
        """Batched text-only extraction."""
        return await _extract_from_text(
            columns,
            text,
            truncated,
            client=self._client_or_none(),
            model=batch_model(columns, self.model),
            max_tokens=self.max_tokens,
            use_mock=self.use_mock,
            get_mock_extractions=self._get_mock_extractions,
        )

    async def extract_column_from_url(
        self, column: ColumnDefinition, url: str
    ) -> dict[str, Any]:
        """Single-column extraction by document reference."""
        return await _extract_column_from_url(
            column,
            url,
            client=self._client_or_none(),
            model=self.model,
            use_mock=self.use_mock,
            get_mock_extractions=self._get_mock_extractions,
        )

    async def transcribe(self, url: str) -> str:
        """Full-text transcription of a document."""
        return await _transcribe_document(
            url,
            client=self._client_or_none(),
            model=self.model,
            use_mock=self.use_mock,
        )

    def _get_mock_extractions(
        self, columns: list[ColumnDefinition]
    ) -> list[dict[str, Any]]:
        """Return deterministic mock entries for development."""
        return [
            {
                "columnId": col.id,
                "value": f"MOCK-{col.name.upper().replace(' ', '_')}",
                "confidence": 0.5,
            }
            for col in columns
        ]


# =============================================================================
# Singleton Factory
# =============================================================================

_ai_service: AIService | None = None


def get_ai_service() -> AIService:
    """Get or create the AI service singleton."""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
