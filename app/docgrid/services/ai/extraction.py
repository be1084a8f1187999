"""
Column extraction calls against the OpenAI chat completions API.

Every batched call asks for one JSON object of the form
``{"extractions": [{"columnId", "value", "confidence"}]}``; the per-column
raw-URL call asks for ``{"value", "confidence", "found", "source_location"}``.
Responses that are not JSON or miss these fields raise ServiceResponseError.
"""

import json
import logging
from typing import Any, Callable

import openai

from ...models import ColumnDefinition
from .exceptions import AIServiceError, ServiceResponseError, ServiceTimeoutError

logger = logging.getLogger(__name__)

MockExtractions = Callable[[list[ColumnDefinition]], list[dict[str, Any]]]


# =============================================================================
# Prompts
# =============================================================================

VISION_SYSTEM_PROMPT = """You are a precise document analysis AI.
Examine the document image and extract the requested fields. Return ONLY valid JSON with no additional text."""

TEXT_SYSTEM_PROMPT = """You are a professional document analysis AI.
Extract precise data from document text and return valid JSON only."""

DIRECT_URL_SYSTEM_PROMPT = """You are a professional document analysis AI.
You can access and analyze documents from URLs. Always return valid JSON responses with the exact format requested."""

TRANSCRIBE_PROMPT = (
    "Extract ALL readable text from this document. Return the complete text "
    "content, maintaining structure and formatting."
)

_CONFIDENCE_RULES = """- If information is clearly visible, provide it with high confidence (0.8-0.95)
- If information is partially visible or unclear, provide it with medium confidence (0.3-0.7)
- If information is not found, return an empty string with confidence 0
- For dates, use YYYY-MM-DD format when possible
- For prices and numbers, return only the numeric value
- For text, return the exact text as it appears"""


def _describe_columns(columns: list[ColumnDefinition]) -> str:
    """Numbered extraction tasks, one line per column."""
    return "\n".join(
        f"{index}. {col.name}: {col.prompt} (Type: {col.type})"
        for index, col in enumerate(columns, start=1)
    )


def _json_template(columns: list[ColumnDefinition]) -> str:
    entries = ",\n    ".join(
        json.dumps({"columnId": col.id, "value": "", "confidence": 0}) for col in columns
    )
    return f'{{\n  "extractions": [\n    {entries}\n  ]\n}}'


def build_visual_prompt(columns: list[ColumnDefinition]) -> str:
    """Prompt for a multimodal call carrying all columns."""
    return f"""Analyze this document and extract the following information.

EXTRACTION TASKS:
{_describe_columns(columns)}

INSTRUCTIONS:
- Examine the document carefully for each piece of information
{_CONFIDENCE_RULES}

REQUIRED JSON FORMAT:
{_json_template(columns)}"""


def build_text_prompt(columns: list[ColumnDefinition], text: str, truncated: bool) -> str:
    """Prompt for a text-only call over an extracted text prefix."""
    marker = "\n...(truncated)" if truncated else ""
    return f"""Analyze this document text and extract the following information. Return ONLY valid JSON.

DOCUMENT TEXT (truncated: {str(truncated).lower()}):
{text}{marker}

EXTRACTION TASKS:
{_describe_columns(columns)}

INSTRUCTIONS:
- Extract exact information requested for each field
{_CONFIDENCE_RULES}

REQUIRED JSON FORMAT:
{_json_template(columns)}"""


def build_column_prompt(column: ColumnDefinition, url: str) -> str:
    """Prompt for the per-column raw-URL call."""
    return f"""Document URL: {url}

Extract the following information: {column.prompt}

Field Name: {column.name}
Expected Type: {column.type}

Instructions:
- Access and read the document from the provided URL
- Extract the specific information requested in the prompt
- If the information is not found, return empty value with confidence 0

Return your response as JSON in this exact format:
{{
  "value": "extracted_information_here",
  "confidence": 0.95,
  "found": true,
  "source_location": "page/section where found"
}}"""


# =============================================================================
# Response Parsing
# =============================================================================


def _load_json(content: str | None) -> Any:
    if not content:
        raise ServiceResponseError("Empty response from AI service")
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse AI response: %s", content[:500])
        raise ServiceResponseError(f"Invalid JSON in AI response: {e}") from e


def parse_extractions(content: str | None) -> list[dict[str, Any]]:
    """
    Parse a batched extraction response.

    Returns:
        The raw extraction entries, each with at least a columnId.

    Raises:
        ServiceResponseError: If the payload is not JSON or misses fields.
    """
    payload = _load_json(content)
    if not isinstance(payload, dict):
        raise ServiceResponseError("AI response is not a JSON object")

    extractions = payload.get("extractions")
    if not isinstance(extractions, list):
        raise ServiceResponseError("AI response is missing the 'extractions' list")

    entries = []
    for entry in extractions:
        if not isinstance(entry, dict) or "columnId" not in entry:
            raise ServiceResponseError("AI response entry is missing 'columnId'")
        entries.append(entry)
    return entries


def parse_column_extraction(content: str | None, column_id: str) -> dict[str, Any]:
    """
    Parse a per-column raw-URL response into a batched-style entry.

    Raises:
        ServiceResponseError: If the payload is not JSON or misses 'value'.
    """
    payload = _load_json(content)
    if not isinstance(payload, dict) or "value" not in payload:
        raise ServiceResponseError("AI response is missing 'value'")
    return {
        "columnId": column_id,
        "value": payload.get("value"),
        "confidence": payload.get("confidence"),
        "sourceLocation": payload.get("source_location"),
    }


# =============================================================================
# Service Calls
# =============================================================================


def batch_model(columns: list[ColumnDefinition], default: str) -> str:
    """
    Model for a call covering ``columns``.

    A column's model hint is honored when every column in the batch shares
    it; mixed or missing hints fall back to ``default``.
    """
    hints = {col.model_hint for col in columns}
    if len(hints) == 1:
        [hint] = hints
        if hint:
            return hint
    return default


async def _complete(
    client: Any,  # AsyncOpenAI client
    model: str,
    messages: list[dict[str, Any]],
    max_tokens: int,
    json_mode: bool = True,
) -> str | None:
    """Run one chat completion, mapping client errors onto the service taxonomy."""
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": 0.1,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = await client.chat.completions.create(**kwargs)
    except openai.APITimeoutError as e:
        raise ServiceTimeoutError(f"AI service timed out: {e}") from e
    except openai.OpenAIError as e:
        raise AIServiceError(f"AI service request failed: {e}") from e

    if not response.choices:
        raise ServiceResponseError("AI service returned no choices")
    return response.choices[0].message.content


async def extract_from_visual(
    columns: list[ColumnDefinition],
    image_urls: list[str],
    client: Any,
    model: str,
    max_tokens: int = 2000,
    use_mock: bool = False,
    get_mock_extractions: MockExtractions | None = None,
) -> list[dict[str, Any]]:
    """
    Extract all columns in one multimodal call.

    Args:
        columns: Columns to extract.
        image_urls: Document URL or data URLs of rendered pages.
        client: AsyncOpenAI client instance.
        model: Model name to use.
        max_tokens: Completion budget.
        use_mock: If True, return mock entries instead of calling OpenAI.
        get_mock_extractions: Function producing mock entries.

    Returns:
        Raw extraction entries.
    """
    if use_mock and get_mock_extractions:
        logger.info("Visual extraction (MOCK MODE) for %d columns", len(columns))
        return get_mock_extractions(columns)

    content: list[dict[str, Any]] = [{"type": "text", "text": build_visual_prompt(columns)}]
    for url in image_urls:
        content.append({"type": "image_url", "image_url": {"url": url, "detail": "high"}})

    logger.info(
        "Sending %d image(s) to vision model %s for %d columns",
        len(image_urls),
        model,
        len(columns),
    )
    raw = await _complete(
        client,
        model,
        [
            {"role": "system", "content": VISION_SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ],
        max_tokens,
    )
    return parse_extractions(raw)


async def extract_from_text(
    columns: list[ColumnDefinition],
    text: str,
    truncated: bool,
    client: Any,
    model: str,
    max_tokens: int = 2000,
    use_mock: bool = False,
    get_mock_extractions: MockExtractions | None = None,
) -> list[dict[str, Any]]:
    """Extract all columns in one text-only call over a bounded text prefix."""
    if use_mock and get_mock_extractions:
        logger.info("Text extraction (MOCK MODE) for %d columns", len(columns))
        return get_mock_extractions(columns)

    logger.info(
        "Sending %d characters of text to %s for %d columns (truncated=%s)",
        len(text),
        model,
        len(columns),
        truncated,
    )
    raw = await _complete(
        client,
        model,
        [
            {"role": "system", "content": TEXT_SYSTEM_PROMPT},
            {"role": "user", "content": build_text_prompt(columns, text, truncated)},
        ],
        max_tokens,
    )
    return parse_extractions(raw)


async def extract_column_from_url(
    column: ColumnDefinition,
    url: str,
    client: Any,
    model: str,
    max_tokens: int = 1000,
    use_mock: bool = False,
    get_mock_extractions: MockExtractions | None = None,
) -> dict[str, Any]:
    """Extract a single column by handing the service the document URL."""
    if use_mock and get_mock_extractions:
        return get_mock_extractions([column])[0]

    raw = await _complete(
        client,
        batch_model([column], model),
        [
            {"role": "system", "content": DIRECT_URL_SYSTEM_PROMPT},
            {"role": "user", "content": build_column_prompt(column, url)},
        ],
        max_tokens,
    )
    return parse_column_extraction(raw, column.id)


async def transcribe_document(
    url: str,
    client: Any,
    model: str,
    max_tokens: int = 4000,
    use_mock: bool = False,
) -> str:
    """Ask the vision model for all readable text of a document."""
    if use_mock:
        return "MOCK TRANSCRIPTION"

    text = await _complete(
        client,
        model,
        [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": TRANSCRIBE_PROMPT},
                    {"type": "image_url", "image_url": {"url": url, "detail": "high"}},
                ],
            }
        ],
        max_tokens,
        json_mode=False,
    )
    return text or ""
