"""OpenRouter (OpenAI-compatible) model endpoint client.

## Extraction Theory: The Endpoint Is an Opaque Function

The Retry Controller treats the model endpoint as `request -> raw text`,
raising TransportError on failure. Retrying lives in the controller, not
here: every HTTP call is one attempt against the extraction's budget, so
this client performs exactly one POST per invocation.

Failure classification:
- Timeouts and connection errors -> TransportError(retryable=True)
- Rate limits (429) and server errors (5xx) -> TransportError(retryable=True)
- 200 responses without choices (OpenRouter overload) -> TransportError(retryable=True)
- Other non-2xx -> TransportError(retryable=False), still retried within budget

## Library Usage

Uses `requests` for HTTP calls and `python-dotenv` (via config) for the API key.

## Data Flow

1. Prompt Compiler builds a ChatRequest
2. OpenRouterInvoker renders it to OpenAI messages (+ response_format)
3. call_chat_completion() POSTs and returns the assistant content string
"""

from typing import Any, Optional

import requests

from schemaguard.config import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    EXTRACTION_MODEL,
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
    RESPONSE_FORMAT_MODE,
)
from schemaguard.errors import TransportError
from schemaguard.records import ChatRequest
from schemaguard.shared.files import setup_logging

logger = setup_logging(__name__)


def _content_length(messages: list[dict[str, Any]]) -> int:
    total = 0
    for message in messages:
        content = message.get("content", "")
        if isinstance(content, str):
            total += len(content)
        else:
            total += sum(len(part.get("text", "")) for part in content)
    return total


def call_chat_completion(
    messages: list[dict[str, Any]],
    model: str,
    temperature: float = DEFAULT_TEMPERATURE,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    response_format: Optional[dict[str, Any]] = None,
    timeout: float = 60.0,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
) -> str:
    """Call the chat completion API once.

    Args:
        messages: List of message dicts with 'role' and 'content' keys.
            Content may be a list of parts (text + image_url data URIs).
        model: OpenRouter model ID (e.g., "openai/gpt-4o-mini").
        temperature: Sampling temperature (0.0 recommended for extraction).
        max_tokens: Maximum tokens in response.
        response_format: Optional OpenAI response_format payload.
        timeout: Request timeout in seconds.
        api_key: Overrides OPENROUTER_API_KEY.
        base_url: Overrides OPENROUTER_BASE_URL.

    Returns:
        The assistant's response content as a string.

    Raises:
        TransportError: On any endpoint failure (see module docstring).
    """
    api_key = api_key or OPENROUTER_API_KEY
    if not api_key:
        raise TransportError("OPENROUTER_API_KEY not set in environment", retryable=False)

    url = f"{base_url or OPENROUTER_BASE_URL}/chat/completions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if response_format is not None:
        payload["response_format"] = response_format

    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.Timeout as exc:
        raise TransportError(f"Request timed out after {timeout:.1f}s: {exc}") from exc
    except requests.RequestException as exc:
        raise TransportError(f"Request failed: {exc}") from exc

    if response.status_code == 200:
        try:
            result = response.json()
        except ValueError as exc:
            raise TransportError(f"Malformed API response body: {exc}", status_code=200) from exc

        # OpenRouter sometimes returns 200 with an error body under load
        if not result.get("choices"):
            error_msg = (result.get("error") or {}).get("message", str(result))
            raise TransportError(f"API returned 200 without choices: {error_msg}", status_code=200)

        content = result["choices"][0]["message"].get("content") or ""

        chars_in = _content_length(messages)
        logger.info(f"[LLM] model={model} chars_in={chars_in} chars_out={len(content)}")
        return content

    if response.status_code == 429 or response.status_code >= 500:
        error_type = "Rate limit" if response.status_code == 429 else "Server error"
        raise TransportError(
            f"{error_type} ({response.status_code})", status_code=response.status_code
        )

    try:
        error_detail = response.json().get("error", {}).get("message", response.text)
    except (ValueError, AttributeError):
        error_detail = response.text
    raise TransportError(
        f"API error {response.status_code}: {error_detail}",
        status_code=response.status_code,
        retryable=False,
    )


def build_response_format(request: ChatRequest, mode: str = RESPONSE_FORMAT_MODE) -> Optional[dict[str, Any]]:
    """Translate a response-format mode into the OpenAI response_format payload.

    json_schema mode uses strict=false: strict mode rejects optional fields
    and numeric bounds that the descriptor declares.
    """
    if mode == "json_object":
        return {"type": "json_object"}
    if mode == "json_schema" and request.json_schema is not None:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": request.schema_name or "extraction",
                "strict": False,
                "schema": request.json_schema,
            },
        }
    return None


class OpenRouterInvoker:
    """`invoke_model` implementation backed by OpenRouter.

    Example:
        >>> invoker = OpenRouterInvoker(model="openai/gpt-4o-mini")
        >>> result = extract(receipt_schema(), "Extract the receipt ...", invoker)
    """

    def __init__(
        self,
        model: str = EXTRACTION_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        response_format_mode: str = RESPONSE_FORMAT_MODE,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.response_format_mode = response_format_mode
        self.api_key = api_key
        self.base_url = base_url

    def __call__(self, request: ChatRequest, timeout: float) -> str:
        return call_chat_completion(
            messages=request.to_messages(),
            model=request.model or self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format=build_response_format(request, self.response_format_mode),
            timeout=timeout,
            api_key=self.api_key,
            base_url=self.base_url,
        )
