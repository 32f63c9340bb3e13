"""LLM client interface and Ollama implementation.

Every component that needs the model depends on the :class:`LLMClient`
protocol only, so tests inject a fake and production wires
:class:`OllamaClient`. All three capabilities raise :class:`LLMError` (or a
subclass) on transport or protocol failure; callers catch it at their own
boundary and degrade.
"""

import json
import re
import time
from typing import Any, Protocol, runtime_checkable

import httpx
from loguru import logger

from ..config.defaults import (
    DEFAULT_OLLAMA_BASE_URL,
    DEFAULT_OLLAMA_EMBED_MODEL,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_RETRIES,
    DEFAULT_OLLAMA_TEMPERATURE,
    DEFAULT_OLLAMA_TIMEOUT,
)
from .exceptions import LLMError, LLMResponseError, LLMTimeoutError


@runtime_checkable
class LLMClient(Protocol):
    """Capability surface of the LLM inference service."""

    def generate(
        self, prompt: str, schema: dict[str, Any], model: str | None = None
    ) -> dict[str, Any]:
        """Structured completion: returns the JSON object described by ``schema``."""
        ...

    def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Chat completion: returns ``{"message": {"content": ...}}``."""
        ...

    def embed(self, text: str, model: str | None = None) -> list[float]:
        """Embedding vector for ``text``."""
        ...


def clean_json_string(json_str: str) -> str:
    """Clean common JSON formatting issues from LLM responses.

    Args:
        json_str: Raw JSON string from LLM

    Returns:
        Cleaned JSON string
    """
    json_str = json_str.strip()

    # Trailing comma before closing bracket (common LLM mistake)
    json_str = re.sub(r",(\s*[}\]])", r"\1", json_str)

    def escape_newlines_in_strings(match: re.Match[str]) -> str:
        return re.sub(r"(?<!\\)\n", r"\\n", match.group(0))

    return re.sub(r'"(?:[^"\\]|\\.)*"', escape_newlines_in_strings, json_str)


def parse_json_payload(raw: str) -> Any:
    """Extract and decode JSON from an LLM text response.

    Handles bare JSON, JSON wrapped in markdown code fences, and JSON
    surrounded by prose.

    Raises:
        LLMResponseError: If no decodable JSON is found
    """
    text = raw.strip()
    fence = re.search(r"```(?:json)?\s*\n(.*?)\n```", text, re.DOTALL)
    if fence:
        text = fence.group(1).strip()
    elif not text.startswith(("{", "[")):
        match = re.search(r"(\{.*\}|\[.*\])", text, re.DOTALL)
        if match:
            text = match.group(1)

    if not text:
        raise LLMResponseError("LLM returned an empty response")

    try:
        return json.loads(clean_json_string(text))
    except json.JSONDecodeError as e:
        logger.debug(f"Unparseable LLM payload: {raw[:500]}")
        raise LLMResponseError(f"LLM returned invalid JSON: {e}") from e


class OllamaClient:
    """Synchronous client for the Ollama HTTP API.

    Endpoints used:
    - ``POST /api/generate`` with ``format`` set to a JSON schema
    - ``POST /api/chat``
    - ``POST /api/embed``

    Timeouts and 5xx responses are retried ``retries`` times with a short
    linear backoff; 4xx responses fail immediately.
    """

    RETRY_BACKOFF_SECONDS = 0.5

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_BASE_URL,
        model: str = DEFAULT_OLLAMA_MODEL,
        embed_model: str = DEFAULT_OLLAMA_EMBED_MODEL,
        timeout: float = DEFAULT_OLLAMA_TIMEOUT,
        temperature: float = DEFAULT_OLLAMA_TEMPERATURE,
        retries: int = DEFAULT_OLLAMA_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize Ollama client.

        Args:
            base_url: Ollama server URL
            model: Default model for generate/chat
            embed_model: Default model for embeddings
            timeout: Request timeout in seconds
            temperature: Sampling temperature sent with every completion
            retries: Extra attempts for transient failures
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.embed_model = embed_model
        self.timeout = timeout
        self.temperature = temperature
        self.retries = retries
        self._client = httpx.Client(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

        logger.debug(
            f"Initialized Ollama client: base_url={self.base_url}, model={self.model}, "
            f"embed_model={self.embed_model}"
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "OllamaClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def generate(
        self, prompt: str, schema: dict[str, Any], model: str | None = None
    ) -> dict[str, Any]:
        """Structured completion constrained by a JSON schema.

        Raises:
            LLMError: On transport failure or if the body is not a JSON object
        """
        payload = {
            "model": model or self.model,
            "prompt": prompt,
            "format": schema,
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        body = self._post("/api/generate", payload)
        parsed = parse_json_payload(str(body.get("response", "")))
        if not isinstance(parsed, dict):
            raise LLMResponseError(
                f"Expected a JSON object from generate, got {type(parsed).__name__}"
            )
        return parsed

    def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Chat completion; returns the raw Ollama body (``message.content``)."""
        payload = {
            "model": model or self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": self.temperature, **(options or {})},
        }
        body = self._post("/api/chat", payload)
        if not isinstance(body.get("message"), dict):
            raise LLMResponseError("Chat response is missing 'message'")
        return body

    def embed(self, text: str, model: str | None = None) -> list[float]:
        """Embedding vector for ``text``.

        ``/api/embed`` answers ``{"embeddings": [[...]]}``; older servers
        answer ``{"embedding": [...]}``.
        """
        body = self._post(
            "/api/embed", {"model": model or self.embed_model, "input": text}
        )
        embeddings = body.get("embeddings")
        if isinstance(embeddings, list) and embeddings:
            vector = embeddings[0]
        else:
            vector = body.get("embedding") or []
        if not isinstance(vector, list):
            raise LLMResponseError("Embedding response is not a list")
        try:
            return [float(x) for x in vector]
        except (TypeError, ValueError) as e:
            raise LLMResponseError("Embedding response contains non-numeric values") from e

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``payload`` and return the decoded JSON body.

        Raises:
            LLMTimeoutError: If every attempt timed out
            LLMResponseError: On HTTP error status or non-JSON body
            LLMError: On any other transport failure
        """
        attempts = self.retries + 1
        last_error: LLMError | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = self._client.post(path, json=payload)
                response.raise_for_status()
                body = response.json()
                if not isinstance(body, dict):
                    raise LLMResponseError(f"Ollama {path} returned non-object JSON")
                return body

            except httpx.TimeoutException as e:
                logger.warning(
                    f"Ollama {path} timed out after {self.timeout}s "
                    f"(attempt {attempt}/{attempts})"
                )
                last_error = LLMTimeoutError(
                    f"LLM request timed out after {self.timeout} seconds"
                )
                last_error.__cause__ = e

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                error_msg = f"Ollama API error (HTTP {status_code}) on {path}"
                if status_code == 404:
                    error_msg = (
                        f"Ollama model not found for {path}. "
                        f"Run 'ollama pull {payload.get('model')}'."
                    )
                elif status_code >= 500:
                    error_msg = f"Ollama server error (HTTP {status_code}) on {path}"

                if status_code < 500:
                    logger.error(error_msg)
                    raise LLMResponseError(error_msg, status_code=status_code) from e

                logger.warning(f"{error_msg} (attempt {attempt}/{attempts})")
                last_error = LLMResponseError(error_msg, status_code=status_code)
                last_error.__cause__ = e

            except ValueError as e:
                raise LLMResponseError(f"Ollama {path} returned invalid JSON") from e

            except httpx.HTTPError as e:
                logger.error(f"Ollama request to {path} failed: {e}")
                raise LLMError(f"LLM request failed: {e}") from e

            if attempt < attempts:
                time.sleep(self.RETRY_BACKOFF_SECONDS * attempt)

        if last_error is None:
            raise LLMError(f"Ollama {path} was not attempted (retries={self.retries})")
        raise last_error
