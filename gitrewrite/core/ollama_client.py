"""Client for the Ollama HTTP API.

Covers the three calls the rewrite engine needs: an availability probe, the
model's context window size, and non-streaming chat completions with a JSON
schema output format.
"""

import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .exceptions import GenerationError, OllamaUnavailableError, ResponseParseError
from .output_parser import truncate_for_log

DEFAULT_OLLAMA_HOST = "http://localhost:11434"

# HTTP statuses worth retrying (rate limiting and gateway trouble)
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}


def resolve_host(host: Optional[str] = None) -> str:
    """
    Normalize an Ollama host.

    Falls back to ``OLLAMA_HOST`` and then the default local server. Accepts
    bare ``host:port`` values and OpenAI-compatible ``/v1`` URLs.
    """
    host = (host or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST).strip()
    if "://" not in host:
        host = f"http://{host}"

    host = host.rstrip("/")
    if host.endswith("/v1"):
        host = host[:-3]
    return host


def parse_context_length(model_info: Dict[str, Any]) -> int:
    """
    Find the context window in ``/api/show`` model info.

    The key is architecture specific, e.g. ``qwen2.context_length``.

    Returns:
        Context size in tokens, or 0 if none was found
    """
    for key, value in model_info.items():
        if not key.endswith(".context_length"):
            continue
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                continue
    return 0


def response_object(response: httpx.Response, what: str) -> Dict[str, Any]:
    """
    Decode a response body that must be a JSON object.

    Raises:
        ResponseParseError: If the body is not JSON or not an object
    """
    try:
        body = response.json()
    except ValueError as e:
        raise ResponseParseError(
            f"Ollama returned a non-JSON {what} response: {e}",
            raw_response=truncate_for_log(response.text),
        ) from e

    if not isinstance(body, dict):
        raise ResponseParseError(
            f"Ollama returned an unexpected {what} response: {type(body).__name__}",
            raw_response=truncate_for_log(response.text),
        )
    return body


def _message_content(body: Dict[str, Any]) -> str:
    message = body.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise ResponseParseError(
            "Ollama chat response has no message content",
            raw_response=truncate_for_log(str(body)),
        )
    return content


@dataclass
class ChatResult:
    """Result of one chat request."""

    content: str
    model: str
    duration_seconds: float
    attempts: int = 1


class OllamaClient:
    """Synchronous Ollama API client."""

    def __init__(
        self,
        host: Optional[str] = None,
        timeout: float = 300.0,
        max_retries: int = 2,
        retry_delay: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
        logger=None,
    ):
        """Initialize Ollama client.

        Args:
            host: Server URL (default: $OLLAMA_HOST or localhost:11434)
            timeout: Request timeout in seconds
            max_retries: Retries for transient failures of chat requests
            retry_delay: Delay between retries in seconds
            transport: Optional httpx transport (used by tests)
            logger: Optional ActivityLogger
        """
        self.host = resolve_host(host)
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.logger = logger
        self._client = httpx.Client(
            base_url=self.host, timeout=timeout, transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "OllamaClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def check_available(self) -> None:
        """
        Probe the server by listing local models.

        Raises:
            OllamaUnavailableError: If the server cannot be reached
        """
        try:
            response = self._client.get("/api/tags", timeout=10.0)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise OllamaUnavailableError(
                f"Failed to connect to Ollama server at {self.host}: {e}"
            ) from e

    def get_context_size(self, model: str) -> int:
        """
        Get a model's context window size.

        Raises:
            OllamaUnavailableError: If the model info request fails
            ResponseParseError: If the response body is not a JSON object
            GenerationError: If the response carries no context length
        """
        try:
            response = self._client.post("/api/show", json={"model": model})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise OllamaUnavailableError(
                f"Failed to get model info from Ollama: {e}"
            ) from e

        model_info = response_object(response, "model info").get("model_info")
        if not isinstance(model_info, dict) or not model_info:
            raise GenerationError(f"No model info available for {model}")

        context_size = parse_context_length(model_info)
        if context_size <= 0:
            raise GenerationError(f"Could not determine context size for model {model}")

        if self.logger:
            self.logger.info(f"Found context size {context_size} for model {model}")
        return context_size

    def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        format: Optional[Dict[str, Any]] = None,
        temperature: float = 0.1,
    ) -> ChatResult:
        """
        Send a non-streaming chat request, retrying transient failures.

        Args:
            model: Model name
            messages: Ordered ``{"role", "content"}`` messages
            format: JSON schema the response must follow
            temperature: Sampling temperature

        Returns:
            ChatResult with the assistant message content

        Raises:
            GenerationError: If the request fails
            ResponseParseError: If the response body is not a chat message
        """
        if not model:
            raise GenerationError("Ollama model must be specified")

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if format is not None:
            payload["format"] = format

        start_time = time.time()
        attempt = 0

        while True:
            attempt += 1
            try:
                response = self._client.post("/api/chat", json=payload)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise httpx.HTTPStatusError(
                        f"Ollama returned HTTP {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                response.raise_for_status()

                body = response_object(response, "chat")
                return ChatResult(
                    content=_message_content(body),
                    model=model,
                    duration_seconds=time.time() - start_time,
                    attempts=attempt,
                )

            except httpx.TimeoutException as e:
                # Don't retry timeouts
                raise GenerationError(
                    f"Ollama request timed out after {self.timeout}s"
                ) from e

            except httpx.HTTPError as e:
                if self._is_retryable_error(e) and attempt <= self.max_retries:
                    if self.logger:
                        self.logger.warning(
                            f"Transient Ollama error, retrying in {self.retry_delay}s: {e}"
                        )
                    time.sleep(self.retry_delay)
                    continue
                raise GenerationError(f"Failed to send Ollama message: {e}") from e

    @staticmethod
    def _is_retryable_error(error: Exception) -> bool:
        """Determine if an error is likely transient."""
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code in RETRYABLE_STATUS_CODES
        return isinstance(
            error, (httpx.ConnectError, httpx.RemoteProtocolError, httpx.ReadError)
        )
