"""HTTP client for the Gemini text generation API.

The client renders prompts (and optional structured history) into a
``generateContent`` request and returns the generated text. It does not
retry; callers own the retry policy.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx

from services.common.http_headers import inject_correlation_id
from services.common.structured_logging import get_logger
from services.chat.context.types import Role, Turn


logger = get_logger(__name__, service_name="chat")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-2.0-flash"

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
SAFETY_THRESHOLDS = [
    "BLOCK_NONE",
    "BLOCK_ONLY_HIGH",
    "BLOCK_MEDIUM_AND_ABOVE",
    "BLOCK_LOW_AND_ABOVE",
]


class GenerationError(Exception):
    """Raised when the generation backend fails to produce text."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerationUnavailableError(GenerationError):
    """Raised for transient failures: timeouts, network errors, 429 and 5xx."""


class GenerationClient(ABC):
    """Uniform contract over a text generation backend."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Generate text for a fully rendered prompt."""
        pass

    @abstractmethod
    async def generate_with_history(self, history: Sequence[Turn], prompt: str) -> str:
        """Generate the next reply given prior turns and a new user prompt."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None


class GeminiClient(GenerationClient):
    """Gemini ``generateContent`` client built on httpx."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 0.8,
        top_k: int = 15,
        top_p: float = 1.0,
        safety_threshold: str = "BLOCK_NONE",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Gemini client.

        Args:
            api_key: Gemini API key; calls fail with GenerationError when empty
            model: Model name
            base_url: API root
            temperature: Sampling temperature
            top_k: Top-k sampling parameter
            top_p: Nucleus sampling parameter
            safety_threshold: Block threshold applied to every harm category
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if safety_threshold not in SAFETY_THRESHOLDS:
            raise ValueError(f"safety_threshold must be one of {SAFETY_THRESHOLDS}")

        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._api_key = api_key
        self._generation_config = {
            "temperature": temperature,
            "topK": top_k,
            "topP": top_p,
        }
        self._safety_settings = [
            {"category": category, "threshold": safety_threshold}
            for category in HARM_CATEGORIES
        ]
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )
        self._logger = logger

        self._logger.info(
            "generation_client.initialized",
            model=model,
            base_url=self.base_url,
            api_key_configured=bool(api_key),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        await self._client.aclose()
        self._logger.info("generation_client.closed")

    async def generate(self, prompt: str) -> str:
        return await self._generate_content([_content(Role.USER.value, prompt)])

    async def generate_with_history(self, history: Sequence[Turn], prompt: str) -> str:
        contents = [_content(turn.speaker, turn.text) for turn in history]
        contents.append(_content(Role.USER.value, prompt))
        return await self._generate_content(contents)

    def _build_payload(self, contents: list[dict[str, Any]]) -> dict[str, Any]:
        return {
            "contents": contents,
            "generationConfig": self._generation_config,
            "safetySettings": self._safety_settings,
        }

    async def _generate_content(self, contents: list[dict[str, Any]]) -> str:
        if not self._api_key:
            raise GenerationError("Generation API key is not configured")

        start_time = time.perf_counter()
        headers = inject_correlation_id({"x-goog-api-key": self._api_key})
        url = f"/v1beta/models/{self.model}:generateContent"

        self._logger.debug(
            "generation.request",
            model=self.model,
            turns=len(contents),
        )

        try:
            response = await self._client.post(
                url, json=self._build_payload(contents), headers=headers
            )
        except httpx.TimeoutException as exc:
            self._logger.warning("generation.timeout", model=self.model, error=str(exc))
            raise GenerationUnavailableError("Generation request timed out") from exc
        except httpx.TransportError as exc:
            self._logger.warning(
                "generation.transport_error", model=self.model, error=str(exc)
            )
            raise GenerationUnavailableError(
                "Generation backend is unreachable"
            ) from exc

        if response.status_code == 429 or response.status_code >= 500:
            self._logger.warning(
                "generation.unavailable",
                model=self.model,
                status_code=response.status_code,
            )
            raise GenerationUnavailableError(
                f"Generation backend unavailable ({response.status_code})",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            self._logger.error(
                "generation.request_failed",
                model=self.model,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GenerationError(
                f"Generation request rejected ({response.status_code})",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError("Generation backend returned invalid JSON") from exc

        text = _extract_text(data)
        self._logger.info(
            "generation.complete",
            model=self.model,
            response_length=len(text),
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return text


def _content(speaker: str, text: str) -> dict[str, Any]:
    # Gemini names the assistant role "model"
    role = "model" if speaker == Role.ASSISTANT.value else speaker
    return {"role": role, "parts": [{"text": text}]}


def _extract_text(data: dict[str, Any]) -> str:
    block_reason = (data.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise GenerationError(f"Prompt blocked by safety filters ({block_reason})")

    candidates = data.get("candidates") or []
    if not candidates:
        raise GenerationError("Generation backend returned no candidates")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    if not text:
        reason = candidates[0].get("finishReason", "unknown")
        raise GenerationError(f"Generation returned empty text (finish reason {reason})")
    return text
