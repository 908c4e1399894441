"""
LLM Gateway with LiteLLM Integration.

Provides the text-generation contract used by the referral pipeline:
    generate(request, retry_config) -> GenerationResponse

Features:
- Text and vision (image) messages
- Per-call retry budget; only transient provider failures are retried
- Provider errors normalised into the gateway exception hierarchy
"""

import asyncio
import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import litellm
from litellm import acompletion

from src.core.config import ReferralSettings, get_referral_settings
from src.gateways.base import (
    GatewayError,
    ProviderAuthenticationError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RetryConfig,
    execute_with_retry,
)
from src.utils.logging import get_logger

logger = get_logger(__name__)


class MessageRole(str, Enum):
    """Role for LLM messages."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ImageContent:
    """Image content for vision models."""

    image_data: bytes
    media_type: str = "image/jpeg"

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.image_data).decode("utf-8")
        return f"data:{self.media_type};base64,{encoded}"


@dataclass
class LLMMessage:
    """Message for LLM conversation."""

    role: MessageRole
    content: str
    images: list[ImageContent] = field(default_factory=list)

    def to_litellm_format(self) -> dict[str, Any]:
        """Convert to LiteLLM message format."""
        if not self.images:
            return {"role": self.role.value, "content": self.content}

        # Images first so the instruction reads as a caption for them
        content_parts: list[dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": image.to_data_url()}}
            for image in self.images
        ]
        content_parts.append({"type": "text", "text": self.content})
        return {"role": self.role.value, "content": content_parts}


@dataclass
class GenerationRequest:
    """A single bounded completion request."""

    prompt: str
    model: str
    max_tokens: int = 4096
    temperature: float = 0.0
    system_prompt: Optional[str] = None
    images: list[ImageContent] = field(default_factory=list)

    def to_messages(self) -> list[LLMMessage]:
        messages = []
        if self.system_prompt:
            messages.append(LLMMessage(role=MessageRole.SYSTEM, content=self.system_prompt))
        messages.append(
            LLMMessage(role=MessageRole.USER, content=self.prompt, images=list(self.images))
        )
        return messages


@dataclass
class GenerationResponse:
    """Completion text plus usage accounting."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = "stop"


class LLMGateway:
    """
    Text-generation gateway backed by litellm.

    A single provider is configured per deployment; model ids are passed per
    request so fast, full and higher-accuracy phases can use different models.
    """

    def __init__(self, settings: Optional[ReferralSettings] = None):
        self._settings = settings or get_referral_settings()

    @property
    def gateway_name(self) -> str:
        return "LLM"

    async def generate(
        self,
        request: GenerationRequest,
        retry_config: RetryConfig,
    ) -> GenerationResponse:
        """
        Run a completion, retrying transient failures per ``retry_config``.

        Raises:
            GatewayError subclass once retries are exhausted, or immediately
            for permanent failures (authentication, bad request).
        """
        return await execute_with_retry(
            lambda: self._complete(request),
            retry_config,
            description=f"{self.gateway_name} {request.model}",
        )

    async def _complete(self, request: GenerationRequest) -> GenerationResponse:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": [m.to_litellm_format() for m in request.to_messages()],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if self._settings.LLM_API_KEY:
            kwargs["api_key"] = self._settings.LLM_API_KEY
        if self._settings.LLM_API_BASE:
            kwargs["api_base"] = self._settings.LLM_API_BASE

        provider = self._settings.LLM_PROVIDER.value
        try:
            response = await asyncio.wait_for(
                acompletion(**kwargs),
                timeout=self._settings.LLM_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"LLM request timed out after {self._settings.LLM_TIMEOUT_SECONDS}s",
                provider=provider,
                original_error=e,
            )
        except GatewayError:
            raise
        except Exception as e:
            raise translate_provider_error(e, provider)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return GenerationResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or request.model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "stop",
        )


def translate_provider_error(error: Exception, provider: str) -> GatewayError:
    """Map a litellm (or transport) exception onto the gateway hierarchy."""
    if isinstance(error, litellm.RateLimitError):
        return ProviderRateLimitError(f"Rate limit exceeded: {error}", provider, error)
    if isinstance(error, litellm.Timeout):
        return ProviderTimeoutError(f"LLM request timed out: {error}", provider, error)
    if isinstance(error, litellm.AuthenticationError):
        return ProviderAuthenticationError(f"Authentication failed: {error}", provider, error)
    if isinstance(
        error,
        (litellm.APIConnectionError, litellm.ServiceUnavailableError, litellm.InternalServerError),
    ):
        return ProviderUnavailableError(f"LLM provider unavailable: {error}", provider, error)

    error_str = str(error).lower()
    if "rate limit" in error_str or "429" in error_str:
        return ProviderRateLimitError(f"Rate limit exceeded: {error}", provider, error)
    if "unauthorized" in error_str or "401" in error_str:
        return ProviderAuthenticationError(f"Authentication failed: {error}", provider, error)
    if "timeout" in error_str or "timed out" in error_str:
        return ProviderTimeoutError(f"LLM request timed out: {error}", provider, error)
    if "overloaded" in error_str or "503" in error_str or "529" in error_str:
        return ProviderUnavailableError(f"LLM provider unavailable: {error}", provider, error)
    return GatewayError(f"LLM request failed: {error}", provider=provider, original_error=error)


# Singleton instance
_llm_gateway: Optional[LLMGateway] = None


def get_llm_gateway() -> LLMGateway:
    """Get or create the singleton LLM gateway instance."""
    global _llm_gateway
    if _llm_gateway is None:
        _llm_gateway = LLMGateway()
    return _llm_gateway


def reset_llm_gateway() -> None:
    """Reset the LLM gateway (for testing)."""
    global _llm_gateway
    _llm_gateway = None
