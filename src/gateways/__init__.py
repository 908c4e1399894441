"""
Provider Gateway Module for the Referral Intake Service.

Wraps the LLM provider behind a text-generation contract with retry on
transient failures.
"""

from src.gateways.base import (
    GatewayError,
    ProviderAuthenticationError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RetryConfig,
    execute_with_retry,
    with_retry,
)
from src.gateways.llm_gateway import (
    GenerationRequest,
    GenerationResponse,
    ImageContent,
    LLMGateway,
    LLMMessage,
    MessageRole,
    get_llm_gateway,
    reset_llm_gateway,
)

__all__ = [
    # Base
    "GatewayError",
    "ProviderAuthenticationError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "RetryConfig",
    "execute_with_retry",
    "with_retry",
    # LLM
    "GenerationRequest",
    "GenerationResponse",
    "ImageContent",
    "LLMGateway",
    "LLMMessage",
    "MessageRole",
    "get_llm_gateway",
    "reset_llm_gateway",
]
