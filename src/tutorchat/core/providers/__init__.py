"""Provider families and the dispatcher that routes between them."""

from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, ProviderRequest
from .dispatcher import ProviderDispatcher, ProviderStream, build_dispatcher
from .openai import OpenAIAdapter, StreamCollector

__all__ = [
    "AnthropicAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderDispatcher",
    "ProviderRequest",
    "ProviderStream",
    "StreamCollector",
    "build_dispatcher",
]
