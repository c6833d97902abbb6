"""
Autonomic — External Service Clients

Connection management for Postgres and the LLM backends.
"""

from autonomic.clients.llm import (
    AnthropicProvider,
    LLMProvider,
    LLMResponse,
    Message,
    OllamaProvider,
    create_llm_provider,
)
from autonomic.clients.postgres import PostgresClient

__all__ = [
    "AnthropicProvider",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "OllamaProvider",
    "PostgresClient",
    "create_llm_provider",
]
