"""Mock implementations for testing."""

from .ollama_mocks import (
    MockChatResponse,
    MockOllamaClient,
    MockResponseLibrary,
    create_mock_transport,
    payload_of,
)

__all__ = [
    "MockChatResponse",
    "MockOllamaClient",
    "MockResponseLibrary",
    "create_mock_transport",
    "payload_of",
]
