# proxyai/api/__init__.py
"""
API client for the AI proxy gateway.

This package provides the client for reaching an upstream AI service through
the gateway without holding the real service key on the device.

The API client supports:
- Partial-key credential exchange with device attestation
- Chat, embeddings, moderation, audio, image, file and fine-tuning endpoints
- The assistants subsystem (assistants, threads, messages, runs, run steps)
- Streamed chat completions and assistant run events

Example:
    Basic usage::

        from proxyai.api import APIClient

        client = APIClient(partial_key="v2|abc|123")
        reply = client.start_chat({
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": "Hello"}],
        })

    Streaming::

        with client.start_streamed_chat(params) as stream:
            for chunk in stream:
                print(chunk.text, end="")

.. warning::
   Partial keys should be kept out of version control. Prefer the
   ``PROXYAI_PARTIAL_KEY`` environment variable.
"""

from .auth import (
    AttestationProvider, Authorization, CallableAttestationProvider, CredentialProvider,
    StaticAttestationProvider, UnavailableAttestationProvider
)
from .builder import EXPLICIT_NULL, RequestBuilder
from .client import APIClient, configure_api, get_api_client
from .decoding import AssistantEventDecoder, ChatChunkDecoder, TypedStreamDecoder
from .endpoints import APIEndpoints, EndpointDescriptor, Route
from .fetch import FetchOrchestrator
from .models import (
    APIErrorDetail, AssistantStreamEvent, ChatCompletionChunk, ChunkChoice, ChunkDelta,
    ErrorEvent, MessageDeltaEvent, MessageEvent, RunEvent, RunStepDeltaEvent, RunStepEvent,
    ThreadEvent, UnknownStreamEvent
)
from .retry import RetryHandler
from .streaming import Stream, StreamFrame, StreamFrameParser

__all__ = [
    "APIClient",
    "get_api_client",
    "configure_api",
    "APIEndpoints",
    "EndpointDescriptor",
    "Route",
    "Authorization",
    "CredentialProvider",
    "AttestationProvider",
    "UnavailableAttestationProvider",
    "StaticAttestationProvider",
    "CallableAttestationProvider",
    "RequestBuilder",
    "EXPLICIT_NULL",
    "FetchOrchestrator",
    "RetryHandler",
    "Stream",
    "StreamFrame",
    "StreamFrameParser",
    "TypedStreamDecoder",
    "ChatChunkDecoder",
    "AssistantEventDecoder",
    "APIErrorDetail",
    "ChatCompletionChunk",
    "ChunkChoice",
    "ChunkDelta",
    "AssistantStreamEvent",
    "ThreadEvent",
    "RunEvent",
    "RunStepEvent",
    "RunStepDeltaEvent",
    "MessageEvent",
    "MessageDeltaEvent",
    "ErrorEvent",
    "UnknownStreamEvent",
]
