# proxyai/__init__.py
"""
proxyai: a typed client for AI services reached through a key-protecting gateway.

The gateway holds the real service key. The client holds a *partial key* and
exchanges it, together with a device attestation, for short-lived request
authorizations.

Examples:
    Buffered chat completion::

        import proxyai

        client = proxyai.APIClient(partial_key="v2|abc|123")
        reply = client.start_chat({
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": "Hello"}],
        })

    Streamed assistant run::

        with client.create_run_stream(thread_id, {"assistant_id": assistant_id}) as events:
            for event in events:
                if isinstance(event, proxyai.MessageDeltaEvent):
                    print(event.text, end="")

Note:
    On hosts that cannot produce a device attestation, set
    ``AIPROXY_DEVICE_CHECK_BYPASS`` for development and CI only.
"""

import warnings

# Version information
from .version import __version__, __version_info__, get_version_info

# Configuration management
from .config import configure, get_config, configure_session, reset_config, save_config, load_config

# Exceptions
from .exceptions import (
    ProxyAIError,
    ConfigurationError,
    AuthError,
    AttestationUnavailable,
    AuthorizationDenied,
    EncodingError,
    TransportError,
    TransportTimeoutError,
    HTTPStatusError,
    APIRateLimitError,
    StreamAPIError,
    TruncatedStream,
    DecodeError,
)

# API client
from .api import (
    APIClient,
    get_api_client,
    configure_api,
    EXPLICIT_NULL,
    AttestationProvider,
    CallableAttestationProvider,
    StaticAttestationProvider,
    Stream,
    ChatCompletionChunk,
    AssistantStreamEvent,
    ThreadEvent,
    RunEvent,
    RunStepEvent,
    RunStepDeltaEvent,
    MessageEvent,
    MessageDeltaEvent,
    ErrorEvent,
    UnknownStreamEvent,
)

# Utilities
from .utils.logging import set_log_level, get_logger

# Initialize default configuration on import
try:
    configure()
except ConfigurationError as e:
    warnings.warn(f"Failed to initialize default configuration: {e}")


def get_version() -> str:
    """Get proxyai version string.

    Returns:
        str: Version string (e.g., "0.1.0")
    """
    return __version__


__all__ = [
    # Version information
    "__version__",
    "__version_info__",
    "get_version",
    "get_version_info",

    # Configuration
    "configure",
    "get_config",
    "configure_session",
    "reset_config",
    "save_config",
    "load_config",

    # Exceptions
    "ProxyAIError",
    "ConfigurationError",
    "AuthError",
    "AttestationUnavailable",
    "AuthorizationDenied",
    "EncodingError",
    "TransportError",
    "TransportTimeoutError",
    "HTTPStatusError",
    "APIRateLimitError",
    "StreamAPIError",
    "TruncatedStream",
    "DecodeError",

    # API
    "APIClient",
    "get_api_client",
    "configure_api",
    "EXPLICIT_NULL",
    "AttestationProvider",
    "CallableAttestationProvider",
    "StaticAttestationProvider",
    "Stream",
    "ChatCompletionChunk",
    "AssistantStreamEvent",
    "ThreadEvent",
    "RunEvent",
    "RunStepEvent",
    "RunStepDeltaEvent",
    "MessageEvent",
    "MessageDeltaEvent",
    "ErrorEvent",
    "UnknownStreamEvent",

    # Utilities
    "set_log_level",
    "get_logger",
]

# Package metadata
__license__ = "Apache-2.0"
__description__ = "Typed client for AI services behind a key-protecting gateway"
