# proxyai/constants.py
"""
Constants used throughout proxyai.

Gateway endpoints, header names, wire-format markers and the environment
variables recognised by the configuration layer.
"""

from pathlib import Path

from .version import __version__

# Gateway configuration
DEFAULT_API_ENDPOINT = "https://api.aiproxy.pro/v1"
DEFAULT_EXCHANGE_PATH = "auth/exchange"
USER_AGENT = f"proxyai-python/{__version__}"

# Assistants subsystem beta flag
ASSISTANTS_BETA = "assistants=v1"

# Request headers
HEADER_AUTHORIZATION = "Authorization"
HEADER_CLIENT_ID = "X-Client-ID"
HEADER_ORGANIZATION = "OpenAI-Organization"
HEADER_BETA = "OpenAI-Beta"

# Event-stream wire format
STREAM_DONE_SENTINEL = "[DONE]"
EVENT_STREAM_CONTENT_TYPE = "text/event-stream"

# Status codes that mean the authorization expired or was rejected upstream
AUTH_EXPIRED_STATUS_CODES = frozenset({401})

# Seconds before expiry at which a reused authorization is refreshed
DEFAULT_REFRESH_MARGIN = 30

DEFAULT_CONFIG_DIR = Path.home() / ".proxyai"

# Environment variables
ENV_VARS = {
    "PARTIAL_KEY": "PROXYAI_PARTIAL_KEY",
    "ORGANIZATION_ID": "PROXYAI_ORGANIZATION_ID",
    "API_ENDPOINT": "PROXYAI_API_ENDPOINT",
    "EXCHANGE_ENDPOINT": "PROXYAI_EXCHANGE_ENDPOINT",
    "DEVICE_CHECK_BYPASS": "AIPROXY_DEVICE_CHECK_BYPASS",
    "LOG_LEVEL": "PROXYAI_LOG_LEVEL",
}
