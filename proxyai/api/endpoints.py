# proxyai/api/endpoints.py
"""
API endpoint definitions and URL construction.

Every endpoint the client can reach is a member of the closed ``Route``
enumeration. A route knows its service area, action, path template and
default HTTP verb; an ``EndpointDescriptor`` binds a route to its path
parameters, and ``APIEndpoints`` turns descriptors into absolute URLs.
"""

from dataclasses import dataclass
from enum import Enum
from string import Formatter
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, urljoin

from ..constants import DEFAULT_EXCHANGE_PATH
from ..exceptions import EncodingError

# Service areas that belong to the stateful assistants subsystem
BETA_AREAS = frozenset({
    "assistant", "assistant_file", "thread", "message", "message_file", "run", "run_step",
})


class Route(Enum):
    """
    Closed enumeration of API routes.

    Each value is ``(area, action, path template, default verb)``.

    Example:
        >>> Route.THREAD_RETRIEVE.method
        'GET'
        >>> Route.THREAD_RETRIEVE.template
        'threads/{thread_id}'
    """

    # Audio
    AUDIO_TRANSCRIPTIONS = ("audio", "transcriptions", "audio/transcriptions", "POST")
    AUDIO_TRANSLATIONS = ("audio", "translations", "audio/translations", "POST")
    AUDIO_SPEECH = ("audio", "speech", "audio/speech", "POST")

    # Chat, embeddings, moderation
    CHAT = ("chat", "create", "chat/completions", "POST")
    EMBEDDINGS = ("embeddings", "create", "embeddings", "POST")
    MODERATIONS = ("moderations", "create", "moderations", "POST")

    # Fine-tuning
    FINE_TUNING_CREATE = ("fine_tuning", "create", "fine_tuning/jobs", "POST")
    FINE_TUNING_LIST = ("fine_tuning", "list", "fine_tuning/jobs", "GET")
    FINE_TUNING_RETRIEVE = ("fine_tuning", "retrieve", "fine_tuning/jobs/{job_id}", "GET")
    FINE_TUNING_CANCEL = ("fine_tuning", "cancel", "fine_tuning/jobs/{job_id}/cancel", "POST")
    FINE_TUNING_EVENTS = ("fine_tuning", "events", "fine_tuning/jobs/{job_id}/events", "GET")

    # Files
    FILE_LIST = ("file", "list", "files", "GET")
    FILE_UPLOAD = ("file", "upload", "files", "POST")
    FILE_DELETE = ("file", "delete", "files/{file_id}", "DELETE")
    FILE_RETRIEVE = ("file", "retrieve", "files/{file_id}", "GET")
    FILE_CONTENT = ("file", "retrieve_content", "files/{file_id}/content", "GET")

    # Images
    IMAGE_GENERATIONS = ("images", "generations", "images/generations", "POST")
    IMAGE_EDITS = ("images", "edits", "images/edits", "POST")
    IMAGE_VARIATIONS = ("images", "variations", "images/variations", "POST")

    # Models
    MODEL_LIST = ("model", "list", "models", "GET")
    MODEL_RETRIEVE = ("model", "retrieve", "models/{model_id}", "GET")
    MODEL_DELETE = ("model", "delete_fine_tuned", "models/{model_id}", "DELETE")

    # Assistants
    ASSISTANT_CREATE = ("assistant", "create", "assistants", "POST")
    ASSISTANT_LIST = ("assistant", "list", "assistants", "GET")
    ASSISTANT_RETRIEVE = ("assistant", "retrieve", "assistants/{assistant_id}", "GET")
    ASSISTANT_MODIFY = ("assistant", "modify", "assistants/{assistant_id}", "POST")
    ASSISTANT_DELETE = ("assistant", "delete", "assistants/{assistant_id}", "DELETE")

    ASSISTANT_FILE_CREATE = ("assistant_file", "create", "assistants/{assistant_id}/files", "POST")
    ASSISTANT_FILE_LIST = ("assistant_file", "list", "assistants/{assistant_id}/files", "GET")
    ASSISTANT_FILE_RETRIEVE = (
        "assistant_file", "retrieve", "assistants/{assistant_id}/files/{file_id}", "GET")
    ASSISTANT_FILE_DELETE = (
        "assistant_file", "delete", "assistants/{assistant_id}/files/{file_id}", "DELETE")

    # Threads
    THREAD_CREATE = ("thread", "create", "threads", "POST")
    THREAD_RETRIEVE = ("thread", "retrieve", "threads/{thread_id}", "GET")
    THREAD_MODIFY = ("thread", "modify", "threads/{thread_id}", "POST")
    THREAD_DELETE = ("thread", "delete", "threads/{thread_id}", "DELETE")

    # Messages
    MESSAGE_CREATE = ("message", "create", "threads/{thread_id}/messages", "POST")
    MESSAGE_LIST = ("message", "list", "threads/{thread_id}/messages", "GET")
    MESSAGE_RETRIEVE = ("message", "retrieve", "threads/{thread_id}/messages/{message_id}", "GET")
    MESSAGE_MODIFY = ("message", "modify", "threads/{thread_id}/messages/{message_id}", "POST")

    MESSAGE_FILE_LIST = (
        "message_file", "list", "threads/{thread_id}/messages/{message_id}/files", "GET")
    MESSAGE_FILE_RETRIEVE = (
        "message_file", "retrieve", "threads/{thread_id}/messages/{message_id}/files/{file_id}", "GET")

    # Runs
    RUN_CREATE = ("run", "create", "threads/{thread_id}/runs", "POST")
    RUN_LIST = ("run", "list", "threads/{thread_id}/runs", "GET")
    RUN_RETRIEVE = ("run", "retrieve", "threads/{thread_id}/runs/{run_id}", "GET")
    RUN_MODIFY = ("run", "modify", "threads/{thread_id}/runs/{run_id}", "POST")
    RUN_CANCEL = ("run", "cancel", "threads/{thread_id}/runs/{run_id}/cancel", "POST")
    RUN_SUBMIT_TOOL_OUTPUTS = (
        "run", "submit_tool_outputs", "threads/{thread_id}/runs/{run_id}/submit_tool_outputs", "POST")
    RUN_CREATE_THREAD_AND_RUN = ("run", "create_thread_and_run", "threads/runs", "POST")

    # Run steps
    RUN_STEP_LIST = ("run_step", "list", "threads/{thread_id}/runs/{run_id}/steps", "GET")
    RUN_STEP_RETRIEVE = (
        "run_step", "retrieve", "threads/{thread_id}/runs/{run_id}/steps/{step_id}", "GET")

    def __init__(self, area: str, action: str, template: str, method: str):
        self.area = area
        self.action = action
        self.template = template
        self.method = method

    @property
    def path_params(self) -> Tuple[str, ...]:
        """Names of the placeholders in the path template, in order."""
        return tuple(name for _, name, _, _ in Formatter().parse(self.template) if name)

    @property
    def is_beta(self) -> bool:
        """True for routes of the assistants subsystem."""
        return self.area in BETA_AREAS


@dataclass(frozen=True)
class EndpointDescriptor:
    """
    A route bound to its path parameters.

    Args:
        route: The route to call
        params: Path parameter values, as ``(name, value)`` pairs

    Example:
        >>> descriptor = EndpointDescriptor.of(Route.RUN_CANCEL, thread_id="t_1", run_id="r_1")
        >>> descriptor.path
        'threads/t_1/runs/r_1/cancel'
    """

    route: Route
    params: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def of(cls, route: Route, **path_params: Any) -> "EndpointDescriptor":
        """Bind ``route`` to keyword path parameters, validating names and values."""
        expected = set(route.path_params)
        given = set(path_params)

        missing = expected - given
        if missing:
            raise EncodingError(
                f"Missing path parameter(s) for {route.name}: {', '.join(sorted(missing))}",
                field=sorted(missing)[0]
            )

        unexpected = given - expected
        if unexpected:
            raise EncodingError(
                f"Unexpected path parameter(s) for {route.name}: {', '.join(sorted(unexpected))}",
                field=sorted(unexpected)[0]
            )

        for name, value in path_params.items():
            if value is None or str(value) == "":
                raise EncodingError(f"Path parameter '{name}' must not be empty", field=name)

        return cls(route, tuple((name, str(path_params[name])) for name in route.path_params))

    @property
    def method(self) -> str:
        return self.route.method

    @property
    def is_beta(self) -> bool:
        return self.route.is_beta

    @property
    def path(self) -> str:
        """Relative URL path with every parameter percent-encoded."""
        encoded = {name: quote(value, safe='') for name, value in self.params}
        return self.route.template.format(**encoded)

    def __str__(self) -> str:
        return self.path


class APIEndpoints:
    """
    URL construction for the gateway.

    Args:
        base_url (str): Base API URL including version (e.g. "https://api.aiproxy.pro/v1")
        exchange_url (str, optional): Credential exchange URL. Defaults to
            ``<base_url>/auth/exchange``.

    Example:
        >>> endpoints = APIEndpoints("https://api.aiproxy.pro/v1")
        >>> endpoints.url(EndpointDescriptor.of(Route.CHAT))
        'https://api.aiproxy.pro/v1/chat/completions'
    """

    def __init__(self, base_url: str, exchange_url: Optional[str] = None):
        self.base_url = base_url.rstrip('/')
        self.exchange = exchange_url or self._url(DEFAULT_EXCHANGE_PATH)

    def url(self, descriptor: EndpointDescriptor) -> str:
        """Absolute URL for a bound endpoint descriptor."""
        return self._url(descriptor.path)

    def _url(self, path: str) -> str:
        return urljoin(self.base_url + '/', path)

    def get_endpoint_info(self) -> Dict[str, Any]:
        """Summary of the configured endpoints."""
        return {
            "base_url": self.base_url,
            "exchange_url": self.exchange,
            "total_routes": len(Route),
            "beta_routes": sorted(route.name for route in Route if route.is_beta),
        }

    def __repr__(self) -> str:
        return f"APIEndpoints(base_url={self.base_url})"
