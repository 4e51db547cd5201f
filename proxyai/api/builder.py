# proxyai/api/builder.py
"""
Request construction.

``RequestBuilder`` merges an endpoint descriptor, a resolved authorization,
the client's identifying headers and caller parameters into a
``requests.PreparedRequest``. It performs no I/O.
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import requests

from ..constants import (
    ASSISTANTS_BETA, HEADER_BETA, HEADER_CLIENT_ID, HEADER_ORGANIZATION, USER_AGENT
)
from ..exceptions import EncodingError
from .auth import Authorization
from .endpoints import APIEndpoints, EndpointDescriptor

logger = logging.getLogger(__name__)

QueryItems = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


class _ExplicitNull:
    """Marker for an optional field that must be sent as JSON ``null``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EXPLICIT_NULL"

    def __bool__(self) -> bool:
        return False


EXPLICIT_NULL = _ExplicitNull()


def prune_none(value: Any) -> Any:
    """
    Recursively drop ``None`` entries from mappings.

    ``EXPLICIT_NULL`` survives as ``None``, so it serializes to ``null``.
    List items are kept in place.

    Example:
        >>> prune_none({"model": "gpt-4", "user": None, "tools": [{"type": "code", "x": None}]})
        {'model': 'gpt-4', 'tools': [{'type': 'code'}]}
    """
    if value is EXPLICIT_NULL:
        return None
    if isinstance(value, Mapping):
        return {key: prune_none(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [prune_none(item) for item in value]
    return value


def encode_query(query: Optional[QueryItems]) -> List[Tuple[str, str]]:
    """Ordered query items with unset values removed and booleans lower-cased."""
    if not query:
        return []
    items = query.items() if isinstance(query, Mapping) else query
    encoded = []
    for name, value in items:
        if value is None or value is EXPLICIT_NULL:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        encoded.append((name, str(value)))
    return encoded


def _form_value(value: Any) -> str:
    if value is EXPLICIT_NULL:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(prune_none(value), separators=(",", ":"))
    return str(value)


def _is_file_part(value: Any) -> bool:
    if isinstance(value, (bytes, bytearray)) or hasattr(value, "read"):
        return True
    return (
        isinstance(value, tuple)
        and len(value) in (2, 3)
        and isinstance(value[0], str)
        and (isinstance(value[1], (bytes, bytearray)) or hasattr(value[1], "read"))
    )


def _file_part(name: str, value: Any) -> Tuple[str, Any]:
    if isinstance(value, tuple):
        return (name, value)
    if isinstance(value, (bytes, bytearray)):
        return (name, (name, bytes(value)))
    filename = os.path.basename(getattr(value, "name", "") or "") or name
    return (name, (filename, value))


class RequestBuilder:
    """
    Builds transport-ready requests for the gateway.

    Two body shapes are supported:

    - JSON: ``None`` values are omitted at every nesting level; use
      ``EXPLICIT_NULL`` where an endpoint needs a literal ``null``.
    - Multipart: byte strings, open files and ``(filename, content[, content_type])``
      tuples become file parts; other values become form fields, lists as
      repeated ``name[]`` fields.

    Args:
        endpoints: URL resolver for the gateway
        session_id: Client session identifier sent as ``X-Client-ID``
        organization_id: Optional organization header value
        assistants_beta: Beta header value for assistants routes
        user_agent: User-Agent header value

    Example:
        >>> builder = RequestBuilder(APIEndpoints("https://api.aiproxy.pro/v1"), session_id)
        >>> prepared = builder.build(
        ...     EndpointDescriptor.of(Route.CHAT),
        ...     authorization,
        ...     params={"model": "gpt-4o", "messages": messages, "stream": True},
        ... )
    """

    def __init__(
        self,
        endpoints: APIEndpoints,
        session_id: str,
        organization_id: Optional[str] = None,
        assistants_beta: str = ASSISTANTS_BETA,
        user_agent: str = USER_AGENT
    ):
        self.endpoints = endpoints
        self.session_id = session_id
        self.organization_id = organization_id
        self.assistants_beta = assistants_beta
        self.user_agent = user_agent

    def headers_for(self, descriptor: EndpointDescriptor, authorization: Authorization,
                    extra_headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Headers for one request; caller-supplied headers win."""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
            HEADER_CLIENT_ID: self.session_id,
        }
        headers.update(authorization.as_headers())

        if self.organization_id:
            headers[HEADER_ORGANIZATION] = self.organization_id
        if descriptor.is_beta and self.assistants_beta:
            headers[HEADER_BETA] = self.assistants_beta

        if extra_headers:
            headers.update(extra_headers)
        return headers

    def build(
        self,
        descriptor: EndpointDescriptor,
        authorization: Authorization,
        method: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        query: Optional[QueryItems] = None,
        extra_headers: Optional[Mapping[str, str]] = None,
        multipart: bool = False
    ) -> requests.PreparedRequest:
        """
        Build one request.

        Args:
            descriptor: Endpoint to call
            authorization: Authorization to attach
            method: HTTP verb; defaults to the route's verb
            params: Body parameters
            query: Query parameters
            extra_headers: Additional headers
            multipart: Encode ``params`` as multipart form data

        Returns:
            requests.PreparedRequest: Request ready for ``Session.send``

        Raises:
            EncodingError: If the parameters cannot be serialized
        """
        method = (method or descriptor.method).upper()
        headers = self.headers_for(descriptor, authorization, extra_headers)
        request_kwargs: Dict[str, Any] = {}

        if multipart:
            data, files = self._multipart_parts(params or {})
            request_kwargs["data"] = data
            request_kwargs["files"] = files
        elif params is not None:
            try:
                body = json.dumps(prune_none(params), ensure_ascii=False, allow_nan=False)
            except (TypeError, ValueError) as e:
                raise EncodingError(f"Cannot encode request body for {descriptor.route.name}: {e}") from e
            request_kwargs["data"] = body.encode("utf-8")
            headers["Content-Type"] = "application/json"

        try:
            prepared = requests.Request(
                method=method,
                url=self.endpoints.url(descriptor),
                headers=headers,
                params=encode_query(query),
                **request_kwargs
            ).prepare()
        except (requests.exceptions.RequestException, TypeError, ValueError) as e:
            raise EncodingError(f"Cannot build request for {descriptor.route.name}: {e}") from e

        logger.debug(f"Built {method} {descriptor.path}" + (" (multipart)" if multipart else ""))
        return prepared

    def _multipart_parts(self, params: Mapping[str, Any]):
        data: List[Tuple[str, str]] = []
        files: List[Tuple[str, Any]] = []

        for name, value in params.items():
            if value is None:
                continue
            if _is_file_part(value):
                files.append(_file_part(name, value))
            elif isinstance(value, list):
                data.extend((f"{name}[]", _form_value(item)) for item in value if item is not None)
            else:
                data.append((name, _form_value(value)))

        if not files:
            raise EncodingError("Multipart request requires at least one file part")
        return data, files
