# proxyai/api/fetch.py
"""
Request execution.

``FetchOrchestrator`` runs one logical request end to end: resolve an
authorization, build, send, re-authorize once on rejection, classify the
status, and hand the body back as JSON, bytes or a typed stream.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

import requests

from ..constants import AUTH_EXPIRED_STATUS_CODES, EVENT_STREAM_CONTENT_TYPE
from ..exceptions import (
    APIRateLimitError, AuthorizationDenied, DecodeError, HTTPStatusError,
    ProxyAIError, TransportError, TransportTimeoutError
)
from ..utils.logging import get_logger, log_operation
from .auth import Authorization, CredentialProvider, parse_retry_after
from .builder import QueryItems, RequestBuilder
from .endpoints import EndpointDescriptor
from .models import APIErrorDetail
from .retry import RetryHandler
from .streaming import Stream, StreamFrame

logger = logging.getLogger(__name__)
op_logger = get_logger(__name__)

T = TypeVar("T")


def _file_positions(params: Optional[Mapping[str, Any]]) -> Dict[str, int]:
    """Current offsets of seekable file values, so a resend can rewind them."""
    positions = {}
    for name, value in (params or {}).items():
        target = value[1] if isinstance(value, tuple) and len(value) > 1 else value
        if hasattr(target, "seek") and hasattr(target, "tell"):
            positions[name] = target.tell()
    return positions


def _rewind(params: Mapping[str, Any], positions: Dict[str, int]):
    for name, offset in positions.items():
        value = params[name]
        target = value[1] if isinstance(value, tuple) else value
        target.seek(offset)


class FetchOrchestrator:
    """
    Sends requests built from endpoint descriptors.

    Args:
        session: HTTP session used for every request
        credentials: Source of authorizations
        builder: Request builder
        retry_handler: Re-authorization policy (defaults to retry once on 401)
        timeout: Per-request timeout in seconds (None = no timeout)
        stream_chunk_size: Read size for streamed bodies (None = as data arrives)

    Example:
        >>> orchestrator = FetchOrchestrator(session, credentials, builder)
        >>> models = orchestrator.fetch_one(EndpointDescriptor.of(Route.MODEL_LIST))
    """

    def __init__(
        self,
        session: requests.Session,
        credentials: CredentialProvider,
        builder: RequestBuilder,
        retry_handler: Optional[RetryHandler] = None,
        timeout: Optional[float] = 60.0,
        stream_chunk_size: Optional[int] = None
    ):
        self.session = session
        self.credentials = credentials
        self.builder = builder
        self.retry_handler = retry_handler or RetryHandler()
        self.timeout = timeout
        self.stream_chunk_size = stream_chunk_size

        # Performance tracking
        self._request_count = 0
        self._error_count = 0
        self._total_latency = 0.0

    def send(
        self,
        descriptor: EndpointDescriptor,
        method: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        query: Optional[QueryItems] = None,
        extra_headers: Optional[Mapping[str, str]] = None,
        multipart: bool = False,
        stream: bool = False
    ) -> requests.Response:
        """
        Send one logical request and return its 2xx response.

        The request is rebuilt and re-sent with a fresh authorization at most
        once, when the first response is an authorization rejection.

        Raises:
            AuthorizationDenied: On 401, or when the exchange is refused
            APIRateLimitError: On 429
            HTTPStatusError: On any other non-2xx status
            TransportTimeoutError: If the request times out
            TransportError: If the request cannot be delivered
            EncodingError: If the request cannot be built
        """
        held: Dict[str, Authorization] = {}
        positions = _file_positions(params) if multipart else {}

        def attempt(number: int) -> requests.Response:
            if number > 1 and positions:
                _rewind(params, positions)
            authorization = self.credentials.resolve_authorization(force_refresh=number > 1)
            held["current"] = authorization
            prepared = self.builder.build(
                descriptor,
                authorization,
                method=method,
                params=params,
                query=query,
                extra_headers=extra_headers,
                multipart=multipart
            )
            with op_logger.context(endpoint=str(descriptor), attempt=number):
                return self._send(prepared, stream=stream)

        def on_retry(response: requests.Response):
            response.close()
            self.credentials.invalidate(held.get("current"))

        try:
            response = self.retry_handler.execute_with_retry(attempt, on_retry=on_retry)
        except ProxyAIError:
            self._error_count += 1
            raise

        if not 200 <= response.status_code < 300:
            self._error_count += 1
            raise self._status_error(descriptor, response)

        return response

    def _send(self, prepared: requests.PreparedRequest, stream: bool = False) -> requests.Response:
        self._request_count += 1
        start_time = time.time()

        try:
            response = self.session.send(prepared, stream=stream, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.error(f"{prepared.method} {prepared.url} timed out: {e}")
            raise TransportTimeoutError(
                f"Request timed out: {e}", url=prepared.url, original_error=e
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"{prepared.method} {prepared.url} failed: {e}")
            raise TransportError(
                f"Request failed: {e}", url=prepared.url, original_error=e
            ) from e
        finally:
            self._total_latency += time.time() - start_time

        logger.debug(f"{prepared.method} {prepared.url} -> {response.status_code}")
        return response

    def _status_error(self, descriptor: EndpointDescriptor, response: requests.Response) -> ProxyAIError:
        """Classify a non-2xx response; the response is consumed and closed."""
        status = response.status_code
        try:
            body = response.text
        except requests.exceptions.RequestException as e:
            logger.debug(f"Could not read error body for {descriptor}: {e}")
            body = ""
        finally:
            response.close()

        try:
            payload = json.loads(body) if body else None
        except ValueError:
            payload = None

        error = APIErrorDetail.from_payload(payload)
        message = f"HTTP {status} from {descriptor}" + (f": {error.message}" if error else "")
        logger.warning(message)

        if status in AUTH_EXPIRED_STATUS_CODES:
            return AuthorizationDenied(message, status_code=status, reason=error.code if error else None)
        if status == 429:
            return APIRateLimitError(
                message, status_code=status, error=error, body=body,
                retry_after=parse_retry_after(response)
            )
        return HTTPStatusError(message, status_code=status, error=error, body=body)

    def fetch_one(
        self,
        descriptor: EndpointDescriptor,
        decode: Optional[Callable[[Any], T]] = None,
        **request_kwargs
    ) -> Any:
        """
        Send a request and decode its JSON body.

        Args:
            descriptor: Endpoint to call
            decode: Optional callable applied to the parsed JSON
            **request_kwargs: ``method``, ``params``, ``query``, ``extra_headers``, ``multipart``

        Returns:
            The parsed body, or ``decode(body)`` when a decoder is given

        Raises:
            DecodeError: If the body is not JSON
        """
        with log_operation("fetch_one", op_logger, endpoint=str(descriptor)):
            response = self.send(descriptor, **request_kwargs)
            try:
                payload = self._json(response)
            finally:
                response.close()
            return decode(payload) if decode is not None else payload

    def fetch_stream(
        self,
        descriptor: EndpointDescriptor,
        decoder: Callable[[StreamFrame], T],
        extra_headers: Optional[Mapping[str, str]] = None,
        **request_kwargs
    ) -> Stream[T]:
        """
        Send a streaming request and return its typed stream.

        Status errors are raised here, before any item is produced. The caller
        owns the returned ``Stream`` and should close it or iterate it to the end.

        Args:
            descriptor: Endpoint to call
            decoder: Frame decoder
            extra_headers: Additional headers
            **request_kwargs: ``method``, ``params``, ``query``

        Returns:
            Stream[T]: Lazily decoded items
        """
        headers = {"Accept": EVENT_STREAM_CONTENT_TYPE}
        headers.update(extra_headers or {})

        with log_operation("fetch_stream", op_logger, endpoint=str(descriptor)):
            response = self.send(descriptor, extra_headers=headers, stream=True, **request_kwargs)
        return Stream(response, decoder, chunk_size=self.stream_chunk_size)

    def fetch_raw_json_array(self, descriptor: EndpointDescriptor, **request_kwargs) -> List[Dict[str, Any]]:
        """
        Send a request whose body holds one JSON object per line.

        Lines that are not JSON objects are skipped.
        """
        with log_operation("fetch_raw_json_array", op_logger, endpoint=str(descriptor)):
            response = self.send(descriptor, **request_kwargs)
            try:
                text = response.text
            finally:
                response.close()

        records = []
        skipped = 0
        # LF only: JSON strings may contain raw U+2028/U+2029
        for line in text.split("\n"):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                skipped += 1
                continue
            if isinstance(record, dict):
                records.append(record)
            else:
                skipped += 1

        if skipped:
            logger.debug(f"Skipped {skipped} malformed line(s) from {descriptor}")
        return records

    def fetch_data(self, descriptor: EndpointDescriptor, **request_kwargs) -> bytes:
        """Send a request and return its raw body."""
        with log_operation("fetch_data", op_logger, endpoint=str(descriptor)):
            response = self.send(descriptor, **request_kwargs)
            try:
                return response.content
            finally:
                response.close()

    @staticmethod
    def _json(response: requests.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(
                f"Response body is not valid JSON: {e}", payload=response.text, original_error=e
            ) from e

    def get_statistics(self) -> Dict[str, Any]:
        """Request counts and latency for this orchestrator."""
        avg_latency = self._total_latency / self._request_count if self._request_count > 0 else 0
        return {
            "requests_made": self._request_count,
            "errors": self._error_count,
            "average_latency": avg_latency,
            "retry": self.retry_handler.get_statistics(),
        }
