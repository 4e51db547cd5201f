# proxyai/api/client.py
"""
Main API client for the AI proxy gateway.

This module provides the primary interface for calling the upstream AI
service through the gateway: credential resolution, request construction,
buffered and streamed responses.
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import configure, get_config
from ..constants import USER_AGENT
from ..exceptions import ConfigurationError, EncodingError
from ..version import get_version_info
from .auth import AttestationProvider, CredentialProvider
from .builder import RequestBuilder
from .decoding import AssistantEventDecoder, ChatChunkDecoder
from .endpoints import APIEndpoints, EndpointDescriptor, Route
from .fetch import FetchOrchestrator
from .models import AssistantStreamEvent, ChatCompletionChunk
from .retry import RetryHandler
from .streaming import Stream

logger = logging.getLogger(__name__)

Params = Mapping[str, Any]


def _page(limit: Optional[int] = None, order: Optional[str] = None,
          after: Optional[str] = None, before: Optional[str] = None) -> Dict[str, Any]:
    """Pagination query items; unset values are dropped by the builder."""
    return {"limit": limit, "order": order, "after": after, "before": before}


def _with_stream(params: Optional[Params], stream: bool) -> Dict[str, Any]:
    body = dict(params or {})
    body["stream"] = stream
    return body


class APIClient:
    """
    Main API client for the gateway.

    Every call resolves an authorization from the partial key (see
    ``CredentialProvider``), builds the request and sends it. A response
    rejected with 401 is re-authorized and sent again once. Buffered calls
    return parsed JSON dictionaries; streaming calls return a ``Stream`` of
    typed items.

    Args:
        partial_key: Partial key issued by the gateway dashboard
        organization_id: Optional organization sent with every request
        api_endpoint: Gateway base URL
        exchange_endpoint: Credential exchange URL
        attestation_provider: Source of device attestations
        device_check_bypass: Value sent when the platform cannot attest
        timeout: Request timeout in seconds
        reuse_authorization: Keep authorizations until they near expiry
        session: HTTP session to use; one is created when omitted
        session_id: Client session identifier; a UUID is generated when omitted
        user_agent: Custom user agent string

    Example:
        >>> client = APIClient(partial_key="v2|abc|123", device_check_bypass=bypass)
        >>> reply = client.start_chat({"model": "gpt-4o", "messages": messages})
        >>> with client.start_streamed_chat({"model": "gpt-4o", "messages": messages}) as stream:
        ...     for chunk in stream:
        ...         print(chunk.text, end="")
    """

    def __init__(
        self,
        partial_key: Optional[str] = None,
        organization_id: Optional[str] = None,
        api_endpoint: Optional[str] = None,
        exchange_endpoint: Optional[str] = None,
        attestation_provider: Optional[AttestationProvider] = None,
        device_check_bypass: Optional[str] = None,
        timeout: Optional[float] = None,
        reuse_authorization: Optional[bool] = None,
        session: Optional[requests.Session] = None,
        session_id: Optional[str] = None,
        user_agent: Optional[str] = None
    ):
        """Initialize API client."""
        self.config = get_config()

        self.partial_key = partial_key or self.config.partial_key
        if not self.partial_key:
            raise ConfigurationError(
                "No partial key provided. Pass partial_key or set PROXYAI_PARTIAL_KEY.",
                config_key="partial_key"
            )

        self.organization_id = organization_id or self.config.organization_id
        self.endpoint = api_endpoint or self.config.api_endpoint
        self.timeout = timeout if timeout is not None else self.config.api_timeout
        self.session_id = session_id or str(uuid.uuid4())
        if reuse_authorization is None:
            reuse_authorization = self.config.reuse_authorization

        # Setup HTTP session
        self._owns_session = session is None
        self.session = session or self._create_session()

        # Initialize components
        self.endpoints = APIEndpoints(
            self.endpoint, exchange_endpoint or self.config.exchange_endpoint
        )
        self.credentials = CredentialProvider(
            partial_key=self.partial_key,
            session_id=self.session_id,
            exchange_url=self.endpoints.exchange,
            attestation_provider=attestation_provider,
            device_check_bypass=device_check_bypass or self.config.device_check_bypass,
            session=self.session,
            timeout=self.config.exchange_timeout,
            reuse_authorization=reuse_authorization,
            refresh_margin=self.config.refresh_margin
        )
        self.builder = RequestBuilder(
            self.endpoints,
            session_id=self.session_id,
            organization_id=self.organization_id,
            assistants_beta=self.config.assistants_beta,
            user_agent=user_agent or USER_AGENT
        )
        self.retry_handler = RetryHandler()
        self.fetcher = FetchOrchestrator(
            self.session,
            self.credentials,
            self.builder,
            retry_handler=self.retry_handler,
            timeout=self.timeout,
            stream_chunk_size=self.config.stream_chunk_size
        )

        self._chat_decoder = ChatChunkDecoder()
        self._assistant_decoder = AssistantEventDecoder()
        self._closed = False

        logger.debug(f"Initialized API client for {self.endpoint} (session {self.session_id})")

    @staticmethod
    def _create_session() -> requests.Session:
        session = requests.Session()
        # Re-authorization is the only retry; urllib3 must not resend on its own
        adapter = HTTPAdapter(max_retries=Retry(total=0, read=False), pool_maxsize=20)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    # --- Audio ---

    def create_transcription(self, params: Params) -> Dict[str, Any]:
        """
        Transcribe audio into the input language.

        Args:
            params: Multipart fields; ``file`` is bytes, an open file or a
                ``(filename, content[, content_type])`` tuple

        Example:
            >>> with open("speech.m4a", "rb") as audio:
            ...     result = client.create_transcription({"file": audio, "model": "whisper-1"})
            >>> result["text"]
        """
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.AUDIO_TRANSCRIPTIONS), params=params, multipart=True
        )

    def create_translation(self, params: Params) -> Dict[str, Any]:
        """Translate audio into English. Parameters as for ``create_transcription``."""
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.AUDIO_TRANSLATIONS), params=params, multipart=True
        )

    def create_speech(self, params: Params) -> bytes:
        """
        Generate audio from text.

        Returns:
            bytes: Encoded audio in the requested ``response_format``
        """
        return self.fetcher.fetch_data(EndpointDescriptor.of(Route.AUDIO_SPEECH), params=params)

    # --- Chat ---

    def start_chat(self, params: Params) -> Dict[str, Any]:
        """
        Create a chat completion and wait for the whole reply.

        ``stream`` is always sent as false.
        """
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.CHAT), params=_with_stream(params, False)
        )

    def start_streamed_chat(self, params: Params) -> Stream[ChatCompletionChunk]:
        """
        Create a chat completion and stream it chunk by chunk.

        ``stream`` is always sent as true.

        Args:
            params: Chat completion parameters (``model``, ``messages``, ...)

        Returns:
            Stream[ChatCompletionChunk]: Chunks in arrival order. The stream
            ends at the server's end-of-stream marker.

        Raises:
            AuthorizationDenied: If the request cannot be authorized
            HTTPStatusError: If the request is rejected before streaming starts

        Example:
            >>> stream = client.start_streamed_chat({
            ...     "model": "gpt-4o",
            ...     "messages": [{"role": "user", "content": "Hello"}],
            ... })
            >>> text = "".join(chunk.text for chunk in stream)
        """
        return self.fetcher.fetch_stream(
            EndpointDescriptor.of(Route.CHAT),
            self._chat_decoder,
            params=_with_stream(params, True)
        )

    # --- Embeddings and moderation ---

    def create_embeddings(self, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.EMBEDDINGS), params=params)

    def create_moderation(self, input: Union[str, Sequence[str]], model: Optional[str] = None) -> Dict[str, Any]:
        """
        Classify text against the moderation policy.

        Args:
            input: A string or a list of strings
            model: Moderation model (server default when omitted)
        """
        if isinstance(input, str):
            payload: Any = input
        elif isinstance(input, (list, tuple)) and all(isinstance(item, str) for item in input):
            payload = list(input)
        else:
            raise EncodingError("Moderation input must be a string or a list of strings", field="input")

        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.MODERATIONS), params={"input": payload, "model": model}
        )

    # --- Fine-tuning ---

    def create_fine_tuning_job(self, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.FINE_TUNING_CREATE), params=params)

    def list_fine_tuning_jobs(self, after: Optional[str] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.FINE_TUNING_LIST), query={"after": after, "limit": limit}
        )

    def retrieve_fine_tuning_job(self, job_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.FINE_TUNING_RETRIEVE, job_id=job_id))

    def cancel_fine_tuning_job(self, job_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.FINE_TUNING_CANCEL, job_id=job_id))

    def list_fine_tuning_events(self, job_id: str, after: Optional[str] = None,
                                limit: Optional[int] = None) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.FINE_TUNING_EVENTS, job_id=job_id),
            query={"after": after, "limit": limit}
        )

    # --- Files ---

    def list_files(self) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.FILE_LIST))

    def upload_file(self, params: Params) -> Dict[str, Any]:
        """
        Upload a file.

        Args:
            params: Multipart fields, ``file`` and ``purpose``

        Example:
            >>> client.upload_file({"file": ("train.jsonl", data), "purpose": "fine-tune"})
        """
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.FILE_UPLOAD), params=params, multipart=True
        )

    def delete_file(self, file_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.FILE_DELETE, file_id=file_id))

    def retrieve_file(self, file_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.FILE_RETRIEVE, file_id=file_id))

    def retrieve_file_content(self, file_id: str) -> List[Dict[str, Any]]:
        """
        Download a JSON Lines file as a list of records.

        Lines that are not JSON objects are skipped.
        """
        return self.fetcher.fetch_raw_json_array(EndpointDescriptor.of(Route.FILE_CONTENT, file_id=file_id))

    # --- Images ---

    def create_images(self, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.IMAGE_GENERATIONS), params=params)

    def edit_image(self, params: Params) -> Dict[str, Any]:
        """Edit an image from a prompt; ``image`` and ``mask`` are multipart file parts."""
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.IMAGE_EDITS), params=params, multipart=True
        )

    def create_image_variations(self, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.IMAGE_VARIATIONS), params=params, multipart=True
        )

    # --- Models ---

    def list_models(self) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.MODEL_LIST))

    def retrieve_model(self, model_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.MODEL_RETRIEVE, model_id=model_id))

    def delete_fine_tuned_model(self, model_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.MODEL_DELETE, model_id=model_id))

    # --- Assistants ---

    def create_assistant(self, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.ASSISTANT_CREATE), params=params)

    def retrieve_assistant(self, assistant_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.ASSISTANT_RETRIEVE, assistant_id=assistant_id)
        )

    def modify_assistant(self, assistant_id: str, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.ASSISTANT_MODIFY, assistant_id=assistant_id), params=params
        )

    def delete_assistant(self, assistant_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.ASSISTANT_DELETE, assistant_id=assistant_id)
        )

    def list_assistants(self, limit: Optional[int] = None, order: Optional[str] = None,
                        after: Optional[str] = None, before: Optional[str] = None) -> Dict[str, Any]:
        """
        List assistants.

        Args:
            limit: Page size
            order: "asc" or "desc" by creation time
            after: Cursor; return objects after this id
            before: Cursor; return objects before this id
        """
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.ASSISTANT_LIST), query=_page(limit, order, after, before)
        )

    def create_assistant_file(self, assistant_id: str, file_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.ASSISTANT_FILE_CREATE, assistant_id=assistant_id),
            params={"file_id": file_id}
        )

    def retrieve_assistant_file(self, assistant_id: str, file_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.ASSISTANT_FILE_RETRIEVE, assistant_id=assistant_id, file_id=file_id)
        )

    def delete_assistant_file(self, assistant_id: str, file_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.ASSISTANT_FILE_DELETE, assistant_id=assistant_id, file_id=file_id)
        )

    def list_assistant_files(self, assistant_id: str, limit: Optional[int] = None, order: Optional[str] = None,
                             after: Optional[str] = None, before: Optional[str] = None) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.ASSISTANT_FILE_LIST, assistant_id=assistant_id),
            query=_page(limit, order, after, before)
        )

    # --- Threads ---

    def create_thread(self, params: Optional[Params] = None) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.THREAD_CREATE), params=dict(params or {}))

    def retrieve_thread(self, thread_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.THREAD_RETRIEVE, thread_id=thread_id))

    def modify_thread(self, thread_id: str, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.THREAD_MODIFY, thread_id=thread_id), params=params
        )

    def delete_thread(self, thread_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.THREAD_DELETE, thread_id=thread_id))

    # --- Messages ---

    def create_message(self, thread_id: str, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.MESSAGE_CREATE, thread_id=thread_id), params=params
        )

    def retrieve_message(self, thread_id: str, message_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.MESSAGE_RETRIEVE, thread_id=thread_id, message_id=message_id)
        )

    def modify_message(self, thread_id: str, message_id: str, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.MESSAGE_MODIFY, thread_id=thread_id, message_id=message_id),
            params=params
        )

    def list_messages(self, thread_id: str, limit: Optional[int] = None, order: Optional[str] = None,
                      after: Optional[str] = None, before: Optional[str] = None) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.MESSAGE_LIST, thread_id=thread_id),
            query=_page(limit, order, after, before)
        )

    def retrieve_message_file(self, thread_id: str, message_id: str, file_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(
                Route.MESSAGE_FILE_RETRIEVE, thread_id=thread_id, message_id=message_id, file_id=file_id
            )
        )

    def list_message_files(self, thread_id: str, message_id: str, limit: Optional[int] = None,
                           order: Optional[str] = None, after: Optional[str] = None,
                           before: Optional[str] = None) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.MESSAGE_FILE_LIST, thread_id=thread_id, message_id=message_id),
            query=_page(limit, order, after, before)
        )

    # --- Runs ---

    def create_run(self, thread_id: str, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.RUN_CREATE, thread_id=thread_id), params=params
        )

    def retrieve_run(self, thread_id: str, run_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.RUN_RETRIEVE, thread_id=thread_id, run_id=run_id)
        )

    def modify_run(self, thread_id: str, run_id: str, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.RUN_MODIFY, thread_id=thread_id, run_id=run_id), params=params
        )

    def list_runs(self, thread_id: str, limit: Optional[int] = None, order: Optional[str] = None,
                  after: Optional[str] = None, before: Optional[str] = None) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.RUN_LIST, thread_id=thread_id),
            query=_page(limit, order, after, before)
        )

    def cancel_run(self, thread_id: str, run_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.RUN_CANCEL, thread_id=thread_id, run_id=run_id)
        )

    def submit_tool_outputs_to_run(self, thread_id: str, run_id: str, params: Params) -> Dict[str, Any]:
        """
        Submit tool call results to a run that requires action.

        Args:
            thread_id: Thread the run belongs to
            run_id: Run in ``requires_action`` status
            params: ``{"tool_outputs": [{"tool_call_id": ..., "output": ...}]}``
        """
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.RUN_SUBMIT_TOOL_OUTPUTS, thread_id=thread_id, run_id=run_id),
            params=params
        )

    def create_thread_and_run(self, params: Params) -> Dict[str, Any]:
        return self.fetcher.fetch_one(EndpointDescriptor.of(Route.RUN_CREATE_THREAD_AND_RUN), params=params)

    def retrieve_run_step(self, thread_id: str, run_id: str, step_id: str) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.RUN_STEP_RETRIEVE, thread_id=thread_id, run_id=run_id, step_id=step_id)
        )

    def list_run_steps(self, thread_id: str, run_id: str, limit: Optional[int] = None,
                       order: Optional[str] = None, after: Optional[str] = None,
                       before: Optional[str] = None) -> Dict[str, Any]:
        return self.fetcher.fetch_one(
            EndpointDescriptor.of(Route.RUN_STEP_LIST, thread_id=thread_id, run_id=run_id),
            query=_page(limit, order, after, before)
        )

    # --- Streamed runs ---

    def create_run_stream(self, thread_id: str, params: Params) -> Stream[AssistantStreamEvent]:
        """
        Create a run and stream its events.

        Returns:
            Stream[AssistantStreamEvent]: Run, step and message events in
            arrival order; ``stream`` is always sent as true

        Example:
            >>> with client.create_run_stream(thread_id, {"assistant_id": assistant_id}) as events:
            ...     for event in events:
            ...         if isinstance(event, MessageDeltaEvent):
            ...             print(event.text, end="")
        """
        return self.fetcher.fetch_stream(
            EndpointDescriptor.of(Route.RUN_CREATE, thread_id=thread_id),
            self._assistant_decoder,
            params=_with_stream(params, True)
        )

    def create_thread_and_run_stream(self, params: Params) -> Stream[AssistantStreamEvent]:
        return self.fetcher.fetch_stream(
            EndpointDescriptor.of(Route.RUN_CREATE_THREAD_AND_RUN),
            self._assistant_decoder,
            params=_with_stream(params, True)
        )

    def submit_tool_outputs_to_run_stream(self, thread_id: str, run_id: str,
                                          params: Params) -> Stream[AssistantStreamEvent]:
        return self.fetcher.fetch_stream(
            EndpointDescriptor.of(Route.RUN_SUBMIT_TOOL_OUTPUTS, thread_id=thread_id, run_id=run_id),
            self._assistant_decoder,
            params=_with_stream(params, True)
        )

    # --- Lifecycle ---

    def get_client_stats(self) -> Dict[str, Any]:
        """
        Get client-side statistics.

        Returns:
            Request counts, latency, re-authorization counts and the state of
            the held authorization (never the secret itself)
        """
        stats = self.fetcher.get_statistics()
        stats["session_id"] = self.session_id
        stats["authorization"] = self.credentials.get_token_info()
        stats["closed"] = self._closed
        stats["version"] = get_version_info()
        return stats

    def close(self):
        """Close the HTTP session and destroy the held authorization."""
        if self._closed:
            return
        self._closed = True
        self.credentials.clear()
        if self._owns_session:
            self.session.close()

        logger.debug(f"API client session {self.session_id} closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"APIClient(endpoint={self.endpoint}, session_id={self.session_id})"


# Global API client instance
_api_client: Optional[APIClient] = None


def get_api_client(**kwargs) -> APIClient:
    """
    Get or create global API client instance.

    Args:
        **kwargs: API client configuration options, used only when the
            client is created

    Returns:
        Global API client instance
    """
    global _api_client

    if _api_client is None or _api_client.closed:
        _api_client = APIClient(**kwargs)

    return _api_client


def configure_api(**kwargs):
    """
    Configure global API client settings.

    Keyword arguments are configuration options (see ``ProxyAIConfig``). The
    global client is closed and recreated on next use.

    Example:
        >>> configure_api(partial_key="v2|abc|123", api_timeout=20)
    """
    global _api_client

    configure(**kwargs)

    # Reset client to use new configuration
    if _api_client:
        _api_client.close()
        _api_client = None
