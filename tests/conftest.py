"""
Shared fixtures.

Transport is replaced by ``FakeSession``, which hands back real
``requests.Response`` objects backed by in-memory bodies, so the client's
response handling runs unmodified.
"""

import io
import json
from typing import Callable, List, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

import proxyai.config as config_module
from proxyai.api import APIClient, StaticAttestationProvider
from proxyai.constants import ENV_VARS

API_BASE = "https://api.test/v1"
PARTIAL_KEY = "v2|partial|key-0001"
SESSION_ID = "session-1"

_EXTRA_ENV_VARS = [
    "PROXYAI_ASSISTANTS_BETA",
    "PROXYAI_API_TIMEOUT",
    "PROXYAI_EXCHANGE_TIMEOUT",
    "PROXYAI_REUSE_AUTHORIZATION",
    "PROXYAI_LOG_FORMAT",
    "PROXYAI_LOG_TO_FILE",
]


class ChunkedBody:
    """Raw body that returns one queued chunk per read; exceptions in the queue are raised."""

    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.reads = 0
        self.closed = False

    def read(self, amt=None, **kwargs):
        if not self._chunks:
            return b""
        item = self._chunks.pop(0)
        self.reads += 1
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self):
        self.closed = True


def make_response(status_code: int = 200, body=b"", headers: Optional[dict] = None,
                  chunks: Optional[list] = None, url: str = API_BASE) -> requests.Response:
    """Build a real ``requests.Response``; ``body`` may be bytes, str, dict or list."""
    headers = dict(headers or {})
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode("utf-8")
        headers.setdefault("Content-Type", "application/json")
    elif isinstance(body, str):
        body = body.encode("utf-8")

    response = requests.Response()
    response.status_code = status_code
    response.headers = CaseInsensitiveDict(headers)
    response.raw = ChunkedBody(chunks) if chunks is not None else io.BytesIO(body)
    response.url = url
    response.encoding = "utf-8"
    return response


def sse_response(*chunks, status_code: int = 200) -> requests.Response:
    return make_response(
        status_code, chunks=list(chunks), headers={"Content-Type": "text/event-stream"}
    )


class FakeSession:
    """
    Stand-in for ``requests.Session``.

    ``post`` serves the credential exchange; ``send`` serves API requests
    from a queue of responses or a handler callable.
    """

    def __init__(self, handler: Optional[Callable[[requests.PreparedRequest], requests.Response]] = None,
                 exchange_handler: Optional[Callable[[str, dict], requests.Response]] = None):
        self.handler = handler
        self.exchange_handler = exchange_handler
        self.responses: List[requests.Response] = []
        self.sent: List[requests.PreparedRequest] = []
        self.send_kwargs: List[dict] = []
        self.exchanges: List[dict] = []
        self.closed = False

    def queue(self, *responses: requests.Response) -> "FakeSession":
        self.responses.extend(responses)
        return self

    def post(self, url, json=None, headers=None, timeout=None):
        self.exchanges.append(json)
        if self.exchange_handler is not None:
            return self.exchange_handler(url, json)
        return make_response(200, {"authorization": f"tok-{len(self.exchanges)}", "expires_in": 600}, url=url)

    def send(self, request, stream=False, timeout=None, **kwargs):
        self.sent.append(request)
        self.send_kwargs.append({"stream": stream, "timeout": timeout})
        if self.responses:
            return self.responses.pop(0)
        if self.handler is not None:
            return self.handler(request)
        raise AssertionError(f"Unexpected request: {request.method} {request.url}")

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Fresh global configuration that ignores the host's files and environment."""
    for name in list(ENV_VARS.values()) + _EXTRA_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_DIR", tmp_path / ".proxyai")
    monkeypatch.setattr(config_module, "_config", None)
    yield
    config_module._config = None


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def client(fake_session):
    api_client = APIClient(
        partial_key=PARTIAL_KEY,
        api_endpoint=API_BASE,
        attestation_provider=StaticAttestationProvider("attest-token"),
        session=fake_session,
        session_id=SESSION_ID,
    )
    yield api_client
    api_client.close()
