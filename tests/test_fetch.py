"""
Request execution: re-authorization, status classification and body handling.
python -m pytest tests/test_fetch.py -v
"""

import io

import pytest
import requests

from proxyai.api import APIClient, StaticAttestationProvider
from proxyai.api.endpoints import EndpointDescriptor, Route
from proxyai.exceptions import (
    APIRateLimitError, AuthorizationDenied, DecodeError, HTTPStatusError, TransportError,
    TransportTimeoutError
)

from conftest import make_response, sse_response

MODELS = EndpointDescriptor.of(Route.MODEL_LIST)
CHAT = EndpointDescriptor.of(Route.CHAT)


class TestReauthorization:
    def test_rejected_request_is_resent_once_with_fresh_authorization(self, client, fake_session):
        fake_session.queue(
            make_response(401, {"error": {"message": "expired"}}),
            make_response(200, {"data": []}),
        )

        assert client.fetcher.fetch_one(MODELS) == {"data": []}
        assert len(fake_session.sent) == 2
        assert len(fake_session.exchanges) == 2
        assert [r.headers["Authorization"] for r in fake_session.sent] == ["Bearer tok-1", "Bearer tok-2"]

    def test_second_rejection_is_authorization_denied(self, client, fake_session):
        fake_session.queue(make_response(401, {}), make_response(401, {}))

        with pytest.raises(AuthorizationDenied) as exc_info:
            client.fetcher.fetch_one(MODELS)

        assert exc_info.value.status_code == 401
        assert exc_info.value.reason == "rejected_after_refresh"
        assert len(fake_session.sent) == 2

    def test_reused_authorization_is_replaced_on_rejection(self, fake_session):
        client = APIClient(
            partial_key="v2|partial|key-0001",
            api_endpoint="https://api.test/v1",
            attestation_provider=StaticAttestationProvider("attest-token"),
            reuse_authorization=True,
            session=fake_session,
        )
        fake_session.queue(
            make_response(200, {}),
            make_response(401, {}),
            make_response(200, {}),
            make_response(200, {}),
        )

        client.fetcher.fetch_one(MODELS)
        client.fetcher.fetch_one(MODELS)
        client.fetcher.fetch_one(MODELS)

        tokens = [r.headers["Authorization"] for r in fake_session.sent]
        assert tokens == ["Bearer tok-1", "Bearer tok-1", "Bearer tok-2", "Bearer tok-2"]
        assert len(fake_session.exchanges) == 2

    def test_other_statuses_are_not_retried(self, client, fake_session):
        fake_session.queue(make_response(403, {"error": {"message": "forbidden"}}))

        with pytest.raises(HTTPStatusError) as exc_info:
            client.fetcher.fetch_one(MODELS)
        assert exc_info.value.status_code == 403
        assert len(fake_session.sent) == 1

    def test_multipart_files_are_rewound_for_the_resend(self, client, fake_session):
        fake_session.queue(make_response(401, {}), make_response(200, {"id": "file-1"}))
        upload = io.BytesIO(b"line-one\nline-two\n")
        upload.name = "train.jsonl"

        client.fetcher.fetch_one(
            EndpointDescriptor.of(Route.FILE_UPLOAD),
            params={"file": upload, "purpose": "fine-tune"},
            multipart=True
        )

        assert all(b"line-one\nline-two\n" in r.body for r in fake_session.sent)

    def test_retry_statistics(self, client, fake_session):
        fake_session.queue(make_response(401, {}), make_response(200, {}))
        client.fetcher.fetch_one(MODELS)

        stats = client.fetcher.get_statistics()
        assert stats["requests_made"] == 2
        assert stats["retry"]["total_retries"] == 1
        assert stats["retry"]["successful_retries"] == 1


class TestStatusClassification:
    def test_rate_limit(self, client, fake_session):
        fake_session.queue(make_response(
            429, {"error": {"message": "slow down", "type": "rate_limit"}}, headers={"Retry-After": "3"}
        ))

        with pytest.raises(APIRateLimitError) as exc_info:
            client.fetcher.fetch_one(MODELS)
        assert exc_info.value.retry_after == 3.0
        assert exc_info.value.error.message == "slow down"

    def test_server_error_carries_api_error(self, client, fake_session):
        fake_session.queue(make_response(
            500, {"error": {"message": "boom", "type": "server_error", "code": "internal"}}
        ))

        with pytest.raises(HTTPStatusError) as exc_info:
            client.fetcher.fetch_one(MODELS)

        error = exc_info.value
        assert not isinstance(error, APIRateLimitError)
        assert error.status_code == 500
        assert error.error.code == "internal"

    def test_non_json_error_body(self, client, fake_session):
        fake_session.queue(make_response(502, "<html>Bad Gateway</html>"))

        with pytest.raises(HTTPStatusError) as exc_info:
            client.fetcher.fetch_one(MODELS)
        assert exc_info.value.error is None
        assert "Bad Gateway" in exc_info.value.body

    def test_stream_status_error_is_raised_before_iteration(self, client, fake_session):
        fake_session.queue(make_response(400, {"error": {"message": "bad model"}}))

        with pytest.raises(HTTPStatusError):
            client.fetcher.fetch_stream(CHAT, lambda frame: frame, params={"model": "x"})


class TestTransport:
    def test_timeout(self, client, fake_session):
        def handler(request):
            raise requests.exceptions.ReadTimeout("Read timed out.")
        fake_session.handler = handler

        with pytest.raises(TransportTimeoutError) as exc_info:
            client.fetcher.fetch_one(MODELS)
        assert exc_info.value.url == "https://api.test/v1/models"

    def test_connection_failure(self, client, fake_session):
        def handler(request):
            raise requests.exceptions.ConnectionError("Connection refused")
        fake_session.handler = handler

        with pytest.raises(TransportError) as exc_info:
            client.fetcher.fetch_one(MODELS)
        assert not isinstance(exc_info.value, TransportTimeoutError)

    def test_timeout_is_passed_to_the_session(self, client, fake_session):
        fake_session.queue(make_response(200, {}))
        client.fetcher.fetch_one(MODELS)
        assert fake_session.send_kwargs == [{"stream": False, "timeout": client.timeout}]


class TestBodies:
    def test_empty_success_body_is_empty_object(self, client, fake_session):
        fake_session.queue(make_response(200, b""))
        assert client.fetcher.fetch_one(MODELS) == {}

    def test_invalid_success_body(self, client, fake_session):
        fake_session.queue(make_response(200, "not json"))
        with pytest.raises(DecodeError):
            client.fetcher.fetch_one(MODELS)

    def test_decode_callable(self, client, fake_session):
        fake_session.queue(make_response(200, {"data": [{"id": "m1"}, {"id": "m2"}]}))
        ids = client.fetcher.fetch_one(MODELS, decode=lambda body: [m["id"] for m in body["data"]])
        assert ids == ["m1", "m2"]

    def test_raw_json_array_skips_malformed_lines(self, client, fake_session):
        fake_session.queue(make_response(200, '{"a": 1}\n\nnot json\n[1, 2]\n{"b": 2}\n'))
        records = client.fetcher.fetch_raw_json_array(EndpointDescriptor.of(Route.FILE_CONTENT, file_id="f"))
        assert records == [{"a": 1}, {"b": 2}]

    def test_raw_json_array_keeps_unicode_line_separators_inside_strings(self, client, fake_session):
        body = "{\"text\": \"a\u2028b\u2029c\"}\r\n{\"a\": 2}\n".encode("utf-8")
        fake_session.queue(make_response(200, body))
        records = client.fetcher.fetch_raw_json_array(EndpointDescriptor.of(Route.FILE_CONTENT, file_id="f"))
        assert records == [{"text": "a\u2028b\u2029c"}, {"a": 2}]

    def test_fetch_data_returns_bytes(self, client, fake_session):
        fake_session.queue(make_response(200, b"\x00\x01audio"))
        assert client.fetcher.fetch_data(EndpointDescriptor.of(Route.AUDIO_SPEECH), params={}) == b"\x00\x01audio"

    def test_stream_request(self, client, fake_session):
        fake_session.queue(sse_response(b"data: a\n\n", b"data: [DONE]\n\n"))

        stream = client.fetcher.fetch_stream(CHAT, lambda frame: frame.data, params={"stream": True})

        assert fake_session.sent[0].headers["Accept"] == "text/event-stream"
        assert fake_session.send_kwargs[0]["stream"] is True
        assert list(stream) == ["a"]
