"""
Request construction: headers, JSON and multipart bodies, query items.
python -m pytest tests/test_builder.py -v
"""

import io
import json
from urllib.parse import parse_qsl, urlsplit

import pytest

from proxyai.api.auth import Authorization
from proxyai.api.builder import EXPLICIT_NULL, RequestBuilder, encode_query, prune_none
from proxyai.api.endpoints import APIEndpoints, EndpointDescriptor, Route
from proxyai.constants import USER_AGENT
from proxyai.exceptions import EncodingError

AUTH = Authorization(value="tok-1", session_id="session-1")


@pytest.fixture
def builder():
    return RequestBuilder(APIEndpoints("https://api.test/v1"), session_id="session-1")


def query_of(prepared):
    return parse_qsl(urlsplit(prepared.url).query)


class TestHeaders:
    def test_identity_headers(self, builder):
        prepared = builder.build(EndpointDescriptor.of(Route.MODEL_LIST), AUTH)

        assert prepared.headers["Authorization"] == "Bearer tok-1"
        assert prepared.headers["X-Client-ID"] == "session-1"
        assert prepared.headers["User-Agent"] == USER_AGENT
        assert prepared.headers["Accept"] == "application/json"
        assert "OpenAI-Organization" not in prepared.headers

    def test_organization_header(self):
        builder = RequestBuilder(APIEndpoints("https://api.test/v1"), "session-1", organization_id="org-9")
        prepared = builder.build(EndpointDescriptor.of(Route.MODEL_LIST), AUTH)
        assert prepared.headers["OpenAI-Organization"] == "org-9"

    def test_beta_header_only_on_assistants_routes(self, builder):
        beta = builder.build(EndpointDescriptor.of(Route.RUN_CREATE_THREAD_AND_RUN), AUTH, params={})
        plain = builder.build(EndpointDescriptor.of(Route.CHAT), AUTH, params={})

        assert beta.headers["OpenAI-Beta"] == "assistants=v1"
        assert "OpenAI-Beta" not in plain.headers

    def test_caller_headers_win(self, builder):
        prepared = builder.build(
            EndpointDescriptor.of(Route.CHAT), AUTH, params={},
            extra_headers={"Accept": "text/event-stream"}
        )
        assert prepared.headers["Accept"] == "text/event-stream"

    def test_route_verb_and_override(self, builder):
        descriptor = EndpointDescriptor.of(Route.FILE_DELETE, file_id="f-1")
        assert builder.build(descriptor, AUTH).method == "DELETE"
        assert builder.build(descriptor, AUTH, method="get").method == "GET"

    def test_url(self, builder):
        prepared = builder.build(EndpointDescriptor.of(Route.RUN_CANCEL, thread_id="t_1", run_id="r_1"), AUTH)
        assert prepared.url == "https://api.test/v1/threads/t_1/runs/r_1/cancel"


class TestJsonBody:
    def test_none_values_are_omitted_recursively(self, builder):
        params = {
            "model": "gpt-4o",
            "user": None,
            "messages": [{"role": "user", "content": "hi", "name": None}],
            "response_format": {"type": "json_object", "schema": None},
        }
        prepared = builder.build(EndpointDescriptor.of(Route.CHAT), AUTH, params=params)

        assert prepared.headers["Content-Type"] == "application/json"
        assert json.loads(prepared.body) == {
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": "hi"}],
            "response_format": {"type": "json_object"},
        }

    def test_explicit_null_is_sent(self, builder):
        prepared = builder.build(
            EndpointDescriptor.of(Route.ASSISTANT_MODIFY, assistant_id="a"), AUTH,
            params={"instructions": EXPLICIT_NULL, "name": "bot"}
        )
        assert json.loads(prepared.body) == {"instructions": None, "name": "bot"}

    def test_key_order_is_preserved(self, builder):
        prepared = builder.build(EndpointDescriptor.of(Route.CHAT), AUTH, params={"z": 1, "a": 2, "m": 3})
        assert list(json.loads(prepared.body)) == ["z", "a", "m"]

    def test_non_ascii_is_utf8(self, builder):
        prepared = builder.build(EndpointDescriptor.of(Route.EMBEDDINGS), AUTH, params={"input": "héllo"})
        assert "héllo".encode("utf-8") in prepared.body

    def test_unserializable_body(self, builder):
        with pytest.raises(EncodingError):
            builder.build(EndpointDescriptor.of(Route.CHAT), AUTH, params={"model": object()})

    def test_nan_is_rejected(self, builder):
        with pytest.raises(EncodingError):
            builder.build(EndpointDescriptor.of(Route.CHAT), AUTH, params={"temperature": float("nan")})

    def test_no_params_means_no_body(self, builder):
        prepared = builder.build(EndpointDescriptor.of(Route.MODEL_LIST), AUTH)
        assert prepared.body is None


class TestQuery:
    def test_none_omitted_and_bools_lowered(self, builder):
        prepared = builder.build(
            EndpointDescriptor.of(Route.ASSISTANT_LIST), AUTH,
            query={"limit": 10, "order": None, "after": "asst_1", "include": True}
        )
        assert query_of(prepared) == [("limit", "10"), ("after", "asst_1"), ("include", "true")]

    def test_all_unset_means_no_query(self, builder):
        prepared = builder.build(
            EndpointDescriptor.of(Route.ASSISTANT_LIST), AUTH,
            query={"limit": None, "order": None, "after": None, "before": None}
        )
        assert "?" not in prepared.url

    def test_encode_query_accepts_pairs(self):
        assert encode_query([("a", False), ("b", None), ("c", 2)]) == [("a", "false"), ("c", "2")]


class TestMultipart:
    def test_file_and_fields(self, builder):
        audio = io.BytesIO(b"RIFFDATA")
        audio.name = "/tmp/speech.wav"
        prepared = builder.build(
            EndpointDescriptor.of(Route.AUDIO_TRANSCRIPTIONS), AUTH,
            params={
                "file": audio,
                "model": "whisper-1",
                "language": None,
                "temperature": 0.2,
                "timestamp_granularities": ["word", "segment"],
            },
            multipart=True
        )

        body = prepared.body
        assert prepared.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="file"; filename="speech.wav"' in body
        assert b"RIFFDATA" in body
        assert b'name="model"' in body and b"whisper-1" in body
        assert b'name="language"' not in body
        assert body.count(b'name="timestamp_granularities[]"') == 2

    def test_tuple_file_with_content_type(self, builder):
        prepared = builder.build(
            EndpointDescriptor.of(Route.FILE_UPLOAD), AUTH,
            params={"file": ("train.jsonl", b'{"a":1}\n', "application/jsonl"), "purpose": "fine-tune"},
            multipart=True
        )
        assert b'filename="train.jsonl"' in prepared.body
        assert b"Content-Type: application/jsonl" in prepared.body

    def test_bytes_file_uses_field_name(self, builder):
        prepared = builder.build(
            EndpointDescriptor.of(Route.IMAGE_VARIATIONS), AUTH,
            params={"image": b"\x89PNG", "n": 2},
            multipart=True
        )
        assert b'name="image"; filename="image"' in prepared.body

    def test_booleans_render_lowercase(self, builder):
        prepared = builder.build(
            EndpointDescriptor.of(Route.IMAGE_EDITS), AUTH,
            params={"image": b"\x89PNG", "flag": True},
            multipart=True
        )
        assert b'name="flag"\r\n\r\ntrue' in prepared.body

    def test_multipart_requires_a_file(self, builder):
        with pytest.raises(EncodingError):
            builder.build(
                EndpointDescriptor.of(Route.FILE_UPLOAD), AUTH, params={"purpose": "assistants"}, multipart=True
            )

    def test_multipart_has_no_json_content_type(self, builder):
        prepared = builder.build(
            EndpointDescriptor.of(Route.FILE_UPLOAD), AUTH,
            params={"file": b"x", "purpose": "assistants"}, multipart=True
        )
        assert "application/json" not in prepared.headers["Content-Type"]


def test_prune_none_keeps_list_positions():
    assert prune_none({"a": [1, None, {"b": None}]}) == {"a": [1, None, {}]}
