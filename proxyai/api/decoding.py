# proxyai/api/decoding.py
"""
Typed decoding of stream frames.

A decoder is a callable that turns one ``StreamFrame`` into one typed value.
Failures are terminal for the stream they occur in.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from ..exceptions import DecodeError, StreamAPIError
from .models import (
    APIErrorDetail, AssistantStreamEvent, ChatCompletionChunk, ErrorEvent,
    MessageDeltaEvent, MessageEvent, RunEvent, RunStepDeltaEvent, RunStepEvent,
    ThreadEvent, UnknownStreamEvent
)
from .streaming import StreamFrame

logger = logging.getLogger(__name__)

T = TypeVar("T")


def decode_json(text: str) -> Dict[str, Any]:
    """
    Parse ``text`` as a JSON object.

    Raises:
        DecodeError: If ``text`` is not JSON or not an object
    """
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise DecodeError(f"Invalid JSON payload: {e}", payload=text, original_error=e) from e

    if not isinstance(payload, dict):
        raise DecodeError(
            f"Expected a JSON object, got {type(payload).__name__}", payload=text
        )
    return payload


class TypedStreamDecoder(ABC, Generic[T]):
    """Base class for frame decoders."""

    @abstractmethod
    def decode(self, frame: StreamFrame) -> T:
        """Decode one frame."""

    def __call__(self, frame: StreamFrame) -> T:
        return self.decode(frame)


class ChatChunkDecoder(TypedStreamDecoder[ChatCompletionChunk]):
    """
    Decodes chat completion chunks.

    A frame whose payload is ``{"error": {...}}`` is a server error reported
    mid-stream and raises ``StreamAPIError``. A JSON object of the wrong shape
    raises ``DecodeError``.
    """

    def decode(self, frame: StreamFrame) -> ChatCompletionChunk:
        payload = decode_json(frame.data)

        if payload.get("error"):
            error = APIErrorDetail.from_payload(payload)
            logger.error(f"Chat stream reported an error: {error.message}")
            raise StreamAPIError(f"Stream error: {error.message}", error=error)

        try:
            return ChatCompletionChunk.from_dict(payload)
        except (TypeError, AttributeError, ValueError) as e:
            raise DecodeError(f"Unexpected chat chunk shape: {e}", payload=frame.data, original_error=e) from e


class AssistantEventDecoder(TypedStreamDecoder[AssistantStreamEvent]):
    """
    Decodes assistant run events.

    Decoding happens in two phases: the discriminator is read first (the
    frame's ``event`` field, or an ``event``/``type`` key of the payload), then
    the payload is wrapped in the matching variant. Unrecognized
    discriminators, and frames with no discriminator at all, produce
    ``UnknownStreamEvent``.

    Example:
        >>> decoder = AssistantEventDecoder()
        >>> decoder(StreamFrame(event="thread.run.created", data='{"id": "run_1"}'))
        RunEvent(event='thread.run.created', data={'id': 'run_1'})
    """

    # Longest prefix first
    VARIANTS = (
        ("thread.run.step.delta", RunStepDeltaEvent),
        ("thread.run.step.", RunStepEvent),
        ("thread.run.", RunEvent),
        ("thread.message.delta", MessageDeltaEvent),
        ("thread.message.", MessageEvent),
        ("thread.created", ThreadEvent),
        ("error", ErrorEvent),
    )

    def decode(self, frame: StreamFrame) -> AssistantStreamEvent:
        payload = decode_json(frame.data)
        discriminator = self.discriminator(frame, payload)
        if discriminator is None:
            logger.debug("Assistant stream frame has no event type")
            return UnknownStreamEvent(event="", data=payload)

        variant = self.variant_for(discriminator)
        if variant is UnknownStreamEvent:
            logger.debug(f"Unrecognized assistant stream event: {discriminator}")
        return variant(event=discriminator, data=payload)

    @staticmethod
    def discriminator(frame: StreamFrame, payload: Dict[str, Any]) -> Optional[str]:
        if frame.event:
            return frame.event
        for key in ("event", "type"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    @classmethod
    def variant_for(cls, discriminator: str) -> Type[AssistantStreamEvent]:
        for prefix, variant in cls.VARIANTS:
            if discriminator == prefix or (prefix.endswith(".") and discriminator.startswith(prefix)):
                return variant
        return UnknownStreamEvent
