# proxyai/api/models.py
"""
Typed objects decoded from streamed responses.

Buffered endpoints return plain JSON dictionaries. Streams are decoded into
the dataclasses below: ``ChatCompletionChunk`` for chat completions and the
``AssistantStreamEvent`` family for assistant runs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class APIErrorDetail:
    """
    Structured error payload returned by the API.

    The wire shape is ``{"error": {"message", "type", "param", "code"}}``.
    """

    message: str
    type: Optional[str] = None
    param: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["APIErrorDetail"]:
        """Extract the error object from a decoded body, or None if it has none."""
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if isinstance(error, str):
            return cls(message=error)
        if not isinstance(error, dict):
            return None
        code = error.get("code")
        return cls(
            message=str(error.get("message") or "Unknown API error"),
            type=error.get("type"),
            param=error.get("param"),
            code=str(code) if code is not None else None,
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"message": self.message, "type": self.type, "param": self.param, "code": self.code}


# --- Chat completion chunks ---

@dataclass(frozen=True)
class ChunkDelta:
    """Incremental message content carried by one chunk choice."""

    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    function_call: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ChunkDelta":
        data = data or {}
        return cls(
            role=data.get("role"),
            content=data.get("content"),
            tool_calls=data.get("tool_calls"),
            function_call=data.get("function_call"),
        )


@dataclass(frozen=True)
class ChunkChoice:
    index: int = 0
    delta: ChunkDelta = field(default_factory=ChunkDelta)
    finish_reason: Optional[str] = None
    logprobs: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkChoice":
        return cls(
            index=data.get("index", 0),
            delta=ChunkDelta.from_dict(data.get("delta")),
            finish_reason=data.get("finish_reason"),
            logprobs=data.get("logprobs"),
        )


@dataclass(frozen=True)
class ChatCompletionChunk:
    """
    One streamed chat completion chunk.

    Every field is optional on the wire; absent fields decode to None or an
    empty list so that gateways which trim payloads still decode.

    Attributes:
        id: Completion identifier shared by all chunks of one completion
        choices: Per-choice deltas
        raw: The decoded JSON object, including fields not modelled here
    """

    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    system_fingerprint: Optional[str] = None
    choices: List[ChunkChoice] = field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatCompletionChunk":
        choices = data.get("choices") or []
        return cls(
            id=data.get("id"),
            object=data.get("object"),
            created=data.get("created"),
            model=data.get("model"),
            system_fingerprint=data.get("system_fingerprint"),
            choices=[ChunkChoice.from_dict(c) for c in choices if isinstance(c, dict)],
            usage=data.get("usage"),
            raw=data,
        )

    @property
    def text(self) -> str:
        """Concatenated content of every choice delta in this chunk."""
        return "".join(choice.delta.content or "" for choice in self.choices)


# --- Assistant stream events ---

@dataclass(frozen=True)
class AssistantStreamEvent:
    """
    Base of the assistant stream event family.

    Attributes:
        event: The discriminator exactly as received (e.g. "thread.run.created")
        data: The decoded payload object
    """

    event: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> Optional[str]:
        return self.data.get("id")


@dataclass(frozen=True)
class ThreadEvent(AssistantStreamEvent):
    """thread.created"""


@dataclass(frozen=True)
class RunEvent(AssistantStreamEvent):
    """thread.run.* lifecycle events; ``data`` is a run object."""

    @property
    def status(self) -> Optional[str]:
        return self.data.get("status")

    @property
    def required_action(self) -> Optional[Dict[str, Any]]:
        return self.data.get("required_action")


@dataclass(frozen=True)
class RunStepEvent(AssistantStreamEvent):
    """thread.run.step.* lifecycle events; ``data`` is a run step object."""

    @property
    def status(self) -> Optional[str]:
        return self.data.get("status")


@dataclass(frozen=True)
class RunStepDeltaEvent(AssistantStreamEvent):
    """thread.run.step.delta"""

    @property
    def step_details(self) -> Dict[str, Any]:
        return (self.data.get("delta") or {}).get("step_details") or {}


@dataclass(frozen=True)
class MessageEvent(AssistantStreamEvent):
    """thread.message.* lifecycle events; ``data`` is a message object."""

    @property
    def status(self) -> Optional[str]:
        return self.data.get("status")


@dataclass(frozen=True)
class MessageDeltaEvent(AssistantStreamEvent):
    """thread.message.delta"""

    @property
    def text(self) -> str:
        """Concatenated text of every text content part in the delta."""
        parts = (self.data.get("delta") or {}).get("content") or []
        pieces = []
        for part in parts:
            if isinstance(part, dict) and part.get("type") == "text":
                pieces.append((part.get("text") or {}).get("value") or "")
        return "".join(pieces)


@dataclass(frozen=True)
class ErrorEvent(AssistantStreamEvent):
    """error; the server reports a failure without closing the stream first."""

    @property
    def error(self) -> Optional[APIErrorDetail]:
        return APIErrorDetail.from_payload(self.data) or APIErrorDetail.from_payload({"error": self.data})


@dataclass(frozen=True)
class UnknownStreamEvent(AssistantStreamEvent):
    """Any discriminator this client does not model yet."""
