"""
JSON-RPC 2.0 message codec.

Messages are pydantic models encoded as compact, newline-free UTF-8 JSON
objects. Decoding validates the envelope strictly and raises DecodeError for
anything that is not a well-formed request, response or notification.
"""

from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    StrictInt,
    StrictStr,
    Tag,
    TypeAdapter,
    ValidationError,
    model_serializer,
    model_validator,
)

from ..exceptions import DecodeError

JSONRPC_VERSION = "2.0"

# Strict: bool is an int subclass but never a valid id
RequestId = Union[StrictInt, StrictStr]

Params = Union[dict[str, Any], list[Any], None]


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION

    # Members left out of the wire form when they are None
    omit_when_none: ClassVar[tuple[str, ...]] = ("params",)

    @model_serializer(mode="wrap")
    def serialize_envelope(self, handler) -> dict[str, Any]:
        data = handler(self)
        for key in self.omit_when_none:
            if data.get(key) is None:
                data.pop(key, None)
        return data


class Request(_Message):
    """A call that expects a response with the same id."""

    id: RequestId
    method: StrictStr = Field(min_length=1)
    params: Params = None


class Notification(_Message):
    """A one-way message; never answered."""

    method: StrictStr = Field(min_length=1)
    params: Params = None


class ErrorObject(BaseModel):
    """JSON-RPC error member of a response."""

    model_config = ConfigDict(frozen=True)

    code: StrictInt
    message: StrictStr
    data: Any = None

    @model_serializer(mode="wrap")
    def serialize_envelope(self, handler) -> dict[str, Any]:
        data = handler(self)
        if data.get("data") is None:
            data.pop("data", None)
        return data


class Response(_Message):
    """Answer to a request: exactly one of result or error."""

    id: RequestId
    result: Any = None
    error: ErrorObject | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @model_validator(mode="after")
    def check_result_or_error(self) -> "Response":
        if self.error is not None and self.result is not None:
            raise ValueError("response must not carry both result and error")
        return self

    @model_serializer(mode="wrap")
    def serialize_envelope(self, handler) -> dict[str, Any]:
        data = handler(self)
        # A null result is still a result; only the unused member goes
        data.pop("result" if self.error is not None else "error", None)
        return data


Message = Union[Request, Response, Notification]


def _message_kind(value: Any) -> str | None:
    """Tell which message a raw envelope is, or None if it is none of them."""
    if isinstance(value, BaseModel):
        return type(value).__name__.lower()
    if not isinstance(value, dict) or value.get("jsonrpc") != JSONRPC_VERSION:
        return None
    has_result = "result" in value
    has_error = "error" in value
    if "method" in value:
        if has_result or has_error:
            return None
        return "request" if "id" in value else "notification"
    if has_result == has_error:
        return None
    return "response"


_AnyMessage = Annotated[
    Union[
        Annotated[Request, Tag("request")],
        Annotated[Response, Tag("response")],
        Annotated[Notification, Tag("notification")],
    ],
    Discriminator(
        _message_kind,
        custom_error_type="invalid_envelope",
        custom_error_message="not a JSON-RPC 2.0 request, response or notification",
    ),
]

_MESSAGE: TypeAdapter[Message] = TypeAdapter(_AnyMessage)
_FRAME: TypeAdapter[Union[list[Message], Message]] = TypeAdapter(
    Union[Annotated[list[_AnyMessage], Field(min_length=1)], _AnyMessage]
)


def _decode_error(e: ValidationError) -> DecodeError:
    first = e.errors(include_url=False)[0]
    location = ".".join(str(part) for part in first["loc"])
    detail = f"{location}: {first['msg']}" if location else first["msg"]
    return DecodeError(f"invalid message ({e.error_count()} error(s)): {detail}")


def encode(message: Message) -> bytes:
    """Encode a message as one line of UTF-8 JSON (without the newline)."""
    if not isinstance(message, (Request, Response, Notification)):
        raise TypeError(f"Not a protocol message: {type(message).__name__}")
    # Control characters inside strings are escaped, so the output never
    # contains a raw newline
    return message.model_dump_json().encode("utf-8")


def decode(data: bytes | str) -> Message:
    """
    Decode one framed message.

    Raises:
        DecodeError: If the data is not a valid JSON-RPC 2.0 message
    """
    try:
        return _MESSAGE.validate_json(data)
    except ValidationError as e:
        raise _decode_error(e) from e


def decode_batch(data: bytes | str) -> list[Message]:
    """
    Decode a frame that holds either one message or a JSON array of them.

    Raises:
        DecodeError: If the frame or any element in it is invalid
    """
    try:
        decoded = _FRAME.validate_json(data)
    except ValidationError as e:
        raise _decode_error(e) from e
    return decoded if isinstance(decoded, list) else [decoded]
