"""Wire messages exchanged over the signaling websocket.

Inbound messages are a closed set of pydantic models keyed by their ``type``
field. Anything with an unknown ``type`` parses into ``UnrecognizedMessage``
so the router can log and drop it; only bodies that cannot be read at all, or
known types with missing/invalid fields, raise ``MalformedMessageError``.

Outbound events serialize to camelCase JSON, the field names the browser and
device clients expect.
"""
import json
import re
from enum import Enum
from json.decoder import scanstring
from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator


class Role(str, Enum):
    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


# Older camera/viewer clients speak this dialect
LEGACY_TYPE_ALIASES = {
    "offer": "relay-offer",
    "answer": "relay-answer",
    "iceCandidate": "relay-candidate",
    "requestStream": "request-publisher",
}

LEGACY_ROLE_ALIASES = {
    "camera": Role.PUBLISHER.value,
    "viewer": Role.SUBSCRIBER.value,
}

# Inbound keys that carry the relay payload, in lookup order
PAYLOAD_FIELDS = ("payload", "sdp", "candidate")


class MalformedMessageError(ValueError):
    def __init__(self, reason: str, message_type: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.message_type = message_type


class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str


class JoinMessage(InboundMessage):
    type: Literal["join"] = "join"
    room: Optional[str] = None
    role: Optional[Role] = Field(default=None, validation_alias=AliasChoices("role", "deviceType"))
    publisher_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("publisherKey", "cameraId"))

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value):
        if isinstance(value, str):
            return LEGACY_ROLE_ALIASES.get(value, value)
        return value

    @field_validator("room", "publisher_key")
    @classmethod
    def blank_to_none(cls, value):
        if value is not None and not value.strip():
            return None
        return value


class RelayMessage(InboundMessage):
    target_id: str = Field(min_length=1, validation_alias=AliasChoices("targetId", "target"))
    # Opaque negotiation body (SDP or ICE candidate), never inspected
    payload: Any = Field(validation_alias=AliasChoices(*PAYLOAD_FIELDS))
    _payload_json: Optional[str] = PrivateAttr(default=None)

    @property
    def payload_json(self) -> str:
        """Payload as JSON text, exactly as it appeared in the inbound frame."""
        if self._payload_json is None:
            return json.dumps(self.payload)
        return self._payload_json


class RelayOfferMessage(RelayMessage):
    type: Literal["relay-offer"] = "relay-offer"


class RelayAnswerMessage(RelayMessage):
    type: Literal["relay-answer"] = "relay-answer"


class RelayCandidateMessage(RelayMessage):
    type: Literal["relay-candidate"] = "relay-candidate"


class RequestPublisherMessage(InboundMessage):
    type: Literal["request-publisher"] = "request-publisher"
    publisher_key: str = Field(min_length=1, validation_alias=AliasChoices("publisherKey", "cameraId"))
    correlation_id: Any = Field(default=None, validation_alias=AliasChoices("correlationId", "requestId"))


class UnrecognizedMessage(InboundMessage):
    pass


SignalingMessage = Union[
    JoinMessage,
    RelayOfferMessage,
    RelayAnswerMessage,
    RelayCandidateMessage,
    RequestPublisherMessage,
    UnrecognizedMessage,
]

INBOUND_MESSAGE_TYPES: Dict[str, Type[InboundMessage]] = {
    "join": JoinMessage,
    "relay-offer": RelayOfferMessage,
    "relay-answer": RelayAnswerMessage,
    "relay-candidate": RelayCandidateMessage,
    "request-publisher": RequestPublisherMessage,
}


_WHITESPACE = re.compile(r"[ \t\n\r]*")
_value_decoder = json.JSONDecoder()


def raw_member_spans(text: str) -> Dict[str, str]:
    """Map each top-level key of a JSON object to its value's exact source text.

    Expects text that ``json.loads`` already accepted as an object. A repeated
    key keeps its last value, as ``json.loads`` does.
    """
    spans = {}
    index = _WHITESPACE.match(text, 0).end() + 1
    index = _WHITESPACE.match(text, index).end()
    if text[index] == "}":
        return spans
    while True:
        key, index = scanstring(text, index + 1)
        index = _WHITESPACE.match(text, index).end() + 1
        start = _WHITESPACE.match(text, index).end()
        _, end = _value_decoder.raw_decode(text, start)
        spans[key] = text[start:end]
        index = _WHITESPACE.match(text, end).end()
        if text[index] == "}":
            return spans
        index = _WHITESPACE.match(text, index + 1).end()


def parse_message(raw: Union[str, bytes]) -> SignalingMessage:
    """Decode one websocket frame into a typed inbound message.

    Raises MalformedMessageError if the frame is not a JSON object with a
    string ``type``, or if a known type fails validation.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessageError(f"Body is not valid UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedMessageError(f"Body is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessageError(f"Expected a JSON object, got {type(data).__name__}")

    message_type = data.get("type")
    if not isinstance(message_type, str) or not message_type:
        raise MalformedMessageError("Missing message type")

    canonical_type = LEGACY_TYPE_ALIASES.get(message_type, message_type)
    model = INBOUND_MESSAGE_TYPES.get(canonical_type)
    if model is None:
        return UnrecognizedMessage(type=message_type)

    try:
        message = model.model_validate({**data, "type": canonical_type})
    except ValidationError as e:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in e.errors())
        raise MalformedMessageError(f"Invalid fields: {fields}", message_type=canonical_type) from e

    if isinstance(message, RelayMessage):
        payload_field = next(field for field in PAYLOAD_FIELDS if field in data)
        message._payload_json = raw_member_spans(raw)[payload_field]
    return message


class OutboundEvent(BaseModel):
    type: str

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class WelcomeEvent(OutboundEvent):
    type: Literal["welcome"] = "welcome"
    session_id: str = Field(serialization_alias="sessionId")


class JoinedEvent(OutboundEvent):
    type: Literal["joined"] = "joined"
    room: str


class PeerJoinedEvent(OutboundEvent):
    type: Literal["peer-joined"] = "peer-joined"
    session_id: str = Field(serialization_alias="sessionId")
    role: Role
    publisher_key: Optional[str] = Field(default=None, serialization_alias="publisherKey")


class PeerLeftEvent(OutboundEvent):
    type: Literal["peer-left"] = "peer-left"
    session_id: str = Field(serialization_alias="sessionId")


class PublisherAvailableEvent(OutboundEvent):
    type: Literal["publisher-available"] = "publisher-available"
    publisher_key: str = Field(serialization_alias="publisherKey")
    session_id: str = Field(serialization_alias="sessionId")


class PublisherUnavailableEvent(OutboundEvent):
    type: Literal["publisher-unavailable"] = "publisher-unavailable"
    publisher_key: str = Field(serialization_alias="publisherKey")
    session_id: str = Field(serialization_alias="sessionId")


class PublisherNotFoundEvent(OutboundEvent):
    type: Literal["publisher-not-found"] = "publisher-not-found"
    publisher_key: str = Field(serialization_alias="publisherKey")


class PublisherRequestedEvent(OutboundEvent):
    type: Literal["publisher-requested"] = "publisher-requested"
    requester_id: str = Field(serialization_alias="requesterId")
    correlation_id: Any = Field(default=None, serialization_alias="correlationId")


class RelayedEvent(OutboundEvent):
    sender_id: str = Field(serialization_alias="senderId")
    payload_json: str = "null"

    def to_wire(self) -> str:
        # payload text is spliced in verbatim, never re-encoded
        head = self.model_dump_json(by_alias=True, exclude={"payload_json"})
        return f'{head[:-1]},"payload":{self.payload_json}}}'


class OfferReceivedEvent(RelayedEvent):
    type: Literal["offer-received"] = "offer-received"


class AnswerReceivedEvent(RelayedEvent):
    type: Literal["answer-received"] = "answer-received"


class CandidateReceivedEvent(RelayedEvent):
    type: Literal["candidate-received"] = "candidate-received"
