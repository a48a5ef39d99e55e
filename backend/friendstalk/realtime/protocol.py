"""Typed inbound commands for the realtime protocol.

Each frame a client sends is parsed into exactly one command model,
selected by its ``type`` field. Frames that are not valid JSON, carry an
unknown ``type``, or miss required fields fail with ``ValidationError``.

Protocol Message Types (client → server):
    - send-message: {receiverId, content, clientSuppliedId?, kind?, media?}
    - mark-read: {peerId}
    - call-invite: {calleeId, offer, kind?, callId?}
    - call-answer: {callId, answer}
    - call-reject: {callId, reason?}
    - call-end: {callId?, peerId?}
    - ice-candidate: {callId, candidate}
    - typing / stop-typing: {to}
"""
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from friendstalk.calls import CallKind, RejectReason
from friendstalk.messages import MediaRef, MessageKind


class SendMessageCommand(BaseModel):
    type: Literal["send-message"]
    receiverId: str
    content: str = ""
    clientSuppliedId: Optional[str] = None
    kind: MessageKind = MessageKind.TEXT
    media: Optional[MediaRef] = None


class MarkReadCommand(BaseModel):
    type: Literal["mark-read"]
    peerId: str


class CallInviteCommand(BaseModel):
    type: Literal["call-invite"]
    calleeId: str
    offer: Any
    kind: CallKind = CallKind.AUDIO
    callId: Optional[str] = None


class CallAnswerCommand(BaseModel):
    type: Literal["call-answer"]
    callId: str
    answer: Any


class CallRejectCommand(BaseModel):
    type: Literal["call-reject"]
    callId: str
    reason: RejectReason = RejectReason.REJECTED


class CallEndCommand(BaseModel):
    type: Literal["call-end"]
    callId: Optional[str] = None
    peerId: Optional[str] = None


class IceCandidateCommand(BaseModel):
    type: Literal["ice-candidate"]
    callId: str
    candidate: Any


class TypingCommand(BaseModel):
    type: Literal["typing", "stop-typing"]
    to: str


Command = Annotated[
    Union[
        SendMessageCommand,
        MarkReadCommand,
        CallInviteCommand,
        CallAnswerCommand,
        CallRejectCommand,
        CallEndCommand,
        IceCandidateCommand,
        TypingCommand,
    ],
    Field(discriminator="type"),
]

_command_adapter: TypeAdapter = TypeAdapter(Command)


def parse_command(raw: Union[str, bytes]) -> Command:
    """Parse one JSON frame into its command model.

    Raises:
        ValidationError: If the frame is not a well-formed command.
    """
    return _command_adapter.validate_json(raw)


def describe_error(exc: ValidationError) -> str:
    """Short, client-safe description of why a frame was refused."""
    errors = exc.errors()
    if not errors:
        return "Invalid event"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"Invalid event: {location}: {first.get('msg', 'invalid')}"
    return f"Invalid event: {first.get('msg', 'invalid')}"
