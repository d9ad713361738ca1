"""
WebSocket protocol message types for projectchat.

Defines all client and server message types using Pydantic models
for validation and serialization. Every frame is a JSON object whose
``type`` field names the event; payload keys are camelCase on the wire.
"""

from __future__ import annotations

import json as _json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Maximum lengths for string fields to prevent DoS
MAX_ID_LENGTH = 256
MAX_NAME_LENGTH = 512
MAX_TYPE_LENGTH = 32
MAX_CALL_MESSAGE_LENGTH = 2000
MAX_SIGNAL_SIZE = 1024 * 64  # 64KB max for an SDP/ICE payload


def _estimate_size(v: Any) -> int:
    """Estimate the serialized size of a value."""
    try:
        return len(_json.dumps(v))
    except (TypeError, ValueError):
        return 0


def _validate_signal(v: Any, field_name: str) -> Any:
    """Signaling payloads are opaque, only their size is checked."""
    size = _estimate_size(v)
    if size > MAX_SIGNAL_SIZE:
        raise ValueError(f"Value too large ({size} bytes, max {MAX_SIGNAL_SIZE}) in {field_name}")
    return v


class WireModel(BaseModel):
    """Base for every frame: camelCase aliases, numeric ids accepted as strings."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# =============================================================================
# Client Message Types
# =============================================================================


class JoinFriendsChatMessage(WireModel):
    """Client joins its mailbox room and announces itself to friends."""

    type: Literal["join_friends_chat"] = "join_friends_chat"


class SendFriendMessage(WireModel):
    """Client sends a direct message to a friend."""

    type: Literal["send_friend_message"] = "send_friend_message"
    recipient_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)
    content: Optional[str] = None


class JoinProjectRoomsMessage(WireModel):
    """Client joins a project's room and all of its chat rooms."""

    type: Literal["join_project_rooms"] = "join_project_rooms"
    project_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)


class SendChatMessage(WireModel):
    """Client posts a message to a project chat room."""

    type: Literal["send_message"] = "send_message"
    room_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)
    project_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)
    content: Optional[str] = None
    message_type: str = Field("text", min_length=1, max_length=MAX_TYPE_LENGTH)
    reply_to_message_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)


class TypingStartMessage(WireModel):
    """Client started typing in a chat room."""

    type: Literal["typing_start"] = "typing_start"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    project_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)


class TypingStopMessage(WireModel):
    """Client stopped typing in a chat room."""

    type: Literal["typing_stop"] = "typing_stop"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    project_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)


class GetOnlineUsersMessage(WireModel):
    """Client asks who is connected to a project."""

    type: Literal["get_online_users"] = "get_online_users"
    project_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)


class VideoCallJoinMessage(WireModel):
    """Client joins a video call."""

    type: Literal["video_call_join"] = "video_call_join"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    project_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)


class VideoCallLeaveMessage(WireModel):
    """Client leaves a video call."""

    type: Literal["video_call_leave"] = "video_call_leave"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    project_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)


class VideoOfferMessage(WireModel):
    """Client sends a WebRTC offer to one participant."""

    type: Literal["video_offer"] = "video_offer"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    target_user_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    offer: Any = None

    @field_validator("offer")
    @classmethod
    def validate_offer(cls, v: Any) -> Any:
        return _validate_signal(v, "offer")


class VideoAnswerMessage(WireModel):
    """Client sends a WebRTC answer to one participant."""

    type: Literal["video_answer"] = "video_answer"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    target_user_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    answer: Any = None

    @field_validator("answer")
    @classmethod
    def validate_answer(cls, v: Any) -> Any:
        return _validate_signal(v, "answer")


class VideoIceCandidateMessage(WireModel):
    """Client sends an ICE candidate to one participant."""

    type: Literal["video_ice_candidate"] = "video_ice_candidate"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    target_user_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    candidate: Any = None

    @field_validator("candidate")
    @classmethod
    def validate_candidate(cls, v: Any) -> Any:
        return _validate_signal(v, "candidate")


class ScreenShareStartedMessage(WireModel):
    """Client started sharing its screen in a call."""

    type: Literal["screen_share_started"] = "screen_share_started"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)


class ScreenShareStoppedMessage(WireModel):
    """Client stopped sharing its screen in a call."""

    type: Literal["screen_share_stopped"] = "screen_share_stopped"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)


class VideoCallChatMessage(WireModel):
    """Client posts an ephemeral chat line inside a call."""

    type: Literal["video_call_message"] = "video_call_message"
    room_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    message: Optional[str] = None


class PingMessage(WireModel):
    """Client sends ping to keep connection alive."""

    type: Literal["ping"] = "ping"
    timestamp: Optional[float] = None


# Union of all client message types
ClientMessage = Union[
    JoinFriendsChatMessage,
    SendFriendMessage,
    JoinProjectRoomsMessage,
    SendChatMessage,
    TypingStartMessage,
    TypingStopMessage,
    GetOnlineUsersMessage,
    VideoCallJoinMessage,
    VideoCallLeaveMessage,
    VideoOfferMessage,
    VideoAnswerMessage,
    VideoIceCandidateMessage,
    ScreenShareStartedMessage,
    ScreenShareStoppedMessage,
    VideoCallChatMessage,
    PingMessage,
]


# =============================================================================
# Server Message Types
# =============================================================================


class ErrorMessage(WireModel):
    """Server sends an error message."""

    type: Literal["error"] = "error"
    code: str
    message: str


class PongMessage(WireModel):
    """Server responds to ping."""

    type: Literal["pong"] = "pong"
    timestamp: float


class FriendOnlineMessage(WireModel):
    type: Literal["friend_online"] = "friend_online"
    user_id: str
    username: Optional[str] = None


class OnlineFriendsListMessage(WireModel):
    type: Literal["online_friends_list"] = "online_friends_list"
    online_friends: List[str] = Field(default_factory=list)


class FriendMessageBroadcast(WireModel):
    """Delivered to every connection of the recipient."""

    type: Literal["friend_message"] = "friend_message"
    sender_id: str
    message: Dict[str, Any]


class FriendMessageSent(WireModel):
    type: Literal["friend_message_sent"] = "friend_message_sent"
    message: Dict[str, Any]


class RoomsJoinedMessage(WireModel):
    type: Literal["rooms_joined"] = "rooms_joined"
    project_id: str
    rooms: List[Dict[str, Any]] = Field(default_factory=list)


class NewMessageBroadcast(WireModel):
    """Server relays a chat message to the other members of the room."""

    type: Literal["new_message"] = "new_message"
    message: Dict[str, Any]
    room_id: str
    project_id: str


class MessageSentMessage(WireModel):
    """Server acknowledges a persisted chat message to its sender."""

    type: Literal["message_sent"] = "message_sent"
    message: Dict[str, Any]
    room_id: str


class UserTypingBroadcast(WireModel):
    type: Literal["user_typing"] = "user_typing"
    user_id: str
    username: Optional[str] = None
    room_id: str
    project_id: Optional[str] = None


class UserStoppedTypingBroadcast(WireModel):
    type: Literal["user_stopped_typing"] = "user_stopped_typing"
    user_id: str
    room_id: str
    project_id: Optional[str] = None


class OnlineUsersMessage(WireModel):
    type: Literal["online_users"] = "online_users"
    project_id: str
    users: List[Dict[str, Any]] = Field(default_factory=list)


class UserOfflineBroadcast(WireModel):
    type: Literal["user_offline"] = "user_offline"
    user_id: str
    project_id: str


class VideoParticipant(WireModel):
    """A participant entry in a call roster."""

    user_id: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None


class VideoParticipantJoined(WireModel):
    type: Literal["video_participant_joined"] = "video_participant_joined"
    user_id: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    room_id: str


class VideoCurrentParticipants(WireModel):
    type: Literal["video_current_participants"] = "video_current_participants"
    participants: List[VideoParticipant] = Field(default_factory=list)
    room_id: str


class VideoParticipantLeft(WireModel):
    type: Literal["video_participant_left"] = "video_participant_left"
    user_id: str
    room_id: str


class VideoOfferRelay(WireModel):
    type: Literal["video_offer"] = "video_offer"
    user_id: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    offer: Any = None
    room_id: str


class VideoAnswerRelay(WireModel):
    type: Literal["video_answer"] = "video_answer"
    user_id: str
    username: Optional[str] = None
    answer: Any = None
    room_id: str


class VideoIceCandidateRelay(WireModel):
    type: Literal["video_ice_candidate"] = "video_ice_candidate"
    user_id: str
    candidate: Any = None
    room_id: str


class ScreenShareStartedBroadcast(WireModel):
    """Server broadcasts that a user started sharing."""

    type: Literal["screen_share_started"] = "screen_share_started"
    user_id: str
    username: Optional[str] = None
    room_id: str


class ScreenShareStoppedBroadcast(WireModel):
    """Server broadcasts that a user stopped sharing."""

    type: Literal["screen_share_stopped"] = "screen_share_stopped"
    user_id: str
    room_id: str


class VideoCallChatBroadcast(WireModel):
    type: Literal["video_call_message"] = "video_call_message"
    user_id: str
    username: Optional[str] = None
    message: str
    timestamp: str
    room_id: str


# Union of all server message types
ServerMessage = Union[
    ErrorMessage,
    PongMessage,
    FriendOnlineMessage,
    OnlineFriendsListMessage,
    FriendMessageBroadcast,
    FriendMessageSent,
    RoomsJoinedMessage,
    NewMessageBroadcast,
    MessageSentMessage,
    UserTypingBroadcast,
    UserStoppedTypingBroadcast,
    OnlineUsersMessage,
    UserOfflineBroadcast,
    VideoParticipantJoined,
    VideoCurrentParticipants,
    VideoParticipantLeft,
    VideoOfferRelay,
    VideoAnswerRelay,
    VideoIceCandidateRelay,
    ScreenShareStartedBroadcast,
    ScreenShareStoppedBroadcast,
    VideoCallChatBroadcast,
]


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode(str, Enum):
    """Standard error codes for the protocol."""

    AUTHENTICATION_FAILED = "authentication_failed"
    INVALID_MESSAGE = "invalid_message"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    INTERNAL_ERROR = "internal_error"


# =============================================================================
# Message Parsing
# =============================================================================


CLIENT_MESSAGE_TYPES: Dict[str, type] = {
    "join_friends_chat": JoinFriendsChatMessage,
    "send_friend_message": SendFriendMessage,
    "join_project_rooms": JoinProjectRoomsMessage,
    "send_message": SendChatMessage,
    "typing_start": TypingStartMessage,
    "typing_stop": TypingStopMessage,
    "get_online_users": GetOnlineUsersMessage,
    "video_call_join": VideoCallJoinMessage,
    "video_call_leave": VideoCallLeaveMessage,
    "video_offer": VideoOfferMessage,
    "video_answer": VideoAnswerMessage,
    "video_ice_candidate": VideoIceCandidateMessage,
    "screen_share_started": ScreenShareStartedMessage,
    "screen_share_stopped": ScreenShareStoppedMessage,
    "video_call_message": VideoCallChatMessage,
    "ping": PingMessage,
}


def parse_client_message(data: Dict[str, Any]) -> ClientMessage:
    """
    Parse a raw dictionary into a typed client message.

    Raises:
        ValueError: If the message type is unknown.
        pydantic.ValidationError: If the payload does not validate.
    """
    if not isinstance(data, dict):
        raise ValueError("Message must be a JSON object")

    msg_type = data.get("type")
    if msg_type not in CLIENT_MESSAGE_TYPES:
        raise ValueError(f"Unknown message type: {msg_type}")

    return CLIENT_MESSAGE_TYPES[msg_type].model_validate(data)


__all__ = [
    "WireModel",
    # Client messages
    "JoinFriendsChatMessage",
    "SendFriendMessage",
    "JoinProjectRoomsMessage",
    "SendChatMessage",
    "TypingStartMessage",
    "TypingStopMessage",
    "GetOnlineUsersMessage",
    "VideoCallJoinMessage",
    "VideoCallLeaveMessage",
    "VideoOfferMessage",
    "VideoAnswerMessage",
    "VideoIceCandidateMessage",
    "ScreenShareStartedMessage",
    "ScreenShareStoppedMessage",
    "VideoCallChatMessage",
    "PingMessage",
    "ClientMessage",
    # Server messages
    "ErrorMessage",
    "PongMessage",
    "FriendOnlineMessage",
    "OnlineFriendsListMessage",
    "FriendMessageBroadcast",
    "FriendMessageSent",
    "RoomsJoinedMessage",
    "NewMessageBroadcast",
    "MessageSentMessage",
    "UserTypingBroadcast",
    "UserStoppedTypingBroadcast",
    "OnlineUsersMessage",
    "UserOfflineBroadcast",
    "VideoParticipant",
    "VideoParticipantJoined",
    "VideoCurrentParticipants",
    "VideoParticipantLeft",
    "VideoOfferRelay",
    "VideoAnswerRelay",
    "VideoIceCandidateRelay",
    "ScreenShareStartedBroadcast",
    "ScreenShareStoppedBroadcast",
    "VideoCallChatBroadcast",
    "ServerMessage",
    # Error codes
    "ErrorCode",
    # Parsing
    "CLIENT_MESSAGE_TYPES",
    "parse_client_message",
]
