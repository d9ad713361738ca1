"""
projectchat - Real-time chat, presence and call signaling for project workspaces.
"""

from projectchat.auth import AuthProvider, AuthUser, AuthenticationGate, JWTAuthProvider, NoAuth
from projectchat.config import Settings
from projectchat.storage import ChatRoom, ChatStore, MemoryStore, PostgresStore, StoreError, UserProfile

# Protocol message types
from projectchat.protocol import (
    ClientMessage,
    ErrorCode,
    ErrorMessage,
    PingMessage,
    PongMessage,
    ServerMessage,
    parse_client_message,
)

# Connections and rooms
from projectchat.registry import (
    Connection,
    ConnectionIdentity,
    ConnectionRegistry,
    chat_room,
    mailbox_room,
    project_room,
    video_room,
)

# Server
from projectchat.server import ProjectChatServer

__version__ = "0.1.0"

__all__ = [
    # Auth
    "AuthProvider",
    "AuthUser",
    "AuthenticationGate",
    "JWTAuthProvider",
    "NoAuth",
    # Config
    "Settings",
    # Storage
    "ChatRoom",
    "ChatStore",
    "MemoryStore",
    "PostgresStore",
    "StoreError",
    "UserProfile",
    # Protocol
    "ClientMessage",
    "ErrorCode",
    "ErrorMessage",
    "PingMessage",
    "PongMessage",
    "ServerMessage",
    "parse_client_message",
    # Registry
    "Connection",
    "ConnectionIdentity",
    "ConnectionRegistry",
    "chat_room",
    "mailbox_room",
    "project_room",
    "video_room",
    # Server
    "ProjectChatServer",
]
