"""
FastAPI WebSocket server for projectchat.

Provides ProjectChatServer, which authenticates connections at the
handshake and routes chat, presence, typing and video-signaling events.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.routing import APIRouter
from pydantic import ValidationError

from .auth import AuthenticationGate, AuthProvider, HandshakeRejected, JWTAuthProvider, ProfileCache
from .config import Settings
from .emitter import Emitter
from .lifecycle import LifecycleController
from .presence import PresenceManager
from .protocol import (
    ErrorCode,
    GetOnlineUsersMessage,
    JoinFriendsChatMessage,
    JoinProjectRoomsMessage,
    PingMessage,
    PongMessage,
    ScreenShareStartedMessage,
    ScreenShareStoppedMessage,
    SendChatMessage,
    SendFriendMessage,
    TypingStartMessage,
    TypingStopMessage,
    VideoAnswerMessage,
    VideoCallChatMessage,
    VideoCallJoinMessage,
    VideoCallLeaveMessage,
    VideoIceCandidateMessage,
    VideoOfferMessage,
    parse_client_message,
)
from .registry import Connection, ConnectionRegistry
from .relay import MessageRelay, SlidingWindowRateLimiter
from .storage import ChatStore, MemoryStore, PostgresStore
from .tasks import DetachedTaskGroup
from .typing_indicators import TypingIndicators
from .video import VideoSignalingRouter

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Any], Awaitable[None]]


def build_store(settings: Settings) -> ChatStore:
    """PostgreSQL when a database URL is configured, in-memory otherwise."""
    if settings.database_url:
        return PostgresStore(
            dsn=settings.database_url,
            min_connections=settings.database_min_connections,
            max_connections=settings.database_max_connections,
        )
    logger.warning("No database URL configured - using in-memory store (development only)")
    return MemoryStore()


def _extract_token(websocket: WebSocket) -> Optional[str]:
    """Credential from the ``token`` query parameter or a bearer header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


class ProjectChatServer:
    """
    FastAPI WebSocket server for project chat and calls.

    Handles:
    - Handshake authentication and the per-user connection cap
    - Project/chat/mailbox room joins and presence
    - Chat and friend messages
    - Typing indicators
    - WebRTC call signaling
    - Disconnect cleanup and graceful shutdown
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[ChatStore] = None,
        auth_provider: Optional[AuthProvider] = None,
        registry: Optional[ConnectionRegistry] = None,
    ):
        self._settings = settings
        self._store = store or build_store(settings)
        self._auth = auth_provider or JWTAuthProvider(
            secret_key=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        self._registry = registry or ConnectionRegistry()
        self._tasks = DetachedTaskGroup("projectchat")
        self._emitter = Emitter(self._registry)

        self._gate = AuthenticationGate(
            auth_provider=self._auth,
            store=self._store,
            registry=self._registry,
            cache=ProfileCache(ttl=settings.profile_cache_ttl),
            max_connections_per_user=settings.max_connections_per_user,
        )
        self._presence = PresenceManager(
            self._registry,
            self._emitter,
            self._store,
            chat_room_limit=settings.chat_room_limit,
        )
        self._relay = MessageRelay(
            self._emitter,
            self._store,
            rate_limiter=SlidingWindowRateLimiter(
                limit=settings.message_rate_limit,
                window=settings.message_rate_window,
            ),
            max_message_length=settings.max_message_length,
        )
        self._typing = TypingIndicators(self._emitter, self._tasks, timeout=settings.typing_timeout)
        self._video = VideoSignalingRouter(self._registry, self._emitter)
        self._lifecycle = LifecycleController(
            registry=self._registry,
            gate=self._gate,
            presence=self._presence,
            relay=self._relay,
            typing=self._typing,
            video=self._video,
            tasks=self._tasks,
            sweep_interval=settings.stale_sweep_interval,
            stats_interval=settings.stats_interval,
        )

        self._handlers: Dict[str, Handler] = {
            "join_friends_chat": self._handle_join_friends_chat,
            "send_friend_message": self._handle_send_friend_message,
            "join_project_rooms": self._handle_join_project_rooms,
            "send_message": self._handle_send_message,
            "typing_start": self._handle_typing_start,
            "typing_stop": self._handle_typing_stop,
            "get_online_users": self._handle_get_online_users,
            "video_call_join": self._handle_video_call_join,
            "video_call_leave": self._handle_video_call_leave,
            "video_offer": self._handle_video_offer,
            "video_answer": self._handle_video_answer,
            "video_ice_candidate": self._handle_video_ice_candidate,
            "screen_share_started": self._handle_screen_share_started,
            "screen_share_stopped": self._handle_screen_share_stopped,
            "video_call_message": self._handle_video_call_message,
            "ping": self._handle_ping,
        }

        self._router = APIRouter()
        self._app: Optional[FastAPI] = None
        self._setup_routes()

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application with WebSocket routes configured."""
        if self._app is None:
            self._app = FastAPI(lifespan=self._lifespan)
            self._app.include_router(self._router)
        return self._app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Lifespan handler for startup/shutdown events."""
        await self.start()
        try:
            yield
        finally:
            await self.stop()

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def gate(self) -> AuthenticationGate:
        return self._gate

    @property
    def lifecycle(self) -> LifecycleController:
        return self._lifecycle

    @property
    def store(self) -> ChatStore:
        return self._store

    def _setup_routes(self) -> None:
        """Setup WebSocket and health routes."""
        @self._router.websocket(self._settings.ws_path)
        async def websocket_endpoint(websocket: WebSocket):
            await self._handle_connection(websocket)

        @self._router.get("/health")
        async def health() -> Dict[str, Any]:
            stats = self._registry.stats()
            return {
                "status": "ok",
                "connections": stats["total_connections"],
                "users": stats["unique_users"],
                "room_memberships": stats["total_room_memberships"],
            }

    def mount(self, app: FastAPI, prefix: str = "") -> None:
        """Mount the server's routes on an existing FastAPI application."""
        self._app = app
        app.include_router(self._router, prefix=prefix)

    async def start(self) -> None:
        """Connect the store and start background timers."""
        await self._store.connect()
        await self._lifecycle.start()
        logger.info(f"Real-time handlers ready on {self._settings.ws_path}")

    async def stop(self) -> None:
        """Close all connections, stop timers and disconnect the store."""
        await self._lifecycle.shutdown()
        await self._store.disconnect()

    async def _handle_connection(self, websocket: WebSocket) -> None:
        """Authenticate, register and serve one WebSocket connection."""
        try:
            identity = await self._gate.authenticate(_extract_token(websocket))
        except HandshakeRejected as exc:
            logger.info(f"Handshake rejected: {exc.reason}")
            # A close before accept becomes a bare HTTP 403; accept so the reason reaches the client
            await websocket.accept()
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.reason)
            return

        connection = Connection(websocket, identity)
        self._registry.register(connection)
        reason = "client disconnect"

        try:
            await websocket.accept()
            logger.debug(f"[Connection] {connection.username} ({connection.id})")

            while True:
                try:
                    frame = await asyncio.wait_for(
                        websocket.receive(), timeout=self._settings.receive_timeout
                    )
                except asyncio.TimeoutError:
                    # Send a ping to check if the connection is still alive
                    try:
                        await websocket.send_json({"type": "ping"})
                    except Exception:
                        reason = "ping timeout"
                        break
                    continue

                if frame["type"] == "websocket.disconnect":
                    reason = f"client disconnect ({frame.get('code', 1000)})"
                    break

                raw_data = frame.get("text")
                if raw_data is None:
                    await self._emitter.send_error(connection, ErrorCode.INVALID_MESSAGE, "Binary frames are not supported.")
                    continue

                if len(raw_data) > self._settings.max_frame_size:
                    await self._emitter.send_error(connection, ErrorCode.INVALID_MESSAGE, "Message too large.")
                    continue

                try:
                    data = json.loads(raw_data)
                except json.JSONDecodeError:
                    await self._emitter.send_error(connection, ErrorCode.INVALID_MESSAGE, "Invalid JSON.")
                    continue

                await self._handle_message(connection, data)

        except WebSocketDisconnect as exc:
            reason = f"client disconnect ({exc.code})"
        except Exception:
            reason = "transport error"
            logger.exception("WebSocket error")
        finally:
            await self._lifecycle.handle_disconnect(connection, reason)

    async def _handle_message(self, connection: Connection, data: Any) -> None:
        """Parse and dispatch one frame. No exception escapes."""
        try:
            message = parse_client_message(data)
        except (ValueError, ValidationError):
            await self._emitter.send_error(connection, ErrorCode.INVALID_MESSAGE, "Invalid message data")
            return

        logger.debug(f"[Event] {message.type} from {connection.username}")
        handler = self._handlers[message.type]
        try:
            await handler(connection, message)
        except Exception:
            logger.exception(f"Handler error: {message.type}")
            await self._emitter.send_error(connection, ErrorCode.INTERNAL_ERROR, "Internal error.")

    # =========================================================================
    # Rooms and presence
    # =========================================================================

    async def _handle_join_friends_chat(self, connection: Connection, message: JoinFriendsChatMessage) -> None:
        await self._presence.join_friends_chat(connection)

    async def _handle_join_project_rooms(self, connection: Connection, message: JoinProjectRoomsMessage) -> None:
        await self._presence.join_project_rooms(connection, message.project_id)

    async def _handle_get_online_users(self, connection: Connection, message: GetOnlineUsersMessage) -> None:
        await self._presence.get_online_users(connection, message.project_id)

    # =========================================================================
    # Messages
    # =========================================================================

    async def _handle_send_message(self, connection: Connection, message: SendChatMessage) -> None:
        await self._relay.send_room_message(connection, message)

    async def _handle_send_friend_message(self, connection: Connection, message: SendFriendMessage) -> None:
        await self._relay.send_friend_message(connection, message)

    async def _handle_typing_start(self, connection: Connection, message: TypingStartMessage) -> None:
        await self._typing.start(connection, message.room_id, message.project_id)

    async def _handle_typing_stop(self, connection: Connection, message: TypingStopMessage) -> None:
        await self._typing.stop(connection, message.room_id, message.project_id)

    # =========================================================================
    # Video Call Signaling Handlers
    # =========================================================================

    async def _handle_video_call_join(self, connection: Connection, message: VideoCallJoinMessage) -> None:
        await self._video.join(connection, message.room_id)

    async def _handle_video_call_leave(self, connection: Connection, message: VideoCallLeaveMessage) -> None:
        await self._video.leave(connection, message.room_id)

    async def _handle_video_offer(self, connection: Connection, message: VideoOfferMessage) -> None:
        await self._video.offer(connection, message.room_id, message.target_user_id, message.offer)

    async def _handle_video_answer(self, connection: Connection, message: VideoAnswerMessage) -> None:
        await self._video.answer(connection, message.room_id, message.target_user_id, message.answer)

    async def _handle_video_ice_candidate(self, connection: Connection, message: VideoIceCandidateMessage) -> None:
        await self._video.ice_candidate(connection, message.room_id, message.target_user_id, message.candidate)

    async def _handle_screen_share_started(self, connection: Connection, message: ScreenShareStartedMessage) -> None:
        await self._video.screen_share_started(connection, message.room_id)

    async def _handle_screen_share_stopped(self, connection: Connection, message: ScreenShareStoppedMessage) -> None:
        await self._video.screen_share_stopped(connection, message.room_id)

    async def _handle_video_call_message(self, connection: Connection, message: VideoCallChatMessage) -> None:
        await self._video.call_message(connection, message.room_id, message.message)

    async def _handle_ping(self, connection: Connection, message: PingMessage) -> None:
        """Handle ping message."""
        await self._emitter.send(connection, PongMessage(timestamp=time.time()))


__all__ = ["ProjectChatServer", "build_store"]
