"""
Authentication module for projectchat.

Provides credential verification and the handshake gate that admits
connections into the registry.
"""

from __future__ import annotations

from .base import AuthProvider, AuthUser, NoAuth, TokenStructureError
from .cache import ProfileCache
from .gate import AuthenticationGate, ConnectionCounter, HandshakeRejected
from .jwt import JWTAuthProvider

__all__ = [
    "AuthProvider",
    "AuthUser",
    "AuthenticationGate",
    "ConnectionCounter",
    "HandshakeRejected",
    "JWTAuthProvider",
    "NoAuth",
    "ProfileCache",
    "TokenStructureError",
]
