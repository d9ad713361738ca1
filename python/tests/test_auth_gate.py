"""Tests for credential verification, the profile cache and the handshake gate."""

from unittest.mock import AsyncMock

import jwt
import pytest
from conftest import FakeWebSocket

from projectchat.auth import (
    AuthenticationGate,
    ConnectionCounter,
    HandshakeRejected,
    JWTAuthProvider,
    ProfileCache,
    TokenStructureError,
)
from projectchat.auth.gate import (
    REASON_FAILED,
    REASON_INVALID_STRUCTURE,
    REASON_INVALID_TOKEN,
    REASON_MAX_CONNECTIONS,
    REASON_TOKEN_REQUIRED,
)
from projectchat.registry import Connection, ConnectionRegistry
from projectchat.storage import StoreError, UserProfile

SECRET = "test-secret"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def auth():
    return JWTAuthProvider(secret_key=SECRET)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def gate(auth, store, registry):
    return AuthenticationGate(auth, store, registry)


class TestJWTAuthProvider:
    @pytest.mark.asyncio
    async def test_valid_token(self, auth):
        user = await auth.authenticate(auth.create_token("alice", roles=["member"]))

        assert user.id == "alice"
        assert user.has_role("member")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("claim", ["id", "userId", "sub"])
    async def test_user_id_claims(self, auth, claim):
        token = jwt.encode({claim: "alice"}, SECRET, algorithm="HS256")
        user = await auth.authenticate(token)
        assert user.id == "alice"

    @pytest.mark.asyncio
    async def test_id_claim_takes_precedence(self, auth):
        token = jwt.encode({"sub": "bob", "id": "alice"}, SECRET, algorithm="HS256")
        user = await auth.authenticate(token)
        assert user.id == "alice"

    @pytest.mark.asyncio
    async def test_wrong_secret(self):
        other = JWTAuthProvider(secret_key="other-secret")
        assert await JWTAuthProvider(secret_key=SECRET).authenticate(other.create_token("alice")) is None

    @pytest.mark.asyncio
    async def test_expired_token(self, auth):
        assert await auth.authenticate(auth.create_token("alice", expires_in=-60)) is None

    @pytest.mark.asyncio
    async def test_garbage_token(self, auth):
        assert await auth.authenticate("not-a-jwt") is None

    @pytest.mark.asyncio
    async def test_missing_user_id(self, auth):
        token = jwt.encode({"email": "alice@example.com"}, SECRET, algorithm="HS256")
        with pytest.raises(TokenStructureError):
            await auth.authenticate(token)


class TestProfileCache:
    @pytest.mark.asyncio
    async def test_hit_within_ttl(self):
        clock = FakeClock()
        cache = ProfileCache(ttl=300, clock=clock)
        loader = AsyncMock(return_value=UserProfile(id="alice", username="alice"))

        await cache.resolve("alice", loader)
        clock.now += 299
        profile = await cache.resolve("alice", loader)

        assert profile.username == "alice"
        assert loader.await_count == 1

    @pytest.mark.asyncio
    async def test_refresh_after_ttl(self):
        clock = FakeClock()
        cache = ProfileCache(ttl=300, clock=clock)
        loader = AsyncMock(
            side_effect=[
                UserProfile(id="alice", username="alice"),
                UserProfile(id="alice", username="alice2"),
            ]
        )

        await cache.resolve("alice", loader)
        clock.now += 301
        profile = await cache.resolve("alice", loader)

        assert profile.username == "alice2"
        assert loader.await_count == 2

    def test_prune_drops_only_expired_entries(self):
        clock = FakeClock()
        cache = ProfileCache(ttl=300, clock=clock)
        cache.put(UserProfile(id="alice"))
        clock.now += 200
        cache.put(UserProfile(id="bob"))
        clock.now += 150

        assert cache.prune() == 1
        assert len(cache) == 1
        assert cache.get("bob") is not None

    @pytest.mark.asyncio
    async def test_missing_profile_not_cached(self):
        cache = ProfileCache()
        loader = AsyncMock(return_value=None)

        assert await cache.resolve("ghost", loader) is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_loader_errors_propagate(self):
        cache = ProfileCache()
        with pytest.raises(StoreError):
            await cache.resolve("alice", AsyncMock(side_effect=StoreError("down")))


class TestConnectionCounter:
    def test_decrement_floors_at_zero(self):
        counter = ConnectionCounter()
        counter.set("alice", 1)

        assert counter.decrement("alice") == 0
        assert counter.decrement("alice") == 0
        assert len(counter) == 0

    def test_reconcile_drops_offline_users(self):
        counter = ConnectionCounter()
        counter.set("alice", 2)
        counter.set("ghost", 3)

        assert counter.reconcile({"alice"}) == 1
        assert counter.get("alice") == 2
        assert counter.get("ghost") == 0


class TestAuthenticationGate:
    @pytest.mark.asyncio
    async def test_accepts_valid_token(self, gate, auth):
        identity = await gate.authenticate(auth.create_token("alice", roles=["member"]))

        assert identity.user_id == "alice"
        assert identity.username == "alice"
        assert identity.avatar_url == "https://cdn.example/alice.png"
        assert identity.capabilities == frozenset({"member"})
        assert gate.counter.get("alice") == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token(self, gate, token):
        with pytest.raises(HandshakeRejected) as exc:
            await gate.authenticate(token)
        assert exc.value.reason == REASON_TOKEN_REQUIRED

    @pytest.mark.asyncio
    async def test_invalid_token(self, gate):
        with pytest.raises(HandshakeRejected) as exc:
            await gate.authenticate("not-a-jwt")
        assert exc.value.reason == REASON_INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_token_without_user_id(self, gate):
        token = jwt.encode({"email": "alice@example.com"}, SECRET, algorithm="HS256")
        with pytest.raises(HandshakeRejected) as exc:
            await gate.authenticate(token)
        assert exc.value.reason == REASON_INVALID_STRUCTURE

    @pytest.mark.asyncio
    async def test_unknown_user(self, gate, auth):
        with pytest.raises(HandshakeRejected) as exc:
            await gate.authenticate(auth.create_token("mallory"))
        assert exc.value.reason == REASON_INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_store_failure(self, gate, auth, store):
        store.get_user_profile = AsyncMock(side_effect=StoreError("connection refused"))

        with pytest.raises(HandshakeRejected) as exc:
            await gate.authenticate(auth.create_token("alice"))
        assert exc.value.reason == REASON_FAILED

    @pytest.mark.asyncio
    async def test_profile_served_from_cache(self, gate, auth, store):
        token = auth.create_token("alice")
        await gate.authenticate(token)
        store.get_user_profile = AsyncMock(side_effect=StoreError("should not be called"))

        identity = await gate.authenticate(token)

        assert identity.user_id == "alice"
        store.get_user_profile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connection_cap(self, gate, auth, registry):
        token = auth.create_token("alice")
        for _ in range(10):
            registry.register(Connection(FakeWebSocket(), await gate.authenticate(token)))

        with pytest.raises(HandshakeRejected) as exc:
            await gate.authenticate(token)

        assert exc.value.reason == REASON_MAX_CONNECTIONS
        assert registry.count_for_user("alice") == 10
        assert gate.counter.get("alice") == 10

    @pytest.mark.asyncio
    async def test_cap_is_per_user(self, gate, auth, registry):
        for _ in range(10):
            registry.register(Connection(FakeWebSocket(), await gate.authenticate(auth.create_token("alice"))))

        identity = await gate.authenticate(auth.create_token("bob"))
        assert identity.user_id == "bob"

    @pytest.mark.asyncio
    async def test_release_and_sweep(self, gate, auth, registry):
        identity = await gate.authenticate(auth.create_token("alice"))
        registry.register(Connection(FakeWebSocket(), identity))
        gate.counter.set("ghost", 4)

        assert gate.sweep() == 1
        assert gate.counter.get("alice") == 1
        assert gate.release("alice") == 0
