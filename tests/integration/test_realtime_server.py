"""
Integration tests for the realtime WebSocket transport.

Runs the aiohttp application in-process with aiohttp's TestServer and
TestClient against a real store, bus, registry and auth manager.
"""

import asyncio
import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from dbaas.docbase_server.api import create_realtime_app
from dbaas.docbase_server.auth import AuthManager, ClientSession
from dbaas.docbase_server.config import AuthConfig, TransportConfig
from dbaas.docbase_server.documents import DocumentStore
from dbaas.docbase_server.realtime import ChangeNotificationBus, ConnectionRegistry
from dbaas.docbase_server.storage import InMemoryBackend


async def wait_until(predicate, timeout=2.0):
    """Poll until predicate() is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
async def components():
    backend = InMemoryBackend()
    await backend.connect()
    bus = ChangeNotificationBus()
    store = DocumentStore(backend, bus)
    auth = AuthManager(backend, AuthConfig(bcrypt_rounds=4))
    registry = ConnectionRegistry(bus, collection_exists=store.collection_exists)
    await store.create_collection("Posts", collection_id="posts")
    yield store, auth, registry
    await registry.close_all()


@pytest.fixture
def require_auth():
    return True


@pytest.fixture
async def client(components, require_auth):
    store, auth, registry = components
    app = create_realtime_app(
        registry,
        auth,
        TransportConfig(require_auth=require_auth, heartbeat_seconds=0),
        stats_sources={"store": lambda: store.stats},
    )
    async with TestClient(TestServer(app)) as client:
        yield client


@pytest.fixture
async def token(components):
    _, auth, _ = components
    session = ClientSession(auth)
    await session.register("ada@example.com", "pw")
    return session.token


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestSubscribe:
    """Tests for GET /v1/realtime/{collection_id}."""

    @pytest.mark.asyncio
    async def test_stream_matching_events(self, client, components, token):
        store, _, registry = components
        query = json.dumps({"published": True})

        ws = await client.ws_connect(
            "/v1/realtime/posts", params={"name": "feed", "filter": query}, headers=bearer(token)
        )
        opened = await ws.receive_json(timeout=2)
        assert opened["event"] == "open"
        assert opened["data"]["connectionName"] == "feed"

        await store.create_document("posts", {"title": "skip", "published": False})
        doc = await store.create_document("posts", {"title": "hit", "published": True})

        frame = await ws.receive_json(timeout=2)
        assert frame == {"event": "create", "data": doc.to_dict()}

        await ws.close()
        await wait_until(lambda: registry.get("feed") is None)

    @pytest.mark.asyncio
    async def test_token_in_query(self, client, token):
        ws = await client.ws_connect(
            "/v1/realtime/posts", params={"name": "feed", "access_token": token}
        )
        assert (await ws.receive_json(timeout=2))["event"] == "open"
        await ws.close()

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/v1/realtime/posts", params={"name": "feed"})
        assert response.status == 401
        body = await response.json()
        assert body["error_code"] == "UNAUTHENTICATED"

    @pytest.mark.asyncio
    async def test_revoked_token(self, client, components, token):
        _, auth, _ = components
        await auth.revoke_token(token)
        response = await client.get(
            "/v1/realtime/posts", params={"name": "feed"}, headers=bearer(token)
        )
        assert response.status == 401

    @pytest.mark.asyncio
    async def test_unknown_collection(self, client, token):
        response = await client.get(
            "/v1/realtime/nope", params={"name": "feed"}, headers=bearer(token)
        )
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_bad_filter(self, client, token):
        response = await client.get(
            "/v1/realtime/posts",
            params={"name": "feed", "filter": "{not json"},
            headers=bearer(token),
        )
        assert response.status == 400

        response = await client.get(
            "/v1/realtime/posts",
            params={"name": "feed", "filter": json.dumps([["a", "between", 1]])},
            headers=bearer(token),
        )
        assert response.status == 400

    @pytest.mark.asyncio
    async def test_name_in_use(self, client, token):
        ws = await client.ws_connect(
            "/v1/realtime/posts", params={"name": "feed"}, headers=bearer(token)
        )
        await ws.receive_json(timeout=2)

        response = await client.get(
            "/v1/realtime/posts", params={"name": "feed"}, headers=bearer(token)
        )
        assert response.status == 409
        await ws.close()

    @pytest.mark.asyncio
    async def test_current_user_filter(self, client, components, token):
        store, auth, _ = components
        context = await auth.validate_token(token)
        query = json.dumps({"owner": "$currentUser"})

        ws = await client.ws_connect(
            "/v1/realtime/posts", params={"name": "mine", "filter": query}, headers=bearer(token)
        )
        await ws.receive_json(timeout=2)

        await store.create_document("posts", {"owner": "someone-else"})
        mine = await store.create_document("posts", {"owner": context.user_id})

        frame = await ws.receive_json(timeout=2)
        assert frame["data"]["id"] == mine.id
        await ws.close()


class TestOptionalAuth:
    """Anonymous subscriptions when require_auth is off."""

    @pytest.fixture
    def require_auth(self):
        return False

    @pytest.mark.asyncio
    async def test_anonymous_subscribe(self, client, components):
        store, _, _ = components
        ws = await client.ws_connect("/v1/realtime/posts", params={"name": "anon"})
        await ws.receive_json(timeout=2)

        doc = await store.create_document("posts", {"a": 1})
        assert (await ws.receive_json(timeout=2))["data"]["id"] == doc.id
        await ws.close()

    @pytest.mark.asyncio
    async def test_invalid_token_still_rejected(self, client):
        response = await client.get(
            "/v1/realtime/posts", params={"name": "anon"}, headers=bearer("bogus")
        )
        assert response.status == 401


class TestHealth:
    """Tests for GET /v1/health."""

    @pytest.mark.asyncio
    async def test_health(self, client, components, token):
        store, _, _ = components
        await store.create_document("posts", {"a": 1})

        response = await client.get("/v1/health")
        assert response.status == 200
        body = await response.json()
        assert body["healthy"] is True
        assert body["store"]["mutation_count"] == 1
        assert body["registry"]["connections"] == 0
