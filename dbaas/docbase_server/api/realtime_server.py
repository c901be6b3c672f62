"""
Realtime WebSocket transport for Docbase.

This module is a thin boundary around the ConnectionRegistry:
- GET /v1/realtime/{collection_id}?name=...&filter=<json>
    Upgrades to a WebSocket, opens a subscription, marks it ready and
    streams ``{"event", "data"}`` JSON frames until the client leaves.
- GET /v1/health
    Component statistics.

Authentication uses ``Authorization: Bearer <token>`` (or the
``access_token`` query parameter for browser clients that cannot set
headers). With require_auth enabled, a missing or invalid token is
rejected with 401 before any subscription is created.

Invariants:
    - Errors before the upgrade are plain JSON HTTP responses
    - A client disconnect always reaches transport_disconnected()
    - Token values are never logged

How to change safely:
    - Keep subscription semantics in the registry, not here
    - Keep the error code -> status mapping in sync with errors.py
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, Optional

from aiohttp import WSMsgType, web

from ..auth.manager import AuthContext, AuthManager
from ..config import TransportConfig
from ..errors import DocbaseError, ValidationError
from ..realtime.models import Subscription, TransportDisconnected
from ..realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

HTTP_STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "VALIDATION_ERROR": 400,
    "UNAUTHENTICATED": 401,
    "UNAUTHORIZED": 403,
    "INTERNAL": 500,
}

REGISTRY_KEY = web.AppKey("registry", ConnectionRegistry)
AUTH_KEY = web.AppKey("auth", AuthManager)
CONFIG_KEY = web.AppKey("transport_config", TransportConfig)
STATS_KEY = web.AppKey("stats_sources", dict)


def error_response(error: DocbaseError) -> web.Response:
    """JSON response for a DocbaseError."""
    return web.json_response(error.to_dict(), status=HTTP_STATUS_BY_CODE.get(error.code, 500))


def create_realtime_app(
    registry: ConnectionRegistry,
    auth: AuthManager,
    config: TransportConfig | None = None,
    stats_sources: dict[str, Callable[[], dict[str, Any]]] | None = None,
) -> web.Application:
    """Create the realtime aiohttp application.

    Args:
        registry: Connection registry subscriptions are opened on
        auth: Auth manager validating bearer tokens
        config: Transport configuration
        stats_sources: Extra ``name -> stats()`` callables for /v1/health

    Returns:
        aiohttp Application instance
    """
    app = web.Application()
    app[REGISTRY_KEY] = registry
    app[AUTH_KEY] = auth
    app[CONFIG_KEY] = config or TransportConfig()
    app[STATS_KEY] = dict(stats_sources or {})

    app.router.add_get("/v1/realtime/{collection_id}", handle_subscribe)
    app.router.add_get("/v1/health", handle_health)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except DocbaseError as e:
            return error_response(e)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": "Internal server error", "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.append(error_middleware)
    return app


def extract_token(request: web.Request) -> Optional[str]:
    """Bearer token from the Authorization header or access_token query."""
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.query.get("access_token") or None


async def authenticate_request(request: web.Request) -> Optional[AuthContext]:
    """Resolve the caller.

    Returns:
        AuthContext, or None when auth is optional and no token was sent

    Raises:
        UnauthenticatedError: Token required but missing, or invalid
    """
    token = extract_token(request)
    if token is None and not request.app[CONFIG_KEY].require_auth:
        return None
    return await request.app[AUTH_KEY].validate_token(token)


def parse_filter(request: web.Request) -> Any:
    """Decode the ``filter`` query parameter (JSON object or triple list)."""
    raw = request.query.get("filter")
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("filter must be valid JSON", field_name="filter") from None


async def handle_subscribe(request: web.Request) -> web.StreamResponse:
    """Handle GET /v1/realtime/{collection_id} - Stream collection changes."""
    registry = request.app[REGISTRY_KEY]
    collection_id = request.match_info["collection_id"]
    name = request.query.get("name", "")

    context = await authenticate_request(request)
    spec = parse_filter(request)

    ws = web.WebSocketResponse(heartbeat=request.app[CONFIG_KEY].heartbeat_seconds or None)

    async def send_event(payload: dict[str, Any]) -> None:
        if ws.closed:
            raise TransportDisconnected(name)
        try:
            await ws.send_json(payload)
        except ConnectionResetError as e:
            raise TransportDisconnected(name) from e

    async def send_open(subscription: Subscription) -> None:
        await ws.send_json({"event": "open", "data": subscription.to_dict()})

    subscription = await registry.open_connection(
        collection_id,
        name,
        filter=spec,
        on_event=send_event,
        on_open=send_open,
        context=context,
    )

    try:
        await ws.prepare(request)
        try:
            await registry.mark_ready(name)
        except (DocbaseError, ConnectionResetError) as e:
            logger.warning(f"Could not start delivery: {e}", extra={"connection_name": name})
            await ws.close()
            return ws

        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                logger.warning(
                    "WebSocket error",
                    extra={"connection_name": name, "error": str(ws.exception())},
                )
                break
            # Clients only listen; inbound frames are ignored
    finally:
        if registry.get(name) is subscription:
            await registry.transport_disconnected(name)

    return ws


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /v1/health - Health check."""
    result: dict[str, Any] = {
        "healthy": True,
        "registry": request.app[REGISTRY_KEY].stats,
    }
    for source, stats in request.app[STATS_KEY].items():
        result[source] = stats()
    return web.json_response(result)


class RealtimeServer:
    """aiohttp server wrapper for the realtime transport.

    Example:
        >>> server = RealtimeServer(app, port=8080)
        >>> await server.start()
        >>> await server.stop()
    """

    def __init__(self, app: web.Application, host: str = "0.0.0.0", port: int = 8080) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Bind and start serving."""
        if self._runner is not None:
            logger.warning("Server already running")
            return

        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        await site.start()
        self._runner = runner

        logger.info(
            f"Realtime server running on http://{self.host}:{self.port}",
            extra={"host": self.host, "port": self.port},
        )

    async def stop(self) -> None:
        """Stop serving and close open WebSockets."""
        if self._runner is None:
            return
        logger.info("Stopping realtime server")
        runner, self._runner = self._runner, None
        await runner.cleanup()

