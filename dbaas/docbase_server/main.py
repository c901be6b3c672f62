"""
Docbase Server - Main entry point.

This module starts the Docbase server with all components:
- Persistence backend (SQLite or in-memory)
- Document store and auth manager
- Change notification bus and connection registry
- Realtime WebSocket transport

Usage:
    python -m dbaas.docbase_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The backend is connected before any component uses it
    - Shutdown closes subscriptions before the backend
    - All components share one bus

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .api import RealtimeServer, create_realtime_app
from .auth import AuthManager
from .config import ServerConfig
from .documents import DocumentStore
from .realtime import ChangeNotificationBus, ConnectionRegistry, LoggingWebhookDispatcher
from .storage import PersistenceBackend, create_backend

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Docbase Server orchestrator.

    Manages the lifecycle of all server components.

    Attributes:
        config: Server configuration
        backend: Persistence backend
        bus: Change notification bus
        store: Document store
        auth: Auth manager
        registry: Realtime connection registry
        webhooks: Dispatcher receiving webhook deliveries

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in setup())
        self.backend: PersistenceBackend | None = None
        self.webhooks: LoggingWebhookDispatcher | None = None
        self.bus: ChangeNotificationBus | None = None
        self.store: DocumentStore | None = None
        self.auth: AuthManager | None = None
        self.registry: ConnectionRegistry | None = None
        self.realtime_server: RealtimeServer | None = None

    async def setup(self) -> None:
        """Connect the backend and wire the core components."""
        self.backend = create_backend(self.config.storage)
        await self.backend.connect()
        logger.info("Persistence backend connected")

        # Outbound HTTP delivery is an external collaborator; log only
        self.webhooks = LoggingWebhookDispatcher()
        self.bus = ChangeNotificationBus(webhook_dispatcher=self.webhooks)
        self.store = DocumentStore(self.backend, self.bus)
        self.auth = AuthManager(self.backend, self.config.auth)
        self.registry = ConnectionRegistry(
            self.bus,
            queue_capacity=self.config.realtime.queue_capacity,
            collection_exists=self.store.collection_exists,
        )

    async def start(self) -> None:
        """Start the server and all components."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Docbase server")
        self.config.log_config()

        try:
            await self.setup()

            app = create_realtime_app(
                self.registry,
                self.auth,
                self.config.transport,
                stats_sources={
                    "store": lambda: self.store.stats,
                    "bus": lambda: self.bus.stats,
                },
            )
            host, port = self.config.transport.bind_address.rsplit(":", 1)
            self.realtime_server = RealtimeServer(app, host=host, port=int(port))
            await self.realtime_server.start()

            self._running = True
            logger.info("Docbase server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self.backend is None:
            return

        logger.info("Stopping Docbase server")

        if self.registry:
            await self.registry.close_all()

        if self.realtime_server:
            await self.realtime_server.stop()

        await self.backend.close()
        self.backend = None

        self._running = False
        logger.info("Docbase server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
