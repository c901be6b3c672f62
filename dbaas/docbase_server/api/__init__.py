"""
API module for Docbase server.

This module provides the external realtime interface:
- WebSocket subscriptions on collection changes
- Health endpoint with component statistics

HTTP routing for document CRUD belongs to an outer layer; the core
exposes it as Python operations on DocumentStore and AuthManager.

Invariants:
    - A valid bearer token is required when require_auth is enabled
    - Transport disconnects always close the subscription

How to change safely:
    - Add new endpoints, don't change existing frame shapes
    - Keep the DocbaseError code -> HTTP status mapping complete
"""

from .realtime_server import RealtimeServer, create_realtime_app, error_response, extract_token

__all__ = [
    "RealtimeServer",
    "create_realtime_app",
    "error_response",
    "extract_token",
]
