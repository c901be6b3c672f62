"""
Docbase Test Suite.

This package contains:
- unit/: Unit tests (in-memory and temporary SQLite backends)
- integration/: Integration tests (store -> bus -> registry, WebSocket transport)
"""
