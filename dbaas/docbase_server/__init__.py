"""
Docbase Server - hosted document backend core.

This package implements a document-oriented backend built on:
- Collections of schemaless documents with type-tagged values
- A predicate filter engine with ordering and pagination
- Token-based session authentication
- A change notification bus feeding realtime subscriptions and webhooks

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌─────────────────┐
    │   Client    │────▶│ Auth Manager │────▶│ Document Store  │
    └─────────────┘     └──────────────┘     └────────┬────────┘
           ▲                                          │
           │                               ┌──────────┴──────────┐
           │                               ▼                     ▼
    ┌──────┴──────┐     ┌──────────────┐  ┌─────────────┐  ┌───────────┐
    │  WebSocket  │◀────│  Connection  │◀─│ Change Bus  │  │Persistence│
    │  transport  │     │   Registry   │  └─────────────┘  │  backend  │
    └─────────────┘     └──────────────┘                   └───────────┘

Invariants:
    - Every document belongs to an existing collection
    - revision strictly increases on every successful update
    - Notification happens after a write commits and never fails it
    - A revoked token never validates again

How to change safely:
    - New value types require changes in values.py, the filter engine
      and sort ordering together
    - New filter operators must define compile-time value checks
"""

from ._version import __version__

__all__ = ["__version__"]
