"""
Documents module for Docbase - collections and document CRUD.

This module handles:
- Collection catalogue (create, rename, webhook URL, cascade delete)
- Document create/get/list/update/delete
- Per-document locking and revision checks
- Publishing committed mutations to the change notification bus

Invariants:
    - All mutations of one document are serialized
    - revision strictly increases on every update
    - Notification never fails or blocks a write
"""

from .models import Collection, Document, DocumentPage
from .store import DocumentStore

__all__ = [
    "Collection",
    "Document",
    "DocumentPage",
    "DocumentStore",
]
