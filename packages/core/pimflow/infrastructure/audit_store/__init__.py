"""Audit store implementations."""

from pimflow.infrastructure.audit_store.memory_store import InMemoryAuditStore

__all__ = ["InMemoryAuditStore"]
