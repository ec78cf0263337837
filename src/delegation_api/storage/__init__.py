"""Storage backends for tasks and the audit trail."""

from delegation_api.storage.base import AuditLog, TaskStorage
from delegation_api.storage.memory import InMemoryAuditLog, InMemoryTaskStorage
from delegation_api.storage.postgres import PostgresAuditLog, PostgresTaskStorage

__all__ = [
    "AuditLog",
    "InMemoryAuditLog",
    "InMemoryTaskStorage",
    "PostgresAuditLog",
    "PostgresTaskStorage",
    "TaskStorage",
]
