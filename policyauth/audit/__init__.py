"""
Audit module initialization
"""

from .logger import AuditLogger, DecisionEvent, FileAuditLogger, MemoryAuditLogger, create_audit_logger

__all__ = [
    "AuditLogger",
    "DecisionEvent",
    "MemoryAuditLogger",
    "FileAuditLogger",
    "create_audit_logger",
]
