"""
Audit Logger

Append-only, bilingual, structured event log. Every other component writes
through it; only reporting tools read from it.

  • append / log_info / log_warning / log_error / log_critical - never raise
  • per-scope monotonic sequence so a tenant's trail replays in order
  • sink failures land in a bounded per-scope buffer; flush_buffer() replays it

Every entry is also mirrored to the `arkan.audit` logger.
"""
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from arkan.db.base import utcnow

logger = logging.getLogger(__name__)
audit_mirror = logging.getLogger("arkan.audit")

SYSTEM_SCOPE = "system"


class AuditLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_MIRROR_LEVELS = {
    AuditLevel.DEBUG: logging.DEBUG,
    AuditLevel.INFO: logging.INFO,
    AuditLevel.WARNING: logging.WARNING,
    AuditLevel.ERROR: logging.ERROR,
    AuditLevel.CRITICAL: logging.CRITICAL,
}


class AuditCategory:
    """Audit category constants."""
    PAYMENT = "payment"
    CONTRACT = "contract"
    TENANT = "tenant"
    MAINTENANCE = "maintenance"
    COMPANY = "company"
    SECURITY = "security"
    AUTOMATION = "automation"
    FINANCE = "finance"
    SYSTEM = "system"


class AuditEvent:
    """Audit event type constants."""
    # Context
    CONTEXT_RESOLVED = "CONTEXT_RESOLVED"
    CONTEXT_SWITCH = "CONTEXT_SWITCH"
    CONTEXT_SWITCH_DENIED = "CONTEXT_SWITCH_DENIED"
    CONTEXT_EXIT = "CONTEXT_EXIT"
    ACCESS_SUSPENDED = "ACCESS_SUSPENDED"

    # Isolation
    CROSS_TENANT_ACCESS = "CROSS_TENANT_ACCESS"

    # Records
    RECORD_CREATED = "RECORD_CREATED"
    RECORD_UPDATED = "RECORD_UPDATED"
    RECORD_DELETED = "RECORD_DELETED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"

    # Companies
    COMPANY_CREATED = "COMPANY_CREATED"
    COMPANY_STATUS_CHANGED = "COMPANY_STATUS_CHANGED"
    COMPANY_SETTINGS_CHANGED = "COMPANY_SETTINGS_CHANGED"
    SYSTEM_METRICS_CALCULATED = "SYSTEM_METRICS_CALCULATED"
    MEMBER_ADDED = "MEMBER_ADDED"

    # Finance
    MALFORMED_RECORD = "MALFORMED_RECORD"
    REPEAT_OFFENDER_DETECTED = "REPEAT_OFFENDER_DETECTED"
    POLICY_INVALID = "POLICY_INVALID"

    # Automation
    QUEUE_PROCESSED = "QUEUE_PROCESSED"
    MESSAGE_SEND = "MESSAGE_SEND"
    SWEEP_TENANT_FAILED = "SWEEP_TENANT_FAILED"
    SWEEP_TENANT_TIMEOUT = "SWEEP_TENANT_TIMEOUT"


@dataclass(frozen=True)
class AuditEntry:
    scope: str
    sequence: int
    level: AuditLevel
    category: str
    event_type: str
    message_en: str
    message_ar: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "sequence": self.sequence,
            "level": self.level.value,
            "category": self.category,
            "event_type": self.event_type,
            "message_en": self.message_en,
            "message_ar": self.message_ar,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


class AuditSink(Protocol):
    def write(self, entry: AuditEntry) -> None: ...

    def last_sequence(self, scope: str) -> int: ...

    def query(
        self,
        scope: Optional[str] = None,
        category: Optional[str] = None,
        level: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]: ...


# ── Sinks ─────────────────────────────────────────────────────────────────────

class MemoryAuditSink:
    """In-process sink, used by tests and local tooling."""

    def __init__(self):
        self.entries: List[AuditEntry] = []

    def write(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def last_sequence(self, scope: str) -> int:
        return max((e.sequence for e in self.entries if e.scope == scope), default=0)

    def query(self, scope=None, category=None, level=None, limit=100) -> List[AuditEntry]:
        rows = [
            e for e in self.entries
            if (scope is None or e.scope == scope)
            and (category is None or e.category == category)
            and (level is None or e.level.value == level)
        ]
        rows.sort(key=lambda e: (e.timestamp, e.sequence))
        return rows[-limit:] if limit else rows


class DatabaseAuditSink:
    """
    Writes entries to `audit_log_entries` using its own short-lived session,
    so an audit row survives a rolled-back business transaction.
    """

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def write(self, entry: AuditEntry) -> None:
        from arkan.models.audit import AuditLogEntry

        db = self.session_factory()
        try:
            db.add(AuditLogEntry(
                scope=entry.scope,
                sequence=entry.sequence,
                level=entry.level.value,
                category=entry.category,
                event_type=entry.event_type,
                message_en=entry.message_en,
                message_ar=entry.message_ar,
                details=json.dumps(entry.metadata, default=str, ensure_ascii=False),
                created_at=entry.timestamp,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def last_sequence(self, scope: str) -> int:
        from sqlalchemy import func, select
        from arkan.models.audit import AuditLogEntry

        db = self.session_factory()
        try:
            value = db.execute(
                select(func.max(AuditLogEntry.sequence)).where(AuditLogEntry.scope == scope)
            ).scalar()
            return value or 0
        finally:
            db.close()

    def query(self, scope=None, category=None, level=None, limit=100) -> List[AuditEntry]:
        from sqlalchemy import select
        from arkan.models.audit import AuditLogEntry

        stmt = select(AuditLogEntry)
        if scope is not None:
            stmt = stmt.where(AuditLogEntry.scope == scope)
        if category is not None:
            stmt = stmt.where(AuditLogEntry.category == category)
        if level is not None:
            stmt = stmt.where(AuditLogEntry.level == level)
        stmt = stmt.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.sequence.desc())
        if limit:
            stmt = stmt.limit(limit)

        db = self.session_factory()
        try:
            rows = db.execute(stmt).scalars().all()
        finally:
            db.close()

        return [
            AuditEntry(
                scope=row.scope,
                sequence=row.sequence,
                level=AuditLevel(row.level),
                category=row.category,
                event_type=row.event_type,
                message_en=row.message_en,
                message_ar=row.message_ar,
                metadata=json.loads(row.details) if row.details else {},
                timestamp=row.created_at,
            )
            for row in reversed(rows)
        ]


# ── Logger ────────────────────────────────────────────────────────────────────

class AuditLogger:
    """
    Thread-safe front door to an audit sink.

    Each scope has its own lock, buffer and sequence, so a slow or failing
    write for one tenant never holds up another. The shared lock only guards
    the scope tables.
    """

    def __init__(self, sink: AuditSink, buffer_size: int = 1000):
        self.sink = sink
        self.buffer_size = buffer_size
        self._lock = threading.Lock()
        self._scope_locks: Dict[str, threading.Lock] = {}
        self._sequences: Dict[str, int] = {}
        self._buffers: Dict[str, deque] = {}

    @property
    def buffered(self) -> List[AuditEntry]:
        with self._lock:
            buffers = list(self._buffers.values())
        return [entry for buffer in buffers for entry in list(buffer)]

    def append(
        self,
        scope: Optional[str],
        level: AuditLevel,
        event_type: str,
        message_en: str,
        message_ar: str,
        metadata: Optional[Dict[str, Any]] = None,
        category: str = AuditCategory.SYSTEM,
    ) -> Optional[AuditEntry]:
        """Append one entry. Never raises; returns the entry, or None if it could not be built."""
        try:
            scope = scope or SYSTEM_SCOPE
            level = AuditLevel(level)
            with self._scope_lock(scope):
                entry = AuditEntry(
                    scope=scope,
                    sequence=self._next_sequence(scope),
                    level=level,
                    category=category,
                    event_type=event_type,
                    message_en=message_en,
                    message_ar=message_ar,
                    metadata=dict(metadata or {}),
                )
                self._write(entry)
        except Exception as e:
            logger.error(f"[AUDIT] Could not record {event_type}: {e}")
            return None

        audit_mirror.log(
            _MIRROR_LEVELS[level],
            f"{entry.event_type} | scope={entry.scope} | seq={entry.sequence} | {entry.message_en}",
        )
        return entry

    def log_debug(self, scope, event_type, message_en, message_ar, metadata=None, category=AuditCategory.SYSTEM):
        return self.append(scope, AuditLevel.DEBUG, event_type, message_en, message_ar, metadata, category)

    def log_info(self, scope, event_type, message_en, message_ar, metadata=None, category=AuditCategory.SYSTEM):
        return self.append(scope, AuditLevel.INFO, event_type, message_en, message_ar, metadata, category)

    def log_warning(self, scope, event_type, message_en, message_ar, metadata=None, category=AuditCategory.SYSTEM):
        return self.append(scope, AuditLevel.WARNING, event_type, message_en, message_ar, metadata, category)

    def log_error(self, scope, event_type, message_en, message_ar, metadata=None, category=AuditCategory.SYSTEM):
        return self.append(scope, AuditLevel.ERROR, event_type, message_en, message_ar, metadata, category)

    def log_critical(self, scope, event_type, message_en, message_ar, metadata=None, category=AuditCategory.SYSTEM):
        return self.append(scope, AuditLevel.CRITICAL, event_type, message_en, message_ar, metadata, category)

    def flush_buffer(self) -> int:
        """Replay buffered entries into the sink, in order per scope. Returns how many were written."""
        with self._lock:
            scopes = [scope for scope, buffer in self._buffers.items() if buffer]
        written = 0
        for scope in scopes:
            with self._scope_lock(scope):
                written += self._drain(scope)
        return written

    def list_entries(
        self,
        scope: Optional[str] = None,
        category: Optional[str] = None,
        level: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        try:
            return self.sink.query(scope=scope, category=category, level=level, limit=limit)
        except Exception as e:
            logger.error(f"[AUDIT] Sink query failed: {e}")
            return []

    # ── internals (per-scope helpers run with that scope's lock held) ──

    def _scope_lock(self, scope: str) -> threading.Lock:
        with self._lock:
            lock = self._scope_locks.get(scope)
            if lock is None:
                lock = self._scope_locks[scope] = threading.Lock()
                self._buffers[scope] = deque(maxlen=self.buffer_size)
            return lock

    def _next_sequence(self, scope: str) -> int:
        if scope not in self._sequences:
            try:
                last = self.sink.last_sequence(scope)
            except Exception as e:
                logger.warning(f"[AUDIT] Could not read last sequence for {scope}: {e}")
                last = 0
            self._sequences[scope] = last
        self._sequences[scope] += 1
        return self._sequences[scope]

    def _write(self, entry: AuditEntry) -> None:
        buffer = self._buffers[entry.scope]
        # Buffered entries go first so per-scope order is preserved
        if buffer:
            self._drain(entry.scope)
        if buffer:
            self._buffer_entry(buffer, entry)
            return
        try:
            self.sink.write(entry)
        except Exception as e:
            self._buffer_entry(buffer, entry)
            logger.warning(f"[AUDIT] Sink unavailable, buffered {entry.event_type}: {e}")

    def _buffer_entry(self, buffer: deque, entry: AuditEntry) -> None:
        if len(buffer) == buffer.maxlen:
            logger.error(f"[AUDIT] Fallback buffer full for {entry.scope}, dropping oldest entry")
        buffer.append(entry)

    def _drain(self, scope: str) -> int:
        buffer = self._buffers[scope]
        written = 0
        while buffer:
            entry = buffer[0]
            try:
                self.sink.write(entry)
            except Exception as e:
                logger.warning(f"[AUDIT] Buffer flush stopped for {scope}: {e}")
                break
            buffer.popleft()
            written += 1
        return written
