"""
auth/audit.py -- Audit sinks.

The orchestrator reports security events (login success/failure, throttling,
refresh, revocation, access denial) to an AuditSink. Sinks are
fire-and-forget: the orchestrator swallows and logs any exception a sink
raises, so a broken sink can never fail a login or an authorization.

Unlike the caller-facing errors, audit events keep the distinction between
"unknown identity" and "wrong password" for operators.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from auth.models import AuditEvent, AuditEventKind

logger = logging.getLogger("authcore.audit")

_WARNING_KINDS = {
    AuditEventKind.LOGIN_FAILED,
    AuditEventKind.UNKNOWN_IDENTITY,
    AuditEventKind.LOGIN_THROTTLED,
    AuditEventKind.ACCESS_DENIED,
}


class LoggingAuditSink:
    """Writes one log line per event to the authcore.audit logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def record(self, kind: AuditEventKind, identity_key: str, timestamp: datetime) -> None:
        level = logging.WARNING if kind in _WARNING_KINDS else logging.INFO
        self._log.log(level, "%s identity=%s at=%s", kind.value, identity_key, timestamp.isoformat())


class MemoryAuditSink:
    """Keeps events in a list. Handy for tests and for an admin "recent events" view."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[AuditEvent] = []

    def record(self, kind: AuditEventKind, identity_key: str, timestamp: datetime) -> None:
        with self._lock:
            self._events.append(AuditEvent(kind=kind, identity_key=identity_key, timestamp=timestamp))

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def kinds(self) -> list[AuditEventKind]:
        return [e.kind for e in self.events]
