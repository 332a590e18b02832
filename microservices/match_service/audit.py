"""
Audit Sinks

Append-only sinks for security and lifecycle audit records. Sinks are
injected; nothing here is a process-wide singleton.
"""

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Iterable, List, Optional

from core.nats_client import Event, EventType, ServiceSource

from .lifecycle import utc_now
from .models import AuditEvent, AuditEventKind
from .protocols import AuditSinkProtocol, Clock, EventBusProtocol

logger = logging.getLogger(__name__)


class InMemoryAuditSink:
    """
    Bounded in-memory audit log.

    Retention: at most `max_events` records, none older than `retention`.
    Records are never edited once appended.
    """

    def __init__(
        self,
        max_events: int = 1000,
        retention: timedelta = timedelta(days=7),
        clock: Optional[Clock] = None,
    ):
        self.max_events = max_events
        self.retention = retention
        self.clock = clock or utc_now
        self._events: Deque[AuditEvent] = deque(maxlen=max_events)

    async def record(self, event: AuditEvent) -> None:
        self._events.append(event)
        self._prune()

    def recent(
        self,
        limit: int = 100,
        match_id: Optional[str] = None,
        kind: Optional[AuditEventKind] = None,
    ) -> List[AuditEvent]:
        """Newest first"""
        self._prune()
        selected = [
            e for e in reversed(self._events)
            if (match_id is None or e.match_id == match_id) and (kind is None or e.kind == kind)
        ]
        return selected[:limit]

    def __len__(self) -> int:
        return len(self._events)

    def _prune(self) -> None:
        cutoff: datetime = self.clock() - self.retention
        while self._events and self._events[0].occurred_at < cutoff:
            self._events.popleft()


class EventBusAuditSink:
    """Forwards audit records to NATS for durable storage downstream"""

    def __init__(self, event_bus: EventBusProtocol):
        self.event_bus = event_bus

    async def record(self, event: AuditEvent) -> None:
        published = await self.event_bus.publish_event(
            Event(
                event_type=EventType.AUDIT_RECORDED,
                source=ServiceSource.MATCH_SERVICE,
                data=event.model_dump(mode="json"),
                subject=event.match_id,
            )
        )
        if not published:
            logger.warning(f"Audit event {event.event_id} ({event.kind.value}) not forwarded to event bus")


class FanOutAuditSink:
    """Writes each record to every configured sink; one failing sink does not block the rest"""

    def __init__(self, sinks: Iterable[AuditSinkProtocol]):
        self.sinks = list(sinks)

    async def record(self, event: AuditEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.record(event)
            except Exception as e:
                logger.error(f"Audit sink {type(sink).__name__} failed for {event.event_id}: {e}")
