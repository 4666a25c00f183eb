"""
Notification relay interface for Encore
One-way, best-effort publishing of significant events for realtime fan-out
"""

import threading
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class NotificationRelay(Protocol):
    """Sink for realtime events. The core never inspects its internals."""

    def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        ...


class NullRelay:
    """Discards every event"""

    def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        return None


class LoggingRelay:
    """Writes events to the structured log instead of a socket hub"""

    def __init__(self, channel: str = "realtime"):
        self.channel = channel

    def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        logger.info("Relay event", channel=self.channel, event_kind=event_kind, payload=payload)


class RecordingRelay:
    """Keeps published events in memory for testing"""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append((event_kind, dict(payload)))

    def kinds(self) -> List[str]:
        with self._lock:
            return [kind for kind, _ in self.events]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


def publish_safely(relay: Optional[NotificationRelay], event_kind: str,
                   payload: Dict[str, Any]) -> bool:
    """Publish and report success; relay failures are logged, never raised"""
    if relay is None:
        return False
    try:
        relay.publish(event_kind, payload)
        return True
    except Exception as e:
        logger.error("Failed to publish relay event", event_kind=event_kind, error=str(e))
        return False
