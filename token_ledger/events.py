"""
Event System Module

Transfer and Approval notifications. Every notification is appended to a
persisted, sequence-numbered event log and then handed to subscribers
through a publish/subscribe dispatcher.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock

from .storage import StorageInterface


class LedgerEvent(Enum):
    """Notifications the ledger emits"""
    TRANSFER = "Transfer"
    APPROVAL = "Approval"


@dataclass
class EventPayload:
    """Payload for ledger notifications"""
    event_type: LedgerEvent
    data: Dict[str, Any]
    sequence: int = 0  # Assigned by EventLog.append
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization; amounts become decimal strings"""
        return {
            'event_type': self.event_type.value,
            'data': {k: str(v) if isinstance(v, int) else v for k, v in self.data.items()},
            'sequence': self.sequence,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        """Create from dictionary"""
        payload = dict(data['data'])
        if 'value' in payload:
            payload['value'] = int(payload['value'])
        return cls(
            event_type=LedgerEvent(data['event_type']),
            data=payload,
            sequence=int(data['sequence']),
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            event_id=data['event_id']
        )


class EventDispatcher:
    """Central event dispatcher: publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[LedgerEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("token_ledger.events")

    def subscribe(self, event_type: LedgerEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: LedgerEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
                self.logger.debug(f"Unsubscribed handler {_handler_name(handler)} from {event_type.value}")
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def unsubscribe_all(self, handler: Callable) -> None:
        """Remove a catch-all handler"""
        with self._lock:
            try:
                self._global_handlers.remove(handler)
                self.logger.debug(f"Unsubscribed global handler {_handler_name(handler)}")
            except ValueError:
                self.logger.warning(f"Global handler {_handler_name(handler)} was not subscribed")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            self.logger.debug(f"Publishing {event.event_type.value} #{event.sequence}")

            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)
            for handler in handlers:
                try:
                    handler(event)
                except Exception as e:
                    # Observers never undo a committed mutation
                    self.logger.error(
                        f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}"
                    )

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()
            self.logger.info("All event handlers cleared")

    def get_handler_count(self, event_type: Optional[LedgerEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


class EventLog:
    """
    Append-only, ordered log of notifications

    Sequence numbers start at 1 and increase by one per notification, so a
    consumer can resume from the last sequence it saw.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "ledger_events"):
        self.storage = storage
        self.table_name = table_name
        self._lock = RLock()
        self._last_sequence = self.storage.count(self.table_name)

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    def append(self, event: EventPayload) -> EventPayload:
        """Assign the next sequence number and persist the event"""
        with self._lock:
            event.sequence = self._last_sequence + 1
            self.storage.save(self.table_name, f"{event.sequence:020d}", event.to_dict())
            self._last_sequence = event.sequence
            return event

    def resync(self) -> None:
        """Re-read the sequence counter after a rolled back append"""
        with self._lock:
            self._last_sequence = self.storage.count(self.table_name)

    def since(self, sequence: int = 0, limit: Optional[int] = None) -> List[EventPayload]:
        """Events with a sequence number greater than sequence, oldest first"""
        events = [
            EventPayload.from_dict(data)
            for data in self.storage.load_all(self.table_name)
            if int(data['sequence']) > sequence
        ]
        events.sort(key=lambda e: e.sequence)
        if limit:
            events = events[:limit]
        return events

    def all(self) -> List[EventPayload]:
        """Every event in emission order"""
        return self.since(0)


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


# Convenience functions for the two notification shapes
def create_transfer_event(from_account: str, to_account: str, amount: int) -> EventPayload:
    """Transfer(from, to, value)"""
    return EventPayload(
        event_type=LedgerEvent.TRANSFER,
        data={
            "from": from_account,
            "to": to_account,
            "value": amount
        }
    )


def create_approval_event(owner: str, spender: str, amount: int) -> EventPayload:
    """Approval(owner, spender, value)"""
    return EventPayload(
        event_type=LedgerEvent.APPROVAL,
        data={
            "owner": owner,
            "spender": spender,
            "value": amount
        }
    )
