"""
Test suite for event system

Tests the publish/subscribe dispatcher and the sequence-numbered event log.
"""

from unittest.mock import Mock

from token_ledger.storage import InMemoryStorage
from token_ledger.events import (
    EventDispatcher, EventLog, EventPayload, LedgerEvent,
    create_transfer_event, create_approval_event
)
from token_ledger.ledger import UINT256_MAX


class TestEventDispatcher:
    """Test EventDispatcher functionality"""

    def setup_method(self):
        self.dispatcher = EventDispatcher()

    def test_subscribe_and_publish(self):
        handler = Mock()
        self.dispatcher.subscribe(LedgerEvent.TRANSFER, handler)

        event = create_transfer_event("alice", "bob", 5)
        self.dispatcher.publish(event)

        handler.assert_called_once_with(event)

    def test_handlers_only_see_their_type(self):
        transfer_handler = Mock()
        self.dispatcher.subscribe(LedgerEvent.TRANSFER, transfer_handler)

        self.dispatcher.publish(create_approval_event("alice", "bob", 5))

        transfer_handler.assert_not_called()

    def test_subscribe_all(self):
        handler = Mock()
        self.dispatcher.subscribe_all(handler)

        self.dispatcher.publish(create_transfer_event("alice", "bob", 1))
        self.dispatcher.publish(create_approval_event("alice", "bob", 1))

        assert handler.call_count == 2

    def test_unsubscribe(self):
        handler = Mock()
        self.dispatcher.subscribe(LedgerEvent.APPROVAL, handler)
        self.dispatcher.unsubscribe(LedgerEvent.APPROVAL, handler)

        self.dispatcher.publish(create_approval_event("alice", "bob", 1))

        handler.assert_not_called()
        assert self.dispatcher.get_handler_count() == 0

    def test_unsubscribe_all(self):
        handler = Mock()
        self.dispatcher.subscribe_all(handler)
        self.dispatcher.unsubscribe_all(handler)
        self.dispatcher.unsubscribe_all(handler)

        self.dispatcher.publish(create_transfer_event("alice", "bob", 1))

        handler.assert_not_called()
        assert self.dispatcher.get_handler_count() == 0

    def test_failing_handler_does_not_block_others(self):
        failing = Mock(side_effect=RuntimeError("boom"))
        healthy = Mock()
        self.dispatcher.subscribe(LedgerEvent.TRANSFER, failing)
        self.dispatcher.subscribe(LedgerEvent.TRANSFER, healthy)

        self.dispatcher.publish(create_transfer_event("alice", "bob", 1))

        healthy.assert_called_once()

    def test_handler_count(self):
        self.dispatcher.subscribe(LedgerEvent.TRANSFER, Mock())
        self.dispatcher.subscribe(LedgerEvent.APPROVAL, Mock())
        self.dispatcher.subscribe_all(Mock())

        assert self.dispatcher.get_handler_count(LedgerEvent.TRANSFER) == 1
        assert self.dispatcher.get_handler_count() == 3

        self.dispatcher.clear()
        assert self.dispatcher.get_handler_count() == 0


class TestEventPayload:
    """Test payload serialization"""

    def test_amounts_serialized_as_strings(self):
        event = create_transfer_event("alice", "bob", UINT256_MAX)
        data = event.to_dict()
        assert data["event_type"] == "Transfer"
        assert data["data"]["value"] == str(UINT256_MAX)

    def test_from_dict_restores_integer_value(self):
        event = create_approval_event("alice", "bob", UINT256_MAX)
        restored = EventPayload.from_dict(event.to_dict())
        assert restored.event_type == LedgerEvent.APPROVAL
        assert restored.data == {"owner": "alice", "spender": "bob", "value": UINT256_MAX}


class TestEventLog:
    """Test the persisted notification log"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.log = EventLog(self.storage)

    def test_sequences_start_at_one(self):
        first = self.log.append(create_transfer_event("0x0", "alice", 10))
        second = self.log.append(create_approval_event("alice", "bob", 3))
        assert (first.sequence, second.sequence) == (1, 2)
        assert self.log.last_sequence == 2

    def test_since_filters_and_limits(self):
        for amount in range(5):
            self.log.append(create_transfer_event("alice", "bob", amount))

        assert [e.sequence for e in self.log.since(2)] == [3, 4, 5]
        assert [e.sequence for e in self.log.since(0, limit=2)] == [1, 2]
        assert self.log.since(5) == []

    def test_log_survives_reopen(self):
        self.log.append(create_transfer_event("alice", "bob", 1))
        reopened = EventLog(self.storage)
        assert reopened.last_sequence == 1
        assert reopened.append(create_transfer_event("bob", "carol", 1)).sequence == 2

    def test_resync_after_rollback(self):
        self.log.append(create_transfer_event("alice", "bob", 1))
        try:
            with self.storage.atomic():
                self.log.append(create_transfer_event("alice", "bob", 2))
                raise RuntimeError("abort")
        except RuntimeError:
            self.log.resync()

        assert self.log.last_sequence == 1
        assert len(self.log.all()) == 1
