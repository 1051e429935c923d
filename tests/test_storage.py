"""
Tests for storage backends and transaction support
"""

import pytest

from token_ledger.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, create_storage
)


record = {"account": "alice", "amount": "100"}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Each test runs against both backends"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestStorageOperations:
    """Basic CRUD behaviour shared by all backends"""

    def test_save_and_load(self, storage):
        storage.save("balances", "alice", record)
        assert storage.load("balances", "alice") == record
        assert storage.exists("balances", "alice")
        assert storage.load("balances", "bob") is None
        assert not storage.exists("balances", "bob")

    def test_save_overwrites(self, storage):
        storage.save("balances", "alice", record)
        storage.save("balances", "alice", {"account": "alice", "amount": "5"})
        assert storage.load("balances", "alice")["amount"] == "5"
        assert storage.count("balances") == 1

    def test_load_all_keeps_insertion_order(self, storage):
        for name in ("carol", "alice", "bob"):
            storage.save("balances", name, {"account": name, "amount": "1"})
        storage.save("balances", "carol", {"account": "carol", "amount": "2"})
        assert [r["account"] for r in storage.load_all("balances")] == ["carol", "alice", "bob"]

    def test_find(self, storage):
        storage.save("events", "1", {"event_type": "Transfer", "n": 1})
        storage.save("events", "2", {"event_type": "Approval", "n": 2})
        storage.save("events", "3", {"event_type": "Transfer", "n": 3})
        found = storage.find("events", {"event_type": "Transfer"})
        assert [r["n"] for r in found] == [1, 3]

    def test_empty_table(self, storage):
        assert storage.count("missing") == 0
        assert storage.load_all("missing") == []


class TestTransactions:
    """Atomic groups of writes"""

    def test_atomic_commits(self, storage):
        with storage.atomic():
            storage.save("balances", "alice", {"amount": "90"})
            storage.save("balances", "bob", {"amount": "10"})
        assert storage.count("balances") == 2

    def test_atomic_rolls_back_on_error(self, storage):
        storage.save("balances", "alice", {"amount": "100"})
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("balances", "alice", {"amount": "90"})
                storage.save("balances", "bob", {"amount": "10"})
                raise RuntimeError("interrupted")
        assert storage.load("balances", "alice") == {"amount": "100"}
        assert storage.load("balances", "bob") is None

    def test_nested_atomic_joins_outer(self, storage):
        """An inner block that committed is still undone by the outer rollback"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("balances", "alice", {"amount": "1"})
                raise RuntimeError("interrupted")
        assert storage.load("balances", "alice") is None

    def test_usable_after_rollback(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("fresh_table", "x", {"v": 1})
                raise RuntimeError("interrupted")
        storage.save("fresh_table", "y", {"v": 2})
        assert storage.count("fresh_table") == 1


class TestSQLitePersistence:
    """Data written through one connection is visible to the next"""

    def test_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        first = SQLiteStorage(path)
        first.save("balances", "alice", record)
        first.close()

        second = SQLiteStorage(path)
        assert second.load("balances", "alice") == record
        second.close()


class TestCreateStorage:
    """Database URL parsing"""

    def test_memory(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)

    def test_sqlite_path(self, tmp_path):
        backend = create_storage(f"sqlite:///{tmp_path / 'ledger.db'}")
        assert isinstance(backend, SQLiteStorage)
        assert backend.db_path == str(tmp_path / "ledger.db")
        backend.close()

    def test_sqlite_in_memory(self):
        backend = create_storage("sqlite://")
        assert backend.db_path == ":memory:"
        assert isinstance(backend, StorageInterface)
        backend.close()

    def test_unsupported(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/ledger")
