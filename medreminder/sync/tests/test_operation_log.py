"""Tests for the operation log and entity version table."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from medreminder.sync.errors import SyncError, SyncValidationError
from medreminder.sync.operation_log import MAX_VERSION_RETRIES, OperationLog
from medreminder.sync.storage import InMemoryVersionTable
from medreminder.sync.types import EntityType, OperationKind
from medreminder.sync.tests.conftest import (
    OTHER_USER_ID,
    PHONE,
    T0,
    TABLET,
    TEST_USER_ID,
    make_op,
)


class TestPushOperation:
    """Version assignment on push."""

    def test_two_pushes_same_device(self) -> None:
        log = OperationLog()
        first = log.push_operation(make_op(PHONE))
        second = log.push_operation(make_op(PHONE))
        assert first.version == 1
        assert second.version == 2
        assert log.versions.get("medication:m1") == 2

    def test_versions_increase_by_one_across_devices(self) -> None:
        log = OperationLog()
        versions = [
            log.push_operation(make_op(PHONE if i % 2 else TABLET, minutes=i)).version
            for i in range(10)
        ]
        assert versions == list(range(1, 11))

    def test_log_assigns_id_version_and_synced(self) -> None:
        log = OperationLog()
        incoming = make_op(PHONE, version=99)
        incoming.synced = True
        stored = log.push_operation(incoming)
        assert stored.version == 1
        assert stored.synced is False
        assert stored.id.startswith("sync_")
        assert stored.id != incoming.id

    def test_entity_keys_are_independent(self) -> None:
        log = OperationLog()
        log.push_operation(make_op(entity_type=EntityType.MEDICATION, entity_id="x"))
        stored = log.push_operation(make_op(entity_type=EntityType.SCHEDULE, entity_id="x"))
        assert stored.version == 1
        assert log.versions.snapshot() == {"medication:x": 1, "schedule:x": 1}

    def test_version_table_is_shared_across_users(self) -> None:
        log = OperationLog()
        log.push_operation(make_op(user_id=TEST_USER_ID))
        stored = log.push_operation(make_op(user_id=OTHER_USER_ID))
        assert stored.version == 2

    def test_string_enums_are_coerced(self) -> None:
        log = OperationLog()
        stored = log.push_operation(make_op(entity_type="adherence", operation="create"))
        assert stored.entity_type is EntityType.ADHERENCE
        assert stored.operation is OperationKind.CREATE

    def test_unknown_entity_type_rejected(self) -> None:
        log = OperationLog()
        with pytest.raises(SyncValidationError, match="entity_type"):
            log.push_operation(make_op(entity_type="prescription"))
        assert log.versions.snapshot() == {}

    def test_unknown_operation_kind_rejected(self) -> None:
        with pytest.raises(SyncValidationError, match="operation"):
            OperationLog().push_operation(make_op(operation="upsert"))

    def test_injected_version_table_is_used(self) -> None:
        versions = InMemoryVersionTable()
        versions.set("medication:m1", 41)
        stored = OperationLog(versions=versions).push_operation(make_op())
        assert stored.version == 42


class ContendedVersionTable(InMemoryVersionTable):
    """Version table whose compare_and_set loses the first ``failures`` races.

    Each lost race simulates another writer taking the version first.
    """

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def compare_and_set(self, key: str, expected: int, new: int) -> bool:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            self.set(key, self.get(key) + 1)
            return False
        return super().compare_and_set(key, expected, new)


class TestVersionReservation:
    """compare_and_set retry loop in push_operation."""

    def test_retries_until_reservation_succeeds(self) -> None:
        versions = ContendedVersionTable(failures=3)
        log = OperationLog(versions=versions)
        stored = log.push_operation(make_op())

        assert versions.attempts == 4
        # Three competing writers advanced the key before this push won
        assert stored.version == 4
        assert versions.get("medication:m1") == 4

    def test_gives_up_after_max_retries(self) -> None:
        versions = ContendedVersionTable(failures=MAX_VERSION_RETRIES)
        log = OperationLog(versions=versions)

        with pytest.raises(SyncError, match="medication:m1"):
            log.push_operation(make_op())
        assert versions.attempts == MAX_VERSION_RETRIES
        assert log.list_for_user(TEST_USER_ID) == []

    def test_concurrent_pushes_get_distinct_versions(self) -> None:
        log = OperationLog()
        per_thread = 50
        devices = [PHONE, TABLET, "watch-1", "web-1"]
        errors: list[Exception] = []

        def push_many(device_id: str) -> None:
            try:
                for i in range(per_thread):
                    log.push_operation(make_op(device_id, minutes=i))
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=push_many, args=(d,)) for d in devices]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        total = per_thread * len(devices)
        stored = log.list_for_user(TEST_USER_ID)
        assert sorted(op.version for op in stored) == list(range(1, total + 1))
        assert log.versions.get("medication:m1") == total


class TestVersionTable:
    def test_compare_and_set(self) -> None:
        table = InMemoryVersionTable()
        assert table.compare_and_set("k", 0, 1)
        assert not table.compare_and_set("k", 0, 2)
        assert table.get("k") == 1

    def test_unseen_key_is_zero(self) -> None:
        assert InMemoryVersionTable().get("medication:nope") == 0


class TestPullOperations:
    def test_pull_excludes_own_device(self) -> None:
        log = OperationLog()
        log.push_operation(make_op(PHONE))
        log.push_operation(make_op(TABLET))
        pulled = log.pull_operations(TEST_USER_ID, PHONE)
        assert [op.device_id for op in pulled] == [TABLET]

    def test_pull_sorted_by_timestamp(self) -> None:
        log = OperationLog()
        log.push_operation(make_op(TABLET, entity_id="a", minutes=30))
        log.push_operation(make_op(TABLET, entity_id="b", minutes=10))
        log.push_operation(make_op(TABLET, entity_id="c", minutes=20))
        pulled = log.pull_operations(TEST_USER_ID, PHONE)
        assert [op.entity_id for op in pulled] == ["b", "c", "a"]

    def test_since_is_exclusive(self) -> None:
        log = OperationLog()
        log.push_operation(make_op(TABLET, entity_id="a", minutes=0))
        log.push_operation(make_op(TABLET, entity_id="b", minutes=5))
        pulled = log.pull_operations(TEST_USER_ID, PHONE, since=T0)
        assert [op.entity_id for op in pulled] == ["b"]

    def test_naive_since_treated_as_utc(self) -> None:
        log = OperationLog()
        log.push_operation(make_op(TABLET, minutes=5))
        naive = (T0 + timedelta(minutes=1)).replace(tzinfo=None)
        assert len(log.pull_operations(TEST_USER_ID, PHONE, since=naive)) == 1

    def test_pull_is_scoped_to_user(self) -> None:
        log = OperationLog()
        log.push_operation(make_op(TABLET, user_id=OTHER_USER_ID))
        assert log.pull_operations(TEST_USER_ID, PHONE) == []


class TestMarkSynced:
    def test_mark_synced_is_idempotent(self) -> None:
        log = OperationLog()
        ids = [log.push_operation(make_op(PHONE)).id, log.push_operation(make_op(TABLET)).id]
        assert log.mark_synced(ids) == 2
        assert log.mark_synced(ids) == 0

    def test_mark_synced_spans_users(self) -> None:
        log = OperationLog()
        a = log.push_operation(make_op(user_id=TEST_USER_ID))
        b = log.push_operation(make_op(user_id=OTHER_USER_ID))
        assert log.mark_synced({a.id, b.id}) == 2

    def test_user_scope_ignores_other_users_ops(self) -> None:
        log = OperationLog()
        mine = log.push_operation(make_op(user_id=TEST_USER_ID))
        theirs = log.push_operation(make_op(user_id=OTHER_USER_ID))

        assert log.mark_synced({mine.id, theirs.id}, OTHER_USER_ID) == 1
        assert [op.id for op in log.get_offline_queue(TEST_USER_ID, PHONE)] == [mine.id]
        assert log.get_offline_queue(OTHER_USER_ID, PHONE) == []

    def test_unknown_ids_are_ignored(self) -> None:
        log = OperationLog()
        log.push_operation(make_op())
        assert log.mark_synced(["sync_missing"]) == 0
        assert log.mark_synced([]) == 0


class TestOfflineQueue:
    def test_queue_holds_unsynced_ops_of_device(self) -> None:
        log = OperationLog()
        mine = log.push_operation(make_op(PHONE, entity_id="a"))
        done = log.push_operation(make_op(PHONE, entity_id="b"))
        log.push_operation(make_op(TABLET, entity_id="c"))
        log.mark_synced([done.id])

        queue = log.get_offline_queue(TEST_USER_ID, PHONE)
        assert [op.id for op in queue] == [mine.id]

    def test_clear_removes_only_synced_ops_of_device(self) -> None:
        log = OperationLog()
        pending = log.push_operation(make_op(PHONE, entity_id="a"))
        done = log.push_operation(make_op(PHONE, entity_id="b"))
        other = log.push_operation(make_op(TABLET, entity_id="c"))
        log.mark_synced([done.id, other.id])

        assert log.clear_offline_queue(TEST_USER_ID, PHONE) == 1
        remaining = {op.id for op in log.list_for_user(TEST_USER_ID)}
        assert remaining == {pending.id, other.id}
        assert log.clear_offline_queue(TEST_USER_ID, PHONE) == 0

    def test_clear_during_pushes_loses_nothing(self) -> None:
        log = OperationLog()
        done = log.push_operation(make_op(PHONE, entity_id="done"))
        log.mark_synced([done.id])
        pushed: list[str] = []

        def push_many() -> None:
            for i in range(200):
                pushed.append(log.push_operation(make_op(TABLET, entity_id=f"t{i}")).id)

        pusher = threading.Thread(target=push_many)
        pusher.start()
        for _ in range(50):
            log.clear_offline_queue(TEST_USER_ID, PHONE)
        pusher.join()

        queue = {op.id for op in log.get_offline_queue(TEST_USER_ID, TABLET)}
        assert queue == set(pushed)
        assert done.id not in {op.id for op in log.list_for_user(TEST_USER_ID)}
