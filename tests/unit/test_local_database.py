# =============================================================================
# tests/unit/test_local_database.py
# Unit Tests for LocalDatabase
# =============================================================================

import sqlite3
import pytest
from unittest.mock import MagicMock

from muhasel_core.errors import NotFoundError, StorageError, ValidationError
from muhasel_core.offline import LocalDatabase, QueueOperation, SyncStatus


OLD_STAMP = "2020-01-01T00:00:00+00:00"


def new_user(**overrides):
    data = {
        "name": "Ali Hassan",
        "email": "ali@alnoor.test",
        "username": "ali",
        "password": "$2b$04$abcdefghijklmnopqrstuuQ0Vq8f2Ck0m8e7zQ6kR1Yq0a9b8c7d6",
        "role": "user",
        "schoolId": "school-1",
    }
    data.update(overrides)
    return data


class TestSchema:
    """Test schema setup"""

    def test_initialize_is_idempotent(self):
        """Calling initialize repeatedly keeps data and does not fail"""
        db = LocalDatabase(":memory:")
        db.initialize()
        db.create("users", new_user())
        db.initialize()

        assert len(db.get_all("users")) == 1
        db.close()

    def test_operations_initialize_lazily(self):
        """First operation creates the schema"""
        db = LocalDatabase(":memory:")

        assert db.get_all("schools") == []
        assert db.pending_count() == 0
        db.close()

    def test_file_database_creates_parent_directory(self, tmp_path):
        """On-disk store creates its folder"""
        path = tmp_path / "nested" / "offline.sqlite"
        db = LocalDatabase(path)
        db.create("users", new_user())
        db.close()

        assert path.exists()
        reopened = LocalDatabase(path)
        assert len(reopened.get_all("users")) == 1
        reopened.close()

    def test_unknown_entity_rejected(self, store):
        with pytest.raises(ValidationError):
            store.get_all("students")


class TestCreate:
    """Test record creation"""

    def test_create_assigns_id_and_marks_pending(self, store):
        record = store.create("users", new_user())

        assert record["id"]
        assert record["syncStatus"] == "pending"
        assert record["createdAt"]
        assert record["updatedAt"]
        assert record["lastSynced"] is None

    def test_create_appends_create_entry(self, store):
        record = store.create("users", new_user())

        pending = store.get_pending()
        assert len(pending) == 1
        assert pending[0].operation == QueueOperation.CREATE
        assert pending[0].entity == "users"
        assert pending[0].entity_id == record["id"]
        assert pending[0].data["email"] == "ali@alnoor.test"
        assert pending[0].status == SyncStatus.PENDING
        assert pending[0].attempts == 0

    def test_create_keeps_supplied_id(self, store):
        record = store.create("users", new_user(id="user-42"))

        assert record["id"] == "user-42"
        assert store.get_by_id("users", "user-42")["name"] == "Ali Hassan"

    def test_create_same_id_twice_upserts_and_enqueues_twice(self, store):
        """Two mutation calls, one row, exactly two queue entries"""
        store.create("users", new_user(id="user-42"))
        store.create("users", new_user(id="user-42", name="Ali H."))

        assert len(store.get_all("users")) == 1
        assert store.get_by_id("users", "user-42")["name"] == "Ali H."
        assert len(store.get_pending()) == 2

    def test_missing_required_field_rejected(self, store):
        data = new_user()
        del data["email"]

        with pytest.raises(ValidationError):
            store.create("users", data)
        assert store.pending_count() == 0

    def test_unknown_fields_are_dropped(self, store):
        record = store.create("users", new_user(favouriteColour="green"))

        assert "favouriteColour" not in record

    def test_json_and_boolean_columns_round_trip(self, store):
        user = store.create("users", new_user(gradeLevels=["CP", "CE1"]))
        school = store.create("schools", {
            "name": "Al Noor School",
            "email": "office@alnoor.test",
            "phone": "+212600000001",
            "address": "Rabat",
            "subscriptionStart": "2024-09-01",
            "subscriptionEnd": "2025-08-31",
            "active": False,
            "settings": {"currency": "MAD"},
        })

        assert store.get_by_id("users", user["id"])["gradeLevels"] == ["CP", "CE1"]
        stored = store.get_by_id("schools", school["id"])
        assert stored["active"] is False
        assert stored["settings"] == {"currency": "MAD"}
        assert stored["logo"] == ""

    def test_json_column_defaults(self, store):
        user = store.create("users", new_user())

        assert user["gradeLevels"] == []


class TestQueries:
    """Test read operations"""

    def test_get_by_id_missing_returns_none(self, store):
        assert store.get_by_id("users", "nope") is None

    def test_get_all_exact_match_filter(self, store):
        store.create("users", new_user())
        store.create("users", new_user(email="sara@x.test", username="sara", schoolId="school-2"))

        result = store.get_all("users", {"schoolId": "school-2"})

        assert [u["username"] for u in result] == ["sara"]

    def test_get_all_null_filter(self, store):
        store.create("users", new_user())
        store.create("users", new_user(email="root@x.test", username="root", role="admin", schoolId=None))

        result = store.get_all("users", {"schoolId": None})

        assert [u["username"] for u in result] == ["root"]

    def test_get_all_boolean_filter(self, store, school):
        store.update("schools", school["id"], {"active": False})

        assert store.get_all("schools", {"active": True}) == []
        assert len(store.get_all("schools", {"active": False})) == 1

    def test_get_all_unknown_filter_field_rejected(self, store):
        with pytest.raises(ValidationError):
            store.get_all("users", {"nickname": "ali"})

    def test_find_user_by_email_or_username(self, store):
        created = store.create("users", new_user())

        assert store.find_user_by_credentials("ali@alnoor.test")["id"] == created["id"]
        assert store.find_user_by_credentials("ali")["id"] == created["id"]
        assert store.find_user_by_credentials("nobody") is None

    def test_count_users_by_role(self, store):
        store.create("users", new_user())
        store.create("users", new_user(email="root@x.test", username="root", role="admin"))

        assert store.count_users_by_role("admin") == 1
        assert store.count_users_by_role("schoolAdmin") == 0


class TestUpdate:
    """Test updates"""

    def test_update_merges_and_marks_pending(self, store, staff_user):
        updated = store.update("users", staff_user["id"], {"name": "Youssef A."})

        assert updated["name"] == "Youssef A."
        assert updated["email"] == staff_user["email"]
        assert updated["syncStatus"] == "pending"

    def test_update_bumps_updated_at(self, store):
        record = store.create("users", new_user(createdAt=OLD_STAMP, updatedAt=OLD_STAMP))
        updated = store.update("users", record["id"], {"name": "Ali"})

        assert updated["updatedAt"] > OLD_STAMP
        assert updated["createdAt"] == OLD_STAMP

    def test_update_appends_update_entry(self, store, staff_user):
        store.update("users", staff_user["id"], {"name": "Youssef A."})

        pending = store.get_pending()
        assert len(pending) == 1
        assert pending[0].operation == QueueOperation.UPDATE
        assert pending[0].data["name"] == "Youssef A."

    def test_update_missing_record_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.update("users", "missing", {"name": "x"})
        assert store.pending_count() == 0

    def test_update_merges_school_settings(self, store, school):
        updated = store.update("schools", school["id"], {"settings": {"language": "fr"}})

        assert updated["settings"] == {"currency": "MAD", "language": "fr"}


class TestDelete:
    """Test deletes"""

    def test_delete_removes_row_and_enqueues_id_only(self, store, staff_user):
        assert store.delete("users", staff_user["id"]) is True

        assert store.get_by_id("users", staff_user["id"]) is None
        pending = store.get_pending()
        assert pending[0].operation == QueueOperation.DELETE
        assert pending[0].data == {"id": staff_user["id"]}

    def test_delete_missing_record_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.delete("schools", "missing")


class TestSyncQueue:
    """Test sync queue accessors"""

    def test_get_pending_is_fifo(self, store):
        first = store.create("users", new_user())
        store.update("users", first["id"], {"name": "Second"})
        store.update("users", first["id"], {"name": "Third"})

        operations = [(e.operation, e.data.get("name")) for e in store.get_pending()]

        assert operations == [
            (QueueOperation.CREATE, "Ali Hassan"),
            (QueueOperation.UPDATE, "Second"),
            (QueueOperation.UPDATE, "Third"),
        ]

    def test_mark_entry_status_counts_attempts(self, store):
        store.create("users", new_user())
        entry = store.get_pending()[0]

        store.mark_entry_status(entry.id, SyncStatus.FAILED)
        store.mark_entry_status(entry.id, "failed")

        failed = store.queue_entries(SyncStatus.FAILED)
        assert len(failed) == 1
        assert failed[0].attempts == 2
        assert store.get_pending() == []

    def test_requeue_failed_respects_max_attempts(self, store):
        store.create("users", new_user())
        store.create("users", new_user(email="b@x.test", username="b"))
        first, second = store.get_pending()
        store.mark_entry_status(first.id, SyncStatus.FAILED)
        for _ in range(3):
            store.mark_entry_status(second.id, SyncStatus.FAILED)

        assert store.requeue_failed(max_attempts=3) == 1
        assert [e.id for e in store.get_pending()] == [first.id]

    def test_enqueue_accepts_operation_names(self, store):
        entry_id = store.enqueue("users", "u1", "delete", {"id": "u1"})

        entry = store.get_pending()[0]
        assert entry.id == entry_id
        assert entry.operation == QueueOperation.DELETE

    def test_count_outstanding(self, store):
        record = store.create("users", new_user())
        store.update("users", record["id"], {"name": "x"})
        first = store.get_pending()[0]
        store.mark_entry_status(first.id, SyncStatus.SYNCED)

        assert store.count_outstanding("users", record["id"]) == 1

    def test_clear_queue(self, store):
        store.create("users", new_user())
        store.clear_queue()

        assert store.queue_entries() == []
        assert store.pending_count() == 0


class TestSyncBookkeeping:
    """Test server-originated writes"""

    def test_mark_synced(self, store):
        record = store.create("users", new_user())

        assert store.mark_synced("users", record["id"]) is True
        stored = store.get_by_id("users", record["id"])
        assert stored["syncStatus"] == "synced"
        assert stored["lastSynced"]

    def test_mark_synced_missing_record(self, store):
        assert store.mark_synced("users", "missing") is False

    def test_apply_remote_does_not_enqueue(self, store):
        record = store.apply_remote("users", new_user(id="remote-1"))

        assert record["syncStatus"] == "synced"
        assert record["lastSynced"]
        assert store.queue_entries() == []

    def test_apply_remote_accepts_underscore_id(self, store):
        record = store.apply_remote("users", new_user(_id="mongo-7"))

        assert record["id"] == "mongo-7"

    def test_apply_remote_keeps_local_password(self, store, staff_user):
        remote = {k: v for k, v in staff_user.items() if k != "password"}
        remote["name"] = "Youssef (server)"

        merged = store.apply_remote("users", remote)

        assert merged["name"] == "Youssef (server)"
        assert merged["password"] == staff_user["password"]

    def test_apply_remote_without_id_rejected(self, store):
        with pytest.raises(ValidationError):
            store.apply_remote("users", new_user())


class TestSettingsAndExport:
    """Test app settings and DataFrame export"""

    def test_settings_round_trip(self, store):
        assert store.get_setting("lastSyncTime") is None
        assert store.get_setting("lastSyncTime", "never") == "never"

        store.set_setting("lastSyncTime", "2024-10-01T08:00:00+00:00")
        store.set_setting("lastSyncTime", "2024-10-02T08:00:00+00:00")

        assert store.get_setting("lastSyncTime") == "2024-10-02T08:00:00+00:00"

    def test_to_dataframe_excludes_password(self, store, staff_user, school_admin):
        df = store.to_dataframe("users")

        assert len(df) == 2
        assert "password" not in df.columns
        assert set(df["username"]) == {"youssef", "fatima"}

    def test_sync_queue_to_dataframe(self, store):
        store.create("users", new_user())

        df = store.to_dataframe("sync_queue")

        assert list(df["operation"]) == ["create"]


class TestStorageErrors:
    """Engine failures surface as StorageError"""

    def test_sqlite_error_becomes_storage_error(self, store):
        broken = MagicMock()
        broken.execute.side_effect = sqlite3.OperationalError("disk I/O error")
        store._connection = broken

        with pytest.raises(StorageError) as exc_info:
            store.get_by_id("users", "u1")

        assert exc_info.value.details["operation"] == "get_by_id"
