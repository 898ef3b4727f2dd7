# =============================================================================
# muhasel_core/offline/local_database.py
# Local SQLite Database for Offline Operations
# =============================================================================
"""
LocalDatabase - SQLite-based local store that mirrors the remote schema.

Features:
- Idempotent schema creation (users, schools, sync_queue, app_settings)
- Generic CRUD per entity with JSON/boolean column codecs
- Every local mutation appends to the sync queue in the same transaction
- Server-originated writes (apply_remote) bypass the queue
- Serialized access through a single connection (single writer)
- DataFrame export (pandas)
"""

from __future__ import annotations
import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
import logging

import pandas as pd

from muhasel_core.errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class SyncStatus(Enum):
    """Sync state of a cached record or a queue entry."""
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class QueueOperation(Enum):
    """Mutation recorded in the sync queue."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Bookkeeping columns that exist only in the local cache
LOCAL_ONLY_FIELDS = ("syncStatus", "lastSynced")


@dataclass(frozen=True)
class EntitySchema:
    """Column layout and value codecs of one cached entity table."""
    table: str
    label: str
    ddl: str
    columns: Tuple[str, ...]
    required: Tuple[str, ...] = ()
    json_columns: Dict[str, type] = field(default_factory=dict)
    bool_columns: Tuple[str, ...] = ()
    defaults: Dict[str, Any] = field(default_factory=dict)

    def encode(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Record -> row values; unknown keys are dropped."""
        row = {}
        for column in self.columns:
            if column not in record:
                continue
            value = record[column]
            if column in self.json_columns:
                value = json.dumps(value if value is not None else self.json_columns[column]())
            elif column in self.bool_columns and value is not None:
                value = 1 if value else 0
            row[column] = value
        return row

    def decode(self, row: sqlite3.Row) -> Dict[str, Any]:
        """Row -> record with JSON and boolean columns restored."""
        record = dict(row)
        for column, factory in self.json_columns.items():
            raw = record.get(column)
            if raw in (None, ""):
                record[column] = factory()
                continue
            try:
                record[column] = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning(f"Unreadable JSON in {self.table}.{column} for {record.get('id')}")
                record[column] = factory()
        for column in self.bool_columns:
            if record.get(column) is not None:
                record[column] = bool(record[column])
        return record


USERS = EntitySchema(
    table="users",
    label="User",
    ddl="""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT UNIQUE NOT NULL,
            username TEXT UNIQUE NOT NULL,
            password TEXT,
            role TEXT NOT NULL,
            schoolId TEXT,
            gradeLevels TEXT,
            lastLogin TEXT,
            createdAt TEXT,
            updatedAt TEXT,
            syncStatus TEXT DEFAULT 'synced',
            lastSynced TEXT
        )
    """,
    columns=(
        "id", "name", "email", "username", "password", "role", "schoolId",
        "gradeLevels", "lastLogin", "createdAt", "updatedAt", "syncStatus", "lastSynced",
    ),
    required=("name", "email", "username", "role"),
    json_columns={"gradeLevels": list},
)

SCHOOLS = EntitySchema(
    table="schools",
    label="School",
    ddl="""
        CREATE TABLE IF NOT EXISTS schools (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT NOT NULL,
            phoneWhatsapp TEXT,
            phoneCall TEXT,
            address TEXT NOT NULL,
            location TEXT,
            active INTEGER DEFAULT 1,
            subscriptionStart TEXT NOT NULL,
            subscriptionEnd TEXT NOT NULL,
            logo TEXT,
            settings TEXT,
            createdAt TEXT,
            updatedAt TEXT,
            syncStatus TEXT DEFAULT 'synced',
            lastSynced TEXT
        )
    """,
    columns=(
        "id", "name", "email", "phone", "phoneWhatsapp", "phoneCall", "address",
        "location", "active", "subscriptionStart", "subscriptionEnd", "logo",
        "settings", "createdAt", "updatedAt", "syncStatus", "lastSynced",
    ),
    required=("name", "email", "phone", "address", "subscriptionStart", "subscriptionEnd"),
    json_columns={"settings": dict},
    bool_columns=("active",),
    defaults={"phoneWhatsapp": "", "phoneCall": "", "location": "", "logo": "", "active": True},
)

ENTITY_SCHEMAS: Dict[str, EntitySchema] = {s.table: s for s in (USERS, SCHOOLS)}

SUPPORT_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sync_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity TEXT NOT NULL,
        entityId TEXT NOT NULL,
        operation TEXT NOT NULL,
        data TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        attempts INTEGER DEFAULT 0,
        status TEXT DEFAULT 'pending'
    );
    CREATE TABLE IF NOT EXISTS app_settings (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_sync_status ON sync_queue (status);
    CREATE INDEX IF NOT EXISTS idx_users_email ON users (email);
    CREATE INDEX IF NOT EXISTS idx_users_username ON users (username);
    CREATE INDEX IF NOT EXISTS idx_users_role ON users (role);
    CREATE INDEX IF NOT EXISTS idx_users_schoolId ON users (schoolId);
"""


@dataclass
class SyncQueueEntry:
    """One pending mutation waiting to be uploaded."""
    id: int
    entity: str
    entity_id: str
    operation: QueueOperation
    data: Dict[str, Any]
    timestamp: str
    attempts: int = 0
    status: SyncStatus = SyncStatus.PENDING

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SyncQueueEntry:
        try:
            data = json.loads(row["data"]) if row["data"] else {}
        except ValueError:
            data = {}
        return cls(
            id=row["id"],
            entity=row["entity"],
            entity_id=row["entityId"],
            operation=QueueOperation(row["operation"]),
            data=data,
            timestamp=row["timestamp"],
            attempts=row["attempts"] or 0,
            status=SyncStatus(row["status"]),
        )


class LocalDatabase:
    """
    Local SQLite store for offline data.

    All access goes through one connection guarded by a re-entrant lock, so
    operations are serialized (single writer). ``":memory:"`` works for tests.
    """

    DEFAULT_DB_PATH = Path.home() / ".muhasel" / "offline-database.sqlite"

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        if db_path is None:
            db_path = self.DEFAULT_DB_PATH
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._initialized = False

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    def _get_connection(self) -> sqlite3.Connection:
        """Open the shared connection on first use."""
        if self._connection is None:
            if not self.is_memory:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    @contextmanager
    def _guard(self, operation: str, table: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        """Serialize access and translate engine errors to StorageError."""
        with self._lock:
            try:
                yield self._get_connection()
            except sqlite3.Error as e:
                logger.error(f"SQLite error during {operation}: {e}")
                raise StorageError(
                    f"Local storage failed during {operation}: {e}",
                    operation=operation,
                    table=table,
                ) from e

    @contextmanager
    def transaction(self, operation: str = "transaction", table: Optional[str] = None):
        """Context manager for database transactions."""
        with self._guard(operation, table) as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> None:
        """Create the schema once; later calls are no-ops."""
        if self._initialized:
            return

        with self._guard("initialize") as conn:
            if self._initialized:
                return
            for schema in ENTITY_SCHEMAS.values():
                conn.execute(schema.ddl)
                logger.debug(f"Created/verified table: {schema.table}")
            conn.executescript(SUPPORT_SCHEMA)
            conn.commit()
            self._initialized = True

        logger.info(f"Local database initialized at: {self.db_path}")

    def schema(self, entity: str) -> EntitySchema:
        """Schema for an entity tag, or ValidationError."""
        try:
            return ENTITY_SCHEMAS[entity]
        except KeyError:
            raise ValidationError(f"Unknown entity: {entity}", field="entity") from None

    # =========================================================================
    # GENERIC CRUD OPERATIONS
    # =========================================================================

    def create(self, entity: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a record and queue a ``create`` for upload.

        An existing row with the same id is overwritten in place; each call
        still appends exactly one queue entry.

        Args:
            entity: Entity tag ("users", "schools")
            data: Field values; ``id`` is generated when absent

        Returns:
            The stored record
        """
        self.initialize()
        schema = self.schema(entity)
        now = utc_now_iso()

        record = {**schema.defaults, **data}
        record["id"] = str(data.get("id") or uuid.uuid4())
        record["createdAt"] = data.get("createdAt") or now
        record["updatedAt"] = data.get("updatedAt") or now
        record["syncStatus"] = SyncStatus.PENDING.value
        record["lastSynced"] = None
        self._check_required(schema, record)

        with self.transaction("create", schema.table) as conn:
            self._upsert_row(conn, schema, schema.encode(record))
            stored = self._fetch(conn, schema, record["id"])
            self._enqueue(conn, entity, record["id"], QueueOperation.CREATE, stored)

        logger.debug(f"Created {entity}/{record['id']} (pending)")
        return stored

    def get_by_id(self, entity: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a record by ID."""
        self.initialize()
        schema = self.schema(entity)
        with self._guard("get_by_id", schema.table) as conn:
            return self._fetch(conn, schema, record_id)

    def get_all(
        self,
        entity: str,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get all records matching an exact-match filter.

        Args:
            entity: Entity tag
            filter: field -> value; ``None`` matches NULL

        Raises:
            ValidationError: Filter names a field the table does not have
        """
        self.initialize()
        schema = self.schema(entity)

        conditions = []
        params: List[Any] = []
        for key, value in (filter or {}).items():
            if key not in schema.columns:
                raise ValidationError(f"Unknown filter field for {entity}: {key}", field=key)
            if value is None:
                conditions.append(f"{key} IS NULL")
            else:
                conditions.append(f"{key} = ?")
                params.append(schema.encode({key: value})[key])

        query = f"SELECT * FROM {schema.table}"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY rowid"

        with self._guard("get_all", schema.table) as conn:
            rows = conn.execute(query, params).fetchall()
        return [schema.decode(row) for row in rows]

    def update(self, entity: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge partial fields over an existing record and queue an ``update``.

        The record always becomes ``pending``, whatever changed.

        Raises:
            NotFoundError: No record with that id
        """
        self.initialize()
        schema = self.schema(entity)

        with self.transaction("update", schema.table) as conn:
            existing = self._fetch(conn, schema, record_id)
            if existing is None:
                raise NotFoundError(
                    f"{schema.label} with ID {record_id} not found",
                    entity=entity,
                    entity_id=record_id,
                )

            merged = self._merge(schema, existing, data)
            merged["id"] = existing["id"]
            merged["updatedAt"] = utc_now_iso()
            merged["syncStatus"] = SyncStatus.PENDING.value
            merged["lastSynced"] = existing.get("lastSynced")

            self._update_row(conn, schema, record_id, schema.encode(merged))
            stored = self._fetch(conn, schema, record_id)
            self._enqueue(conn, entity, record_id, QueueOperation.UPDATE, stored)

        logger.debug(f"Updated {entity}/{record_id} (pending)")
        return stored

    def delete(self, entity: str, record_id: str) -> bool:
        """
        Delete a record and queue a ``delete`` carrying only its id.

        Raises:
            NotFoundError: No record with that id
        """
        self.initialize()
        schema = self.schema(entity)

        with self.transaction("delete", schema.table) as conn:
            if self._fetch(conn, schema, record_id) is None:
                raise NotFoundError(
                    f"{schema.label} with ID {record_id} not found",
                    entity=entity,
                    entity_id=record_id,
                )
            conn.execute(f"DELETE FROM {schema.table} WHERE id = ?", [record_id])
            self._enqueue(conn, entity, record_id, QueueOperation.DELETE, {"id": record_id})

        logger.debug(f"Deleted {entity}/{record_id}")
        return True

    def mark_synced(self, entity: str, record_id: str) -> bool:
        """Mark a record as matching the server after a confirmed upload."""
        self.initialize()
        schema = self.schema(entity)
        with self.transaction("mark_synced", schema.table) as conn:
            cursor = conn.execute(
                f"UPDATE {schema.table} SET syncStatus = ?, lastSynced = ? WHERE id = ?",
                [SyncStatus.SYNCED.value, utc_now_iso(), record_id],
            )
            return cursor.rowcount > 0

    def apply_remote(self, entity: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Upsert a server-originated record without queueing it.

        Remote fields are merged over any existing row (so local-only values
        such as a password hash survive) and the row is stamped ``synced``.

        Raises:
            ValidationError: Record has no id, or a new row lacks required fields
        """
        self.initialize()
        schema = self.schema(entity)
        record_id = record.get("id") or record.get("_id")
        if not record_id:
            raise ValidationError(f"Remote {entity} record has no id", field="id")
        record_id = str(record_id)

        now = utc_now_iso()
        with self.transaction("apply_remote", schema.table) as conn:
            existing = self._fetch(conn, schema, record_id)
            if existing:
                merged = self._merge(schema, existing, record)
            else:
                merged = {**schema.defaults, **record}
                merged.setdefault("createdAt", now)
                merged.setdefault("updatedAt", now)
                self._check_required(schema, merged)
            merged["id"] = record_id
            merged["syncStatus"] = SyncStatus.SYNCED.value
            merged["lastSynced"] = now

            self._upsert_row(conn, schema, schema.encode(merged))
            return self._fetch(conn, schema, record_id)

    # =========================================================================
    # USER LOOKUPS
    # =========================================================================

    def find_user_by_credentials(self, email_or_username: str) -> Optional[Dict[str, Any]]:
        """Find a user whose email or username matches."""
        self.initialize()
        with self._guard("find_user_by_credentials", USERS.table) as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ? OR username = ? LIMIT 1",
                [email_or_username, email_or_username],
            ).fetchone()
        return USERS.decode(row) if row else None

    def count_users_by_role(self, role: str) -> int:
        self.initialize()
        with self._guard("count_users_by_role", USERS.table) as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM users WHERE role = ?", [role]).fetchone()
        return row["count"] if row else 0

    # =========================================================================
    # SYNC QUEUE MANAGEMENT
    # =========================================================================

    def enqueue(
        self,
        entity: str,
        entity_id: str,
        operation: Union[QueueOperation, str],
        data: Dict[str, Any],
    ) -> int:
        """Append an entry to the sync queue and return its id."""
        self.initialize()
        with self.transaction("enqueue", "sync_queue") as conn:
            return self._enqueue(conn, entity, entity_id, QueueOperation(operation), data)

    def get_pending(self) -> List[SyncQueueEntry]:
        """Pending queue entries, oldest first (FIFO)."""
        return self.queue_entries(SyncStatus.PENDING)

    def queue_entries(self, status: Optional[SyncStatus] = None) -> List[SyncQueueEntry]:
        """Queue entries in enqueue order, optionally filtered by status."""
        self.initialize()
        query = "SELECT * FROM sync_queue"
        params: List[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(SyncStatus(status).value)
        query += " ORDER BY timestamp ASC, id ASC"

        with self._guard("queue_entries", "sync_queue") as conn:
            rows = conn.execute(query, params).fetchall()
        return [SyncQueueEntry.from_row(row) for row in rows]

    def mark_entry_status(self, entry_id: int, status: Union[SyncStatus, str]) -> None:
        """Set an entry's status and count the attempt."""
        self.initialize()
        with self.transaction("mark_entry_status", "sync_queue") as conn:
            conn.execute(
                "UPDATE sync_queue SET status = ?, attempts = attempts + 1 WHERE id = ?",
                [SyncStatus(status).value, entry_id],
            )

    def requeue_failed(self, max_attempts: int) -> int:
        """
        Move failed entries that still have attempts left back to pending.

        Returns:
            Number of entries re-queued
        """
        self.initialize()
        with self.transaction("requeue_failed", "sync_queue") as conn:
            cursor = conn.execute(
                "UPDATE sync_queue SET status = ? WHERE status = ? AND attempts < ?",
                [SyncStatus.PENDING.value, SyncStatus.FAILED.value, max_attempts],
            )
            return cursor.rowcount

    def pending_count(self) -> int:
        """Get count of pending sync operations."""
        self.initialize()
        with self._guard("pending_count", "sync_queue") as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM sync_queue WHERE status = ?",
                [SyncStatus.PENDING.value],
            ).fetchone()
        return row["count"] if row else 0

    def count_outstanding(self, entity: str, entity_id: str) -> int:
        """Entries for one record that are not yet confirmed (pending or failed)."""
        self.initialize()
        with self._guard("count_outstanding", "sync_queue") as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS count FROM sync_queue
                WHERE entity = ? AND entityId = ? AND status != ?
                """,
                [entity, entity_id, SyncStatus.SYNCED.value],
            ).fetchone()
        return row["count"] if row else 0

    def clear_queue(self) -> None:
        """Wipe the sync queue (administrative use only)."""
        self.initialize()
        with self.transaction("clear_queue", "sync_queue") as conn:
            conn.execute("DELETE FROM sync_queue")
        logger.warning("Sync queue cleared")

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        self.initialize()
        with self._guard("get_setting", "app_settings") as conn:
            row = conn.execute("SELECT value FROM app_settings WHERE key = ?", [key]).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except (TypeError, ValueError):
            return row["value"]

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        self.initialize()
        with self.transaction("set_setting", "app_settings") as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, json.dumps(value), utc_now_iso()],
            )

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, entity: str) -> pd.DataFrame:
        """
        Load an entity table (or the sync queue) into a DataFrame.

        Password hashes are never exported.
        """
        if entity == "sync_queue":
            self.initialize()
            with self._guard("to_dataframe", "sync_queue") as conn:
                return pd.read_sql_query("SELECT * FROM sync_queue ORDER BY id", conn)

        schema = self.schema(entity)
        records = self.get_all(entity)
        columns = [c for c in schema.columns if c != "password"]
        return pd.DataFrame(records, columns=list(schema.columns)).reindex(columns=columns)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                self._initialized = False

    # =========================================================================
    # INTERNALS (caller holds the lock)
    # =========================================================================

    @staticmethod
    def _check_required(schema: EntitySchema, record: Dict[str, Any]) -> None:
        missing = [c for c in schema.required if record.get(c) in (None, "")]
        if missing:
            raise ValidationError(
                f"Missing required {schema.label.lower()} fields: {', '.join(missing)}",
                field=missing[0],
            )

    @staticmethod
    def _merge(schema: EntitySchema, existing: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
        merged = {**existing, **changes}
        # dict-valued JSON columns (school settings) merge key by key
        for column, factory in schema.json_columns.items():
            if factory is dict and isinstance(changes.get(column), dict):
                merged[column] = {**(existing.get(column) or {}), **changes[column]}
        return merged

    @staticmethod
    def _fetch(conn: sqlite3.Connection, schema: EntitySchema, record_id: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(f"SELECT * FROM {schema.table} WHERE id = ?", [record_id]).fetchone()
        return schema.decode(row) if row else None

    @staticmethod
    def _upsert_row(conn: sqlite3.Connection, schema: EntitySchema, row: Dict[str, Any]) -> None:
        columns = list(row.keys())
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
        conn.execute(
            f"INSERT INTO {schema.table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            [row[c] for c in columns],
        )

    @staticmethod
    def _update_row(conn: sqlite3.Connection, schema: EntitySchema, record_id: str, row: Dict[str, Any]) -> None:
        columns = [c for c in row if c != "id"]
        set_clause = ", ".join(f"{c} = ?" for c in columns)
        conn.execute(
            f"UPDATE {schema.table} SET {set_clause} WHERE id = ?",
            [row[c] for c in columns] + [record_id],
        )

    @staticmethod
    def _enqueue(
        conn: sqlite3.Connection,
        entity: str,
        entity_id: str,
        operation: QueueOperation,
        data: Dict[str, Any],
    ) -> int:
        cursor = conn.execute(
            """
            INSERT INTO sync_queue (entity, entityId, operation, data, timestamp, status)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [entity, entity_id, operation.value, json.dumps(data, default=str),
             utc_now_iso(), SyncStatus.PENDING.value],
        )
        return cursor.lastrowid
