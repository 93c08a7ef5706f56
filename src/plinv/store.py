"""Plugin inventory database.

The inventory image carries a single SQLite database. ``InventoryStore``
opens the database bytes in memory, applies inserts and activation changes
inside SQL transactions, and serializes the result back to bytes for
publishing.

Store lifecycle::

    open/create -> OPEN -> (insert / set_activation) -> MUTATED -> serialize() -> SERIALIZED

A serialized or closed store accepts no further operations; every command
starts again from freshly pulled bytes.
"""

import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field

from plinv import exit_codes
from plinv.errors import InventoryError
from plinv.manifest_schema import ArtifactEntry, PluginKey, PluginManifestEntry

# Schema version - update when the database layout changes
INVENTORY_SCHEMA_VERSION = "2026-10-01"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE inventory_metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE plugins (
        plugin_id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        target TEXT NOT NULL,
        version TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        vendor TEXT NOT NULL,
        publisher TEXT NOT NULL,
        activated INTEGER NOT NULL DEFAULT 1,
        UNIQUE (name, target, version)
    )
    """,
    """
    CREATE TABLE plugin_artifacts (
        plugin_id INTEGER NOT NULL REFERENCES plugins (plugin_id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        os TEXT NOT NULL,
        arch TEXT NOT NULL,
        uri TEXT NOT NULL,
        digest TEXT CHECK (digest IS NULL OR digest <> ''),
        PRIMARY KEY (plugin_id, os, arch)
    )
    """,
    "CREATE INDEX plugins_scope ON plugins (vendor, publisher)",
)

# Columns every query relies on, per table
REQUIRED_COLUMNS = {
    "inventory_metadata": {"key", "value"},
    "plugins": {
        "plugin_id",
        "name",
        "target",
        "version",
        "description",
        "vendor",
        "publisher",
        "activated",
    },
    "plugin_artifacts": {"plugin_id", "position", "os", "arch", "uri", "digest"},
}

REQUIRED_TABLES = set(REQUIRED_COLUMNS)


class CorruptStoreError(InventoryError):
    """Raised when inventory bytes cannot be read as a plugin inventory."""

    exit_code = exit_codes.INVENTORY_CORRUPT


class StoreClosedError(InventoryError):
    """Raised when a serialized or closed store is used again."""


class ConflictError(InventoryError):
    """Raised when an inserted plugin already exists in the inventory."""

    exit_code = exit_codes.PLUGIN_CONFLICT

    def __init__(self, key: PluginKey, vendor: str, publisher: str) -> None:
        """Initialize with the conflicting key and the scope of the insert."""
        self.key = key
        self.vendor = vendor
        self.publisher = publisher
        super().__init__(
            f"Plugin '{key}' already exists in the inventory "
            f"(insert for vendor '{vendor}', publisher '{publisher}' was not applied)"
        )


class NotFoundError(InventoryError):
    """Raised when an activation change matches no plugin in scope."""

    exit_code = exit_codes.PLUGIN_NOT_FOUND

    def __init__(self, vendor: str, publisher: str, missing: Sequence[PluginKey] = ()) -> None:
        """Initialize with the scope and any requested keys that were not found."""
        self.vendor = vendor
        self.publisher = publisher
        self.missing = list(missing)
        if self.missing:
            keys = ", ".join(f"'{key}'" for key in self.missing)
            message = f"Plugins {keys} not found for vendor '{vendor}', publisher '{publisher}'"
        else:
            message = f"No plugins found for vendor '{vendor}', publisher '{publisher}'"
        super().__init__(message)


class StoreState(str, Enum):
    """Lifecycle state of an InventoryStore."""

    OPEN = "open"
    MUTATED = "mutated"
    SERIALIZED = "serialized"
    CLOSED = "closed"


class PluginRecord(BaseModel):
    """One (name, target, version) row of the inventory with its artifacts."""

    name: str
    target: str
    version: str
    description: str = ""
    vendor: str
    publisher: str
    activated: bool = True
    artifacts: list[ArtifactEntry] = Field(default_factory=list)

    @property
    def key(self) -> PluginKey:
        return PluginKey(self.name, self.target, self.version)


@dataclass
class InsertResult:
    """Result of inserting manifest entries into the inventory."""

    inserted: list[PluginKey] = field(default_factory=list)
    skipped: list[PluginKey] = field(default_factory=list)


@dataclass
class UpdateResult:
    """Result of changing the activation state of plugins in a scope."""

    activated: bool
    updated: list[PluginKey] = field(default_factory=list)


def _create_schema(conn: sqlite3.Connection) -> None:
    for statement in SCHEMA_STATEMENTS:
        conn.execute(statement)
    conn.execute(
        "INSERT INTO inventory_metadata (key, value) VALUES ('schema_version', ?)",
        (INVENTORY_SCHEMA_VERSION,),
    )


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


class InventoryStore:
    """Structured view over one inventory database.

    Use ``InventoryStore.open(data)`` for pulled bytes or
    ``InventoryStore.create()`` for a new, empty inventory. The store is a
    context manager and closes its connection on exit.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self.state = StoreState.OPEN

    @classmethod
    def create(cls) -> "InventoryStore":
        """Create an empty inventory with the current schema."""
        conn = _connect()
        with conn:
            _create_schema(conn)
        return cls(conn)

    @classmethod
    def open(cls, data: bytes) -> "InventoryStore":
        """Open inventory database bytes.

        Args:
            data: Raw SQLite database bytes, as pulled from the inventory image.

        Returns:
            An InventoryStore in the OPEN state.

        Raises:
            CorruptStoreError: If the bytes are not a database, tables or their
                columns are missing, or the schema version is not recognized.
        """
        if not data:
            msg = "Inventory database is empty"
            raise CorruptStoreError(msg)

        conn = _connect()
        try:
            conn.deserialize(data)
            conn.execute("PRAGMA foreign_keys = ON")
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
            missing = REQUIRED_TABLES - tables
            if missing:
                msg = f"Inventory database is missing tables: {', '.join(sorted(missing))}"
                raise CorruptStoreError(msg)

            for table, expected in sorted(REQUIRED_COLUMNS.items()):
                columns = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
                absent = expected - columns
                if absent:
                    msg = (
                        f"Inventory table '{table}' is missing columns: "
                        f"{', '.join(sorted(absent))}"
                    )
                    raise CorruptStoreError(msg)

            row = conn.execute(
                "SELECT value FROM inventory_metadata WHERE key = 'schema_version'"
            ).fetchone()
            if row is None or row[0] != INVENTORY_SCHEMA_VERSION:
                found = row[0] if row else "none"
                msg = (
                    f"Unsupported inventory schema version '{found}' "
                    f"(expected '{INVENTORY_SCHEMA_VERSION}')"
                )
                raise CorruptStoreError(msg)
        except sqlite3.DatabaseError as e:
            conn.close()
            raise CorruptStoreError(f"Inventory database is malformed: {e}") from e
        except CorruptStoreError:
            conn.close()
            raise

        return cls(conn)

    def __enter__(self) -> "InventoryStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the database. Safe to call more than once."""
        self._conn.close()
        if self.state in (StoreState.OPEN, StoreState.MUTATED):
            self.state = StoreState.CLOSED

    def _require_open(self) -> None:
        if self.state not in (StoreState.OPEN, StoreState.MUTATED):
            msg = f"Inventory store is {self.state.value}; open the inventory again"
            raise StoreClosedError(msg)

    def _plugin_id(self, key: PluginKey) -> int | None:
        row = self._conn.execute(
            "SELECT plugin_id FROM plugins WHERE name = ? AND target = ? AND version = ?",
            tuple(key),
        ).fetchone()
        return row[0] if row else None

    def _records(self, where: str = "", params: tuple[str, ...] = ()) -> list[PluginRecord]:
        rows = self._conn.execute(
            "SELECT plugin_id, name, target, version, description, vendor, publisher, activated "
            f"FROM plugins {where} ORDER BY name, target, version",
            params,
        ).fetchall()

        records = []
        for plugin_id, name, target, version, description, vendor, publisher, activated in rows:
            artifacts = [
                ArtifactEntry(os=os_name, arch=arch, uri=uri, digest=digest)
                for os_name, arch, uri, digest in self._conn.execute(
                    "SELECT os, arch, uri, digest FROM plugin_artifacts "
                    "WHERE plugin_id = ? ORDER BY position",
                    (plugin_id,),
                )
            ]
            records.append(
                PluginRecord(
                    name=name,
                    target=target,
                    version=version,
                    description=description,
                    vendor=vendor,
                    publisher=publisher,
                    activated=bool(activated),
                    artifacts=artifacts,
                )
            )
        return records

    def get(self, key: PluginKey) -> PluginRecord | None:
        """Look up one plugin by its (name, target, version) key."""
        self._require_open()
        records = self._records(
            "WHERE name = ? AND target = ? AND version = ?", tuple(key)
        )
        return records[0] if records else None

    def list_plugins(
        self, vendor: str | None = None, publisher: str | None = None
    ) -> list[PluginRecord]:
        """List plugins ordered by key, optionally limited to a vendor/publisher."""
        self._require_open()
        clauses = []
        params: list[str] = []
        if vendor is not None:
            clauses.append("vendor = ?")
            params.append(vendor)
        if publisher is not None:
            clauses.append("publisher = ?")
            params.append(publisher)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._records(where, tuple(params))

    def insert(
        self,
        entries: Iterable[PluginManifestEntry],
        vendor: str,
        publisher: str,
        activate_on_insert: bool = True,
        skip_existing: bool = False,
    ) -> InsertResult:
        """Insert manifest entries as new plugin records.

        Entries are applied in order within one transaction. An existing key,
        including one inserted earlier in the same batch, aborts the whole
        batch unless ``skip_existing`` is set, in which case it is skipped.

        Args:
            entries: Validated manifest entries.
            vendor: Vendor that owns the new records.
            publisher: Publisher that owns the new records.
            activate_on_insert: Initial activation state of the new records.
            skip_existing: Skip keys that already exist instead of failing.

        Returns:
            InsertResult listing inserted and skipped keys.

        Raises:
            ConflictError: If a key already exists and skip_existing is False.
        """
        self._require_open()
        result = InsertResult()

        try:
            with self._conn:
                for entry in entries:
                    key = entry.key
                    if self._plugin_id(key) is not None:
                        if skip_existing:
                            result.skipped.append(key)
                            continue
                        raise ConflictError(key, vendor, publisher)

                    cursor = self._conn.execute(
                        "INSERT INTO plugins "
                        "(name, target, version, description, vendor, publisher, activated) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (*key, entry.description, vendor, publisher, int(activate_on_insert)),
                    )
                    self._conn.executemany(
                        "INSERT INTO plugin_artifacts (plugin_id, position, os, arch, uri, digest) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        [
                            (cursor.lastrowid, position, a.os, a.arch, a.uri, a.digest)
                            for position, a in enumerate(entry.artifacts)
                        ],
                    )
                    result.inserted.append(key)
        except sqlite3.IntegrityError as e:
            msg = f"Inventory constraint violated while inserting plugins: {e}"
            raise InventoryError(msg) from e

        if result.inserted:
            self.state = StoreState.MUTATED
        return result

    def set_activation(
        self,
        vendor: str,
        publisher: str,
        activated: bool,
        keys: Sequence[PluginKey] | None = None,
    ) -> UpdateResult:
        """Set the activation state of every plugin owned by vendor/publisher.

        Matching on vendor and publisher is exact and case-sensitive. When
        ``keys`` is given only those plugins are changed, and each of them
        must exist inside the scope.

        Raises:
            NotFoundError: If nothing in scope matches, or a requested key is
                not owned by the scope.
        """
        self._require_open()
        scoped = [
            record.key
            for record in self._records("WHERE vendor = ? AND publisher = ?", (vendor, publisher))
        ]

        if keys is not None:
            in_scope = set(scoped)
            missing = [key for key in keys if key not in in_scope]
            if missing:
                raise NotFoundError(vendor, publisher, missing)
            requested = set(keys)
            scoped = [key for key in scoped if key in requested]

        if not scoped:
            raise NotFoundError(vendor, publisher)

        with self._conn:
            self._conn.executemany(
                "UPDATE plugins SET activated = ? "
                "WHERE name = ? AND target = ? AND version = ? AND vendor = ? AND publisher = ?",
                [(int(activated), *key, vendor, publisher) for key in scoped],
            )

        self.state = StoreState.MUTATED
        return UpdateResult(activated=activated, updated=scoped)

    def serialize(self) -> bytes:
        """Serialize the inventory to database bytes and retire this store.

        The output is rebuilt from scratch with rows in key order, so two
        stores holding the same records produce identical bytes.
        """
        self._require_open()
        records = self._records()

        out = _connect()
        try:
            with out:
                _create_schema(out)
                for plugin_id, record in enumerate(records, start=1):
                    out.execute(
                        "INSERT INTO plugins "
                        "(plugin_id, name, target, version, description, vendor, publisher, activated) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            plugin_id,
                            *record.key,
                            record.description,
                            record.vendor,
                            record.publisher,
                            int(record.activated),
                        ),
                    )
                    out.executemany(
                        "INSERT INTO plugin_artifacts (plugin_id, position, os, arch, uri, digest) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        [
                            (plugin_id, position, a.os, a.arch, a.uri, a.digest)
                            for position, a in enumerate(record.artifacts)
                        ],
                    )
            data = out.serialize()
        finally:
            out.close()

        self._conn.close()
        self.state = StoreState.SERIALIZED
        return data
