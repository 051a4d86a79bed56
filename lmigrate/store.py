"""
RecordStore - Persist migration, component and grant records per target.

The RecordStore manages:
- MigrationRecords (upserted by index as a step changes status)
- ComponentRecords (appended for every confirmed deploy)
- AuthorizationGrants (appended for every confirmed grant)

save_record() must be durable before it returns: the sequencer does not
move to the next step until the previous step's record is saved.

Storage backends:
- In-memory (for testing and dry runs)
- File-based JSON (for development)
- SQLite (single-file local ledger state)
"""

import json
import os
import re
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Union

from lmigrate.errors import ConfigError
from lmigrate.schemas import (
    AuthorizationGrant,
    ComponentRecord,
    MigrationRecord,
    MigrationStatus,
)

Record = Union[MigrationRecord, ComponentRecord, AuthorizationGrant]

# Target names end up in file paths
TARGET_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

# Relative to the working directory at open time
DEFAULT_STORE_DIR = ".lmigrate"


def _check_target(target: str) -> str:
    if not TARGET_PATTERN.match(target) or target in (".", ".."):
        raise ValueError(f"Invalid target name: {target!r}")
    return target


@dataclass(frozen=True)
class LoadedRecords:
    """Everything persisted for one target."""
    migrations: tuple[MigrationRecord, ...] = ()
    components: tuple[ComponentRecord, ...] = ()
    grants: tuple[AuthorizationGrant, ...] = ()

    def migration(self, index: int) -> Optional[MigrationRecord]:
        for record in self.migrations:
            if record.index == index:
                return record
        return None

    @property
    def completed_indices(self) -> set[int]:
        return {r.index for r in self.migrations if r.status == MigrationStatus.COMPLETED}


class RecordStore(ABC):
    """
    Abstract base class for record storage.

    Implementations must provide:
    - load_records(target): all records for a target, migrations ordered
      by index and components/grants in save order
    - save_record(target, record): durable upsert/append of one record
    """

    @abstractmethod
    def load_records(self, target: str) -> LoadedRecords:
        """
        Load all records for a target.

        Args:
            target: Target ledger name

        Returns:
            LoadedRecords (empty if nothing has been saved yet)
        """
        pass

    @abstractmethod
    def save_record(self, target: str, record: Record) -> None:
        """
        Persist a record for a target.

        MigrationRecords replace any previous record with the same index.
        ComponentRecords are appended. AuthorizationGrants are appended
        unless a grant with the same key is already stored.

        Args:
            target: Target ledger name
            record: The record to persist
        """
        pass


class InMemoryRecordStore(RecordStore):
    """
    In-memory implementation of RecordStore for testing.

    Records are copied on save so later mutation by the caller does not
    leak into the store. All data is lost when the instance is garbage
    collected.
    """

    def __init__(self):
        self._migrations: dict[str, dict[int, MigrationRecord]] = {}
        self._components: dict[str, list[ComponentRecord]] = {}
        self._grants: dict[str, list[AuthorizationGrant]] = {}

    def load_records(self, target: str) -> LoadedRecords:
        migrations = self._migrations.get(target, {})
        return LoadedRecords(
            migrations=tuple(replace(migrations[i]) for i in sorted(migrations)),
            components=tuple(self._components.get(target, [])),
            grants=tuple(self._grants.get(target, [])),
        )

    def save_record(self, target: str, record: Record) -> None:
        if isinstance(record, MigrationRecord):
            self._migrations.setdefault(target, {})[record.index] = replace(record)
        elif isinstance(record, ComponentRecord):
            self._components.setdefault(target, []).append(record)
        elif isinstance(record, AuthorizationGrant):
            grants = self._grants.setdefault(target, [])
            if all(g.key != record.key for g in grants):
                grants.append(record)
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._migrations.clear()
        self._components.clear()
        self._grants.clear()


class FileRecordStore(RecordStore):
    """
    File-based implementation of RecordStore for development.

    Stores records as JSON files in a directory tree:
        store_dir/
            {target}/
                migrations/
                    {index}.json
                components/
                    {seq:06d}.json
                grants/
                    {seq:06d}.json

    Files are written to a temporary name and renamed into place, so a
    crash never leaves a half-written record behind.
    """

    def __init__(self, store_dir: Path | str):
        self._store_dir = Path(store_dir)
        self._store_dir.mkdir(parents=True, exist_ok=True)

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def _target_dir(self, target: str, subdir: str) -> Path:
        path = self._store_dir / _check_target(target) / subdir
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def _write_json(path: Path, data: dict) -> None:
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    @staticmethod
    def _read_dir(path: Path) -> list[dict]:
        items = []
        for file in sorted(path.glob("*.json"), key=lambda p: int(p.stem)):
            with open(file) as f:
                items.append(json.load(f))
        return items

    def load_records(self, target: str) -> LoadedRecords:
        migrations = [
            MigrationRecord.from_dict(d)
            for d in self._read_dir(self._target_dir(target, "migrations"))
        ]
        components = [
            ComponentRecord.from_dict(d)
            for d in self._read_dir(self._target_dir(target, "components"))
        ]
        grants = [
            AuthorizationGrant.from_dict(d)
            for d in self._read_dir(self._target_dir(target, "grants"))
        ]
        return LoadedRecords(
            migrations=tuple(sorted(migrations, key=lambda r: r.index)),
            components=tuple(components),
            grants=tuple(grants),
        )

    def _next_seq(self, path: Path) -> int:
        return len(list(path.glob("*.json"))) + 1

    def save_record(self, target: str, record: Record) -> None:
        if isinstance(record, MigrationRecord):
            path = self._target_dir(target, "migrations") / f"{record.index}.json"
            self._write_json(path, record.to_dict())
        elif isinstance(record, ComponentRecord):
            path = self._target_dir(target, "components")
            self._write_json(path / f"{self._next_seq(path):06d}.json", record.to_dict())
        elif isinstance(record, AuthorizationGrant):
            path = self._target_dir(target, "grants")
            existing = self.load_records(target).grants
            if any(g.key == record.key for g in existing):
                return
            self._write_json(path / f"{self._next_seq(path):06d}.json", record.to_dict())
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")


class SqliteRecordStore(RecordStore):
    """
    SQLite implementation of RecordStore.

    One database file can hold several targets. Every save commits before
    returning.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS migrations (
            target TEXT NOT NULL,
            step_index INTEGER NOT NULL,
            data TEXT NOT NULL,
            PRIMARY KEY (target, step_index)
        );
        CREATE TABLE IF NOT EXISTS components (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            target TEXT NOT NULL,
            name TEXT NOT NULL,
            data TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS grants (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            target TEXT NOT NULL,
            grantor_address TEXT NOT NULL,
            grantee_address TEXT NOT NULL,
            capability TEXT NOT NULL,
            data TEXT NOT NULL,
            UNIQUE (target, grantor_address, grantee_address, capability)
        );
    """

    def __init__(self, db_path: Path | str):
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.executescript(self.SCHEMA)
        self._conn.commit()

    def load_records(self, target: str) -> LoadedRecords:
        migrations = self._conn.execute(
            "SELECT data FROM migrations WHERE target = ? ORDER BY step_index",
            (target,),
        ).fetchall()
        components = self._conn.execute(
            "SELECT data FROM components WHERE target = ? ORDER BY seq",
            (target,),
        ).fetchall()
        grants = self._conn.execute(
            "SELECT data FROM grants WHERE target = ? ORDER BY seq",
            (target,),
        ).fetchall()
        return LoadedRecords(
            migrations=tuple(MigrationRecord.from_dict(json.loads(row[0])) for row in migrations),
            components=tuple(ComponentRecord.from_dict(json.loads(row[0])) for row in components),
            grants=tuple(AuthorizationGrant.from_dict(json.loads(row[0])) for row in grants),
        )

    def save_record(self, target: str, record: Record) -> None:
        if not isinstance(record, (MigrationRecord, ComponentRecord, AuthorizationGrant)):
            raise TypeError(f"Unsupported record type: {type(record).__name__}")
        data = json.dumps(record.to_dict())
        with self._conn:
            if isinstance(record, MigrationRecord):
                self._conn.execute(
                    "INSERT OR REPLACE INTO migrations (target, step_index, data) VALUES (?, ?, ?)",
                    (target, record.index, data),
                )
            elif isinstance(record, ComponentRecord):
                self._conn.execute(
                    "INSERT INTO components (target, name, data) VALUES (?, ?, ?)",
                    (target, record.name, data),
                )
            else:
                self._conn.execute(
                    "INSERT OR IGNORE INTO grants "
                    "(target, grantor_address, grantee_address, capability, data) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (target, record.grantor_address, record.grantee_address, record.capability, data),
                )

    def close(self) -> None:
        self._conn.close()


def open_store(backend: str, path: Optional[Path | str] = None) -> RecordStore:
    """
    Create a RecordStore from a backend name.

    Args:
        backend: "memory", "file" or "sqlite"
        path: Directory (file) or database path (sqlite). Defaults to
              ./.lmigrate and ./.lmigrate/records.db

    Raises:
        ConfigError: If the backend is unknown
    """
    if backend == "memory":
        return InMemoryRecordStore()
    default_dir = Path.cwd() / DEFAULT_STORE_DIR
    if backend == "file":
        return FileRecordStore(path or default_dir)
    if backend == "sqlite":
        return SqliteRecordStore(path or default_dir / "records.db")
    raise ConfigError(f"Unknown store backend: {backend!r}")
