"""Durable outbox record store (SQLite / Postgres)."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
import logging
from pathlib import Path
import sqlite3
from typing import Any

import psycopg

from .contracts import (
    KIND_CANCEL,
    KIND_FOUND,
    RECORD_KINDS,
    FoundPayload,
    OutboxRecord,
    ReportContractError,
    parse_utc_text,
    to_utc_text,
    utc_now,
)


logger = logging.getLogger("obstruction_bingo.report_outbox.store")

SCHEMA_VERSION = 1
_PG_MIGRATION_LOCK_KEY = 7_301_120_417
_SQLITE_IN_CLAUSE_CHUNK_SIZE = 400

_SELECT_COLUMNS = (
    "uuid, kind, created_at_utc, sending_since_utc, tile_ref, detail, text_location, "
    "latitude, longitude, accuracy"
)

# Statements per schema version; index i upgrades version i to i + 1.
_MIGRATIONS: tuple[tuple[str, ...], ...] = (
    (
        """
        CREATE TABLE IF NOT EXISTS queued_reports (
            uuid TEXT NOT NULL,
            kind TEXT NOT NULL,
            created_at_utc TEXT NOT NULL,
            sending_since_utc TEXT,
            tile_ref TEXT,
            detail TEXT,
            text_location TEXT,
            latitude DOUBLE PRECISION,
            longitude DOUBLE PRECISION,
            accuracy DOUBLE PRECISION,
            PRIMARY KEY (uuid, kind)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_queued_reports_tile_ref ON queued_reports (tile_ref)",
        "CREATE INDEX IF NOT EXISTS idx_queued_reports_created_at ON queued_reports (created_at_utc)",
    ),
)


class ReportStoreError(RuntimeError):
    """Raised when outbox store operations fail."""


class ReportStoreSchemaError(ReportStoreError):
    """Raised when the on-disk schema version does not match this code."""


@dataclass(frozen=True)
class OutboxMetrics:
    queued_count: int
    unsent_count: int
    sending_count: int
    found_count: int
    cancel_count: int
    oldest_queued_age_seconds: int | None

    def as_dict(self) -> dict[str, int | None]:
        return {
            "queued_count": self.queued_count,
            "unsent_count": self.unsent_count,
            "sending_count": self.sending_count,
            "found_count": self.found_count,
            "cancel_count": self.cancel_count,
            "oldest_queued_age_seconds": self.oldest_queued_age_seconds,
        }


@dataclass(frozen=True)
class PendingHorizon:
    """Oldest timestamps that decide when the next record becomes deliverable."""

    oldest_unsent_created_at: datetime | None
    oldest_sending_since: datetime | None

    @property
    def is_empty(self) -> bool:
        return self.oldest_unsent_created_at is None and self.oldest_sending_since is None


def build_report_store(dsn: str, *, auto_migrate: bool = True) -> "ReportStore":
    if is_postgres_dsn(dsn):
        return PostgresReportStore(dsn=dsn, auto_migrate=auto_migrate)
    return SqliteReportStore(path=Path(_sqlite_path(dsn)), auto_migrate=auto_migrate)


def migrate_report_store(dsn: str) -> int:
    """Upgrade the store schema exclusively; returns the resulting version."""
    store = build_report_store(dsn, auto_migrate=False)
    return store.migrate()


def is_postgres_dsn(value: str | None) -> bool:
    if not value:
        return False
    return value.startswith("postgres://") or value.startswith("postgresql://")


class ReportStore:
    """Keyed table of outbox records; every method is one atomic transaction."""

    def migrate(self) -> int:
        raise NotImplementedError

    def schema_version(self) -> int:
        raise NotImplementedError

    def put(self, record: OutboxRecord) -> None:
        raise NotImplementedError

    def insert_if_absent(self, record: OutboxRecord) -> bool:
        raise NotImplementedError

    def get(self, uuid: str, *, kind: str = KIND_FOUND) -> OutboxRecord | None:
        raise NotImplementedError

    def delete(self, uuid: str, *, kind: str | None = None) -> int:
        raise NotImplementedError

    def delete_keys(self, keys: Iterable[tuple[str, str]]) -> int:
        raise NotImplementedError

    def delete_unsent_found(self, uuid: str) -> bool:
        raise NotImplementedError

    def list_by_age(self, older_than: datetime) -> list[OutboxRecord]:
        raise NotImplementedError

    def list_by_tile(self, tile_ref: str) -> list[OutboxRecord]:
        raise NotImplementedError

    def claim_deliverable(
        self,
        *,
        mature_before: datetime,
        stale_sending_before: datetime,
        claimed_at: datetime,
        limit: int,
    ) -> list[OutboxRecord]:
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError

    def pending_horizon(self) -> PendingHorizon:
        raise NotImplementedError

    def metrics(self, *, now: datetime | None = None) -> OutboxMetrics:
        raise NotImplementedError


@dataclass
class SqliteReportStore(ReportStore):
    path: Path
    auto_migrate: bool = True
    _ready: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    def migrate(self) -> int:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._transaction("EXCLUSIVE", check_schema=False) as conn:
            current = int(conn.execute("PRAGMA user_version").fetchone()[0])
            if current > SCHEMA_VERSION:
                raise ReportStoreSchemaError(
                    f"REPORT_STORE_SCHEMA_NEWER:{current}>{SCHEMA_VERSION}:{self.path}"
                )
            for version in range(current, SCHEMA_VERSION):
                for statement in _MIGRATIONS[version]:
                    conn.execute(statement)
                logger.info("report store %s migrated to schema version %d", self.path, version + 1)
            # PRAGMA does not accept bound parameters.
            conn.execute(f"PRAGMA user_version = {int(SCHEMA_VERSION)}")
        self._ready = True
        return SCHEMA_VERSION

    def schema_version(self) -> int:
        if not self.path.exists():
            return 0
        conn = self._connect()
        try:
            return int(conn.execute("PRAGMA user_version").fetchone()[0])
        finally:
            conn.close()

    def put(self, record: OutboxRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO queued_reports ({_SELECT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (uuid, kind) DO UPDATE SET
                    created_at_utc = excluded.created_at_utc,
                    sending_since_utc = excluded.sending_since_utc,
                    tile_ref = excluded.tile_ref,
                    detail = excluded.detail,
                    text_location = excluded.text_location,
                    latitude = excluded.latitude,
                    longitude = excluded.longitude,
                    accuracy = excluded.accuracy
                """,
                _record_params(record),
            )

    def insert_if_absent(self, record: OutboxRecord) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                INSERT OR IGNORE INTO queued_reports ({_SELECT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                _record_params(record),
            )
            return cursor.rowcount > 0

    def get(self, uuid: str, *, kind: str = KIND_FOUND) -> OutboxRecord | None:
        _check_kind(kind)
        with self._transaction("DEFERRED") as conn:
            row = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM queued_reports WHERE uuid = ? AND kind = ?",
                (uuid, kind),
            ).fetchone()
        return None if row is None else _row_to_record(row)

    def delete(self, uuid: str, *, kind: str | None = None) -> int:
        with self._transaction() as conn:
            if kind is None:
                cursor = conn.execute("DELETE FROM queued_reports WHERE uuid = ?", (uuid,))
            else:
                _check_kind(kind)
                cursor = conn.execute(
                    "DELETE FROM queued_reports WHERE uuid = ? AND kind = ?",
                    (uuid, kind),
                )
            return int(cursor.rowcount)

    def delete_keys(self, keys: Iterable[tuple[str, str]]) -> int:
        normalized = sorted({(str(uuid), str(kind)) for uuid, kind in keys})
        if not normalized:
            return 0
        deleted = 0
        with self._transaction() as conn:
            for start in range(0, len(normalized), _SQLITE_IN_CLAUSE_CHUNK_SIZE):
                chunk = normalized[start : start + _SQLITE_IN_CLAUSE_CHUNK_SIZE]
                placeholders = ",".join("(?, ?)" for _ in chunk)
                params = tuple(value for pair in chunk for value in pair)
                cursor = conn.execute(
                    f"DELETE FROM queued_reports WHERE (uuid, kind) IN (VALUES {placeholders})",
                    params,
                )
                deleted += int(cursor.rowcount)
        return deleted

    def delete_unsent_found(self, uuid: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM queued_reports
                WHERE uuid = ? AND kind = ? AND sending_since_utc IS NULL
                """,
                (uuid, KIND_FOUND),
            )
            return cursor.rowcount > 0

    def list_by_age(self, older_than: datetime) -> list[OutboxRecord]:
        with self._transaction("DEFERRED") as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM queued_reports
                WHERE created_at_utc <= ?
                ORDER BY created_at_utc ASC, uuid ASC, kind DESC
                """,
                (to_utc_text(older_than),),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def list_by_tile(self, tile_ref: str) -> list[OutboxRecord]:
        with self._transaction("DEFERRED") as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM queued_reports
                WHERE tile_ref = ?
                ORDER BY created_at_utc ASC, uuid ASC
                """,
                (tile_ref,),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def claim_deliverable(
        self,
        *,
        mature_before: datetime,
        stale_sending_before: datetime,
        claimed_at: datetime,
        limit: int,
    ) -> list[OutboxRecord]:
        if limit <= 0:
            raise ReportStoreError("limit must be >= 1")
        claimed_text = to_utc_text(claimed_at)
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM queued_reports
                WHERE created_at_utc <= ?
                  AND (sending_since_utc IS NULL OR sending_since_utc <= ?)
                ORDER BY created_at_utc ASC, uuid ASC, kind DESC
                LIMIT ?
                """,
                (to_utc_text(mature_before), to_utc_text(stale_sending_before), int(limit)),
            ).fetchall()
            records = [_row_to_record(row) for row in rows]
            for record in records:
                conn.execute(
                    "UPDATE queued_reports SET sending_since_utc = ? WHERE uuid = ? AND kind = ?",
                    (claimed_text, record.uuid, record.kind),
                )
        return [record.stamped(claimed_at) for record in records]

    def count(self) -> int:
        with self._transaction("DEFERRED") as conn:
            row = conn.execute("SELECT COUNT(*) FROM queued_reports").fetchone()
        return int(row[0] or 0) if row else 0

    def pending_horizon(self) -> PendingHorizon:
        with self._transaction("DEFERRED") as conn:
            row = conn.execute(
                """
                SELECT
                    MIN(CASE WHEN sending_since_utc IS NULL THEN created_at_utc END),
                    MIN(sending_since_utc)
                FROM queued_reports
                """
            ).fetchone()
        return _horizon_from_row(row)

    def metrics(self, *, now: datetime | None = None) -> OutboxMetrics:
        with self._transaction("DEFERRED") as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*),
                    SUM(CASE WHEN sending_since_utc IS NULL THEN 1 ELSE 0 END),
                    SUM(CASE WHEN sending_since_utc IS NOT NULL THEN 1 ELSE 0 END),
                    SUM(CASE WHEN kind = ? THEN 1 ELSE 0 END),
                    SUM(CASE WHEN kind = ? THEN 1 ELSE 0 END),
                    MIN(created_at_utc)
                FROM queued_reports
                """,
                (KIND_FOUND, KIND_CANCEL),
            ).fetchone()
        return _metrics_from_row(row, now=now)

    @contextmanager
    def _transaction(self, mode: str = "IMMEDIATE", *, check_schema: bool = True) -> Iterator[sqlite3.Connection]:
        if check_schema:
            self._ensure_ready()
        conn = self._connect()
        try:
            conn.execute(f"BEGIN {mode}")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _ensure_ready(self) -> None:
        if self._ready:
            return
        version = self.schema_version()
        if version == SCHEMA_VERSION:
            self._ready = True
            return
        if version > SCHEMA_VERSION or not self.auto_migrate:
            raise ReportStoreSchemaError(
                f"REPORT_STORE_SCHEMA_MISMATCH:found={version}:expected={SCHEMA_VERSION}:{self.path}"
            )
        self.migrate()

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(str(self.path), isolation_level=None, timeout=30.0)
        except sqlite3.Error as exc:
            raise ReportStoreError(f"REPORT_STORE_UNAVAILABLE:{self.path}:{exc}") from exc
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=FULL")
        return conn


@dataclass
class PostgresReportStore(ReportStore):
    dsn: str
    auto_migrate: bool = True
    _ready: bool = field(default=False, init=False, repr=False)

    def migrate(self) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(%s)", (_PG_MIGRATION_LOCK_KEY,))
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS report_outbox_meta (
                        meta_key TEXT PRIMARY KEY,
                        meta_value INTEGER NOT NULL
                    )
                    """
                )
                current = self._read_version(cur)
                if current > SCHEMA_VERSION:
                    raise ReportStoreSchemaError(f"REPORT_STORE_SCHEMA_NEWER:{current}>{SCHEMA_VERSION}")
                for version in range(current, SCHEMA_VERSION):
                    for statement in _MIGRATIONS[version]:
                        cur.execute(statement)
                    logger.info("report store migrated to schema version %d", version + 1)
                cur.execute(
                    """
                    INSERT INTO report_outbox_meta (meta_key, meta_value)
                    VALUES ('schema_version', %s)
                    ON CONFLICT (meta_key) DO UPDATE SET meta_value = EXCLUDED.meta_value
                    """,
                    (SCHEMA_VERSION,),
                )
        self._ready = True
        return SCHEMA_VERSION

    def schema_version(self) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('report_outbox_meta')")
                exists = cur.fetchone()
                if not exists or exists[0] is None:
                    return 0
                return self._read_version(cur)

    def put(self, record: OutboxRecord) -> None:
        with self._transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO queued_reports ({_SELECT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (uuid, kind) DO UPDATE SET
                    created_at_utc = EXCLUDED.created_at_utc,
                    sending_since_utc = EXCLUDED.sending_since_utc,
                    tile_ref = EXCLUDED.tile_ref,
                    detail = EXCLUDED.detail,
                    text_location = EXCLUDED.text_location,
                    latitude = EXCLUDED.latitude,
                    longitude = EXCLUDED.longitude,
                    accuracy = EXCLUDED.accuracy
                """,
                _record_params(record),
            )

    def insert_if_absent(self, record: OutboxRecord) -> bool:
        with self._transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO queued_reports ({_SELECT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (uuid, kind) DO NOTHING
                """,
                _record_params(record),
            )
            return cur.rowcount > 0

    def get(self, uuid: str, *, kind: str = KIND_FOUND) -> OutboxRecord | None:
        _check_kind(kind)
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_SELECT_COLUMNS} FROM queued_reports WHERE uuid = %s AND kind = %s",
                (uuid, kind),
            )
            row = cur.fetchone()
        return None if row is None else _row_to_record(row)

    def delete(self, uuid: str, *, kind: str | None = None) -> int:
        with self._transaction() as cur:
            if kind is None:
                cur.execute("DELETE FROM queued_reports WHERE uuid = %s", (uuid,))
            else:
                _check_kind(kind)
                cur.execute("DELETE FROM queued_reports WHERE uuid = %s AND kind = %s", (uuid, kind))
            return int(cur.rowcount)

    def delete_keys(self, keys: Iterable[tuple[str, str]]) -> int:
        normalized = sorted({(str(uuid), str(kind)) for uuid, kind in keys})
        if not normalized:
            return 0
        deleted = 0
        with self._transaction() as cur:
            for uuid, kind in normalized:
                cur.execute("DELETE FROM queued_reports WHERE uuid = %s AND kind = %s", (uuid, kind))
                deleted += int(cur.rowcount)
        return deleted

    def delete_unsent_found(self, uuid: str) -> bool:
        with self._transaction() as cur:
            cur.execute(
                """
                DELETE FROM queued_reports
                WHERE uuid = %s AND kind = %s AND sending_since_utc IS NULL
                """,
                (uuid, KIND_FOUND),
            )
            return cur.rowcount > 0

    def list_by_age(self, older_than: datetime) -> list[OutboxRecord]:
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM queued_reports
                WHERE created_at_utc <= %s
                ORDER BY created_at_utc ASC, uuid ASC, kind DESC
                """,
                (to_utc_text(older_than),),
            )
            rows = cur.fetchall()
        return [_row_to_record(row) for row in rows]

    def list_by_tile(self, tile_ref: str) -> list[OutboxRecord]:
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM queued_reports
                WHERE tile_ref = %s
                ORDER BY created_at_utc ASC, uuid ASC
                """,
                (tile_ref,),
            )
            rows = cur.fetchall()
        return [_row_to_record(row) for row in rows]

    def claim_deliverable(
        self,
        *,
        mature_before: datetime,
        stale_sending_before: datetime,
        claimed_at: datetime,
        limit: int,
    ) -> list[OutboxRecord]:
        if limit <= 0:
            raise ReportStoreError("limit must be >= 1")
        claimed_text = to_utc_text(claimed_at)
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM queued_reports
                WHERE created_at_utc <= %s
                  AND (sending_since_utc IS NULL OR sending_since_utc <= %s)
                ORDER BY created_at_utc ASC, uuid ASC, kind DESC
                LIMIT %s
                FOR UPDATE
                """,
                (to_utc_text(mature_before), to_utc_text(stale_sending_before), int(limit)),
            )
            records = [_row_to_record(row) for row in cur.fetchall()]
            for record in records:
                cur.execute(
                    "UPDATE queued_reports SET sending_since_utc = %s WHERE uuid = %s AND kind = %s",
                    (claimed_text, record.uuid, record.kind),
                )
        return [record.stamped(claimed_at) for record in records]

    def count(self) -> int:
        with self._transaction() as cur:
            cur.execute("SELECT COUNT(*) FROM queued_reports")
            row = cur.fetchone()
        return int(row[0] or 0) if row else 0

    def pending_horizon(self) -> PendingHorizon:
        with self._transaction() as cur:
            cur.execute(
                """
                SELECT
                    MIN(CASE WHEN sending_since_utc IS NULL THEN created_at_utc END),
                    MIN(sending_since_utc)
                FROM queued_reports
                """
            )
            row = cur.fetchone()
        return _horizon_from_row(row)

    def metrics(self, *, now: datetime | None = None) -> OutboxMetrics:
        with self._transaction() as cur:
            cur.execute(
                """
                SELECT
                    COUNT(*),
                    SUM(CASE WHEN sending_since_utc IS NULL THEN 1 ELSE 0 END),
                    SUM(CASE WHEN sending_since_utc IS NOT NULL THEN 1 ELSE 0 END),
                    SUM(CASE WHEN kind = %s THEN 1 ELSE 0 END),
                    SUM(CASE WHEN kind = %s THEN 1 ELSE 0 END),
                    MIN(created_at_utc)
                FROM queued_reports
                """,
                (KIND_FOUND, KIND_CANCEL),
            )
            row = cur.fetchone()
        return _metrics_from_row(row, now=now)

    @contextmanager
    def _transaction(self) -> Iterator[psycopg.Cursor]:
        self._ensure_ready()
        with self._connect() as conn:
            with conn.cursor() as cur:
                yield cur

    def _ensure_ready(self) -> None:
        if self._ready:
            return
        version = self.schema_version()
        if version == SCHEMA_VERSION:
            self._ready = True
            return
        if version > SCHEMA_VERSION or not self.auto_migrate:
            raise ReportStoreSchemaError(
                f"REPORT_STORE_SCHEMA_MISMATCH:found={version}:expected={SCHEMA_VERSION}"
            )
        self.migrate()

    @staticmethod
    def _read_version(cur: psycopg.Cursor) -> int:
        cur.execute("SELECT meta_value FROM report_outbox_meta WHERE meta_key = 'schema_version'")
        row = cur.fetchone()
        return 0 if row is None else int(row[0])

    def _connect(self) -> psycopg.Connection:
        try:
            return psycopg.connect(self.dsn)
        except psycopg.Error as exc:
            raise ReportStoreError(f"REPORT_STORE_UNAVAILABLE:{exc}") from exc


def _record_params(record: OutboxRecord) -> tuple[Any, ...]:
    payload = record.payload
    return (
        record.uuid,
        record.kind,
        to_utc_text(record.created_at),
        None if record.sending_since is None else to_utc_text(record.sending_since),
        None if payload is None else payload.tile_ref,
        None if payload is None else payload.detail,
        None if payload is None else payload.text_location,
        None if payload is None else payload.latitude,
        None if payload is None else payload.longitude,
        None if payload is None else payload.accuracy,
    )


def _row_to_record(row: Any) -> OutboxRecord:
    kind = str(row[1])
    try:
        created_at = parse_utc_text(str(row[2]), field_name="created_at_utc")
        sending_since = None if row[3] in (None, "") else parse_utc_text(str(row[3]), field_name="sending_since_utc")
        payload = None
        if kind == KIND_FOUND:
            payload = FoundPayload(
                tile_ref=str(row[4] or ""),
                detail=str(row[5] or ""),
                text_location=str(row[6] or ""),
                latitude=None if row[7] is None else float(row[7]),
                longitude=None if row[8] is None else float(row[8]),
                accuracy=None if row[9] is None else float(row[9]),
            )
        return OutboxRecord(
            uuid=str(row[0]),
            kind=kind,
            created_at=created_at,
            sending_since=sending_since,
            payload=payload,
        )
    except ReportContractError as exc:
        raise ReportStoreError(f"REPORT_ROW_CORRUPT:{row[0]}:{exc}") from exc


def _horizon_from_row(row: Any) -> PendingHorizon:
    if row is None:
        return PendingHorizon(oldest_unsent_created_at=None, oldest_sending_since=None)
    return PendingHorizon(
        oldest_unsent_created_at=None if row[0] is None else parse_utc_text(str(row[0]), field_name="created_at_utc"),
        oldest_sending_since=None if row[1] is None else parse_utc_text(str(row[1]), field_name="sending_since_utc"),
    )


def _metrics_from_row(row: Any, *, now: datetime | None) -> OutboxMetrics:
    current = now or utc_now()
    queued = int(row[0] or 0) if row else 0
    oldest_age = None
    if row and row[5]:
        oldest = parse_utc_text(str(row[5]), field_name="created_at_utc")
        oldest_age = max(0, int((current - oldest).total_seconds()))
    return OutboxMetrics(
        queued_count=queued,
        unsent_count=int(row[1] or 0) if row else 0,
        sending_count=int(row[2] or 0) if row else 0,
        found_count=int(row[3] or 0) if row else 0,
        cancel_count=int(row[4] or 0) if row else 0,
        oldest_queued_age_seconds=oldest_age,
    )


def _check_kind(kind: str) -> None:
    if kind not in RECORD_KINDS:
        raise ReportStoreError(f"unknown record kind: {kind!r}")


def _sqlite_path(dsn: str) -> str:
    value = str(dsn or "").strip()
    if not value:
        raise ReportStoreError("sqlite store path/DSN must be non-empty")
    if value.startswith("sqlite:///"):
        return value[len("sqlite:///") :]
    if value.startswith("sqlite://"):
        return value[len("sqlite://") :]
    return value
