"""
Local SQLite ledger of box scans.

Every successful scan becomes one ScanEvent row. The ledger decides, through
its identity-key mode, what a re-scan of the same box means:

- overwrite: primary key "<invoice>-<package>" (lower-cased invoice, global).
  A re-scan replaces the previous row; the box moves to the day of the
  latest scan. Only one row ever exists per (invoice, package).
- append: primary key "<day>-<invoice>-<package>-<epoch_ms>", always unique,
  plus a non-unique logical key "<day>-<invoice>-<package>". Every scan is
  kept; a repeat on the same day is flagged but still stored.

The mode is written into the database when it is created and checked on
every open. A ledger never mixes both modes; use migrate_ledger() to move
data into a new file with the other mode.

DB location: [Ledger] DatabasePath in config.ini, default
             %APPDATA%\\BoxCounter\\ledger.db  (Windows)
             ~/.local/share/BoxCounter/ledger.db  (Linux/Mac fallback)
"""

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, asdict, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

from exceptions import LedgerModeMismatchError, StorageUnavailableError
from label_parser import ScanRecord
from logger import get_logger

logger = get_logger(__name__)

MODE_OVERWRITE = "overwrite"
MODE_APPEND = "append"
LEDGER_MODES = (MODE_OVERWRITE, MODE_APPEND)

SCHEMA_VERSION = "1"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS ledger_meta (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS scan_events (
    identity_key            TEXT PRIMARY KEY,
    logical_key             TEXT NOT NULL,
    day_key                 TEXT NOT NULL,
    invoice_id              TEXT NOT NULL,
    invoice_norm            TEXT NOT NULL,
    package_index           INTEGER NOT NULL,
    expected_package_count  INTEGER NOT NULL DEFAULT 0,
    client                  TEXT NOT NULL DEFAULT '',
    address                 TEXT NOT NULL DEFAULT '',
    locality                TEXT NOT NULL DEFAULT '',
    region                  TEXT NOT NULL DEFAULT '',
    order_ref               TEXT NOT NULL DEFAULT '',
    carrier                 TEXT NOT NULL DEFAULT '',
    operator                TEXT NOT NULL DEFAULT '',
    captured_at_iso         TEXT NOT NULL,
    captured_at_epoch_ms    INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_scan_day     ON scan_events (day_key);
CREATE INDEX IF NOT EXISTS idx_scan_invoice ON scan_events (invoice_norm);
CREATE INDEX IF NOT EXISTS idx_scan_time    ON scan_events (captured_at_epoch_ms);
CREATE INDEX IF NOT EXISTS idx_scan_logical ON scan_events (logical_key);
"""

_COLUMNS = (
    "identity_key", "logical_key", "day_key", "invoice_id", "invoice_norm",
    "package_index", "expected_package_count", "client", "address", "locality",
    "region", "order_ref", "carrier", "operator", "captured_at_iso",
    "captured_at_epoch_ms",
)


def day_key_for(moment: datetime) -> str:
    """Local calendar day (YYYY-MM-DD) of a timestamp. Naive datetimes are local time."""
    return moment.astimezone().strftime("%Y-%m-%d")


def iso_utc(moment: datetime) -> str:
    """UTC ISO 8601 with milliseconds and a Z suffix, e.g. 2025-11-05T17:30:45.123Z."""
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def epoch_ms(moment: datetime) -> int:
    return int(round(moment.timestamp() * 1000))


def box_key(invoice_id: str, package_index: int) -> str:
    """"<invoice>-<package>" with the invoice lower-cased."""
    return f"{invoice_id.strip().lower()}-{package_index}"


@dataclass(frozen=True)
class ScanEvent:
    """A stored scan: the label data plus when, where and by whom it was scanned."""
    identity_key: str
    logical_key: str
    day_key: str
    captured_at_iso: str
    captured_at_epoch_ms: int
    invoice_id: str
    package_index: int
    client: str = ""
    address: str = ""
    locality: str = ""
    region: str = ""
    order_ref: str = ""
    expected_package_count: int = 0
    carrier: str = ""
    operator: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    def to_record(self) -> ScanRecord:
        record_fields = {f.name for f in fields(ScanRecord)}
        return ScanRecord(**{k: v for k, v in asdict(self).items() if k in record_fields})

    @property
    def box_label(self) -> str:
        return f"{self.invoice_id}-{self.package_index}"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'ScanEvent':
        data = dict(row)
        data.pop("invoice_norm", None)
        return cls(**data)


@dataclass(frozen=True)
class PutResult:
    """
    Acknowledgement of a successful put().

    Attributes:
        event: The event as stored
        duplicate: True if the same box was already recorded
                   (same invoice+package; same day in append mode)
        replaced: True if an existing row was overwritten (overwrite mode only)
    """
    event: ScanEvent
    duplicate: bool
    replaced: bool = False


class LedgerStore:
    """
    SQLite-backed scan ledger with a fixed identity-key mode.

    Every public method opens a short-lived connection, so one LedgerStore
    can be shared by the UI and a report export running at the same time.

    Attributes:
        mode (str): "overwrite" or "append"
        db_path (str): Path of the SQLite file
    """

    def __init__(self, db_path: Union[str, Path], mode: str = MODE_APPEND, timeout: float = 5.0):
        if mode not in LEDGER_MODES:
            raise ValueError(f"Unknown ledger mode: {mode!r} (expected one of {LEDGER_MODES})")
        self._path = str(db_path)
        self._mode = mode
        self._timeout = timeout
        self._init_schema()
        logger.info(f"Ledger opened: {self._path} (mode={mode})")

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, translating any storage failure into StorageUnavailableError."""
        conn = None
        try:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._path, timeout=self._timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            yield conn
        except (sqlite3.Error, OSError, OverflowError) as e:
            logger.error(f"Ledger storage error on {self._path}: {e}")
            raise StorageUnavailableError(f"ledger unavailable: {e}", db_path=self._path) from e
        finally:
            if conn is not None:
                conn.close()

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection, immediate: bool = False) -> Iterator[None]:
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            with self._transaction(conn, immediate=True):
                row = conn.execute(
                    "SELECT value FROM ledger_meta WHERE key = 'identity_mode'"
                ).fetchone()
                if row is None:
                    conn.execute(
                        "INSERT INTO ledger_meta (key, value) VALUES ('identity_mode', ?), "
                        "('schema_version', ?)",
                        (self._mode, SCHEMA_VERSION),
                    )
                    stored_mode = self._mode
                else:
                    stored_mode = row["value"]

        if stored_mode != self._mode:
            logger.error(f"Ledger mode mismatch: file={stored_mode}, requested={self._mode}")
            raise LedgerModeMismatchError(
                f"ledger was created in '{stored_mode}' mode, not '{self._mode}'",
                db_path=self._path,
                stored_mode=stored_mode,
                requested_mode=self._mode,
            )

    # ------------------------------------------------------------------
    # Identity keys
    # ------------------------------------------------------------------

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def db_path(self) -> str:
        return self._path

    def logical_key(self, invoice_id: str, package_index: int, day_key: str) -> str:
        """Key that identifies "the same box" for duplicate detection."""
        if self._mode == MODE_OVERWRITE:
            return box_key(invoice_id, package_index)
        return f"{day_key}-{box_key(invoice_id, package_index)}"

    def identity_key(self, invoice_id: str, package_index: int, day_key: str,
                     captured_at_epoch_ms: int) -> str:
        """Primary key of a row under this ledger's mode."""
        logical = self.logical_key(invoice_id, package_index, day_key)
        if self._mode == MODE_OVERWRITE:
            return logical
        return f"{logical}-{captured_at_epoch_ms}"

    def make_event(self, record: ScanRecord, operator: str = "",
                   captured_at: Optional[datetime] = None) -> ScanEvent:
        """
        Build a ScanEvent for a parsed label using this ledger's key policy.

        Args:
            record: Parsed label
            operator: Name typed by the operator (may be empty)
            captured_at: Scan time; defaults to now
        """
        captured_at = captured_at or datetime.now().astimezone()
        day = day_key_for(captured_at)
        ms = epoch_ms(captured_at)
        return ScanEvent(
            identity_key=self.identity_key(record.invoice_id, record.package_index, day, ms),
            logical_key=self.logical_key(record.invoice_id, record.package_index, day),
            day_key=day,
            captured_at_iso=iso_utc(captured_at),
            captured_at_epoch_ms=ms,
            operator=(operator or "").strip(),
            **record.to_dict(),
        )

    def _rekey(self, event: ScanEvent) -> ScanEvent:
        """Return the event with keys derived from this ledger's mode."""
        logical = self.logical_key(event.invoice_id, event.package_index, event.day_key)
        identity = self.identity_key(event.invoice_id, event.package_index,
                                     event.day_key, event.captured_at_epoch_ms)
        if event.identity_key == identity and event.logical_key == logical:
            return event
        return replace(event, identity_key=identity, logical_key=logical)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def put(self, event: ScanEvent) -> PutResult:
        """
        Store a scan and report whether the box was already recorded.

        The duplicate check and the write run in one IMMEDIATE transaction,
        so two writers cannot both see "new" for the same box.

        In append mode an existing row is never replaced: a second scan of
        the same box in the same millisecond is stored under the key with a
        "-1", "-2", ... suffix.

        Raises:
            StorageUnavailableError: If the database cannot be opened or written
        """
        event = self._rekey(event)
        row = {name: getattr(event, name) for name in _COLUMNS if name != "invoice_norm"}
        row["invoice_norm"] = event.invoice_id.strip().lower()

        verb = "INSERT OR REPLACE" if self._mode == MODE_OVERWRITE else "INSERT"
        sql = (
            f"{verb} INTO scan_events ({', '.join(_COLUMNS)}) "
            f"VALUES ({', '.join(':' + c for c in _COLUMNS)})"
        )

        with self._connect() as conn:
            with self._transaction(conn, immediate=True):
                existing = conn.execute(
                    "SELECT COUNT(*) FROM scan_events WHERE logical_key = ?",
                    (event.logical_key,),
                ).fetchone()[0]
                if self._mode == MODE_APPEND:
                    row["identity_key"] = self._free_identity_key(conn, event.identity_key)
                conn.execute(sql, row)

        if row["identity_key"] != event.identity_key:
            logger.warning(f"Key collision on {event.identity_key}, stored as {row['identity_key']}")
            event = replace(event, identity_key=row["identity_key"])

        duplicate = existing > 0
        replaced = duplicate and self._mode == MODE_OVERWRITE
        logger.debug(f"Stored {event.identity_key} (duplicate={duplicate})")
        return PutResult(event=event, duplicate=duplicate, replaced=replaced)

    @staticmethod
    def _free_identity_key(conn: sqlite3.Connection, identity_key: str) -> str:
        candidate, suffix = identity_key, 0
        while conn.execute(
            "SELECT 1 FROM scan_events WHERE identity_key = ?", (candidate,)
        ).fetchone():
            suffix += 1
            candidate = f"{identity_key}-{suffix}"
        return candidate

    def clear(self) -> int:
        """Delete every event of every day. Returns the number of rows removed."""
        with self._connect() as conn:
            with self._transaction(conn, immediate=True):
                cur = conn.execute("DELETE FROM scan_events")
                removed = cur.rowcount
        logger.warning(f"Ledger wiped: {removed} events removed")
        return removed

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def _select(self, where: str = "", params: tuple = (), order: str = "", limit: Optional[int] = None) -> List[ScanEvent]:
        sql = "SELECT * FROM scan_events"
        if where:
            sql += f" WHERE {where}"
        if order:
            sql += f" ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (int(limit),)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [ScanEvent.from_row(r) for r in rows]

    def query_by_day(self, day_key: str) -> List[ScanEvent]:
        """All events of one day partition, in no particular order. Empty day -> []."""
        return self._select("day_key = ?", (day_key,))

    def query_by_invoice(self, invoice_id: str) -> List[ScanEvent]:
        """All events of one invoice across every day (case-insensitive)."""
        return self._select("invoice_norm = ?", (invoice_id.strip().lower(),))

    def latest_event(self, day_key: Optional[str] = None) -> Optional[ScanEvent]:
        """Most recent scan, optionally restricted to one day."""
        events = self.recent_events(day_key, limit=1)
        return events[0] if events else None

    def recent_events(self, day_key: Optional[str] = None, limit: int = 10) -> List[ScanEvent]:
        """Newest-first events using the time index."""
        if day_key is None:
            return self._select(order="captured_at_epoch_ms DESC", limit=limit)
        return self._select("day_key = ?", (day_key,), order="captured_at_epoch_ms DESC", limit=limit)

    def all_events(self) -> List[ScanEvent]:
        """Every event, oldest first."""
        return self._select(order="captured_at_epoch_ms ASC, identity_key ASC")

    def list_days(self) -> List[str]:
        """Day partitions present in the ledger, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT day_key FROM scan_events ORDER BY day_key DESC"
            ).fetchall()
        return [r["day_key"] for r in rows]

    def count(self, day_key: Optional[str] = None) -> int:
        with self._connect() as conn:
            if day_key is None:
                return conn.execute("SELECT COUNT(*) FROM scan_events").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM scan_events WHERE day_key = ?", (day_key,)
            ).fetchone()[0]


def migrate_ledger(source: LedgerStore, target: LedgerStore) -> int:
    """
    Copy every event from one ledger into an empty ledger, re-keying each
    event with the target's mode.

    append -> overwrite keeps only the latest scan of each box.
    overwrite -> append turns each stored box into one row on its day.

    Returns:
        Number of events in the target after the copy

    Raises:
        ValueError: If the target already holds events or is the same file
    """
    if Path(source.db_path).resolve() == Path(target.db_path).resolve():
        raise ValueError("source and target ledger must be different files")
    if target.count():
        raise ValueError(f"target ledger {target.db_path} is not empty")

    events = source.all_events()
    for event in events:
        target.put(event)

    copied = target.count()
    logger.info(
        f"Migrated {len(events)} events from {source.db_path} ({source.mode}) "
        f"to {target.db_path} ({target.mode}): {copied} rows"
    )
    return copied
