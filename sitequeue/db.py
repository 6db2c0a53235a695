"""
Database module for the site queue.

Provides SQLite-based storage for sites and tickets.

Allocation decisions run inside a single BEGIN IMMEDIATE transaction. SQLite
grants one writer at a time, so the device lookup, identity lookup,
MAX(sequence)+1 read and insert of one decision cannot interleave with
another decision. Unique indexes repeat the per-day invariants at the
storage layer.
"""

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

from . import config
from .errors import ConflictError, StoreUnavailableError
from .fingerprint import DeviceIdentity
from .models import Site, SiteStats, Ticket, TicketStatus
from .util import parse_rfc3339, utc_rfc3339

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sites (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        latitude REAL NOT NULL CHECK (latitude BETWEEN -90 AND 90),
        longitude REAL NOT NULL CHECK (longitude BETWEEN -180 AND 180),
        radius_m REAL NOT NULL CHECK (radius_m > 0),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        site_id TEXT NOT NULL REFERENCES sites(id),
        day TEXT NOT NULL,
        sequence INTEGER NOT NULL CHECK (sequence > 0),
        identity_claim TEXT NOT NULL,
        strict_fp TEXT NOT NULL,
        stable_fp TEXT NOT NULL,
        network_address TEXT NOT NULL DEFAULT '',
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        accuracy_m REAL,
        status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE', 'USED')),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (site_id, day, sequence),
        UNIQUE (site_id, day, identity_claim),
        UNIQUE (site_id, day, strict_fp),
        UNIQUE (site_id, day, stable_fp)
    );""",
    # Empty network address never identifies a device
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_tickets_site_day_network
    ON tickets(site_id, day, network_address) WHERE network_address <> '';""",
    """
    CREATE INDEX IF NOT EXISTS idx_tickets_day
    ON tickets(day);""",
    """
    CREATE TRIGGER IF NOT EXISTS trg_tickets_status_forward
    BEFORE UPDATE OF status ON tickets
    WHEN OLD.status = 'USED' AND NEW.status <> 'USED'
    BEGIN
        SELECT RAISE(ABORT, 'ticket status cannot leave USED');
    END;""",
)

_TICKET_COLUMNS = (
    "id, site_id, day, sequence, identity_claim, strict_fp, stable_fp, network_address, "
    "latitude, longitude, accuracy_m, status, created_at"
)


def _row_to_site(row: sqlite3.Row) -> Site:
    return Site(
        id=row["id"],
        name=row["name"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        radius_m=row["radius_m"],
        created_at=parse_rfc3339(row["created_at"]),
    )


def _row_to_ticket(row: sqlite3.Row) -> Ticket:
    return Ticket(
        id=row["id"],
        site_id=row["site_id"],
        day=date.fromisoformat(row["day"]),
        sequence=row["sequence"],
        identity_claim=row["identity_claim"],
        device=DeviceIdentity(
            strict_fp=row["strict_fp"],
            stable_fp=row["stable_fp"],
            network_address=row["network_address"],
        ),
        latitude=row["latitude"],
        longitude=row["longitude"],
        accuracy_m=row["accuracy_m"],
        status=TicketStatus(row["status"]),
        created_at=parse_rfc3339(row["created_at"]),
    )


class LedgerTransaction:
    """
    Ledger operations bound to one open transaction.

    Obtained from SqliteLedger.unit_of_work(); every call shares the
    same snapshot and the same commit.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get_site(self, site_id: str) -> Optional[Site]:
        row = self._conn.execute("SELECT * FROM sites WHERE id=?", (site_id,)).fetchone()
        return _row_to_site(row) if row else None

    def active_site(self, site_id: Optional[str] = None) -> Optional[Site]:
        if site_id:
            return self.get_site(site_id)
        row = self._conn.execute(
            "SELECT * FROM sites ORDER BY created_at ASC, rowid ASC LIMIT 1"
        ).fetchone()
        return _row_to_site(row) if row else None

    def find_by_device_signals(
        self,
        site_id: str,
        day: date,
        device: DeviceIdentity,
        prefer_identity: Optional[str] = None,
    ) -> Optional[Ticket]:
        """
        Find a ticket for (site, day) sharing any device signal.

        When several rows match, one held by prefer_identity wins, then the
        lowest sequence.
        """
        cur = self._conn.execute(
            f"SELECT {_TICKET_COLUMNS} FROM tickets "
            "WHERE site_id=? AND day=? AND ("
            "  strict_fp=? OR stable_fp=? OR (network_address <> '' AND network_address=?)"
            ") "
            "ORDER BY (identity_claim = ?) DESC, sequence ASC LIMIT 1",
            (
                site_id,
                day.isoformat(),
                device.strict_fp,
                device.stable_fp,
                device.network_address,
                prefer_identity or "",
            ),
        )
        row = cur.fetchone()
        return _row_to_ticket(row) if row else None

    def find_by_identity(self, site_id: str, day: date, identity_claim: str) -> Optional[Ticket]:
        cur = self._conn.execute(
            f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE site_id=? AND day=? AND identity_claim=?",
            (site_id, day.isoformat(), identity_claim),
        )
        row = cur.fetchone()
        return _row_to_ticket(row) if row else None

    def next_sequence(self, site_id: str, day: date) -> int:
        cur = self._conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) + 1 AS next_sequence FROM tickets WHERE site_id=? AND day=?",
            (site_id, day.isoformat()),
        )
        return int(cur.fetchone()["next_sequence"])

    def insert(self, ticket: Ticket) -> Ticket:
        """
        Raises:
            ConflictError: if a per-day uniqueness constraint rejects the row
        """
        stamp = utc_rfc3339(ticket.created_at)
        try:
            self._conn.execute(
                f"INSERT INTO tickets({_TICKET_COLUMNS}, updated_at) "
                "VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                (
                    ticket.id,
                    ticket.site_id,
                    ticket.day.isoformat(),
                    ticket.sequence,
                    ticket.identity_claim,
                    ticket.device.strict_fp,
                    ticket.device.stable_fp,
                    ticket.device.network_address,
                    ticket.latitude,
                    ticket.longitude,
                    ticket.accuracy_m,
                    ticket.status.value,
                    stamp,
                    stamp,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(str(e)) from e
        return ticket

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        row = self._conn.execute(
            f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE id=?", (ticket_id,)
        ).fetchone()
        return _row_to_ticket(row) if row else None

    def mark_used(self, ticket_id: str, at: datetime) -> Optional[Ticket]:
        """
        Transition ACTIVE -> USED. Already-USED tickets are left untouched.
        Returns the current ticket, or None if it does not exist.
        """
        stamp = utc_rfc3339(at)
        self._conn.execute(
            "UPDATE tickets SET status='USED', updated_at=? WHERE id=? AND status='ACTIVE'",
            (stamp, ticket_id),
        )
        return self.get_ticket(ticket_id)


class SqliteLedger:
    """
    Allocation ledger on a SQLite file.

    Connections are thread-local and reused within a thread.
    """

    def __init__(self, db_path: Union[str, Path, None] = None, busy_timeout: Optional[float] = None):
        self.db_path = Path(db_path) if db_path else config.DB_PATH
        self.busy_timeout = config.DB_BUSY_TIMEOUT_SECONDS if busy_timeout is None else busy_timeout
        self._local = threading.local()
        self._all_conns: List[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a thread-local database connection.
        Transactions are issued explicitly, so the driver runs in autocommit mode.
        """
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=self.busy_timeout,
                    isolation_level=None,
                    check_same_thread=False,
                )
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                conn.execute("PRAGMA foreign_keys=ON;")
            except (sqlite3.OperationalError, OSError) as e:
                raise StoreUnavailableError(str(e)) from e
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._conns_lock:
                self._all_conns.append(conn)
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.
        Commits on success, rolls back on failure. Lock and I/O failures
        surface as StoreUnavailableError.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(str(e)) from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            self._rollback(conn)
            raise StoreUnavailableError(str(e)) from e
        except BaseException:
            self._rollback(conn)
            raise

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    @contextmanager
    def unit_of_work(self, immediate: bool = True) -> Iterator[LedgerTransaction]:
        """
        Open one atomic unit of work.

        immediate=True takes the write lock up front; use it for any
        read-then-write sequence.
        """
        with self._transaction(immediate=immediate) as conn:
            yield LedgerTransaction(conn)

    def init_db(self) -> None:
        """
        Initialize database schema with indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self._transaction(immediate=True) as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    # ============================================================
    # Sites
    # ============================================================

    def create_site(self, name: str, latitude: float, longitude: float, radius_m: float,
                    at: Optional[datetime] = None) -> Site:
        """
        Register a site. An existing site with the same name is returned unchanged.
        """
        stamp = utc_rfc3339(at or datetime.now(timezone.utc))
        with self._transaction(immediate=True) as conn:
            try:
                conn.execute(
                    "INSERT INTO sites(id, name, latitude, longitude, radius_m, created_at, updated_at) "
                    "VALUES(?,?,?,?,?,?,?) ON CONFLICT(name) DO NOTHING",
                    (str(uuid.uuid4()), name, latitude, longitude, radius_m, stamp, stamp),
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"invalid site: {e}") from e
            row = conn.execute("SELECT * FROM sites WHERE name=?", (name,)).fetchone()
        return _row_to_site(row)

    def update_site_radius(self, site_id: str, radius_m: float) -> Optional[Site]:
        """The only permitted site mutation."""
        if radius_m <= 0:
            raise ValueError("radius must be positive")
        stamp = utc_rfc3339(datetime.now(timezone.utc))
        with self._transaction(immediate=True) as conn:
            conn.execute(
                "UPDATE sites SET radius_m=?, updated_at=? WHERE id=?",
                (radius_m, stamp, site_id),
            )
            row = conn.execute("SELECT * FROM sites WHERE id=?", (site_id,)).fetchone()
        return _row_to_site(row) if row else None

    def get_site(self, site_id: str) -> Optional[Site]:
        with self.unit_of_work(immediate=False) as tx:
            return tx.get_site(site_id)

    def active_site(self, site_id: Optional[str] = None) -> Optional[Site]:
        with self.unit_of_work(immediate=False) as tx:
            return tx.active_site(site_id)

    def list_sites(self) -> List[Site]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM sites ORDER BY created_at ASC, rowid ASC").fetchall()
        return [_row_to_site(r) for r in rows]

    # ============================================================
    # Tickets
    # ============================================================

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        with self.unit_of_work(immediate=False) as tx:
            return tx.get_ticket(ticket_id)

    def mark_used(self, ticket_id: str, at: datetime) -> Optional[Ticket]:
        with self.unit_of_work() as tx:
            return tx.mark_used(ticket_id, at)

    def tickets_for_day(self, site_id: str, day: date) -> List[Ticket]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE site_id=? AND day=? ORDER BY sequence ASC",
                (site_id, day.isoformat()),
            ).fetchall()
        return [_row_to_ticket(r) for r in rows]

    # ============================================================
    # Metrics and Health
    # ============================================================

    def daily_stats(self, day: date) -> List[SiteStats]:
        """Per-site ticket counts for one day. Sites with no tickets report zeros."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT s.id AS site_id, s.name AS site_name,
                       COUNT(t.id) AS total,
                       COALESCE(SUM(CASE WHEN t.status = 'ACTIVE' THEN 1 ELSE 0 END), 0) AS active,
                       COALESCE(SUM(CASE WHEN t.status = 'USED' THEN 1 ELSE 0 END), 0) AS used,
                       COALESCE(MAX(t.sequence), 0) AS highest_sequence
                FROM sites s
                LEFT JOIN tickets t ON t.site_id = s.id AND t.day = ?
                GROUP BY s.id, s.name
                ORDER BY s.created_at ASC, s.rowid ASC
                """,
                (day.isoformat(),),
            ).fetchall()
        return [
            SiteStats(
                site_id=r["site_id"],
                site_name=r["site_name"],
                total=r["total"],
                active=r["active"],
                used=r["used"],
                highest_sequence=r["highest_sequence"],
            )
            for r in rows
        ]

    def ping(self) -> bool:
        """Check the store answers a trivial query."""
        try:
            self._get_connection().execute("SELECT 1").fetchone()
            return True
        except (sqlite3.Error, StoreUnavailableError):
            logger.warning("store ping failed", exc_info=True)
            return False

    # ============================================================
    # Test Support
    # ============================================================

    def reset_db(self) -> None:
        """
        Reset the database for test isolation.
        Clears all tables but preserves schema.
        """
        with self._transaction(immediate=True) as conn:
            conn.execute("DELETE FROM tickets")
            conn.execute("DELETE FROM sites")

    def close_connection(self) -> None:
        """Close every connection this ledger opened."""
        with self._conns_lock:
            conns, self._all_conns = self._all_conns, []
        for conn in conns:
            conn.close()
        self._local = threading.local()
