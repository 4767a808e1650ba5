"""SQLite record store for contacts, usage counters and accounts."""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from ..core.errors import RecordStoreError
from ..core.models import (
    Account,
    ContactRecord,
    StoreStats,
    SubscriptionTier,
    UsageCounter,
    as_local_time,
    pair_key,
    parse_timestamp,
)

CONTACT_COLUMNS = (
    "id, owner_id, first_name, last_name, job_title, company, email, phone, "
    "website, address, notes, image_ref, back_image_ref, logo_ref, created_at, scanned_at"
)
USAGE_COLUMNS = "id, owner_id, scans_count, bonus_scans, cycle_start, cycle_end, created_at"


def _iso(value: Optional[datetime]) -> Optional[str]:
    """Stored timestamps are naive local time."""
    return as_local_time(value).isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value)


class RecordStore:
    """Manages contact records and usage bookkeeping in SQLite.

    Every query is scoped by owner id. sqlite3 failures are re-raised as
    RecordStoreError.
    """

    def __init__(self, db_path: str | Path = "data/cardflo.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                yield conn
                conn.commit()
        except sqlite3.Error as e:
            raise RecordStoreError(f"Database error: {e}") from e

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS contacts (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    first_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    job_title TEXT NOT NULL DEFAULT '',
                    company TEXT NOT NULL DEFAULT '',
                    email TEXT NOT NULL DEFAULT '',
                    phone TEXT NOT NULL DEFAULT '',
                    website TEXT NOT NULL DEFAULT '',
                    address TEXT NOT NULL DEFAULT '',
                    notes TEXT NOT NULL DEFAULT '',
                    image_ref TEXT,
                    back_image_ref TEXT,
                    logo_ref TEXT,
                    created_at TEXT NOT NULL,
                    scanned_at TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_contacts_owner ON contacts (owner_id, created_at)"
            )
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    scans_count INTEGER NOT NULL DEFAULT 0 CHECK (scans_count >= 0),
                    bonus_scans INTEGER NOT NULL DEFAULT 0,
                    cycle_start TEXT,
                    cycle_end TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    owner_id TEXT PRIMARY KEY,
                    tier TEXT NOT NULL DEFAULT 'starter',
                    is_admin INTEGER NOT NULL DEFAULT 0,
                    custom_scan_limit INTEGER,
                    billing_cycle_end TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS dismissed_pairs (
                    owner_id TEXT NOT NULL,
                    first_id TEXT NOT NULL,
                    second_id TEXT NOT NULL,
                    PRIMARY KEY (owner_id, first_id, second_id)
                )
            """)

    # -- contacts --

    def _row_to_contact(self, row) -> ContactRecord:
        """Convert a database row to a ContactRecord."""
        return ContactRecord(
            id=row[0],
            owner_id=row[1],
            first_name=row[2],
            last_name=row[3],
            job_title=row[4],
            company=row[5],
            email=row[6],
            phone=row[7],
            website=row[8],
            address=row[9],
            notes=row[10],
            image_ref=row[11],
            back_image_ref=row[12],
            logo_ref=row[13],
            created_at=_dt(row[14]),
            scanned_at=_dt(row[15]),
        )

    def add_contact(self, record: ContactRecord) -> ContactRecord:
        """Insert a contact, assigning an id and creation time if missing."""
        if record.id is None:
            record.id = uuid.uuid4().hex
        if record.created_at is None:
            record.created_at = datetime.now()
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO contacts ({CONTACT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.owner_id,
                    record.first_name,
                    record.last_name,
                    record.job_title,
                    record.company,
                    record.email,
                    record.phone,
                    record.website,
                    record.address,
                    record.notes,
                    record.image_ref,
                    record.back_image_ref,
                    record.logo_ref,
                    _iso(record.created_at),
                    _iso(record.scanned_at),
                ),
            )
        return record

    def get_contact(self, record_id: str) -> Optional[ContactRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {CONTACT_COLUMNS} FROM contacts WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_contact(row) if row else None

    def update_contact(self, record: ContactRecord) -> bool:
        """Update scalar fields and image references. The owner is never rewritten."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE contacts SET first_name = ?, last_name = ?, job_title = ?, company = ?,
                    email = ?, phone = ?, website = ?, address = ?, notes = ?,
                    image_ref = ?, back_image_ref = ?, logo_ref = ?, scanned_at = ?
                WHERE id = ? AND owner_id = ?
                """,
                (
                    record.first_name,
                    record.last_name,
                    record.job_title,
                    record.company,
                    record.email,
                    record.phone,
                    record.website,
                    record.address,
                    record.notes,
                    record.image_ref,
                    record.back_image_ref,
                    record.logo_ref,
                    _iso(record.scanned_at),
                    record.id,
                    record.owner_id,
                ),
            )
            return cursor.rowcount > 0

    def delete_contact(self, record_id: str) -> bool:
        """Delete a contact by id. Returns True if deleted."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM contacts WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def find_by_email(self, owner_id: str, email: str) -> list[ContactRecord]:
        """Case-insensitive exact email lookup within one owner's contacts."""
        needle = email.strip().lower()
        if not needle:
            return []
        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {CONTACT_COLUMNS} FROM contacts WHERE owner_id = ? AND LOWER(TRIM(email)) = ?",
                (owner_id, needle),
            )
            return [self._row_to_contact(row) for row in cursor.fetchall()]

    def list_contacts(self, owner_id: str, limit: Optional[int] = None) -> list[ContactRecord]:
        """List an owner's contacts, newest first, optionally capped."""
        query = f"SELECT {CONTACT_COLUMNS} FROM contacts WHERE owner_id = ? ORDER BY created_at DESC"
        params: tuple = (owner_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (owner_id, limit)
        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_contact(row) for row in cursor.fetchall()]

    def count_contacts(self, owner_id: str) -> int:
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM contacts WHERE owner_id = ?", (owner_id,)
            ).fetchone()[0]

    def stats(self, owner_id: str, now: Optional[datetime] = None) -> StoreStats:
        """Contacts created today and in total for an owner."""
        now = as_local_time(now) or datetime.now()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        with self._connect() as conn:
            today = conn.execute(
                "SELECT COUNT(*) FROM contacts WHERE owner_id = ? AND created_at >= ?",
                (owner_id, midnight.isoformat()),
            ).fetchone()[0]
        return StoreStats(today=today, total=self.count_contacts(owner_id))

    # -- usage --

    def _row_to_usage(self, row) -> UsageCounter:
        return UsageCounter(
            id=row[0],
            owner_id=row[1],
            scans_count=row[2],
            bonus_scans=row[3],
            cycle_start=_dt(row[4]),
            cycle_end=_dt(row[5]),
            created_at=_dt(row[6]),
        )

    def latest_usage(self, owner_id: str) -> Optional[UsageCounter]:
        """Most recently created usage counter for an owner."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {USAGE_COLUMNS} FROM usage WHERE owner_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
                (owner_id,),
            ).fetchone()
        return self._row_to_usage(row) if row else None

    def add_usage(self, counter: UsageCounter) -> UsageCounter:
        if counter.created_at is None:
            counter.created_at = datetime.now()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO usage (owner_id, scans_count, bonus_scans, cycle_start, cycle_end, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    counter.owner_id,
                    counter.scans_count,
                    counter.bonus_scans,
                    _iso(counter.cycle_start),
                    _iso(counter.cycle_end),
                    _iso(counter.created_at),
                ),
            )
            counter.id = cursor.lastrowid
        return counter

    def increment_usage_count(self, counter_id: int, amount: int = 1) -> bool:
        """Add to a counter's scan count in place."""
        if amount < 0:
            raise ValueError("Usage counts never decrease")
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE usage SET scans_count = scans_count + ? WHERE id = ?",
                (amount, counter_id),
            )
            return cursor.rowcount > 0

    def add_bonus_scans(self, counter_id: int, amount: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE usage SET bonus_scans = bonus_scans + ? WHERE id = ?",
                (amount, counter_id),
            )
            return cursor.rowcount > 0

    # -- accounts --

    def get_account(self, owner_id: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT owner_id, tier, is_admin, custom_scan_limit, billing_cycle_end "
                "FROM accounts WHERE owner_id = ?",
                (owner_id,),
            ).fetchone()
        if not row:
            return None
        return Account(
            owner_id=row[0],
            tier=SubscriptionTier.parse(row[1]),
            is_admin=bool(row[2]),
            custom_scan_limit=row[3],
            billing_cycle_end=_dt(row[4]),
        )

    def save_account(self, account: Account) -> None:
        """Insert or update an account."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO accounts (owner_id, tier, is_admin, custom_scan_limit, billing_cycle_end)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    account.owner_id,
                    account.tier.value,
                    int(account.is_admin),
                    account.custom_scan_limit,
                    _iso(account.billing_cycle_end),
                ),
            )

    # -- duplicate dismissals --

    def dismiss_pair(self, owner_id: str, first_id: str, second_id: str) -> None:
        a, b = pair_key(first_id, second_id)
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO dismissed_pairs (owner_id, first_id, second_id) VALUES (?, ?, ?)",
                (owner_id, a, b),
            )

    def dismissed_pairs(self, owner_id: str) -> set[tuple[str, str]]:
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT first_id, second_id FROM dismissed_pairs WHERE owner_id = ?",
                (owner_id,),
            )
            return {(row[0], row[1]) for row in cursor.fetchall()}
