"""
Client Store for the dedupe engine.

SQLite-backed repository over crm_clients and the tables that reference it
(crm_invoices, crm_messages, galleries, digital_files). The store is injected
into the grouper, planner and executor; nothing in the engine opens its own
connection.

All SQLite connectivity errors surface as StoreUnavailable. Writes happen
only through transaction(), which takes the database write lock up front
(BEGIN IMMEDIATE) so a merge never interleaves with another writer.
"""
import sqlite3
import uuid
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from config.settings import settings
from config.dedup_config import DedupConfig

from api.services.merge_models import ClientRecord, StoreUnavailable, TransactionAborted
from api.utils.datetime_utils import parse_timestamp, utc_now
from api.utils.db_paths import get_clients_db_path

logger = logging.getLogger(__name__)

_CLIENT_COLUMNS = (
    "id",
    "first_name",
    "last_name",
    "email",
    "phone",
    "address",
    "city",
    "state",
    "zip",
    "country",
    "created_at",
    "updated_at",
)

# Descriptive column per dependent table (besides id and client_id)
_DEPENDENT_LABELS = {
    "crm_invoices": "invoice_number",
    "crm_messages": "subject",
    "galleries": "title",
    "digital_files": "file_name",
}


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coalesce_fields(primary: ClientRecord, duplicate: ClientRecord) -> dict[str, str]:
    """Values the duplicate would contribute: fields blank on the primary but set on the duplicate."""
    fills = {}
    for field_name in DedupConfig.COALESCE_FIELDS:
        if _is_blank(getattr(primary, field_name)) and not _is_blank(getattr(duplicate, field_name)):
            fills[field_name] = getattr(duplicate, field_name)
    return fills


def _client_from_row(row: sqlite3.Row) -> ClientRecord:
    return ClientRecord(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        email=row["email"],
        phone=row["phone"],
        address=row["address"],
        city=row["city"],
        state=row["state"],
        zip=row["zip"],
        country=row["country"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


class ClientStore:
    """
    SQLite-backed client storage.

    Reads use short-lived connections. Merge writes go through transaction().
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None, lock_timeout: Optional[float] = None):
        """
        Initialize client store.

        Args:
            db_path: Path to SQLite database (default from settings)
            lock_timeout: Seconds to wait for the write lock (default from settings)
        """
        self.db_path = str(db_path) if db_path else get_clients_db_path()
        self.lock_timeout = settings.lock_timeout if lock_timeout is None else lock_timeout
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        conn = self._get_connection()
        try:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {DedupConfig.CLIENT_TABLE} (
                    id TEXT PRIMARY KEY,
                    first_name TEXT,
                    last_name TEXT,
                    email TEXT,
                    phone TEXT,
                    address TEXT,
                    city TEXT,
                    state TEXT,
                    zip TEXT,
                    country TEXT,
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """
            )
            for table in DedupConfig.DEPENDENT_TABLES:
                label = _DEPENDENT_LABELS.get(table, "label")
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        client_id TEXT REFERENCES {DedupConfig.CLIENT_TABLE}(id),
                        {label} TEXT
                    )
                """
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_client ON {table}(client_id)"
                )
            logger.info(f"Initialized client database at {self.db_path}")
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot initialize client store at {self.db_path}: {e}") from e
        finally:
            conn.close()

    def _get_connection(self, timeout: Optional[float] = None) -> sqlite3.Connection:
        """Open a connection in autocommit mode with foreign keys enforced."""
        try:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.lock_timeout if timeout is None else timeout,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            logger.error(f"Client store unavailable at {self.db_path}: {e}")
            raise StoreUnavailable(f"Cannot open client store at {self.db_path}: {e}") from e
        return conn

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Client store read failed: {e}")
            raise StoreUnavailable(f"Client store read failed: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self, timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one write transaction.

        The write lock is taken at BEGIN, so rows read inside the block cannot
        change underneath it. Commits on success, rolls back on any exception.

        Raises:
            TransactionAborted: the write lock was not obtained within timeout
        """
        conn = self._get_connection(timeout)
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                raise TransactionAborted(f"Could not acquire write lock: {e}") from e
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Client reads
    # ------------------------------------------------------------------

    def get_by_id(self, client_id: str) -> Optional[ClientRecord]:
        """Get client by ID."""
        with self._reading() as conn:
            row = conn.execute(
                f"SELECT * FROM {DedupConfig.CLIENT_TABLE} WHERE id = ?", (client_id,)
            ).fetchone()
        return _client_from_row(row) if row else None

    def get_many(self, client_ids: list[str]) -> list[ClientRecord]:
        """Get every existing client among client_ids. Missing ids are ignored."""
        if not client_ids:
            return []
        placeholders = ",".join("?" * len(client_ids))
        with self._reading() as conn:
            rows = conn.execute(
                f"SELECT * FROM {DedupConfig.CLIENT_TABLE} WHERE id IN ({placeholders})",
                tuple(client_ids),
            ).fetchall()
        return [_client_from_row(row) for row in rows]

    def exists(self, client_id: str) -> bool:
        with self._reading() as conn:
            row = conn.execute(
                f"SELECT 1 FROM {DedupConfig.CLIENT_TABLE} WHERE id = ?", (client_id,)
            ).fetchone()
        return row is not None

    def get_contact_rows(self) -> list[tuple[str, Optional[str], Optional[str]]]:
        """Return (id, email, phone) for every client, ordered by id."""
        with self._reading() as conn:
            rows = conn.execute(
                f"SELECT id, email, phone FROM {DedupConfig.CLIENT_TABLE} ORDER BY id"
            ).fetchall()
        return [(row["id"], row["email"], row["phone"]) for row in rows]

    def count(self, table: str = DedupConfig.CLIENT_TABLE) -> int:
        """Row count of the client table or one of its dependent tables."""
        self._check_table(table)
        with self._reading() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def count_references(self, table: str, client_id: str) -> int:
        """Rows in a dependent table that reference client_id."""
        self._check_table(table)
        with self._reading() as conn:
            return conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE client_id = ?", (client_id,)
            ).fetchone()[0]

    # ------------------------------------------------------------------
    # Client writes (outside merges)
    # ------------------------------------------------------------------

    def add(self, client: ClientRecord) -> ClientRecord:
        """Insert a client. Generates an id if the record has none."""
        if not client.id:
            client.id = str(uuid.uuid4())
        if client.updated_at is None:
            client.updated_at = client.created_at

        values = client.to_dict()
        placeholders = ",".join("?" * len(_CLIENT_COLUMNS))
        with self.transaction() as conn:
            conn.execute(
                f"INSERT INTO {DedupConfig.CLIENT_TABLE} ({', '.join(_CLIENT_COLUMNS)}) VALUES ({placeholders})",
                tuple(values[column] for column in _CLIENT_COLUMNS),
            )
        return client

    def add_dependent(self, table: str, client_id: Optional[str], label: str = "", row_id: Optional[str] = None) -> str:
        """Insert a row into a dependent table referencing client_id."""
        self._check_table(table)
        row_id = row_id or str(uuid.uuid4())
        column = _DEPENDENT_LABELS.get(table, "label")
        with self.transaction() as conn:
            conn.execute(
                f"INSERT INTO {table} (id, client_id, {column}) VALUES (?, ?, ?)",
                (row_id, client_id, label),
            )
        return row_id

    # ------------------------------------------------------------------
    # Merge steps (called with the connection from transaction())
    # ------------------------------------------------------------------

    def fetch_for_update(self, conn: sqlite3.Connection, client_id: str) -> Optional[ClientRecord]:
        """Read a client inside a write transaction."""
        row = conn.execute(
            f"SELECT * FROM {DedupConfig.CLIENT_TABLE} WHERE id = ?", (client_id,)
        ).fetchone()
        return _client_from_row(row) if row else None

    def relink(self, conn: sqlite3.Connection, table: str, from_id: str, to_id: str) -> int:
        """Point every row of table referencing from_id at to_id. Returns rows changed."""
        self._check_table(table)
        cursor = conn.execute(
            f"UPDATE {table} SET client_id = ? WHERE client_id = ?",
            (to_id, from_id),
        )
        return cursor.rowcount

    def coalesce_into(
        self,
        conn: sqlite3.Connection,
        primary: ClientRecord,
        duplicate: ClientRecord,
    ) -> list[str]:
        """
        Fill the primary's blank fields from the duplicate.

        Only fields that are null or whitespace on the primary and non-blank
        on the duplicate are written. Returns the names of the filled fields.
        """
        fills = coalesce_fields(primary, duplicate)
        if not fills:
            return []

        assignments = ", ".join(f"{name} = ?" for name in fills)
        conn.execute(
            f"UPDATE {DedupConfig.CLIENT_TABLE} SET {assignments}, updated_at = ? WHERE id = ?",
            (*fills.values(), utc_now().isoformat(), primary.id),
        )
        return list(fills)

    def delete_client(self, conn: sqlite3.Connection, client_id: str) -> bool:
        cursor = conn.execute(
            f"DELETE FROM {DedupConfig.CLIENT_TABLE} WHERE id = ?", (client_id,)
        )
        return cursor.rowcount > 0

    def _check_table(self, table: str):
        if table != DedupConfig.CLIENT_TABLE and table not in DedupConfig.DEPENDENT_TABLES:
            raise ValueError(f"Unknown table: {table}")


# Singleton instance
_client_store: Optional[ClientStore] = None


def get_client_store(db_path: Optional[str] = None) -> ClientStore:
    """
    Get or create the singleton ClientStore.

    Only the HTTP and CLI callers use this; engine components receive the
    store they operate on explicitly.
    """
    global _client_store
    if _client_store is None:
        _client_store = ClientStore(db_path)
    return _client_store
