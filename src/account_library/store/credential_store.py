# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Encrypted, file-backed account and quota store shared by two processes.

One process opens the store READ_WRITE (the GUI); any number of others open
it READ_ONLY (the headless service). SQLite in WAL mode gives one writer
plus non-blocked readers; the application layer additionally rejects every
write on a read-only handle before any SQL runs, and read-only handles
never migrate the schema.

Usage:
    with open_store(path, OpenMode.READ_WRITE) as store:
        account = store.create_account("google", token, email="me@example.com")
        store.upsert_quota([ModelQuota(account.id, "gemini-2.5-pro", 20, 100)])
"""

import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from ..config.defaults import DEFAULT_STORE_TIMEOUT, KEY_FILE_SUFFIX
from ..core.errors import (
    AccountNotFound,
    KeyUnavailable,
    StoreError,
    StoreUnavailable,
    WriteRejected,
)
from ..core.types import Account, ModelQuota, OpenMode
from ..utils.paths import sibling_path
from .arbiter import WriterArbiter, WriterLease
from .crypto import KeyMaterial

lib_logger = logging.getLogger("account_library")

# =============================================================================
# SCHEMA
# =============================================================================

# Ordered (version, statements). Only the writer applies them.
SCHEMA_MIGRATIONS: Sequence[Tuple[int, Sequence[str]]] = (
    (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                provider TEXT NOT NULL,
                email TEXT,
                encrypted_token TEXT,
                created_at REAL NOT NULL,
                last_refreshed_at REAL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS model_quota (
                account_id TEXT NOT NULL
                    REFERENCES accounts(id) ON DELETE CASCADE,
                model_name TEXT NOT NULL,
                used INTEGER NOT NULL,
                quota_limit INTEGER NOT NULL,
                reset_at REAL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (account_id, model_name)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_accounts_provider ON accounts(provider)",
        ),
    ),
)

SCHEMA_VERSION: int = SCHEMA_MIGRATIONS[-1][0]

_ACCOUNT_COLUMNS = "id, provider, email, encrypted_token, created_at, last_refreshed_at"

_LIST_ACCOUNTS_SQL = f"SELECT {_ACCOUNT_COLUMNS} FROM accounts ORDER BY created_at, id"
_LIST_QUOTA_SQL = """
    SELECT account_id, model_name, used, quota_limit, reset_at
    FROM model_quota ORDER BY account_id, model_name
"""


# =============================================================================
# OPEN
# =============================================================================


def open_store(
    path: Union[str, Path],
    mode: OpenMode,
    key_path: Optional[Path] = None,
    busy_timeout: float = DEFAULT_STORE_TIMEOUT,
) -> "StoreHandle":
    """
    Open a credential store.

    Args:
        path: Store file
        mode: READ_WRITE claims the single writer slot; READ_ONLY never writes
        key_path: Key file; defaults to "<store>.key"
        busy_timeout: Seconds to wait on SQLite locks

    Raises:
        WriterConflict: READ_WRITE while another writer holds the store
        StoreUnavailable: File missing (read-only), uninitialized, corrupt,
            from a different schema version, or locked
    """
    path = Path(path)
    mode = OpenMode(mode)
    key_path = key_path or sibling_path(path, KEY_FILE_SUFFIX)

    if mode is OpenMode.READ_WRITE:
        lease = WriterArbiter(path).acquire()
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = _connect_writer(path, busy_timeout)
            _apply_migrations(conn)
            key = KeyMaterial.load_or_create(key_path)
        except BaseException:
            if conn is not None:
                conn.close()
            lease.release()
            raise
        lib_logger.info(f"Opened credential store {path} read-write")
        return StoreHandle(path, mode, conn, key, lease)

    conn = _connect_reader(path, busy_timeout)
    try:
        _check_schema(conn, path)
    except BaseException:
        conn.close()
        raise
    key = KeyMaterial.load(key_path)
    if key is None:
        lib_logger.warning(
            f"No key material at {key_path}; tokens from {path} will be unavailable"
        )
    lib_logger.info(f"Opened credential store {path} read-only")
    return StoreHandle(path, mode, conn, key, None)


def _connect_writer(path: Path, busy_timeout: float) -> sqlite3.Connection:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), timeout=busy_timeout, check_same_thread=False)
    except (OSError, sqlite3.Error) as e:
        raise StoreUnavailable(f"Cannot open store {path}: {e}") from e
    try:
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout * 1000)}")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.DatabaseError as e:
        conn.close()
        raise StoreUnavailable(f"Store {path} is corrupt or locked: {e}") from e
    return conn


def _connect_reader(path: Path, busy_timeout: float) -> sqlite3.Connection:
    if not path.exists():
        raise StoreUnavailable(
            f"Store {path} does not exist; it is created by the read-write process"
        )
    uri = path.resolve().as_uri() + "?mode=ro"
    try:
        conn = sqlite3.connect(
            uri, uri=True, timeout=busy_timeout, check_same_thread=False
        )
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Cannot open store {path} read-only: {e}") from e
    try:
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout * 1000)}")
        conn.execute("PRAGMA query_only = ON")
    except sqlite3.DatabaseError as e:
        conn.close()
        raise StoreUnavailable(f"Store {path} is corrupt or locked: {e}") from e
    return conn


def _current_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def _apply_migrations(conn: sqlite3.Connection) -> None:
    try:
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at REAL NOT NULL
                )
                """
            )
        current = _current_version(conn)
        if current > SCHEMA_VERSION:
            raise StoreUnavailable(
                f"Store schema v{current} is newer than supported v{SCHEMA_VERSION}"
            )
        for version, statements in SCHEMA_MIGRATIONS:
            if version <= current:
                continue
            with conn:
                for statement in statements:
                    conn.execute(statement)
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, time.time()),
                )
            lib_logger.info(f"Applied credential store migration v{version}")
    except sqlite3.DatabaseError as e:
        raise StoreUnavailable(f"Store migration failed: {e}") from e


def _check_schema(conn: sqlite3.Connection, path: Path) -> None:
    try:
        current = _current_version(conn)
    except sqlite3.OperationalError as e:
        raise StoreUnavailable(
            f"Store {path} has not been initialized by a read-write process"
        ) from e
    except sqlite3.DatabaseError as e:
        raise StoreUnavailable(f"Store {path} is corrupt: {e}") from e
    if current != SCHEMA_VERSION:
        raise StoreUnavailable(
            f"Store {path} is at schema v{current}, this build reads v{SCHEMA_VERSION}"
        )


# =============================================================================
# HANDLE
# =============================================================================


class StoreHandle:
    """
    An open store in one access mode.

    Handles are safe to share between threads; calls are serialized on
    the handle's connection.
    """

    def __init__(
        self,
        path: Path,
        mode: OpenMode,
        conn: sqlite3.Connection,
        key: Optional[KeyMaterial],
        lease: Optional[WriterLease],
        clock: Callable[[], float] = time.time,
    ):
        self.path = path
        self.mode = mode
        self._conn: Optional[sqlite3.Connection] = conn
        self._key = key
        self._lease = lease
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def readonly(self) -> bool:
        return self.mode is OpenMode.READ_ONLY

    @property
    def key_available(self) -> bool:
        return self._key is not None

    @property
    def closed(self) -> bool:
        return self._conn is None

    # =========================================================================
    # WRITER-ONLY OPERATIONS
    # =========================================================================

    def create_account(
        self,
        provider: str,
        token: str,
        email: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> Account:
        """
        Insert a new account with its token encrypted.

        Raises:
            WriteRejected: Handle is read-only
            StoreError: An account with this id already exists
        """
        self._require_writer("create_account")
        if not provider:
            raise ValueError("provider must not be empty")
        now = self._clock()
        account = Account(
            id=account_id or uuid.uuid4().hex,
            provider=provider,
            encrypted_token=self._encrypt(token),
            created_at=now,
            last_refreshed_at=now,
            email=email,
        )
        with self._transaction("create_account") as conn:
            try:
                conn.execute(
                    f"INSERT INTO accounts ({_ACCOUNT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        account.id,
                        account.provider,
                        account.email,
                        account.encrypted_token,
                        account.created_at,
                        account.last_refreshed_at,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Account '{account.id}' already exists") from e
        lib_logger.info(f"Created {provider} account {account.id}")
        return account

    def update_token(self, account_id: str, token: str) -> Account:
        """
        Replace an account's token and bump last_refreshed_at.

        Raises:
            WriteRejected: Handle is read-only
            AccountNotFound: Unknown account id
        """
        self._require_writer("update_token")
        encrypted = self._encrypt(token)
        now = self._clock()
        with self._transaction("update_token") as conn:
            cursor = conn.execute(
                "UPDATE accounts SET encrypted_token = ?, last_refreshed_at = ? WHERE id = ?",
                (encrypted, now, account_id),
            )
            if cursor.rowcount == 0:
                raise AccountNotFound(account_id)
        lib_logger.debug(f"Updated token for account {account_id}")
        return self._fetch_account(account_id)

    def delete_account(self, account_id: str) -> bool:
        """
        Delete an account and, through the foreign key, its quota rows.

        Returns:
            True if an account was deleted

        Raises:
            WriteRejected: Handle is read-only
        """
        self._require_writer("delete_account")
        with self._transaction("delete_account") as conn:
            cursor = conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            lib_logger.info(f"Deleted account {account_id}")
        return deleted

    def upsert_quota(self, rows: Iterable[ModelQuota]) -> int:
        """
        Insert or update quota rows in one transaction.

        Touched accounts get last_refreshed_at bumped.

        Returns:
            Number of rows written

        Raises:
            WriteRejected: Handle is read-only
            AccountNotFound: A row references an unknown account (nothing is written)
        """
        self._require_writer("upsert_quota")
        rows = list(rows)
        if not rows:
            return 0
        now = self._clock()
        account_ids = sorted({row.account_id for row in rows})
        with self._transaction("upsert_quota") as conn:
            for account_id in account_ids:
                exists = conn.execute(
                    "SELECT 1 FROM accounts WHERE id = ?", (account_id,)
                ).fetchone()
                if not exists:
                    raise AccountNotFound(account_id)
            conn.executemany(
                """
                INSERT INTO model_quota
                    (account_id, model_name, used, quota_limit, reset_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_id, model_name) DO UPDATE SET
                    used = excluded.used,
                    quota_limit = excluded.quota_limit,
                    reset_at = excluded.reset_at,
                    updated_at = excluded.updated_at
                """,
                [
                    (
                        row.account_id,
                        row.model_name,
                        int(row.used),
                        int(row.limit),
                        row.reset_at,
                        now,
                    )
                    for row in rows
                ],
            )
            conn.executemany(
                "UPDATE accounts SET last_refreshed_at = ? WHERE id = ?",
                [(now, account_id) for account_id in account_ids],
            )
        lib_logger.debug(
            f"Upserted {len(rows)} quota row(s) for {len(account_ids)} account(s)"
        )
        return len(rows)

    # =========================================================================
    # READER OPERATIONS
    # =========================================================================

    def list_accounts(self) -> List[Account]:
        with self._reading("list_accounts") as conn:
            rows = conn.execute(_LIST_ACCOUNTS_SQL).fetchall()
        return [_row_to_account(row) for row in rows]

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._reading("get_account") as conn:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        return _row_to_account(row) if row else None

    def count_accounts(self) -> int:
        with self._reading("count_accounts") as conn:
            row = conn.execute("SELECT COUNT(*) FROM accounts").fetchone()
        return int(row[0])

    def get_quota(self, account_id: str) -> List[ModelQuota]:
        """
        Quota rows of one account, ordered by model name.

        Raises:
            AccountNotFound: Unknown account id
        """
        with self._reading("get_quota") as conn:
            exists = conn.execute(
                "SELECT 1 FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
            if not exists:
                raise AccountNotFound(account_id)
            rows = conn.execute(
                """
                SELECT account_id, model_name, used, quota_limit, reset_at
                FROM model_quota WHERE account_id = ? ORDER BY model_name
                """,
                (account_id,),
            ).fetchall()
        return [_row_to_quota(row) for row in rows]

    def list_quota(self) -> List[ModelQuota]:
        """All quota rows, ordered by account then model."""
        with self._reading("list_quota") as conn:
            rows = conn.execute(_LIST_QUOTA_SQL).fetchall()
        return [_row_to_quota(row) for row in rows]

    def read_snapshot(self) -> Tuple[List[Account], List[ModelQuota]]:
        """
        All accounts and all quota rows from one read transaction.

        Both lists come from the same committed state, so a writer commit
        landing between the two SELECTs is either fully visible or not at all.
        """
        with self._reading("read_snapshot") as conn:
            conn.execute("BEGIN")
            try:
                account_rows = conn.execute(_LIST_ACCOUNTS_SQL).fetchall()
                quota_rows = conn.execute(_LIST_QUOTA_SQL).fetchall()
            except sqlite3.DatabaseError:
                conn.rollback()
                raise
            conn.execute("COMMIT")
        return (
            [_row_to_account(row) for row in account_rows],
            [_row_to_quota(row) for row in quota_rows],
        )

    # =========================================================================
    # SECRETS
    # =========================================================================

    def decrypt_token(self, account: Account) -> str:
        """
        Raises:
            KeyUnavailable: No key material, or the key does not match
        """
        if account.encrypted_token is None:
            raise KeyUnavailable(f"Account {account.id} has no stored token")
        if self._key is None:
            raise KeyUnavailable(f"No key material available for {self.path}")
        return self._key.decrypt(account.encrypted_token)

    def read_token(self, account_id: str) -> Optional[str]:
        """
        Decrypted token, or None when it is unavailable to this process.

        Raises:
            AccountNotFound: Unknown account id
        """
        account = self._fetch_account(account_id)
        try:
            return self.decrypt_token(account)
        except KeyUnavailable as e:
            lib_logger.warning(f"Token for account {account_id} unavailable: {e}")
            return None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        with self._lock:
            conn = self._conn
            self._conn = None
        if conn is None:
            return
        try:
            conn.close()
        finally:
            if self._lease is not None:
                self._lease.release()
                self._lease = None
        lib_logger.info(f"Closed credential store {self.path} ({self.mode.value})")

    def __enter__(self) -> "StoreHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _require_writer(self, operation: str) -> None:
        if self.readonly:
            lib_logger.error(
                f"Rejected '{operation}' on read-only store handle {self.path}"
            )
            raise WriteRejected(operation)

    def _encrypt(self, token: str) -> str:
        if self._key is None:
            raise KeyUnavailable(f"No key material available for {self.path}")
        return self._key.encrypt(token)

    def _fetch_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailable(f"Store handle for {self.path} is closed")
        return self._conn

    @contextmanager
    def _reading(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require_open()
            try:
                yield conn
            except sqlite3.DatabaseError as e:
                raise StoreUnavailable(f"'{operation}' failed on {self.path}: {e}") from e

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require_open()
            try:
                with conn:
                    yield conn
            except sqlite3.IntegrityError:
                raise
            except sqlite3.DatabaseError as e:
                raise StoreUnavailable(f"'{operation}' failed on {self.path}: {e}") from e


def _row_to_account(row: Sequence) -> Account:
    return Account(
        id=row[0],
        provider=row[1],
        email=row[2],
        encrypted_token=row[3],
        created_at=row[4],
        last_refreshed_at=row[5],
    )


def _row_to_quota(row: Sequence) -> ModelQuota:
    return ModelQuota(
        account_id=row[0],
        model_name=row[1],
        used=row[2],
        limit=row[3],
        reset_at=row[4],
    )
