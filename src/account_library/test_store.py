# SPDX-License-Identifier: LGPL-3.0-only

import asyncio
import os
import tempfile
import unittest
from pathlib import Path

from cryptography.fernet import Fernet

from account_library.core.errors import (
    AccountNotFound,
    KeyUnavailable,
    StoreError,
    StoreUnavailable,
    WriteRejected,
    WriterConflict,
)
from account_library.core.types import Account, ModelQuota, OpenMode
from account_library.liveness import ProbeGate
from account_library.store import (
    AccountSnapshotCache,
    ArbiterState,
    KeyMaterial,
    WriterArbiter,
    open_store,
)


class CommitBetweenSelects:
    """Connection wrapper that runs `between` right after the first SELECT."""

    def __init__(self, conn, between) -> None:
        self._conn = conn
        self._between = between
        self._selects = 0

    def execute(self, sql, *args):
        cursor = self._conn.execute(sql, *args)
        if sql.lstrip().upper().startswith("SELECT"):
            self._selects += 1
            if self._selects == 1:
                self._between()
        return cursor

    def __getattr__(self, name):
        return getattr(self._conn, name)


class StoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "data" / "accounts.db"

    def open_writer(self):
        handle = open_store(self.path, OpenMode.READ_WRITE)
        self.addCleanup(handle.close)
        return handle

    def open_reader(self):
        handle = open_store(self.path, OpenMode.READ_ONLY)
        self.addCleanup(handle.close)
        return handle


class WriterArbitrationTest(StoreTestCase):
    def test_second_writer_gets_conflict_with_owner_pid(self) -> None:
        self.open_writer()
        with self.assertRaises(WriterConflict) as ctx:
            open_store(self.path, OpenMode.READ_WRITE)
        self.assertEqual(ctx.exception.owner_pid, os.getpid())

    def test_writer_slot_is_free_after_close(self) -> None:
        writer = open_store(self.path, OpenMode.READ_WRITE)
        writer.close()
        second = self.open_writer()
        self.assertFalse(second.readonly)

    def test_arbiter_state_transitions(self) -> None:
        arbiter = WriterArbiter(self.path)
        self.assertEqual(arbiter.state(), (ArbiterState.UNINITIALIZED, None))
        with arbiter.acquire() as lease:
            self.assertTrue(lease.active)
            self.assertEqual(arbiter.state(), (ArbiterState.OWNED, os.getpid()))
        self.assertFalse(lease.active)
        self.assertEqual(arbiter.state(), (ArbiterState.UNINITIALIZED, None))

    def test_readers_do_not_change_ownership(self) -> None:
        self.open_writer()
        self.open_reader()
        self.open_reader()
        state, pid = WriterArbiter(self.path).state()
        self.assertEqual(state, ArbiterState.OWNED)
        self.assertEqual(pid, os.getpid())


class ReadOnlyHandleTest(StoreTestCase):
    def test_missing_store_is_unavailable_and_not_created(self) -> None:
        with self.assertRaises(StoreUnavailable):
            open_store(self.path, OpenMode.READ_ONLY)
        self.assertFalse(self.path.exists())

    def test_uninitialized_file_is_unavailable(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.touch()
        with self.assertRaises(StoreUnavailable):
            open_store(self.path, OpenMode.READ_ONLY)

    def test_corrupt_file_is_unavailable_in_both_modes(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_bytes(b"definitely not sqlite " * 200)
        with self.assertRaises(StoreUnavailable):
            open_store(self.path, OpenMode.READ_ONLY)
        with self.assertRaises(StoreUnavailable):
            open_store(self.path, OpenMode.READ_WRITE)
        # The failed writer open gave its lease back
        self.assertEqual(WriterArbiter(self.path).state()[0], ArbiterState.UNINITIALIZED)

    def test_writer_operations_are_rejected_and_store_unmodified(self) -> None:
        writer = self.open_writer()
        account = writer.create_account("google", "tok-1", email="a@example.com")
        writer.upsert_quota([ModelQuota(account.id, "gemini-2.5-pro", 10, 100)])

        reader = self.open_reader()
        attempts = [
            ("create_account", lambda: reader.create_account("google", "tok-2")),
            ("update_token", lambda: reader.update_token(account.id, "tok-3")),
            ("delete_account", lambda: reader.delete_account(account.id)),
            (
                "upsert_quota",
                lambda: reader.upsert_quota([ModelQuota(account.id, "gemini-2.5-pro", 99, 100)]),
            ),
        ]
        for operation, attempt in attempts:
            with self.subTest(operation=operation):
                with self.assertRaises(WriteRejected) as ctx:
                    attempt()
                self.assertEqual(ctx.exception.operation, operation)

        self.assertEqual(writer.count_accounts(), 1)
        self.assertEqual(writer.read_token(account.id), "tok-1")
        self.assertEqual(writer.get_quota(account.id)[0].used, 10)


class CredentialStoreTest(StoreTestCase):
    def test_reader_sees_writer_changes(self) -> None:
        writer = self.open_writer()
        reader = self.open_reader()
        self.assertEqual(reader.list_accounts(), [])

        account = writer.create_account("anthropic", "secret", email="b@example.com")
        writer.upsert_quota(
            [
                ModelQuota(account.id, "claude-sonnet-4.5", 20, 100, reset_at=5000.0),
                ModelQuota(account.id, "claude-opus-4.1", 0, 50),
            ]
        )

        accounts = reader.list_accounts()
        self.assertEqual([a.id for a in accounts], [account.id])
        self.assertEqual(accounts[0].email, "b@example.com")
        quota = reader.get_quota(account.id)
        self.assertEqual([q.model_name for q in quota], ["claude-opus-4.1", "claude-sonnet-4.5"])
        self.assertEqual(quota[1].reset_at, 5000.0)
        self.assertEqual(reader.read_token(account.id), "secret")

    def test_tokens_are_encrypted_at_rest(self) -> None:
        writer = self.open_writer()
        account = writer.create_account("google", "plain-token")
        self.assertNotIn("plain-token", account.encrypted_token)
        self.assertNotIn(b"plain-token", self.path.read_bytes())

    def test_reader_without_key_degrades_token_field(self) -> None:
        writer = self.open_writer()
        account = writer.create_account("google", "plain-token")
        self.path.with_name(self.path.name + ".key").unlink()

        reader = self.open_reader()
        self.assertFalse(reader.key_available)
        self.assertEqual(len(reader.list_accounts()), 1)
        self.assertIsNone(reader.read_token(account.id))
        with self.assertRaises(KeyUnavailable):
            reader.decrypt_token(reader.get_account(account.id))

    def test_foreign_key_material_cannot_decrypt(self) -> None:
        writer = self.open_writer()
        account = writer.create_account("google", "plain-token")
        other = KeyMaterial(Fernet.generate_key())
        with self.assertRaises(KeyUnavailable):
            other.decrypt(account.encrypted_token)

    def test_key_is_created_once_and_reused(self) -> None:
        writer = open_store(self.path, OpenMode.READ_WRITE)
        account = writer.create_account("google", "tok")
        key_path = self.path.with_name("accounts.db.key")
        key_bytes = key_path.read_bytes()
        writer.close()

        writer = self.open_writer()
        self.assertEqual(key_path.read_bytes(), key_bytes)
        self.assertEqual(writer.read_token(account.id), "tok")
        if os.name == "posix":
            self.assertEqual(key_path.stat().st_mode & 0o777, 0o600)

    def test_delete_cascades_to_quota(self) -> None:
        writer = self.open_writer()
        keep = writer.create_account("google", "a")
        drop = writer.create_account("google", "b")
        writer.upsert_quota(
            [
                ModelQuota(keep.id, "gemini-2.5-pro", 1, 10),
                ModelQuota(drop.id, "gemini-2.5-pro", 2, 10),
                ModelQuota(drop.id, "gemini-2.5-flash", 3, 10),
            ]
        )
        self.assertTrue(writer.delete_account(drop.id))
        self.assertFalse(writer.delete_account(drop.id))
        self.assertEqual({q.account_id for q in writer.list_quota()}, {keep.id})
        with self.assertRaises(AccountNotFound):
            writer.get_quota(drop.id)

    def test_quota_for_unknown_account_writes_nothing(self) -> None:
        writer = self.open_writer()
        known = writer.create_account("google", "a")
        with self.assertRaises(AccountNotFound):
            writer.upsert_quota(
                [
                    ModelQuota(known.id, "gemini-2.5-pro", 1, 10),
                    ModelQuota("ghost", "gemini-2.5-pro", 1, 10),
                ]
            )
        self.assertEqual(writer.list_quota(), [])

    def test_upsert_replaces_existing_row(self) -> None:
        writer = self.open_writer()
        account = writer.create_account("google", "a")
        writer.upsert_quota([ModelQuota(account.id, "gemini-2.5-pro", 1, 10)])
        writer.upsert_quota([ModelQuota(account.id, "gemini-2.5-pro", 7, 10, reset_at=123.0)])
        rows = writer.get_quota(account.id)
        self.assertEqual(len(rows), 1)
        self.assertEqual((rows[0].used, rows[0].reset_at), (7, 123.0))

    def test_update_token_bumps_refresh_time(self) -> None:
        writer = self.open_writer()
        account = writer.create_account("google", "old")
        writer._clock = lambda: account.created_at + 100
        updated = writer.update_token(account.id, "new")
        self.assertEqual(updated.last_refreshed_at, account.created_at + 100)
        self.assertEqual(writer.read_token(account.id), "new")
        with self.assertRaises(AccountNotFound):
            writer.update_token("ghost", "x")

    def test_duplicate_account_id_is_rejected(self) -> None:
        writer = self.open_writer()
        writer.create_account("google", "a", account_id="acc-1")
        with self.assertRaises(StoreError):
            writer.create_account("google", "b", account_id="acc-1")

    def test_read_snapshot_is_not_torn_by_a_concurrent_delete(self) -> None:
        writer = self.open_writer()
        account = writer.create_account("google", "a")
        writer.upsert_quota(
            [
                ModelQuota(account.id, "gemini-2.5-pro", 1, 10),
                ModelQuota(account.id, "gemini-2.5-flash", 2, 10),
            ]
        )
        reader = self.open_reader()
        reader._conn = CommitBetweenSelects(
            reader._conn, lambda: writer.delete_account(account.id)
        )

        accounts, rows = reader.read_snapshot()
        self.assertEqual([a.id for a in accounts], [account.id])
        self.assertEqual(len(rows), 2)

        # The delete is visible to the next read
        self.assertEqual(reader.read_snapshot(), ([], []))

    def test_closed_handle_is_unavailable(self) -> None:
        writer = open_store(self.path, OpenMode.READ_WRITE)
        writer.close()
        writer.close()
        with self.assertRaises(StoreUnavailable):
            writer.list_accounts()


class FakeHandle:
    def __init__(self) -> None:
        self.path = Path("fake.db")
        self.accounts = [Account("a1", "google", None, 1.0)]
        self.rows = [ModelQuota("a1", "gemini-2.5-pro", 10, 100)]
        self.fail = False
        self.reads = 0

    def read_snapshot(self):
        self.reads += 1
        if self.fail:
            raise StoreUnavailable("database is locked")
        return list(self.accounts), list(self.rows)


class AccountSnapshotCacheTest(unittest.TestCase):
    def setUp(self) -> None:
        self.now = 1000.0
        self.handle = FakeHandle()
        self.cache = AccountSnapshotCache(
            self.handle, ProbeGate(5.0, 60.0), timeout=1.0, clock=lambda: self.now
        )

    def test_fresh_snapshot_is_served_from_cache(self) -> None:
        first = asyncio.run(self.cache.snapshot())
        self.now += 30
        second = asyncio.run(self.cache.snapshot())
        self.assertIs(first, second)
        self.assertEqual(self.handle.reads, 1)
        self.assertEqual(first.quota_for("a1")[0].model_name, "gemini-2.5-pro")

    def test_failed_refresh_serves_stale_snapshot(self) -> None:
        first = asyncio.run(self.cache.snapshot())
        self.handle.fail = True
        self.now += 120
        stale = asyncio.run(self.cache.snapshot())
        self.assertIs(stale, first)
        self.assertEqual(self.handle.reads, 2)

    def test_failure_without_snapshot_raises(self) -> None:
        self.handle.fail = True
        with self.assertRaises(StoreUnavailable):
            asyncio.run(self.cache.snapshot())

    def test_invalidate_forces_reread(self) -> None:
        asyncio.run(self.cache.snapshot())
        self.handle.accounts.append(Account("a2", "anthropic", None, 2.0))
        self.cache.invalidate()
        snapshot = asyncio.run(self.cache.snapshot())
        self.assertEqual([a.id for a in snapshot.accounts], ["a1", "a2"])
        self.assertEqual(snapshot.quota_for("a2"), [])
        with self.assertRaises(AccountNotFound):
            snapshot.quota_for("missing")


if __name__ == "__main__":
    unittest.main()
