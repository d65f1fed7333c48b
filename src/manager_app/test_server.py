# SPDX-License-Identifier: MIT

import json
import tempfile
import time
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from account_library import OpenMode, StoreUnavailable, SyncSettings
from account_library.core.types import ProcessRecord
from manager_app.server import build_context, create_app


def _running_lister(needle):
    return [ProcessRecord(424242, "Antigravity", "/opt/antigravity/antigravity")]


def _stopped_lister(needle):
    return [ProcessRecord(424243, "Antigravity Helper", "antigravity --type=renderer")]


class AccountServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        data_dir = Path(self._tmp.name) / "data"
        self.settings = SyncSettings(
            quota_min_call_interval=0.0,
            quota_cache_ttl=0.0,
            store_path=data_dir / "accounts.db",
            visibility_path=data_dir / "model_visibility.json",
        )

    def _client(self, mode: OpenMode, lister=_running_lister, launcher=None) -> TestClient:
        context = build_context(
            self.settings, mode, process_lister=lister, process_launcher=launcher
        )
        client = TestClient(create_app(context))
        client.__enter__()
        self.addCleanup(client.__exit__, None, None, None)
        return client

    def test_writer_round_trip(self) -> None:
        client = self._client(OpenMode.READ_WRITE)

        created = client.post(
            "/accounts",
            json={"provider": "google", "token": "secret", "email": "a@example.com"},
        )
        self.assertEqual(created.status_code, 201)
        account = created.json()
        self.assertNotIn("token", account)
        self.assertNotIn("encrypted_token", account)

        updated = client.put(
            f"/accounts/{account['id']}/quota",
            json={
                "rows": [
                    {"model_name": "gemini-2.5-pro", "used": 20, "limit": 100, "reset_at": 2000.0},
                    {"model_name": "gemini-2.5-flash", "used": 30, "limit": 100, "reset_at": 1000.0},
                ]
            },
        )
        self.assertEqual(updated.json(), {"updated": 2})

        listed = client.get("/accounts").json()
        self.assertEqual([a["email"] for a in listed], ["a@example.com"])

        quota = client.get(f"/accounts/{account['id']}/quota").json()
        self.assertEqual(
            [q["model_name"] for q in quota], ["gemini-2.5-flash", "gemini-2.5-pro"]
        )

        summary = client.get(f"/accounts/{account['id']}/summary").json()
        self.assertAlmostEqual(summary["avg_percent_remaining"], 75.0)
        self.assertEqual(summary["earliest_reset"], 1000.0)
        self.assertEqual(summary["providers"][0]["provider"], "Gemini")

        token = client.put(f"/accounts/{account['id']}/token", json={"token": "new"})
        self.assertEqual(token.status_code, 200)

        self.assertEqual(client.delete(f"/accounts/{account['id']}").status_code, 204)
        self.assertEqual(client.delete(f"/accounts/{account['id']}").status_code, 404)
        self.assertEqual(client.get(f"/accounts/{account['id']}/quota").status_code, 404)

    def test_unknown_account_is_404(self) -> None:
        client = self._client(OpenMode.READ_WRITE)
        self.assertEqual(client.get("/accounts/nope/quota").status_code, 404)
        self.assertEqual(client.get("/accounts/nope/summary").status_code, 404)
        response = client.put(
            "/accounts/nope/quota",
            json={"rows": [{"model_name": "gpt-4o", "used": 1, "limit": 2}]},
        )
        self.assertEqual(response.status_code, 404)

    def test_read_only_service_rejects_writes(self) -> None:
        writer = self._client(OpenMode.READ_WRITE)
        account = writer.post("/accounts", json={"provider": "google", "token": "t"}).json()

        reader = self._client(OpenMode.READ_ONLY)
        response = reader.post("/accounts", json={"provider": "google", "token": "x"})
        self.assertEqual(response.status_code, 403)
        self.assertIn("read-only", response.json()["detail"])
        self.assertEqual(
            reader.put(f"/accounts/{account['id']}/token", json={"token": "x"}).status_code,
            403,
        )
        self.assertEqual(reader.delete(f"/accounts/{account['id']}").status_code, 403)

        listed = reader.get("/accounts").json()
        self.assertEqual([a["id"] for a in listed], [account["id"]])

    def test_liveness_and_health(self) -> None:
        client = self._client(OpenMode.READ_WRITE)
        self.assertEqual(client.get("/liveness").json(), {"running": True})
        health = client.get("/health").json()
        self.assertEqual(health["status"], "ok")
        self.assertEqual(health["mode"], "rw")
        self.assertEqual(health["account_count"], 0)

    def test_helper_processes_do_not_report_running(self) -> None:
        client = self._client(OpenMode.READ_WRITE, lister=_stopped_lister)
        self.assertEqual(client.get("/liveness").json(), {"running": False})

    def test_summary_follows_visibility_file_rewritten_after_startup(self) -> None:
        client = self._client(OpenMode.READ_WRITE)
        account = client.post("/accounts", json={"provider": "google", "token": "t"}).json()
        client.put(
            f"/accounts/{account['id']}/quota",
            json={
                "rows": [
                    {"model_name": "gemini-2.5-pro", "used": 20, "limit": 100},
                    {"model_name": "gemini-2.5-flash", "used": 30, "limit": 100},
                ]
            },
        )
        summary = client.get(f"/accounts/{account['id']}/summary").json()
        self.assertAlmostEqual(summary["avg_percent_remaining"], 75.0)

        # Written by the Settings process while the service keeps running
        self.settings.visibility_path.write_text(
            json.dumps({"gemini-2.5-flash": False}), encoding="utf-8"
        )
        summary = client.get(f"/accounts/{account['id']}/summary").json()
        self.assertAlmostEqual(summary["avg_percent_remaining"], 80.0)
        self.assertEqual(summary["visible_model_count"], 1)

    def test_timed_out_write_still_drops_cached_snapshot(self) -> None:
        self.settings.quota_cache_ttl = 60.0
        self.settings.store_timeout = 0.2
        client = self._client(OpenMode.READ_WRITE)
        store = client.app.state.context.store
        self.assertEqual(client.get("/accounts").json(), [])

        create = store.create_account

        def commit_then_stall(*args):
            account = create(*args)
            time.sleep(0.6)
            return account

        with mock.patch.object(store, "create_account", side_effect=commit_then_stall):
            response = client.post("/accounts", json={"provider": "google", "token": "t"})
        self.assertEqual(response.status_code, 504)

        listed = client.get("/accounts").json()
        self.assertEqual([a["provider"] for a in listed], ["google"])

    def test_failed_write_drops_cached_snapshot(self) -> None:
        self.settings.quota_cache_ttl = 60.0
        client = self._client(OpenMode.READ_WRITE)
        snapshots = client.app.state.context.snapshots
        client.get("/accounts")
        self.assertIsNotNone(snapshots.gate.last_recorded_at())

        with mock.patch.object(
            client.app.state.context.store,
            "update_token",
            side_effect=StoreUnavailable("database is locked"),
        ):
            response = client.put("/accounts/a1/token", json={"token": "x"})
        self.assertEqual(response.status_code, 503)
        self.assertIsNone(snapshots.gate.last_recorded_at())

    def test_close_and_start_application(self) -> None:
        launched = []
        self.settings.application_executable = "/opt/antigravity/antigravity"
        client = self._client(
            OpenMode.READ_WRITE, launcher=lambda argv: launched.append(list(argv)) or 5151
        )
        self.assertEqual(client.get("/liveness").json(), {"running": True})

        with mock.patch("psutil.Process") as process_cls:
            closed = client.post("/application/close")
        self.assertEqual(closed.status_code, 200)
        self.assertEqual(closed.json(), {"stopped": [424242]})
        process_cls.return_value.terminate.assert_called_once_with()
        self.assertIsNone(client.app.state.context.liveness.gate.last_recorded_at())

        started = client.post("/application/start", json={"args": ["--new-window"]})
        self.assertEqual(started.json(), {"pid": 5151})
        self.assertEqual(launched, [["/opt/antigravity/antigravity", "--new-window"]])

    def test_start_without_executable_is_400(self) -> None:
        client = self._client(OpenMode.READ_WRITE)
        self.assertEqual(client.post("/application/start", json={}).status_code, 400)

    def test_invalid_quota_body_is_422(self) -> None:
        client = self._client(OpenMode.READ_WRITE)
        account = client.post("/accounts", json={"provider": "google", "token": "t"}).json()
        response = client.put(
            f"/accounts/{account['id']}/quota",
            json={"rows": [{"model_name": "gpt-4o", "used": -1, "limit": 2}]},
        )
        self.assertEqual(response.status_code, 422)


if __name__ == "__main__":
    unittest.main()
