# SPDX-License-Identifier: MIT

import tempfile
import unittest
from pathlib import Path
from unittest import mock

from account_library import OpenMode, open_store
from manager_app import main as manager_main


class MainEntryPointTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        self.store_path = self.root / "data" / "accounts.db"

        for target, value in (
            ("get_default_root", mock.Mock(return_value=self.root)),
            ("setup_logging", mock.Mock()),
        ):
            patcher = mock.patch.object(manager_main, target, value)
            patcher.start()
            self.addCleanup(patcher.stop)

        run_patcher = mock.patch.object(manager_main.uvicorn, "run")
        self.uvicorn_run = run_patcher.start()
        self.addCleanup(run_patcher.stop)

    def test_serves_read_write_by_default(self) -> None:
        code = manager_main.main(["--store-path", str(self.store_path), "--port", "9100"])
        self.assertEqual(code, 0)
        self.uvicorn_run.assert_called_once()
        app = self.uvicorn_run.call_args[0][0]
        self.addCleanup(app.state.context.store.close)
        self.assertEqual(app.state.context.mode, OpenMode.READ_WRITE)
        self.assertEqual(self.uvicorn_run.call_args[1]["port"], 9100)

    def test_second_writer_exits_with_code_2(self) -> None:
        owner = open_store(self.store_path, OpenMode.READ_WRITE)
        self.addCleanup(owner.close)
        code = manager_main.main(["--store-path", str(self.store_path)])
        self.assertEqual(code, manager_main.EXIT_STORE_UNAVAILABLE)
        self.uvicorn_run.assert_not_called()

    def test_readonly_alongside_writer_serves(self) -> None:
        owner = open_store(self.store_path, OpenMode.READ_WRITE)
        self.addCleanup(owner.close)
        code = manager_main.main(["--readonly", "--store-path", str(self.store_path)])
        self.assertEqual(code, 0)
        app = self.uvicorn_run.call_args[0][0]
        self.addCleanup(app.state.context.store.close)
        self.assertEqual(app.state.context.mode, OpenMode.READ_ONLY)

    def test_readonly_without_store_exits_with_code_2(self) -> None:
        code = manager_main.main(["--readonly", "--store-path", str(self.store_path)])
        self.assertEqual(code, 2)
        self.assertFalse(self.store_path.exists())

    def test_status_flag_runs_viewer_instead_of_server(self) -> None:
        with mock.patch.object(manager_main, "run_status_viewer") as viewer:
            code = manager_main.main(["--status", "--host", "0.0.0.0", "--port", "9000"])
        self.assertEqual(code, 0)
        viewer.assert_called_once_with("0.0.0.0", 9000)
        self.uvicorn_run.assert_not_called()


if __name__ == "__main__":
    unittest.main()
