# SPDX-License-Identifier: MIT

import unittest

import httpx
from rich.console import Console

from manager_app.status_viewer import (
    StatusViewer,
    create_progress_bar,
    format_percent,
    format_time_ago,
)

ACCOUNTS = [
    {"id": "a1", "provider": "google", "email": "a@example.com", "last_refreshed_at": None},
    {"id": "a2", "provider": "anthropic", "email": None, "last_refreshed_at": None},
]

SUMMARY = {
    "account_id": "a1",
    "avg_percent_remaining": 75.0,
    "earliest_reset": None,
    "visible_model_count": 2,
    "providers": [
        {
            "provider": "Gemini",
            "avg_percent_remaining": 75.0,
            "earliest_reset": None,
            "visible_model_count": 2,
        }
    ],
}


def _service(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/health":
        return httpx.Response(
            200, json={"status": "ok", "mode": "ro", "account_count": 2, "running": True}
        )
    if request.url.path == "/accounts":
        return httpx.Response(200, json=ACCOUNTS)
    if request.url.path == "/accounts/a1/summary":
        return httpx.Response(200, json=SUMMARY)
    return httpx.Response(404, json={"detail": "Account 'a2' not found"})


class FormattingTest(unittest.TestCase):
    def test_percent_and_bar(self) -> None:
        self.assertEqual(format_percent(None), "no data")
        self.assertEqual(format_percent(75), "75.0%")
        self.assertEqual(create_progress_bar(50, width=10), "▓" * 5 + "░" * 5)
        self.assertEqual(create_progress_bar(None, width=4), "░" * 4)
        self.assertEqual(create_progress_bar(140, width=4), "▓" * 4)

    def test_time_ago(self) -> None:
        self.assertEqual(format_time_ago(None), "Never")
        self.assertEqual(format_time_ago(970.0, now=1000.0), "30s ago")
        self.assertEqual(format_time_ago(1000.0 - 7200, now=1000.0), "2h ago")


class StatusViewerTest(unittest.TestCase):
    def _viewer(self, handler) -> StatusViewer:
        console = Console(record=True, width=140)
        return StatusViewer(
            "0.0.0.0", 8000, console=console, transport=httpx.MockTransport(handler)
        )

    def test_fetch_and_render(self) -> None:
        viewer = self._viewer(_service)
        status = viewer.fetch_status()
        self.assertIsNotNone(status)
        self.assertIsNone(viewer.last_error)
        # a2 disappeared between the list and its summary
        self.assertEqual(list(status["summaries"]), ["a1"])

        viewer.show_summary_screen(status)
        output = viewer.console.export_text()
        self.assertIn("http://127.0.0.1:8000", output)
        self.assertIn("a@example.com", output)
        self.assertIn("75.0%", output)
        self.assertIn("no data", output)

    def test_connection_error_is_reported(self) -> None:
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        viewer = self._viewer(refuse)
        self.assertIsNone(viewer.fetch_status())
        self.assertIn("Is the account service running", viewer.last_error)

    def test_server_error_is_reported(self) -> None:
        viewer = self._viewer(lambda request: httpx.Response(503, text="store locked"))
        self.assertIsNone(viewer.fetch_status())
        self.assertTrue(viewer.last_error.startswith("HTTP 503"))


if __name__ == "__main__":
    unittest.main()
