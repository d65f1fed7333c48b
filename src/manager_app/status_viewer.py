# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Lightweight account status viewer.

Polls a running account service and renders liveness, accounts and quota
rollups. Uses only httpx + rich (no account_library imports).
"""

import os
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================

TABLE_ACCOUNT_WIDTH = 24
TABLE_PROVIDER_WIDTH = 12
TABLE_PCT_WIDTH = 7
PROGRESS_BAR_WIDTH = 10

# =============================================================================


def clear_screen():
    """Clear the terminal screen."""
    os.system("cls" if os.name == "nt" else "clear")


def format_time_ago(timestamp: Optional[float], now: Optional[float] = None) -> str:
    """Format timestamp as relative time (e.g., '5 min ago')."""
    if not timestamp:
        return "Never"
    delta = (now if now is not None else time.time()) - timestamp
    if delta < 60:
        return f"{max(0, int(delta))}s ago"
    elif delta < 3600:
        return f"{int(delta / 60)} min ago"
    elif delta < 86400:
        return f"{int(delta / 3600)}h ago"
    return f"{int(delta / 86400)}d ago"


def format_reset_time(timestamp: Optional[float]) -> str:
    """Format a reset timestamp in local time."""
    if timestamp is None:
        return "-"
    try:
        return datetime.fromtimestamp(timestamp).astimezone().strftime("%b %d %H:%M")
    except (ValueError, OSError, OverflowError):
        return "-"


def format_percent(percent: Optional[float]) -> str:
    """Percentage with one decimal, or 'no data'."""
    if percent is None:
        return "no data"
    return f"{percent:.1f}%"


def create_progress_bar(percent: Optional[float], width: int = PROGRESS_BAR_WIDTH) -> str:
    """Create a text-based progress bar."""
    if percent is None:
        return "░" * width
    clamped = min(100.0, max(0.0, percent))
    filled = int(clamped / 100 * width)
    return "▓" * filled + "░" * (width - filled)


def percent_style(percent: Optional[float]) -> str:
    if percent is None:
        return "dim"
    if percent <= 10:
        return "red"
    if percent <= 40:
        return "yellow"
    return "green"


def normalize_host_for_connection(host: str) -> str:
    """
    Convert bind addresses to connectable addresses.

    0.0.0.0 and :: are valid for binding a server to all interfaces,
    but clients cannot connect to them. Translate to loopback addresses.
    """
    if host == "0.0.0.0":
        return "127.0.0.1"
    if host == "::":
        return "::1"
    return host


class StatusViewer:
    """Account status TUI for one service endpoint."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8000,
        console: Optional[Console] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ):
        """
        Args:
            host: Service host (bind addresses are mapped to loopback)
            port: Service port
            console: Rich console to render to
            transport: httpx transport override
            timeout: Per-request timeout in seconds
        """
        self.console = console or Console(emoji_variant="text")
        self.host = normalize_host_for_connection(host)
        self.port = port
        self._transport = transport
        self._timeout = timeout
        self.cached_status: Optional[Dict[str, Any]] = None
        self.last_error: Optional[str] = None
        self.running = True

    def _get_base_url(self) -> str:
        if self.host.startswith("http://") or self.host.startswith("https://"):
            return self.host.rstrip("/")
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._get_base_url(),
            timeout=self._timeout,
            transport=self._transport,
        )

    def fetch_status(self) -> Optional[Dict[str, Any]]:
        """
        Fetch health, accounts and per-account summaries.

        Returns:
            Status dict or None on failure (see last_error)
        """
        try:
            with self._client() as client:
                health = self._get_json(client, "/health")
                accounts = self._get_json(client, "/accounts")
                summaries: Dict[str, Any] = {}
                for account in accounts:
                    response = client.get(f"/accounts/{account['id']}/summary")
                    # Deleted between the two calls
                    if response.status_code == 404:
                        continue
                    response.raise_for_status()
                    summaries[account["id"]] = response.json()
        except httpx.ConnectError:
            self.last_error = "Connection failed. Is the account service running?"
            return None
        except httpx.TimeoutException:
            self.last_error = "Request timed out."
            return None
        except httpx.HTTPStatusError as e:
            self.last_error = (
                f"HTTP {e.response.status_code}: {e.response.text[:100]}"
            )
            return None
        except (httpx.HTTPError, ValueError) as e:
            self.last_error = str(e)
            return None

        self.cached_status = {
            "health": health,
            "accounts": accounts,
            "summaries": summaries,
            "timestamp": time.time(),
        }
        self.last_error = None
        return self.cached_status

    @staticmethod
    def _get_json(client: httpx.Client, path: str) -> Any:
        response = client.get(path)
        response.raise_for_status()
        return response.json()

    # =========================================================================
    # RENDERING
    # =========================================================================

    def build_accounts_table(self, status: Dict[str, Any]) -> Table:
        table = Table(box=None, show_header=True, header_style="bold", padding=(0, 1))
        table.add_column("Account", style="cyan", min_width=TABLE_ACCOUNT_WIDTH)
        table.add_column("Provider", min_width=TABLE_PROVIDER_WIDTH)
        table.add_column("Remaining", justify="right", min_width=TABLE_PCT_WIDTH)
        table.add_column("", min_width=PROGRESS_BAR_WIDTH)
        table.add_column("Models", justify="center")
        table.add_column("Next reset")
        table.add_column("Refreshed")

        summaries = status.get("summaries", {})
        for account in status.get("accounts", []):
            summary = summaries.get(account["id"], {})
            percent = summary.get("avg_percent_remaining")
            style = percent_style(percent)
            table.add_row(
                account.get("email") or account["id"],
                account["provider"],
                f"[{style}]{format_percent(percent)}[/{style}]",
                f"[{style}]{create_progress_bar(percent)}[/{style}]",
                str(summary.get("visible_model_count", 0)),
                format_reset_time(summary.get("earliest_reset")),
                format_time_ago(account.get("last_refreshed_at")),
            )
        return table

    def build_provider_table(self, summary: Dict[str, Any]) -> Table:
        table = Table(box=None, show_header=True, header_style="bold", padding=(0, 1))
        table.add_column("Group", style="cyan", min_width=TABLE_PROVIDER_WIDTH)
        table.add_column("Avg remaining", justify="right")
        table.add_column("", min_width=PROGRESS_BAR_WIDTH)
        table.add_column("Models", justify="center")
        table.add_column("Next reset")
        for group in summary.get("providers", []):
            percent = group.get("avg_percent_remaining")
            style = percent_style(percent)
            table.add_row(
                group["provider"],
                f"[{style}]{format_percent(percent)}[/{style}]",
                f"[{style}]{create_progress_bar(percent)}[/{style}]",
                str(group.get("visible_model_count", 0)),
                format_reset_time(group.get("earliest_reset")),
            )
        return table

    def show_summary_screen(self, status: Dict[str, Any]) -> None:
        """Display the main screen with liveness and all accounts."""
        health = status.get("health", {})
        running = health.get("running")
        app_label = (
            "[green]running[/green]" if running else "[yellow]not running[/yellow]"
        )
        data_age = int(time.time() - status.get("timestamp", time.time()))

        self.console.print("━" * 78)
        self.console.print("[bold cyan]Account Manager Status[/bold cyan]")
        self.console.print("━" * 78)
        self.console.print(
            f"Service: [bold]{self._get_base_url()}[/bold] "
            f"({health.get('mode', '?')}, {health.get('status', '?')}) | "
            f"Application: {app_label} | Data age: {data_age}s"
        )
        self.console.print()

        if not status.get("accounts"):
            self.console.print("[yellow]No accounts stored.[/yellow]")
        else:
            self.console.print(self.build_accounts_table(status))

        self.console.print()
        self.console.print("━" * 78)

    def show_account_detail(self, account_id: str) -> None:
        """Display provider groups of one account."""
        if not self.cached_status:
            return
        summary = self.cached_status.get("summaries", {}).get(account_id)
        if summary is None:
            self.console.print(f"[red]Unknown account: {account_id}[/red]")
            return
        self.console.print(f"[bold]Account {account_id}[/bold]")
        self.console.print(self.build_provider_table(summary))

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    def run(self) -> None:
        """Main viewer loop."""
        while self.running:
            with self.console.status("[bold]Fetching status...", spinner="dots"):
                status = self.fetch_status()

            clear_screen()
            if status is None:
                self.console.print(f"[red]{self.last_error}[/red]")
            else:
                self.show_summary_screen(status)
                accounts: List[Dict[str, Any]] = status.get("accounts", [])
                for idx, account in enumerate(accounts, 1):
                    label = account.get("email") or account["id"]
                    self.console.print(f"   {idx}. View [cyan]{label}[/cyan] details")

            self.console.print()
            self.console.print("   R. Reload")
            self.console.print("   Q. Quit")
            choice = Prompt.ask("Select option", default="R").strip().lower()

            if choice == "q":
                self.running = False
            elif choice.isdigit() and status is not None:
                idx = int(choice)
                if 1 <= idx <= len(accounts):
                    self.show_account_detail(accounts[idx - 1]["id"])
                    Prompt.ask("Press Enter to continue", default="")


def run_status_viewer(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Entry point for the status viewer."""
    viewer = StatusViewer(host, port)
    viewer.run()
