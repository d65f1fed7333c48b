# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Account service entry point.

    python -m manager_app.main               # read-write (GUI side)
    python -m manager_app.main --readonly    # headless reader
    python -m manager_app.main --status      # terminal status viewer
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import colorlog
import uvicorn
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel

from account_library import OpenMode, StoreUnavailable, SyncSettings, WriterConflict
from account_library.utils.paths import get_default_root, get_logs_dir

from .server import build_context, create_app
from .status_viewer import run_status_viewer

# Exit code when the store cannot be opened in the requested mode
EXIT_STORE_UNAVAILABLE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Account Manager Service")
    parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="Host to bind the server to."
    )
    parser.add_argument("--port", type=int, default=8000, help="Port to run the server on.")
    parser.add_argument(
        "--readonly",
        action="store_true",
        help="Open the account store read-only (headless companion mode).",
    )
    parser.add_argument(
        "--store-path",
        type=str,
        default=None,
        help="Path to the account store (overrides ACCOUNT_STORE_PATH).",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show the terminal status viewer for a running service instead of serving.",
    )
    return parser


# =============================================================================
# LOGGING
# =============================================================================


class AccountLibraryDebugFilter(logging.Filter):
    """Pass only DEBUG records from account_library."""

    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith(
            "account_library"
        )


def _build_console_handler() -> logging.Handler:
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )
    return handler


def setup_logging(logs_dir: Path) -> None:
    """Console (INFO), manager.log (INFO) and manager_debug.log (library DEBUG)."""
    file_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = _build_console_handler()
    console_handler.setLevel(logging.INFO)

    info_file_handler = logging.FileHandler(logs_dir / "manager.log", encoding="utf-8")
    info_file_handler.setLevel(logging.INFO)
    info_file_handler.setFormatter(file_format)

    debug_file_handler = logging.FileHandler(
        logs_dir / "manager_debug.log", encoding="utf-8"
    )
    debug_file_handler.setLevel(logging.DEBUG)
    debug_file_handler.setFormatter(file_format)
    debug_file_handler.addFilter(AccountLibraryDebugFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(info_file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(debug_file_handler)

    # Silence other noisy loggers by setting their level higher than root
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# =============================================================================
# MAIN
# =============================================================================


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    root_dir = get_default_root()
    load_dotenv(root_dir / ".env")

    if args.status:
        run_status_viewer(args.host, args.port)
        return 0

    setup_logging(get_logs_dir(root_dir))

    settings = SyncSettings.from_env(root_dir)
    if args.store_path:
        settings.store_path = Path(args.store_path)
    mode = OpenMode.READ_ONLY if args.readonly else OpenMode.READ_WRITE

    try:
        context = build_context(settings, mode)
    except (WriterConflict, StoreUnavailable) as e:
        logging.error(f"Cannot open account store {settings.store_path}: {e}")
        hint = (
            "Start the read-write process first, or check the store path."
            if mode is OpenMode.READ_ONLY
            else "Close the other instance, or start this one with --readonly."
        )
        Console(stderr=True).print(
            Panel(
                f"[bold red]{e}[/bold red]\n\n{hint}",
                title="Account store unavailable",
                border_style="red",
            )
        )
        return EXIT_STORE_UNAVAILABLE

    logging.info(
        f"Serving account store {settings.store_path} ({mode.value}) on {args.host}:{args.port}"
    )
    uvicorn.run(create_app(context), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
