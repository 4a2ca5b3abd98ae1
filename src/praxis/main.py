"""
Praxis entry point.

Parses arguments, prepares the data directory and logging, then serves the REST API or runs the
interactive shell against an in-process API server.
"""

import argparse
import logging
import os
import sys
import threading
from pathlib import Path

from praxis.api.app import run_api
from praxis.config import settings

logger = logging.getLogger(__name__)

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # SDK clients log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _prepare_data_dir() -> Path:
    """Create ``DATA_DIR`` and the file tools' workspace; exit when it cannot be written."""
    data_dir = Path(settings.DATA_DIR)
    (data_dir / "workspace").mkdir(parents=True, exist_ok=True)
    if not os.access(data_dir, os.W_OK):
        logger.error("Data directory is not writable: %s", data_dir)
        sys.exit(1)
    return data_dir


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="praxis", description="Run the Praxis agentic tool orchestrator"
    )
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Serve the REST API, or serve it in the background and open the shell "
        "(default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.lower,
        default=settings.LOG_LEVEL.lower(),
        help="Logging level (default from LOG_LEVEL: %(default)s)",
    )
    return parser


def _serve_in_background() -> threading.Thread:
    # uvicorn's reloader needs the main thread
    thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": settings.API_HOST,
            "port": settings.API_PORT,
            "reload": False,
            "log_level": "warning",
        },
        name="praxis-api",
        daemon=True,
    )
    thread.start()
    return thread


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """Console script ``praxis``."""
    args = _build_parser().parse_args(sys.argv[1:] if argv is None else argv)

    settings.LOG_LEVEL = args.log_level
    _init_logging(settings.LOG_LEVEL)
    data_dir = _prepare_data_dir()

    logger.info(
        "Starting Praxis [%s mode] model=%s data=%s", args.mode, settings.DEFAULT_MODEL, data_dir
    )

    if args.mode == "api":
        run_api(host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)
        return

    _serve_in_background()

    # Lazy import so API-only deployments never load the shell
    from praxis.client.cli import run_cli  # pylint: disable=import-outside-toplevel

    run_cli()


if __name__ == "__main__":
    main()
