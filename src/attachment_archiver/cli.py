"""Entry point that archives labelled Gmail attachments into Google Drive."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Sequence

from pydantic import ValidationError as SettingsValidationError

from .config import Settings
from .context import ArchiverContext
from .errors import ArchiverError, ConfigurationError
from .orchestrator import Orchestrator

logger = logging.getLogger("attachment_archiver.cli")

EXIT_OK = 0
EXIT_BATCH_FAILED = 1
EXIT_ABORTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Archive Gmail attachments into Google Drive.")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Process one batch of pending messages (default)")
    subparsers.add_parser("status", help="Show the last run report and token status")

    auth_url = subparsers.add_parser("auth-url", help="Print the OAuth consent URL")
    auth_url.add_argument("--redirect-uri", required=True)
    auth_url.add_argument("--state")

    authorize = subparsers.add_parser("authorize", help="Exchange an authorization code for tokens")
    authorize.add_argument("--code", required=True)
    authorize.add_argument("--redirect-uri", required=True)

    errors = subparsers.add_parser("errors", help="Show recent error-log entries")
    errors.add_argument("--limit", type=int, default=20)
    errors.add_argument("--clear", action="store_true", help="Empty the error log after showing it")

    subparsers.add_parser("clear-ledger", help="Forget every archived file (administrative)")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def load_settings() -> Settings:
    try:
        return Settings()
    except SettingsValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_command(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    command = args.command or "run"

    if command == "run":
        report = orchestrator.run_batch()
        _emit(report.to_dict())
        return EXIT_BATCH_FAILED if report.status == "failed" else EXIT_OK
    if command == "status":
        _emit(orchestrator.get_status())
    elif command == "auth-url":
        print(orchestrator.get_authorization_url(args.redirect_uri, args.state))
    elif command == "authorize":
        orchestrator.bootstrap_authorization(args.code, args.redirect_uri)
        logger.info("Authorization stored; scheduled runs can proceed")
    elif command == "errors":
        _emit(orchestrator.ledger.get_recent_errors(args.limit))
        if args.clear:
            dropped = orchestrator.ledger.clear_errors()
            logger.warning("Cleared %d error-log entries", dropped)
    elif command == "clear-ledger":
        dropped = orchestrator.ledger.clear()
        logger.warning("Cleared %d archived-file entries from the ledger", dropped)
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ConfigurationError as exc:
        configure_logging("INFO")
        logger.error("%s", exc)
        return EXIT_ABORTED

    configure_logging(settings.log_level)
    logger.debug("Loaded settings: %s", settings.redacted())
    context = ArchiverContext(settings=settings)
    try:
        orchestrator = Orchestrator.from_context(context)
        return run_command(args, orchestrator)
    except ArchiverError as exc:
        logger.error("%s failed: %s", args.command or "run", exc)
        return EXIT_ABORTED
    finally:
        context.close()


if __name__ == "__main__":
    sys.exit(main())
