"""Command-line entrypoint for pulling journal logs off a balena device."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from balena_logs.config import get_extractor_config, load_settings
from balena_logs.errors import ConfigurationError
from balena_logs.workflow import LogExtractionWorkflow

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="balena-logs",
        description="Open a balena tunnel to a device, upload its journal and print the download URL",
    )
    parser.add_argument("uuid", nargs="?", default=None, help="balena device UUID")
    parser.add_argument("--env-file", dest="env_file", type=str, default=None, help="Path to a .env file with credentials")
    parser.add_argument("--local-port", dest="local_port", type=int, default=None, help="Local port bound by the tunnel")
    parser.add_argument("--max-attempts", dest="max_attempts", type=int, default=None, help="Readiness polls before giving up")
    parser.add_argument("--poll-interval", dest="poll_interval", type=float, default=None, help="Seconds between readiness polls")
    parser.add_argument("--install-key", dest="install_key", action="store_true", help="Write SSH_PRIVATE_KEY to the configured key path first")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if not args.uuid:
        parser.print_usage(sys.stderr)
        print("Error: UUID is required. Usage: balena-logs <uuid>", file=sys.stderr)
        return 1

    try:
        config = get_extractor_config(Path(args.env_file) if args.env_file else None)
    except ConfigurationError as exc:
        print(f"Missing tokens! Please fix! {exc}", file=sys.stderr)
        return 1

    settings = load_settings()
    if args.local_port is not None:
        settings["tunnel"]["local_port"] = args.local_port
    if args.max_attempts is not None:
        settings["tunnel"]["max_attempts"] = args.max_attempts
    if args.poll_interval is not None:
        settings["tunnel"]["poll_interval_seconds"] = args.poll_interval

    workflow = LogExtractionWorkflow(config, settings=settings, install_key=args.install_key)
    try:
        return workflow.run(args.uuid)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
