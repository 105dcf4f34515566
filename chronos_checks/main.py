from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from typing import Any

import httpx
import structlog

from chronos_checks.classifier import ClassifiedResult, Status, TaskClassifier
from chronos_checks.chronos_client import ChronosClient
from chronos_checks.config import CheckConfig, load_config
from chronos_checks.discovery import Inventory
from chronos_checks.errors import ChronosCheckError
from chronos_checks.nagios import NagiosApiClient, check_exit, render_results
from chronos_checks.state_store import StateStore


logger = structlog.get_logger(__name__)

DESCRIPTION = """\
chronos-check - a Nagios check for Chronos.

Finds a Chronos node for the given environment, caches its task list in a
state file and turns every task into a Nagios check result. Results can be
posted to nagios-api (-p), dumped per task (-w) or returned for a single
task as an NRPE check (-t <task>).
"""


def configure_logging(level: str) -> None:
    """Structured logs on stderr; stdout is reserved for check output."""
    numeric = getattr(logging, str(level).upper(), logging.WARNING)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    # httpx logs full request URLs at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chronos-check",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-e", "--env", dest="environment", default=None, help="Environment to search (default: _default)")
    parser.add_argument("-c", "--config", default=None, help="Path to YAML config")

    verbs = parser.add_argument_group("actions")
    verbs.add_argument("-t", dest="task", metavar="TASK", default=None, help="Return a Nagios check result for TASK")
    verbs.add_argument("-p", dest="post_api", action="store_true", help="Post all checks to nagios-api")
    verbs.add_argument("-w", dest="write_config", action="store_true", help="Write Nagios config for all tasks")

    parser.add_argument("--https", action="store_true", default=None, help="Contact Chronos over HTTPS")
    parser.add_argument("--chronos-url", default=None, help="Chronos base URL (skips node lookup)")
    parser.add_argument("--nagios-api", dest="nagios_api_url", default=None, help="nagios-api base URL")
    parser.add_argument("--state-file", default=None, help="Path to the state file")
    parser.add_argument(
        "--state-timeout",
        dest="state_timeout_minutes",
        type=int,
        default=None,
        metavar="MINUTES",
        help="Minutes before the state file is refreshed",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Turn on verbose logging")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ...)")
    return parser


def _config_from_args(args: argparse.Namespace) -> CheckConfig:
    overrides: dict[str, Any] = {
        "environment": args.environment,
        "chronos_url": args.chronos_url,
        "https": args.https,
        "nagios_api_url": args.nagios_api_url,
        "state_file": args.state_file,
        "state_timeout_minutes": args.state_timeout_minutes,
        "log_level": "DEBUG" if args.verbose else args.log_level,
    }
    return load_config(args.config, overrides=overrides)


def _resolve_base_url(config: CheckConfig) -> str:
    if config.chronos_url:
        return config.chronos_url
    node = Inventory(config.environments).locate(config.environment, scheme=config.scheme)
    return node.base_url


def collect_results(config: CheckConfig, *, http_client: httpx.Client | None = None) -> list[ClassifiedResult]:
    chronos = ChronosClient(
        _resolve_base_url(config),
        timeout_seconds=config.request_timeout_seconds,
        client=http_client,
    )
    store = StateStore(config.state_path, chronos.fetch_jobs, source_url=chronos.jobs_url)
    snapshot = store.current_snapshot(timedelta(minutes=config.state_timeout_minutes))
    return TaskClassifier(host_label=config.host_label).classify(snapshot)


def run(args: argparse.Namespace, *, http_client: httpx.Client | None = None) -> int:
    try:
        config = _config_from_args(args)
        configure_logging(config.log_level)
        results = collect_results(config, http_client=http_client)

        if args.post_api:
            if config.nagios_api_url:
                api = NagiosApiClient(
                    config.nagios_api_url,
                    timeout_seconds=config.request_timeout_seconds,
                    client=http_client,
                )
                sent = api.submit_results(results)
                print(f"Submitted {sent} results to {api.submit_url}")
            else:
                print(render_results(results))

        if args.write_config:
            # TODO: write /etc/nagios/objects/servers/<host>.cfg service definitions instead of dumping.
            logger.warning("Nagios config file generation is not implemented; dumping results")
            for result in results:
                print(render_results([result]))

        if args.task:
            message, code = check_exit(results, args.task)
            print(message)
            return code
    except ChronosCheckError as e:
        if args.task:
            print(f"{args.task} UNKNOWN: {e}")
        else:
            print(f"ERROR: {e}", file=sys.stderr)
        return int(Status.UNKNOWN)

    return int(Status.OK)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not (args.task or args.post_api or args.write_config):
        parser.print_help()
        return int(Status.UNKNOWN)
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
