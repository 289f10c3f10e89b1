from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from loadgen import DEFAULT_RECIPIENT, DEFAULT_STRK_TOKEN, DEFAULT_USER_ADDRESS
from paymaster_rpc import UnexpectedTransactionType
from report import results_to_json, write_results_json, write_summary_markdown
from runner import RampTestResult, RunConfig, ServiceNotAvailable, run_load_test
from signer import ConfigError


logger = logging.getLogger(__name__)

PRIVATE_KEY_ENV = "PRIVATE_KEY"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="paymaster-stress",
        description="Stress testing tool for paymaster service",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    linear = subparsers.add_parser(
        "linear",
        help="Send linearly increasing TPS to the paymaster",
    )
    linear.add_argument("--endpoint", default="http://localhost:12777")
    linear.add_argument("--max-tps", type=int, required=True)
    linear.add_argument(
        "--duration",
        type=int,
        default=5,
        help="Total test duration in seconds, split evenly across steps.",
    )
    linear.add_argument("--steps", type=int, default=5)
    linear.add_argument("--output", type=Path, default=None)
    linear.add_argument(
        "--markdown",
        type=Path,
        default=None,
        help="Optional path for a Markdown table of the step results.",
    )
    linear.add_argument("--user-address", default=DEFAULT_USER_ADDRESS)
    linear.add_argument("--gas-token", default=DEFAULT_STRK_TOKEN)
    linear.add_argument("--recipient", default=DEFAULT_RECIPIENT)
    linear.add_argument("--timeout-s", type=float, default=30.0)
    return parser


def _validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.max_tps < 1:
        parser.error("--max-tps must be >= 1")
    if args.duration <= 0:
        parser.error("--duration must be > 0")
    if args.steps < 1:
        parser.error("--steps must be >= 1")
    if args.timeout_s <= 0:
        parser.error("--timeout-s must be > 0")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _emit_results(args: argparse.Namespace, result: RampTestResult) -> None:
    assert result.summary is not None
    if args.output is not None:
        write_results_json(args.output, result.steps, result.summary)
        print(f"Results saved to: {args.output}")
    else:
        print(results_to_json(result.steps, result.summary))

    if args.markdown is not None:
        write_summary_markdown(args.markdown, args.endpoint, result.steps, result.summary)
        logger.info("Markdown summary written to: %s", args.markdown)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _validate_args(parser, args)
    _configure_logging(args.log_level)

    private_key = os.environ.get(PRIVATE_KEY_ENV)
    if not private_key:
        print(f"Error: environment variable {PRIVATE_KEY_ENV} is not set", file=sys.stderr)
        return 1

    config = RunConfig(
        private_key=private_key,
        max_tps=args.max_tps,
        endpoint=args.endpoint,
        duration_s=args.duration,
        steps=args.steps,
        user_address=args.user_address,
        gas_token=args.gas_token,
        recipient=args.recipient,
        timeout_s=args.timeout_s,
    )

    try:
        result = asyncio.run(run_load_test(config))
    except (ConfigError, ServiceNotAvailable) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except UnexpectedTransactionType as exc:
        print(f"Fatal: paymaster response contract violated: {exc}", file=sys.stderr)
        return 1

    _emit_results(args, result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
