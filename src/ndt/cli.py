from __future__ import annotations

import argparse
import asyncio
import json
import logging

from .callbacks import Callbacks
from .constants import DEFAULT_PATH, DEFAULT_PORT, DEFAULT_TESTS, TEST_C2S, TEST_META, TEST_S2C
from .coordinator import connect
from .errors import NDTError

logger = logging.getLogger(__name__)

TEST_NAMES = {"upload": TEST_C2S, "download": TEST_S2C, "meta": TEST_META}


def parse_tests(value: str) -> int:
    mask = 0
    for name in value.split(","):
        name = name.strip()
        if not name:
            continue
        if name not in TEST_NAMES:
            raise argparse.ArgumentTypeError(f"unknown test {name!r} (choose from {', '.join(TEST_NAMES)})")
        mask |= TEST_NAMES[name]
    if mask == 0:
        raise argparse.ArgumentTypeError("select at least one test")
    return mask


def cmd_run(args: argparse.Namespace) -> int:
    callbacks = Callbacks(
        on_start=lambda site: logger.info("connecting to %s", site),
        on_change=lambda token: logger.info("status: %s", token),
    )
    try:
        measured = asyncio.run(connect(args.host, args.port, args.path, args.tests, callbacks))
    except NDTError as e:
        logger.error("test against %s failed: %s", args.host, e)
        return 1

    payload = {
        "host": args.host,
        "download_kbps": measured.s2c_rate,
        "upload_kbps": measured.c2s_rate,
        "variables": measured.variables,
        "results": measured.results,
    }
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="ndt-client", description="Run NDT throughput tests against a server.")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="run a test session")
    run.add_argument("--host", required=True)
    run.add_argument("--port", type=int, default=DEFAULT_PORT)
    run.add_argument("--path", default=DEFAULT_PATH)
    run.add_argument(
        "--tests",
        type=parse_tests,
        default=DEFAULT_TESTS,
        help="comma-separated subset of upload,download,meta",
    )
    run.add_argument("--json", action="store_true")
    run.set_defaults(func=cmd_run)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
