"""Command line entry point.

``python -m snipexec serve`` starts the long-lived backend, either as an
HTTP service (default) or reading notifications from stdin (``--stdio``).
``python -m snipexec run FILE FIRST LAST`` runs one range synchronously
and prints its output, which is handy when wiring up a new language.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from .api import create_app
from .config import Config
from .errors import SnipExecError
from .log import configure_logging
from .registry import SupportLevel
from .resolver import ExecutionRequest
from .server import JobServer
from .stdio import serve_stdio


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="snipexec", description="Run fragments of source files.")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="start the backend")
    serve.add_argument("--stdio", action="store_true", help="read notifications from stdin")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    run = sub.add_parser("run", help="run a line range once and print the output")
    run.add_argument("file", type=Path)
    run.add_argument("first_line", type=int)
    run.add_argument("last_line", type=int)
    run.add_argument("--filetype", default=None)
    run.add_argument(
        "--level",
        default=None,
        type=str.lower,
        choices=[level.name.lower() for level in SupportLevel if level > SupportLevel.UNSUPPORTED],
        help="cap the support level, e.g. bloc",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    config = Config.from_env()
    if getattr(args, "host", None):
        config.host = args.host
    if getattr(args, "port", None):
        config.port = args.port
    logger = configure_logging(config)

    server = JobServer(config)

    if args.command == "run":
        request = ExecutionRequest(
            file_path=args.file.resolve(),
            first_line=args.first_line,
            last_line=args.last_line,
            script_dir=Path.cwd(),
            filetype=args.filetype,
            level=SupportLevel.parse(args.level) if args.level else None,
        )
        try:
            report = server.execute(request)
        except SnipExecError as exc:
            print(f"{type(exc).__name__}: {exc}", file=sys.stderr)
            return 2
        sys.stdout.write(report.outcome.stdout)
        sys.stderr.write(report.outcome.stderr)
        return report.outcome.exit_code if report.outcome.exit_code >= 0 else 1

    server.start()
    logger.info("snipexec backend launched")
    if args.stdio:
        serve_stdio(server)
        return 0

    uvicorn.run(create_app(server, config), host=config.host, port=config.port, log_level=config.log_level.lower())
    server.cancel_all(close=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
