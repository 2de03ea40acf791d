import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from pydantic import ValidationError

from ankabot.artifacts import ArtifactWriter
from ankabot.core.config import settings
from ankabot.core.logging import setup_logging
from ankabot.errors import AnkabotError, InvalidUrlError
from ankabot.fetch.http_client import HttpxClient
from ankabot.schemas import FetchRequest, GeoPoint, OnTimeout, OutputKind, OutputSpec, ReadyState, WaitConfig
from ankabot.services.orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TIMEOUT = 2
EXIT_INTERRUPTED = 130

RESULT_FILENAME = "result.json"


def _geo(text: str) -> GeoPoint:
    try:
        return GeoPoint.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid --geo value: {e}")


def _non_negative(text: str) -> int:
    value = int(text)
    if value < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return value


def _positive(text: str) -> int:
    value = int(text)
    if value <= 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ankabot",
        description="HTTP-first fetch with headless browser fallback",
    )
    parser.add_argument("url", help="URL to fetch")

    out = parser.add_argument_group("outputs")
    out.add_argument("--pdf", nargs="?", const="", default=None, metavar="PATH",
                     help="PDF output path (PDF is on by default, path derived from the URL)")
    out.add_argument("--no-pdf", action="store_true", help="disable PDF output (or set ANKABOT_PDF=0)")
    out.add_argument("--screenshot", metavar="PATH", help="save a full-page PNG screenshot")
    out.add_argument("--json", dest="json_path", metavar="PATH",
                     help="write the JSON summary to PATH and print the path")
    out.add_argument("--run-dir", default=settings.RUN_DIR, metavar="DIR",
                     help="directory for artifacts; the summary goes to DIR/result.json")

    wait = parser.add_argument_group("page settle")
    wait.add_argument("--max-wait-ms", type=_positive, default=settings.MAX_WAIT_MS)
    wait.add_argument("--wait-ready", choices=[s.value for s in ReadyState], default=settings.WAIT_READY)
    wait.add_argument("--network-idle-ms", type=_non_negative, default=settings.NETWORK_IDLE_MS)
    wait.add_argument("--wait-selector", metavar="CSS")
    wait.add_argument("--on-timeout", choices=[o.value for o in OnTimeout], default=OnTimeout.CONTINUE.value,
                      help="'report' exits with code 2 when the page did not settle")

    profile = parser.add_argument_group("session profile")
    profile.add_argument("--profile", default=settings.DEFAULT_PROFILE)
    profile.add_argument("--locale", metavar="TAG")
    profile.add_argument("--tz", metavar="ZONE")
    profile.add_argument("--geo", type=_geo, metavar="LAT,LON")
    profile.add_argument("--import-cookies", metavar="PATH")
    profile.add_argument("--export-cookies", metavar="PATH")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--force-http", action="store_true", help="never fall back to the browser")
    mode.add_argument("--force-browser", action="store_true", help="skip the HTTP attempt")

    parser.add_argument("--timeout-s", type=_positive, default=settings.REQUEST_TIMEOUT, help="HTTP request timeout")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def build_request(args: argparse.Namespace) -> FetchRequest:
    outputs = [OutputSpec(kind=OutputKind.JSON, path=args.json_path)]
    if (args.pdf is not None or settings.PDF_BY_DEFAULT) and not args.no_pdf:
        outputs.append(OutputSpec(kind=OutputKind.PDF, path=args.pdf or None))
    if args.screenshot:
        outputs.append(OutputSpec(kind=OutputKind.SCREENSHOT, path=args.screenshot))

    try:
        return FetchRequest(
            url=args.url,
            profile_name=args.profile,
            wait_config=WaitConfig(
                max_wait_ms=args.max_wait_ms,
                ready_state=args.wait_ready,
                network_idle_ms=args.network_idle_ms,
                selector=args.wait_selector,
            ),
            outputs=tuple(outputs),
            force_http=args.force_http,
            force_browser=args.force_browser,
            locale=args.locale,
            timezone=args.tz,
            geo=args.geo,
            import_cookies=args.import_cookies,
            export_cookies=args.export_cookies,
            run_dir=args.run_dir,
            on_timeout=args.on_timeout,
        )
    except ValidationError as e:
        for error in e.errors():
            if error["loc"] and error["loc"][0] == "url":
                raise InvalidUrlError(str(error["msg"]).replace("Value error, ", ""), args.url)
        raise AnkabotError(f"Invalid arguments: {e}")


def emit(summary: dict, args: argparse.Namespace, writer: ArtifactWriter) -> None:
    """Print the summary, or write it to a file and print the path."""
    target = args.json_path
    if target and args.run_dir and not os.path.isabs(target):
        target = os.path.join(args.run_dir, target)
    if not target and args.run_dir:
        target = os.path.join(args.run_dir, RESULT_FILENAME)

    if target:
        print(writer.save_json(summary, target))
    else:
        print(json.dumps(summary, indent=2, ensure_ascii=False))


def main(argv: Optional[List[str]] = None, orchestrator: Optional[FetchOrchestrator] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    writer = ArtifactWriter()
    try:
        request = build_request(args)
        orchestrator = orchestrator or FetchOrchestrator(http_client=HttpxClient(timeout_sec=args.timeout_s))
        result = asyncio.run(orchestrator.run(request))
        summary = result.to_summary()
        if request.run_dir:
            summary["runDir"] = writer.ensure_dir(request.run_dir)
        emit(summary, args, writer)
    except AnkabotError as e:
        print(f"ankabot: error: {e}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        print("ankabot: interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        # anything the browser or a library raised that has no AnkabotError mapping
        logger.debug("unhandled error", exc_info=True)
        print(f"ankabot: error: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    if result.status == "timeout":
        return EXIT_TIMEOUT
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
