"""
Command-line interface for webauto.

Provides commands for serving the HTTP API and for one-shot extractions.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

import structlog

from webauto import __version__
from webauto.errors import AutomationError

logger = structlog.get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except AutomationError as e:
        logger.error("Command failed", error=e.message, error_type=type(e).__name__)
        print(json.dumps({"success": False, **e.to_dict()}, indent=2), file=sys.stderr)
        return 1
    except Exception as e:
        logger.error("Command failed", error=str(e))
        if args.verbose:
            raise
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="webauto",
        description="Pooled browser sessions with resilient content extraction",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"webauto {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to YAML config file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API server")
    serve_parser.add_argument("--host", help="Bind address (default from config)")
    serve_parser.add_argument("--port", type=int, help="Port (default from config)")
    serve_parser.set_defaults(func=cmd_serve)

    extract_parser = subparsers.add_parser(
        "extract",
        help="Navigate to a URL and extract content once",
    )
    extract_parser.add_argument("url", help="Page to load")
    extract_parser.add_argument(
        "selector",
        nargs="?",
        default="body",
        help="CSS selector to extract (default: body)",
    )
    extract_parser.add_argument(
        "--type", "-t",
        dest="content_type",
        choices=["text", "html", "attribute", "computed"],
        default="text",
        help="What to extract from the element",
    )
    extract_parser.add_argument(
        "--fallback", "-f",
        action="append",
        default=[],
        dest="fallback_selectors",
        help="Fallback selector to try (repeatable)",
    )
    extract_parser.add_argument(
        "--min-length",
        type=int,
        help="Minimum content length to accept",
    )
    extract_parser.add_argument(
        "--retry-attempts",
        type=int,
        help="Attempts per selector",
    )
    extract_parser.add_argument(
        "--timeout",
        type=int,
        help="Timeout in milliseconds",
    )
    extract_parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Do not wait for dynamic content",
    )
    extract_parser.set_defaults(func=cmd_extract)

    return parser


def configure_logging(verbose: bool) -> None:
    """Configure structured logging."""
    level = "DEBUG" if verbose else "INFO"
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if verbose else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    import logging

    # Logs go to stderr so extract output on stdout stays parseable.
    logging.basicConfig(level=getattr(logging, level), stream=sys.stderr)


def cmd_serve(args: argparse.Namespace) -> int:
    """Start API server."""
    from dotenv import load_dotenv

    from webauto.api.main import run_server
    from webauto.config import load_config

    load_dotenv()
    config = load_config(args.config)

    host = args.host or config.server.host
    port = args.port or config.server.port
    print(f"Starting webauto API server on {host}:{port}", file=sys.stderr)
    run_server(config, host=host, port=port)
    return 0


def cmd_extract(args: argparse.Namespace) -> int:
    """Navigate and extract once, printing the result as JSON."""
    from dotenv import load_dotenv

    load_dotenv()
    result = asyncio.run(_extract(args))
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


async def _extract(args: argparse.Namespace) -> dict[str, Any]:
    from webauto.service import AutomationService

    client_id = "cli"
    async with AutomationService.from_config(args.config) as service:
        navigation = await service.navigate(client_id, args.url)
        result = await service.extract_content(
            client_id,
            args.selector,
            args.content_type,
            timeout_ms=args.timeout,
            wait_for_content=False if args.no_wait else None,
            retry_attempts=args.retry_attempts,
            min_length=args.min_length,
            fallback_selectors=args.fallback_selectors,
        )
    return {"page": navigation.to_dict(), **result.to_dict()}


if __name__ == "__main__":
    sys.exit(main())
