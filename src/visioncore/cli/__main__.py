"""CLI entry point for visioncore.cli module.

Enables execution via: python -m visioncore.cli <command> [OPTIONS]

Commands:
    batch     Run a generation batch over local images
    set-key   Store an API key locally or for a user
    history   Show or clear recent results
    serve     Run the HTTP API with uvicorn
"""

import sys
from argparse import ArgumentParser, Namespace

import uvicorn

from visioncore.cli import batch, history, keys
from visioncore.core.config import Settings


def serve(args: Namespace) -> int:
    """Run the API server."""
    settings = Settings()  # type: ignore[call-arg]
    uvicorn.run(
        "visioncore.app:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
    )
    return 0


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="visioncore",
        description="Batch generation of AI product imagery and video",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    batch.add_parser(subparsers)
    keys.add_parser(subparsers)
    history.add_parser(subparsers)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Bind address (default: HOST)")
    serve_parser.add_argument("--port", type=int, help="Port (default: PORT)")
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on changes")
    serve_parser.set_defaults(handler=serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.handler(args)


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
