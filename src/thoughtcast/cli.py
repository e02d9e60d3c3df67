"""Command-line interface for thoughtcast.

Provides the main entry point for serving the live terminal and for
checking that the encoder is usable on this machine.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="thoughtcast",
        description="Live AI terminal with viewer fan-out and stream encoding",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/thoughtcast.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the broadcast server")
    serve_parser.add_argument("--host", type=str, default=None, help="Override server.host")
    serve_parser.add_argument("--port", type=int, default=None, help="Override server.port")
    serve_parser.add_argument(
        "--provider", type=str, default=None,
        choices=["llm7", "openai", "anthropic", "scripted"],
        help="Override generator.provider",
    )

    subparsers.add_parser("encoder-check", help="Verify the encoder executable runs")

    return parser.parse_args(argv)


async def _encoder_check(settings) -> int:
    """Run the encoder probe and print the result."""
    from thoughtcast.encoder.process import EncoderUnavailableError, probe_encoder

    try:
        version = await probe_encoder(settings.encoder.executable)
    except EncoderUnavailableError as e:
        print(f"Encoder check FAILED: {e}")
        return 1
    print(f"Encoder OK: {version}")
    key_set = bool(settings.encoder.stream_key.get_secret_value())
    print(f"Stream key: {'set' if key_set else 'NOT SET'}")
    print(f"Ingest:     {settings.encoder.ingest_url.format(key='****')}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the thoughtcast CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from thoughtcast.config.settings import load_settings
    from thoughtcast.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        from thoughtcast.gateway.server import create_app
        import uvicorn

        if args.host:
            settings.server.host = args.host
        if args.port:
            settings.server.port = args.port
        if args.provider:
            settings.generator.provider = args.provider
        logger.info(
            "Starting server on %s:%d (provider=%s)",
            settings.server.host, settings.server.port, settings.generator.provider,
        )
        app = create_app(settings)
        uvicorn.run(
            app,
            host=settings.server.host,
            port=settings.server.port,
        )

    elif args.command == "encoder-check":
        logger.info("Running encoder check")
        sys.exit(asyncio.run(_encoder_check(settings)))


if __name__ == "__main__":
    main()
