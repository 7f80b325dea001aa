"""Command line entry point that serves the session API with uvicorn."""

from __future__ import annotations

import argparse
from typing import Sequence

import uvicorn

from fingerpick.backend.config import load_settings
from fingerpick.backend.logging_config import configure_logging


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Fingerpick session server")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--log-level", default=settings.log_level)
    parser.add_argument("--reload", action="store_true")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logger = configure_logging(args.log_level)
    logger.info("Serving session API on http://%s:%d", args.host, args.port)
    uvicorn.run(
        "fingerpick.backend.api:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        reload=args.reload,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
