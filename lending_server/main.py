"""
Main entry point for the Lending Server.

This module:
- Loads configuration from environment
- Sets up logging
- Builds the FastAPI app (schema is created on first start)
- Runs it under uvicorn until SIGINT/SIGTERM

Usage:
    python -m lending_server.main

    Or with environment variables:
    DB_PATH=/var/lib/library/library.db MAX_ACTIVE_LOANS=5 python -m lending_server.main
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import create_app
from .config import ServerConfig

logger = logging.getLogger(__name__)


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# uvicorn installs its own handlers unless run with log_config=None
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return json_log_formatter.VerboseJSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(config: ServerConfig) -> None:
    """Send application and uvicorn logs through a single stream handler.

    Per-request access lines are only kept at DEBUG.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter(config.observability.log_format))
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    logging.getLogger("uvicorn.access").setLevel(
        logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    )


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    app = create_app(config)

    logger.info(f"Starting HTTP server on {config.http.host}:{config.http.port}")
    uvicorn.run(
        app,
        host=config.http.host,
        port=config.http.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
