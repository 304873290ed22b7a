"""
Points Server - Main entry point.

This module starts the Points Server:
- Loads configuration from the environment
- Creates the database schema if needed
- Serves the HTTP API with uvicorn

Usage:
    python -m loyalty.points_server.main

Configuration is entirely via environment variables.
See config.py for core settings and api/settings.py for HTTP settings.

Invariants:
    - The schema exists before the first request is accepted
    - Configuration errors exit with status 1 before anything starts
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import HttpSettings, PointsServicer, create_http_app
from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_app(config: ServerConfig, settings: HttpSettings | None = None):
    """Wire the servicer, create the schema and return the HTTP app."""
    servicer = PointsServicer.from_config(config)
    servicer.database.initialize_sync()
    return create_http_app(servicer, settings)


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
        settings = HttpSettings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)
    config.log_config()

    app = build_app(config, settings)

    logger.info("Starting Points Server", extra={"bind_address": settings.bind_address})
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
