"""
Acme Server - Main entry point.

Startup sequence:
    1. Load configuration from the environment
    2. Configure logging
    3. Bootstrap the storage core (schema initialized exactly once)
    4. Serve the HTTP API

Usage:
    python -m dbaas.acme_server.main

Configuration is entirely via environment variables.
See config.py and api/settings.py for all available settings.

Invariants:
    - A configuration or schema error exits non-zero before serving
    - The HTTP host reuses the context built here; it does not bootstrap again
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import HttpSettings, create_app
from .config import ServerConfig
from .context import bootstrap
from .errors import AcmeError
from .schema import DuplicateRegistrationError

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    try:
        config.log_config()
        context = bootstrap(config)
    except AcmeError as e:
        logger.error(f"Startup failed: {e.message}", extra={"error_code": e.code, **e.details})
        sys.exit(1)
    except (ValueError, DuplicateRegistrationError) as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)

    settings = HttpSettings()
    app = create_app(config, context=context, settings=settings)

    logger.info(f"Serving on http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
