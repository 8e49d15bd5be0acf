"""
Entry point for the document register HTTP service.

This module wires configuration, logging, storage, the register and the
comparator together and serves the REST API with uvicorn.

Usage:
    python -m docschema.docregister.main

    # or, with environment overrides
    DOCREG_STORAGE_BACKEND=file DOCREG_STORAGE_PATH=/var/lib/docreg \\
        python -m docschema.docregister.main

Environment:
    DOCREG_*          Register settings (see config.RegisterSettings)
    DOCREG_COMPARE_*  Comparator settings (see config.ComparatorSettings)
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn
from pydantic import ValidationError

from .api.http_server import create_http_app
from .compare.comparator import Comparator
from .config import ComparatorSettings, LogFormat, RegisterSettings
from .register.core import VersionedRegister
from .storage.base import create_storage

logger = logging.getLogger(__name__)


def setup_logging(settings: RegisterSettings) -> None:
    """Configure root logging from settings.

    Args:
        settings: Register settings (log_level, log_format)
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == LogFormat.JSON:
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def create_register(settings: RegisterSettings) -> VersionedRegister:
    """Build a register on the configured storage backend."""
    return VersionedRegister(storage=create_storage(settings), settings=settings)


def main() -> None:
    """Main entry point."""
    try:
        settings = RegisterSettings()
        comparator_settings = ComparatorSettings()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)
    settings.log_config()

    app = create_http_app(
        register=create_register(settings),
        comparator=Comparator.from_settings(comparator_settings),
        settings=settings,
    )
    logger.info(f"Serving register '{settings.register_name}' on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
