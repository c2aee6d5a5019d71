"""Start the editor's web interface with ``python -m cep_system``."""

from __future__ import annotations

import logging

import uvicorn

from .config import Settings
from .logging_config import setup_logging
from .web.app import create_app

logger = logging.getLogger(__name__)


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.logging_level, settings.log_file)
    logger.info(
        "Serving %s on http://%s:%d as %r",
        settings.database_path,
        settings.host,
        settings.port,
        settings.user,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.server_log_level,
    )


if __name__ == "__main__":  # pragma: no cover - command line entry point
    main()
