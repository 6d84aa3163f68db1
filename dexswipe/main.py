"""Entry point for the DexSwipe API server."""

from __future__ import annotations

import uvicorn
from loguru import logger

from config.settings import get_settings
from .logging_config import setup_logging


def main() -> None:
    settings = get_settings()
    setup_logging(json=settings.log_json, level="INFO" if settings.is_production else "DEBUG")
    logger.info("Serving DexSwipe API on {host}:{port}", host=settings.api.host, port=settings.api.port)
    uvicorn.run("dexswipe.web.app:app", host=settings.api.host, port=settings.api.port, log_config=None)


if __name__ == "__main__":
    main()
