from __future__ import annotations

import logging

import uvicorn

from autobid.config import settings
from autobid.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(settings.log_level)
    logger.info("Starting autobid API on %s:%s", settings.web_host, settings.web_port)
    uvicorn.run(
        "autobid.web.main:app",
        host=settings.web_host,
        port=settings.web_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
