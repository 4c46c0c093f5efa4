"""Run the mediator: ``python -m mediator``."""

import logging
import sys

import uvicorn

from mediator.api import create_app
from mediator.config import get_config
from mediator.service import build_mediator
from mediator.utils.logging_config import setup_logging

log = logging.getLogger("mediator")


def main() -> int:
    setup_logging()
    try:
        config = get_config()
    except ValueError as exc:
        log.error("%s", exc)
        return 1

    mediator = build_mediator(config)
    try:
        mediator.start()
    except Exception:
        log.exception("Mediator failed to start")
        mediator.stop()
        return 1

    # uvicorn handles SIGINT/SIGTERM and returns once shut down
    try:
        uvicorn.run(
            create_app(mediator.ingestor),
            host=config.http_host,
            port=config.http_port,
            log_config=None,
        )
    finally:
        mediator.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
