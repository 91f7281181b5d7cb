"""Process-wide logging setup, called once from the app factory."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # uvicorn access lines duplicate our own request logging
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
