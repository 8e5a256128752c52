# showroom/core/logging.py
import logging
import sys
from typing import Iterable

# request-level chatter from the storage client; the gateway logs its own summary
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str = "INFO", *, quiet: Iterable[str] = NOISY_LOGGERS):
    """Root handler on stdout, configured once; later calls only adjust levels."""
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S%z",
            )
        )
        root.addHandler(h)
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
    # uvicorn has its own handlers; align levels only
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
