import logging
import sys
from typing import Iterable

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# chatty third-party loggers, raised to WARNING unless the app runs at DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def setup_logging(level: str = "INFO", noisy: Iterable[str] = NOISY_LOGGERS) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    # startup may run more than once per process (tests, reload)
    if not any(getattr(h, "stream", None) is sys.stdout for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)

    if root.level > logging.DEBUG:
        for name in noisy:
            logging.getLogger(name).setLevel(logging.WARNING)
