import logging
from typing import Iterable, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    fmt: str = DEFAULT_FORMAT,
    quiet: Optional[Iterable[str]] = None,
) -> logging.Logger:
    """Install a single console handler on the root logger.

    - Replaces any existing root handlers, so calling it again reconfigures
      instead of duplicating output
    - Unknown level names fall back to INFO
    - Loggers named in ``quiet`` are held at WARNING
    """
    root = logging.getLogger()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt))
    root.handlers = [handler]

    level_value = getattr(logging, level.upper(), None)
    root.setLevel(level_value if isinstance(level_value, int) else logging.INFO)

    for name in quiet or ():
        logging.getLogger(name).setLevel(logging.WARNING)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a module logger after ensuring logging is initialized."""
    if not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name)
