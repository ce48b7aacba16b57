import logging
import sys


_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure console logging for the bot process.

    Idempotent: handlers installed by a previous call are replaced. The
    `discord` library logger is kept at WARNING unless we run at DEBUG.
    """

    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in list(root.handlers):
        if getattr(handler, "_vouchbot", False):
            root.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT))
    handler._vouchbot = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    if numeric_level > logging.DEBUG:
        logging.getLogger("discord").setLevel(logging.WARNING)

    logger = logging.getLogger("vouchbot")
    logger.debug("Logging initialized: level=%s", logging.getLevelName(numeric_level))
    return logger
