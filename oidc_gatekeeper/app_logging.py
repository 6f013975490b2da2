import logging
import socket
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from .exceptions import ConfigurationError

TRACE = 5
logging.addLevelName(TRACE, 'TRACE')

PRETTY_FORMAT = '%(asctime)s %(levelname)-5s %(name)s %(filename)s:%(lineno)d > %(message)s'
JSON_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'

_LEVELS = {
    'trace': TRACE,
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'fatal': logging.CRITICAL,
    'critical': logging.CRITICAL,
}


def parse_level(name: str) -> int:
    try:
        return _LEVELS[name.strip().lower()]
    except KeyError:
        raise ConfigurationError(f"Unknown log level '{name}'") from None


def setup_logger(level: str = 'info', pretty: bool = False,
                 logger: Optional[logging.Logger] = None) -> logging.Logger:
    """Attach one stream handler to ``logger`` (the root logger by default).

    JSON lines by default; ``pretty`` switches to a console format with the
    caller's file and line. Calling it again replaces the handler it added
    before.
    """
    if logger is None:
        logger = logging.getLogger()
    for handler in list(logger.handlers):
        if getattr(handler, '_gatekeeper', False):
            logger.removeHandler(handler)

    log_handler = logging.StreamHandler()
    log_handler._gatekeeper = True  # type: ignore[attr-defined]
    if pretty:
        formatter: logging.Formatter = logging.Formatter(PRETTY_FORMAT)
    else:
        formatter = JsonFormatter(JSON_FORMAT,
                                  rename_fields={'levelname': 'level', 'asctime': 'timestamp'},
                                  static_fields={'hostname': socket.gethostname()})
    log_handler.setFormatter(formatter)
    logger.addHandler(log_handler)
    logger.setLevel(parse_level(level))
    return logger
