"""Turns SIGINT/SIGTERM into a shared shutdown event."""
import logging
import signal
import threading
import typing
from typing import Callable, Optional

from .app_logging import TRACE

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def handle_signals(shutdown: threading.Event,
                   logger: Optional[logging.Logger] = None,
                   signals: typing.Iterable[int] = SHUTDOWN_SIGNALS) -> Callable[[], None]:
    """
    Set ``shutdown`` when one of ``signals`` arrives.

    Must be called from the main thread. Returns a function that puts the
    previous handlers back.
    """
    logger = (logger or logging.getLogger(__name__)).getChild('handle_signals')

    def signal_handler(signum: int, _frame: typing.Any) -> None:
        """Graceful shutdown request"""
        if shutdown.is_set():
            logger.log(TRACE, 'Shutdown already requested, ignoring signal %s', signum)
            return
        logger.info('Received signal. Initiating shutdown...',
                    extra={'signal': signal.Signals(signum).name})
        shutdown.set()

    previous = {}
    for signum in signals:
        previous[signum] = signal.signal(signum, signal_handler)
    logger.log(TRACE, 'Signal handler set up.')

    def restore() -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    return restore
