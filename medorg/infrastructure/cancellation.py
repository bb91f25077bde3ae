import logging
import signal
import threading
from typing import Callable, Optional


class CancellationToken:
    """Run-wide cancellation flag.

    Level-triggered and monotonic: once set it stays set for the rest of the
    run. Components receive the token at construction and poll it before
    launching each subprocess.
    """

    def __init__(self):
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleeps up to ``timeout`` seconds, returning early once cancelled."""
        return self._event.wait(timeout)

    def __bool__(self) -> bool:
        return self.is_set()


def install_interrupt_handler(token: CancellationToken) -> Callable[[], None]:
    """Routes SIGINT to ``token``. A second Ctrl+C falls back to KeyboardInterrupt.

    Returns a callable restoring the previous handler.
    """
    logger = logging.getLogger(__name__)
    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum, frame):
        if token.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received - finishing current step, press Ctrl+C again to abort")
        token.set()

    signal.signal(signal.SIGINT, _handler)

    def _restore():
        signal.signal(signal.SIGINT, previous)

    return _restore
