import logging
import threading
from typing import Type, Callable, List, Dict, Any, Optional
from medorg.domain.events import Event

class EventBus:
    """Synchronous event bus; safe to publish from worker threads.

    Callbacks run on the publishing thread. The subscriber list is copied
    under the lock so no callback ever runs while the lock is held.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        return callback

    def publish(self, event: Event):
        """Delivers the event to subscribers of its exact type."""
        with self._lock:
            callbacks = list(self._subscribers.get(type(event), ()))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                # A broken subscriber must not take down a worker thread
                self.logger.error(f"Event subscriber failed for {type(event).__name__}: {e}")
