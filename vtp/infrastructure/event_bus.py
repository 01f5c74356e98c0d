import logging
import threading
from typing import Type, Callable, List, Dict, Any, Optional
from vtp.domain.events import Event


class EventBus:
    """A small synchronous event bus shared by one process.

    Publishing happens from worker threads (ffmpeg progress, uploads), so the
    subscriber table is guarded by a lock. A failing subscriber is logged and
    skipped; it never breaks the invocation that published the event.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to an event type (and its subclasses). Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        return callback

    def unsubscribe(self, event_type: Type[Event], callback: Callable[[Any], None]) -> None:
        with self._lock:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers."""
        with self._lock:
            targets = [
                cb
                for event_type, callbacks in self._subscribers.items()
                if isinstance(event, event_type)
                for cb in callbacks
            ]
        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                self.logger.warning(f"Subscriber {getattr(callback, '__name__', callback)} failed on {type(event).__name__}: {e}")
