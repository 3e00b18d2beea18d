"""publish/subscribe for handles, streams and channels

>>> class Bell(EventEmitter):
...     events = 'ring',
...
>>> bell = Bell()
>>> heard = []
>>> bell.on('ring', lambda n: heard.append(('on', n))).once('ring', lambda n: heard.append(('once', n)))
Bell()
>>> bell.emit('ring', 1), bell.emit('ring', 2)
(True, True)
>>> heard
[('on', 1), ('once', 1), ('on', 2)]
>>> bell.on('knock', print)
Traceback (most recent call last):
  ...
ValueError: Bell has no event 'knock'
"""

__all__ = 'EventEmitter',

import logging
from threading import Lock

logger = logging.getLogger(__name__)


class EventEmitter:
    """observer registry with a fixed set of event names

    Listeners run on whichever thread emits. A listener that raises is
    logged and does not stop the others. An 'error' with no listener is
    logged instead of raised.
    """
    events = ()

    def __init__(self):
        self._listeners = {}
        self._listeners_lock = Lock()

    def _check(self, event):
        if event not in self.events:
            raise ValueError(f'{type(self).__name__} has no event {event!r}')

    def on(self, event, listener, *, once=False, prepend=False):
        """register listener for event; returns self for chaining"""
        self._check(event)
        with self._listeners_lock:
            entries = self._listeners.setdefault(event, [])
            entry = (listener, once)
            if prepend:
                entries.insert(0, entry)
            else:
                entries.append(entry)
        self._listening(event)
        return self

    def once(self, event, listener, *, prepend=False):
        """register a listener that is removed after its first call"""
        return self.on(event, listener, once=True, prepend=prepend)

    def off(self, event, listener):
        """remove the first registration of listener

        >>> e = EventEmitter(); e.events = 'x',
        >>> e.on('x', print).off('x', print).listeners('x')
        []
        """
        with self._listeners_lock:
            entries = self._listeners.get(event, [])
            for i, (registered, _) in enumerate(entries):
                if registered == listener:
                    del entries[i]
                    break
        return self

    def listeners(self, event):
        with self._listeners_lock:
            return [listener for listener, _ in self._listeners.get(event, ())]

    def emit(self, event, *args):
        """call every listener of event; returns whether there were any"""
        self._check(event)
        with self._listeners_lock:
            entries = self._listeners.get(event, [])
            self._listeners[event] = [entry for entry in entries if not entry[1]]
        if not entries:
            if event == 'error':
                logger.error('unhandled error from %r: %r', self, args[0] if args else None)
            return False
        for listener, _ in entries:
            try:
                listener(*args)
            except Exception:
                logger.exception('%r listener for %r failed', event, self)
        return True

    def _listening(self, event):
        """hook for subclasses that start work once someone listens"""

    def __repr__(self):
        return f'{type(self).__name__}()'
