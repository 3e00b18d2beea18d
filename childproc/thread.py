__all__ = 'Thread',

import logging
import threading

logger = logging.getLogger(__name__)


class Thread(threading.Thread):
    """no-frills thread with a return value

    Daemonic by default so that a stuck pipe never holds the interpreter open.

    >>> Thread(lambda: 1 + 2).start().join()
    3
    >>> with Thread(lambda: 1 + 2) as thread: thread.join()
    ...
    3

    An exception in the target is kept and re-raised by join():

    >>> try: Thread(lambda: 1 / 0).start().join()
    ... except ZeroDivisionError: 'raised'
    ...
    'raised'
    """
    def __init__(self, target, name=None, daemon=True):
        """initilialize the thread

        target: callable which takes no arguments
        name:   thread name; derived from target if not given
        """
        self.result = None
        self.exception = None

        def closure():
            try:
                self.result = target()
            except BaseException as e:
                logger.debug('thread %s failed: %r', self.name, e)
                self.exception = e

        super().__init__(target=closure, name=name or Thread.get_name(target), daemon=daemon)

    def start(self):
        """start the thread"""
        super().start()
        return self

    def join(self, timeout=None):
        """join the thread"""
        super().join(timeout)
        if self.exception is not None:
            raise self.exception
        return self.result

    @staticmethod
    def get_name(func):
        """give a decent name to the thread"""
        if hasattr(func, 'func') and func.func is not func:
            return Thread.get_name(func.func)
        return getattr(func, '__qualname__', repr(func))

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        self.join()
