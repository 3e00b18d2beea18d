__all__ = 'FD', 'devnull'

import os
import fcntl
from threading import Lock


class FD:
    """file descriptor wrapper

    A glorified integer with a close() method that only ever closes once.

    >>> r, w = os.pipe()
    >>> rfd, wfd = FD(r, 'r'), FD(w, 'w')
    >>> wfd.write(b'test')
    4
    >>> wfd.close(); wfd.close()
    True
    False
    >>> rfd.read(), rfd.read()
    (b'test', b'')
    >>> rfd.close()
    True
    >>> rfd.closed
    True
    """
    def __init__(self, fd, mode='r'):
        self.fd = int(fd)
        self.mode = mode
        self._closed = False
        self._lock = Lock()

    def fileno(self):
        if self._closed:
            raise ValueError(f'{self!r} is closed')
        return self.fd

    def read(self, size=65536):
        return os.read(self.fileno(), size)

    def write(self, data):
        """write all of data, returning its length"""
        view = memoryview(data)
        total = len(view)
        while view:
            n = os.write(self.fileno(), view)
            view = view[n:]
        return total

    def close(self):
        """close the descriptor; returns False if it was already closed"""
        with self._lock:
            if self._closed:
                return False
            self._closed = True
        os.close(self.fd)
        return True

    @property
    def closed(self):
        return self._closed

    def dup_above(self, floor):
        """duplicate to the lowest free descriptor >= floor, close-on-exec

        >>> r, w = os.pipe()
        >>> high = FD(r).dup_above(100)
        >>> high.fd >= 100, os.get_inheritable(high.fd)
        (True, False)
        >>> for fd in (FD(r), FD(w), high): _ = fd.close()
        """
        return type(self)(fcntl.fcntl(self.fileno(), fcntl.F_DUPFD_CLOEXEC, floor), self.mode)

    def __repr__(self):
        return f'{type(self).__name__}({self.fd}, {repr(self.mode)})'

    def __int__(self):
        return self.fd


def devnull(mode='r'):
    """open os.devnull as an FD

    >>> null = devnull('w'); null.write(b'gone'); null.close()
    4
    True
    """
    flags = os.O_RDONLY if mode == 'r' else os.O_WRONLY
    return FD(os.open(os.devnull, flags | os.O_CLOEXEC), mode)
