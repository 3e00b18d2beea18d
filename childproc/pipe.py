__all__ = 'Pipe', 'InputPipe', 'OutputPipe'

from .fd import FD
import os


class Pipe:
    """wrapper around os.pipe

    Both ends are close-on-exec; a spawn backend makes the child's end
    inheritable only in the child, when it installs it in a stdio slot.

    >>> p = Pipe()
    >>> p.write_fd.write(b'hello')
    5
    >>> p.write_fd.close()
    True
    >>> p.read()
    b'hello'
    >>> p.close()
    """
    def __init__(self):
        self.fds = tuple(
            FD(fd, f'{rw}b')
            for fd, rw in zip(os.pipe(), 'rw')
        )

    @property
    def read_fd(self):
        return self.fds[0]

    @property
    def write_fd(self):
        return self.fds[1]

    def close(self):
        for fd in self.fds:
            fd.close()

    def read(self):
        """read the read end until end-of-file"""
        chunks = []
        while chunk := self.read_fd.read():
            chunks.append(chunk)
        return b''.join(chunks)

    def __repr__(self):
        return f'{type(self).__name__}()<{self.read_fd}, {self.write_fd}>'


class InputPipe(Pipe):
    """Pipe the child reads from (e.g. stdin)

    >>> p = InputPipe()
    >>> p.child_end is p.read_fd, p.parent_end is p.write_fd
    (True, True)
    >>> p.close()
    """
    @property
    def child_end(self):
        return self.read_fd

    @property
    def parent_end(self):
        return self.write_fd


class OutputPipe(Pipe):
    """Pipe the child writes to (e.g. stdout)"""
    @property
    def child_end(self):
        return self.write_fd

    @property
    def parent_end(self):
        return self.read_fd
