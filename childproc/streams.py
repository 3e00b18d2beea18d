r"""parent-side endpoints of a child's pipes

A ReadableStream can be pulled with read() or pushed through 'data' events
(attaching a 'data' listener starts a pump thread, like resume()):

>>> from childproc.pipe import OutputPipe
>>> p = OutputPipe()
>>> stream = ReadableStream(p.parent_end, 'stdout')
>>> chunks = []
>>> stream.on('data', chunks.append).on('end', lambda: chunks.append('end'))
ReadableStream('stdout')
>>> p.child_end.write(b'abc'); p.child_end.close()
3
True
>>> stream.wait_closed(5)
True
>>> chunks
[b'abc', 'end']

A WritableStream raises CommunicationError when the reader went away:

>>> p = OutputPipe()
>>> out = WritableStream(p.child_end, 'stdin')
>>> p.parent_end.close()
True
>>> try: out.write(b'x')
... except CommunicationError as e: type(e.__cause__).__name__
...
'BrokenPipeError'
>>> out.end()
"""

__all__ = 'ReadableStream', 'WritableStream'

import codecs
import logging
import select
import threading

from .errors import CommunicationError
from .events import EventEmitter
from .pipe import Pipe
from .thread import Thread

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536
DRAIN_CHUNKS = 16


class ReadableStream(EventEmitter):
    """readable end of a pipe

    events: data(chunk), end(), close(), error(exc)

    'end' fires once end-of-file was read; 'close' fires once the descriptor
    is closed, whether after 'end' or after destroy().
    """
    events = 'data', 'end', 'close', 'error'

    def __init__(self, fd, name):
        super().__init__()
        self.fd = fd
        self.name = name
        self.ended = False
        self._decoder = None
        self._pump = None
        self._wakeup = None
        self._destroyed = False
        self._drain = False
        self._finished = False
        self._closed = threading.Event()
        self._state_lock = threading.Lock()

    def set_encoding(self, encoding):
        """decode chunks with encoding before handing them out

        >>> from childproc.pipe import OutputPipe
        >>> p = OutputPipe(); s = ReadableStream(p.parent_end, 'stdout')
        >>> _ = s.set_encoding('utf-8')
        >>> _ = p.child_end.write('é'.encode()); _ = p.child_end.close()
        >>> s.read()
        'é'
        """
        self._decoder = codecs.getincrementaldecoder(encoding)(errors='replace')
        return self

    @property
    def flowing(self):
        return self._pump is not None

    @property
    def closed(self):
        return self.fd.closed

    def _listening(self, event):
        if event == 'data':
            self.resume()

    def resume(self):
        """start emitting 'data' from a pump thread"""
        with self._state_lock:
            if self._pump is not None or self._finished:
                return self
            self._wakeup = Pipe()
            self._pump = Thread(self._run_pump, name=f'childproc-{self.name}')
        self._pump.start()
        return self

    def _ready(self, poller, timeout=None):
        return any(fd == self.fd.fd for fd, _ in poller.poll(timeout))

    def _pump_chunk(self):
        """read and emit one chunk; False at end-of-file"""
        chunk = self.fd.read(CHUNK_SIZE)
        if not chunk:
            self._finish(ended=True)
            return False
        chunk = self._decode(chunk)
        if chunk:
            self.emit('data', chunk)
        return True

    def _run_pump(self):
        poller = select.poll()
        poller.register(self.fd.fileno(), select.POLLIN)
        poller.register(self._wakeup.read_fd.fileno(), select.POLLIN)
        try:
            while not self._destroyed:
                if self._ready(poller) and not self._pump_chunk():
                    return
            for _ in range(DRAIN_CHUNKS if self._drain else 0):
                if not self._ready(poller, 0) or not self._pump_chunk():
                    break
        except OSError as e:
            self.emit('error', CommunicationError(e.errno, f'reading {self.name}: {e.strerror}'))
        self._finish(ended=False)

    def _decode(self, chunk, final=False):
        if self._decoder is None:
            return chunk
        return self._decoder.decode(chunk, final)

    def read(self, size=-1):
        """pull up to size bytes, or everything until end-of-file if size < 0

        Returns an empty result once the stream has ended.
        """
        if self.flowing:
            raise RuntimeError(f'{self!r} is flowing; listen for data instead')
        if self._finished or size == 0:
            return self._decode(b'', final=self._finished)
        chunks = []
        try:
            while size < 0 or not chunks:
                chunk = self.fd.read(CHUNK_SIZE if size < 0 else size)
                if not chunk:
                    self._finish(ended=True)
                    break
                chunks.append(chunk)
        except OSError as e:
            self._finish(ended=False)
            raise CommunicationError(e.errno, f'reading {self.name}: {e.strerror}') from e
        return self._decode(b''.join(chunks), final=self.ended)

    def __iter__(self):
        while not self._finished:
            chunk = self.read(CHUNK_SIZE)
            if chunk:
                yield chunk

    def destroy(self, drain=False):
        """stop reading and close the descriptor

        While a pump thread is running, it is woken up and closes the
        descriptor once its current 'data' listener returns, even if the
        other end of the pipe is still open somewhere. With drain, it first
        emits what is already buffered in the pipe (up to DRAIN_CHUNKS reads).

        >>> from childproc.pipe import OutputPipe
        >>> p = OutputPipe(); s = ReadableStream(p.parent_end, 'stdout')
        >>> chunks = []
        >>> _ = s.on('data', chunks.append)
        >>> _ = p.child_end.write(b'left behind')
        >>> s.wait_closed(0.2)
        False
        >>> s.destroy(drain=True); s.wait_closed(5), s.ended
        (True, False)
        >>> b''.join(chunks), p.child_end.close()
        (b'left behind', True)
        """
        self._drain = drain
        self._destroyed = True
        if not self.flowing:
            self._finish(ended=False)
            return
        with self._state_lock:
            if not self._finished:
                self._wakeup.write_fd.write(b'x')

    close = destroy

    def _finish(self, ended):
        with self._state_lock:
            if self._finished:
                return
            self._finished = True
            self.ended = ended
        self.fd.close()
        if self._wakeup is not None:
            self._wakeup.close()
        if ended:
            logger.debug('%s reached end-of-file', self.name)
            self.emit('end')
        self.emit('close')
        self._closed.set()

    def wait_closed(self, timeout=None):
        """block until closed and every 'close' listener ran; False on timeout"""
        return self._closed.wait(timeout)

    def fileno(self):
        return self.fd.fileno()

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r})'


class WritableStream(EventEmitter):
    """writable end of a pipe

    events: close(), error(exc)
    """
    events = 'close', 'error'

    def __init__(self, fd, name, encoding='utf-8'):
        super().__init__()
        self.fd = fd
        self.name = name
        self.encoding = encoding
        self._write_lock = threading.Lock()
        self._close_pending = False

    @property
    def closed(self):
        return self.fd.closed

    def write(self, data):
        """write all of data (str is encoded), blocking as the pipe fills"""
        if isinstance(data, str):
            data = data.encode(self.encoding)
        try:
            with self._write_lock:
                return self.fd.write(data)
        except ValueError as e:
            raise CommunicationError(f'{self.name} is closed') from e
        except OSError as e:
            raise CommunicationError(e.errno, f'writing {self.name}: {e.strerror}') from e
        finally:
            if self._close_pending:
                self.close()

    def end(self, data=None):
        """write any final data and close, signalling end-of-input"""
        try:
            if data is not None:
                self.write(data)
        finally:
            self.close()

    def close(self):
        """close the descriptor, or have the writer close it once its write is done"""
        self._close_pending = True
        if not self._write_lock.acquire(blocking=False):
            return
        try:
            closed = self.fd.close()
        finally:
            self._write_lock.release()
        if closed:
            self.emit('close')

    def fileno(self):
        return self.fd.fileno()

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r})'
