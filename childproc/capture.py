r"""collecting a child's output into a Result

>>> from childproc import spawn
>>> child = spawn('sh', ['-c', 'printf xy >&2; printf abcd'])
>>> capture = Capture(child, max_buffer=3)
>>> child.wait().stdout, child.wait().stderr, capture.truncated
(b'abc', b'xy', True)
>>> child.result().error
MaxBufferError('stdout maxBuffer length exceeded (3 bytes)')

Exactly max_buffer bytes is still complete:

>>> child = spawn('printf', ['abc'])
>>> _ = Capture(child, 'utf-8', max_buffer=3)
>>> child.wait()
Result(argv=['printf', 'abc'], status=0, stdout='abc', stderr='')
"""

__all__ = 'Capture', 'resolve_encoding', 'DEFAULT_MAX_BUFFER'

import codecs
import logging
import threading
from signal import SIGTERM

from .errors import MaxBufferError
from .process import RUNNING
from .result import Result
from .streams import ReadableStream

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER = 1024 * 1024


def slot_name(slot):
    return ('stdin', 'stdout', 'stderr')[slot] if slot < 3 else f'fd{slot}'


def resolve_encoding(name):
    """the codec to decode output with, or None for raw bytes

    >>> resolve_encoding('UTF8'), resolve_encoding('latin1'), resolve_encoding('buffer')
    ('utf-8', 'iso8859-1', None)
    >>> resolve_encoding('no-such-codec'), resolve_encoding('hex'), resolve_encoding(None)
    (None, None, None)
    """
    if name is None or name == 'buffer':
        return None
    try:
        info = codecs.lookup(name)
    except LookupError:
        return None
    if not getattr(info, '_is_text_encoding', True):
        return None
    return info.name


class Capture:
    """drains every readable pipe of a child into memory

    Each slot keeps at most max_buffer bytes (None for no limit). When one
    goes over, the first max_buffer bytes are kept, the result is marked
    truncated, the child is sent kill_signal and that slot is no longer
    read. Once a child killed for its timeout or its output has exited, the
    remaining pipes are closed too, so that a grandchild holding them open
    cannot keep the capture from finishing.

    >>> from childproc import spawn
    >>> child = spawn('sh', ['-c', 'echo x; echo y >&3'], stdio=['ignore', 'pipe', 'ignore', 'pipe'])
    >>> _ = Capture(child)
    >>> child.wait().output
    [None, b'x\\n', None, b'y\\n']
    """
    def __init__(self, child, encoding=None, max_buffer=DEFAULT_MAX_BUFFER, kill_signal=SIGTERM):
        self.child = child
        self.encoding = resolve_encoding(encoding)
        self.max_buffer = max_buffer
        self.kill_signal = kill_signal
        self.truncated = False
        self.error = None
        self._chunks = {}
        self._sizes = {}
        self._streams = {}
        self._lock = threading.Lock()

        child.capture = self
        for slot, stream in enumerate(child.stdio):
            if slot == 0 or not isinstance(stream, ReadableStream):
                continue
            self._chunks[slot] = []
            self._sizes[slot] = 0
            self._streams[slot] = stream
        child.on('exit', self._exited)
        for slot, stream in self._streams.items():
            stream.on('data', lambda chunk, slot=slot: self._collect(slot, chunk))
        if child.state != RUNNING:
            self._exited(child.exit_code, child.signal_code)

    def _collect(self, slot, chunk):
        with self._lock:
            if self.max_buffer is None:
                self._chunks[slot].append(chunk)
                return
            room = self.max_buffer - self._sizes[slot]
            overflow = len(chunk) > room
            chunk = chunk[:room]
            self._chunks[slot].append(chunk)
            self._sizes[slot] += len(chunk)
            if overflow:
                self.truncated = True
                if self.error is None:
                    self.error = MaxBufferError(slot_name(slot), self.max_buffer)
        if overflow:
            logger.debug('%s of pid %d went over %d bytes', slot_name(slot), self.child.pid, self.max_buffer)
            self.child.kill(self.kill_signal)
            self._streams[slot].destroy()

    def _exited(self, code, signal):
        if not (self.child.timed_out or self.truncated):
            return
        logger.debug('pid %d was killed; closing its remaining pipes', self.child.pid)
        for stream in self._streams.values():
            stream.destroy(drain=True)

    def collected(self, slot):
        """what was collected from slot so far, or None if it was not captured"""
        with self._lock:
            if slot not in self._chunks:
                return None
            data = b''.join(self._chunks[slot])
        if self.encoding is not None:
            return data.decode(self.encoding, errors='replace')
        return data

    def result(self):
        child = self.child
        output = [self.collected(slot) for slot in range(len(child.stdio))]
        return Result(
            child.argv, child.exit_code, child.signal_code,
            stdout=output[1], stderr=output[2],
            truncated=self.truncated, timed_out=child.timed_out,
            error=self.error, pid=child.pid, output=output,
        )
