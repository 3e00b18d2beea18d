"""structured messages between a parent and a forked child

A Channel runs over one end of a UNIX socket pair. Each message is a frame:

    4 bytes  big-endian payload length
    1 byte   1 if a handle travels with the frame, else 0
    payload  the serialized message (json or pickle)

Handles (sockets) ride along as SCM_RIGHTS ancillary data on the frame
that announces them and come out as ready-to-use socket objects.

>>> import socket
>>> a, b = socket.socketpair()
>>> left, right = Channel(a).start(), Channel(b).start()
>>> got = []
>>> _ = right.on('message', lambda message, handle: got.append(message))
>>> left.send({'a': 1}), left.send([2]), left.send('three')
(True, True, True)
>>> left.flush(5)
True
>>> left.disconnect()
>>> right.wait(5)
True
>>> got
[{'a': 1}, [2], 'three']
>>> _ = left.on('error', lambda e: print(type(e).__name__))
>>> left.send('too late')
ChannelClosedError
False

Handles arrive usable; the sender's copy is closed unless keep_open:

>>> a, b = socket.socketpair()
>>> left, right = Channel(a, 'pickle').start(), Channel(b, 'pickle').start()
>>> server = socket.socket(); server.bind(('127.0.0.1', 0)); server.listen()
>>> address = server.getsockname()
>>> received = []
>>> _ = right.on('message', lambda message, handle: received.append((message, handle)))
>>> left.send(('server', 1), server)
True
>>> left.flush(5)
True
>>> left.disconnect(); right.wait(5)
True
>>> (message, handle), = received
>>> message, handle.getsockname() == address, server.fileno()
(('server', 1), True, -1)
>>> handle.close()
"""

__all__ = 'Channel', 'connect', 'HIGH_WATER_MARK'

import json
import logging
import os
import pickle
import socket
import struct
import threading
from collections import deque

from .errors import ChannelClosedError, CommunicationError
from .events import EventEmitter
from .thread import Thread

logger = logging.getLogger(__name__)

HEADER = struct.Struct('>IB')
HIGH_WATER_MARK = 64 * 1024
CHUNK_SIZE = 65536
MAX_FDS = 16

CHANNEL_FD = 'CHILDPROC_CHANNEL_FD'
CHANNEL_SERIALIZATION = 'CHILDPROC_SERIALIZATION'

SERIALIZERS = {
    'json': (lambda message: json.dumps(message).encode(), json.loads),
    'pickle': (pickle.dumps, pickle.loads),
}


class Channel(EventEmitter):
    """one end of an IPC channel

    events: message(message, handle), disconnect(), error(exc)

    Messages that arrive before anyone listens for 'message' are held and
    handed to the first listener, in order.
    """
    events = 'message', 'disconnect', 'error'

    def __init__(self, sock, serialization='json', name='channel'):
        super().__init__()
        try:
            self._dumps, self._loads = SERIALIZERS[serialization]
        except KeyError:
            raise ValueError(f'unknown serialization {serialization!r}') from None
        self.sock = sock
        self.name = name
        self.serialization = serialization
        self.connected = True
        self._queue = deque()
        self._pending = 0
        self._cond = threading.Condition()
        self._backlog = []
        self._deliver_lock = threading.RLock()
        self._reader = Thread(self._read_loop, name=f'childproc-{name}-reader')
        self._writer = None
        self._finished = False
        self._disconnected = threading.Event()

    def start(self):
        """start reading; returns self"""
        self._reader.start()
        return self

    def send(self, message, handle=None, keep_open=False):
        """queue message (and optionally a socket) for the other end

        Returns False when the queue is over HIGH_WATER_MARK bytes; the
        message is still sent. On a disconnected channel, emits 'error' and
        returns False.
        """
        if handle is not None and not isinstance(handle, socket.socket):
            raise TypeError(f'only sockets can be sent, not {type(handle).__name__}')
        payload = self._dumps(message)
        frame = HEADER.pack(len(payload), handle is not None) + payload
        with self._cond:
            if not self.connected:
                accepted = None
            else:
                self._queue.append((frame, handle, keep_open))
                self._pending += len(frame)
                accepted = self._pending <= HIGH_WATER_MARK
                if self._writer is None:
                    self._writer = Thread(self._write_loop, name=f'childproc-{self.name}-writer').start()
                self._cond.notify()
        if accepted is None:
            self.emit('error', ChannelClosedError())
            return False
        return accepted

    def _write_loop(self):
        while True:
            with self._cond:
                while self.connected and not self._queue:
                    self._cond.wait()
                if not self.connected:
                    return
                frame, handle, keep_open = self._queue.popleft()
            failure = None
            try:
                if handle is None:
                    self.sock.sendall(frame)
                else:
                    sent = socket.send_fds(self.sock, [frame], [handle.fileno()])
                    self.sock.sendall(frame[sent:])
                    if not keep_open:
                        handle.close()
            except OSError as e:
                failure = e
            with self._cond:
                self._pending -= len(frame)
                self._cond.notify_all()
            if failure is not None:
                if self.connected:
                    self.emit('error', CommunicationError(failure.errno, f'{self.name}: {failure.strerror}'))
                return

    def flush(self, timeout=None):
        """block until every queued message was handed to the socket

        Returns False on timeout.
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._queue and not self._pending, timeout)

    def _read_loop(self):
        buffer = bytearray()
        fds = deque()
        flags = getattr(socket, 'MSG_CMSG_CLOEXEC', 0)
        try:
            while True:
                try:
                    data, received, _, _ = socket.recv_fds(self.sock, CHUNK_SIZE, MAX_FDS, flags)
                except OSError as e:
                    if self.connected:
                        self.emit('error', CommunicationError(e.errno, f'{self.name}: {e.strerror}'))
                    return
                fds.extend(received)
                if not data:
                    return
                buffer += data
                while len(buffer) >= HEADER.size:
                    length, has_handle = HEADER.unpack_from(buffer)
                    end = HEADER.size + length
                    if len(buffer) < end:
                        break
                    payload = bytes(buffer[HEADER.size:end])
                    del buffer[:end]
                    handle = socket.socket(fileno=fds.popleft()) if has_handle and fds else None
                    if not self.connected:
                        if handle is not None:
                            handle.close()
                        continue
                    try:
                        message = self._loads(payload)
                    except Exception as e:
                        self.emit('error', CommunicationError(f'{self.name}: undecodable message: {e}'))
                        continue
                    self._deliver(message, handle)
        finally:
            for fd in fds:
                os.close(fd)
            self._finish()

    def _deliver(self, message, handle):
        with self._deliver_lock:
            self._backlog.append((message, handle))
            self._flush_backlog()

    def _flush_backlog(self):
        if not self.listeners('message'):
            return
        backlog, self._backlog = self._backlog, []
        for message, handle in backlog:
            self.emit('message', message, handle)

    def _listening(self, event):
        if event == 'message':
            with self._deliver_lock:
                self._flush_backlog()

    def _drop_queue(self):
        self._pending -= sum(len(frame) for frame, _, _ in self._queue)
        self._queue.clear()
        self._cond.notify_all()

    def disconnect(self):
        """close the channel for good; unsent messages are dropped"""
        with self._cond:
            if not self.connected:
                return
            self.connected = False
            self._drop_queue()
        logger.debug('%s: disconnecting', self.name)
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        if not self._reader.is_alive() and self._reader.ident is None:
            self._finish()

    def _finish(self):
        with self._cond:
            if self._finished:
                return
            self._finished = True
            self.connected = False
            self._drop_queue()
            writer = self._writer
        if writer is not None and writer is not threading.current_thread():
            writer.join()
        self.sock.close()
        logger.debug('%s: disconnected', self.name)
        self.emit('disconnect')
        self._disconnected.set()

    def wait(self, timeout=None):
        """block until disconnected; returns False on timeout"""
        return self._disconnected.wait(timeout)

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r})'


_parent = None
_parent_lock = threading.Lock()


def connect():
    """the channel to the parent of this process, or None if there is none

    The descriptor and serialization come from the environment set up by
    the parent; both variables are removed so grandchildren do not see them.
    """
    global _parent
    with _parent_lock:
        if _parent is None:
            fd = os.environ.pop(CHANNEL_FD, None)
            serialization = os.environ.pop(CHANNEL_SERIALIZATION, 'json')
            if fd is None:
                return None
            fd = int(fd)
            os.set_inheritable(fd, False)
            _parent = Channel(socket.socket(fileno=fd), serialization, name='parent').start()
        return _parent
