r"""the handle of a running child process

>>> from childproc import spawn
>>> child = spawn('sh', ['-c', 'echo out; echo err >&2; exit 3'])
>>> child.state
'running'
>>> child.stdout.read(), child.stderr.read()
(b'out\n', b'err\n')
>>> child.wait()
Result(argv=['sh', '-c', 'echo out; echo err >&2; exit 3'], status=3)
>>> child.state, child.exit_code, child.signal_code
('exited', 3, None)

'close' comes after 'exit' and after every stream saw its end:

>>> child = spawn('sh', ['-c', 'echo out; echo err >&2'])
>>> events = []
>>> _ = child.on('exit', lambda code, signal: events.append('exit'))
>>> _ = child.on('close', lambda code, signal: events.append('close'))
>>> for name in 'stdout', 'stderr':
...     _ = getattr(child, name).on('end', lambda name=name: events.append(name))
...     _ = getattr(child, name).resume()
...
>>> child.wait_closed(5)
True
>>> sorted(events[:3]), events[3:]
(['exit', 'stderr', 'stdout'], ['close'])

Killing is idempotent and never reaches a reaped process:

>>> child = spawn('sleep', ['10'], stdio='ignore')
>>> child.kill(), child.wait().signal, child.kill(), child.kill('KILL')
(True, 'SIGTERM', False, False)
>>> child.state, child.exit_code, child.killed
('signaled', None, True)
"""

__all__ = 'ChildProcess', 'get_signal', 'RUNNING', 'EXITED', 'SIGNALED'

import logging
import os
import threading
from signal import Signals, SIGTERM

from .errors import CommunicationError
from .events import EventEmitter
from .posix_wait import wait_terminated, reap
from .result import Result
from .streams import ReadableStream, WritableStream
from .thread import Thread

logger = logging.getLogger(__name__)

RUNNING = 'running'
EXITED = 'exited'
SIGNALED = 'signaled'

STD_NAMES = 'stdin', 'stdout', 'stderr'


def get_signal(sig: Signals | int | str) -> Signals:
    """
    >>> get_signal('kill'), get_signal('SIGINT'), get_signal(15)
    (<Signals.SIGKILL: 9>, <Signals.SIGINT: 2>, <Signals.SIGTERM: 15>)
    """
    if isinstance(sig, str):
        sig = sig.upper()
        return Signals[sig if sig.startswith('SIG') else f'SIG{sig}']
    return Signals(sig)


class ChildProcess(EventEmitter):
    """a launched child process

    events: exit(code, signal), close(code, signal), disconnect(),
            message(message, handle), error(exc)

    Exactly one of exit_code and signal_code is set once the process has
    terminated. The handle owns the parent ends of the child's pipes and its
    channel and closes each of them once.
    """
    events = 'exit', 'close', 'disconnect', 'error', 'message'

    def __init__(
        self, argv, pid, endpoints=None, *,
        slots=3, channel=None, detached=False, kill_signal: Signals | int | str = SIGTERM, timeout=None,
    ):
        """set up the handle; normally done by childproc.launch.launch()

        argv:        the arguments the process was started with
        pid:         its process id
        endpoints:   {slot: FD} parent ends of pipes; slot 0 is written to,
                     every other slot is read from
        slots:       number of stdio slots the child was given
        channel:     an IPC Channel, if any
        detached:    whether the child leads its own process group
        kill_signal: what to send when timeout runs out
        timeout:     seconds after which the child is killed; None or 0 to disable
        """
        super().__init__()
        self.argv = argv
        self.pid = pid
        self.detached = detached
        self.kill_signal = get_signal(kill_signal)
        self.state = RUNNING
        self.exit_code = None
        self.signal_code = None
        self.killed = False
        self.timed_out = False
        self.capture = None
        self.referenced = False

        self._lock = threading.Lock()
        self._reap_lock = threading.Lock()
        self._reaped = False
        self._fired = set()
        self._exited = threading.Event()
        self._closed = threading.Event()
        self._keepalive = None
        self._forwarding = False
        self._open = 0

        self.stdio = [None] * max(slots, 3)
        for slot, fd in (endpoints or {}).items():
            name = STD_NAMES[slot] if slot < 3 else f'fd{slot}'
            if slot == 0:
                self.stdio[slot] = WritableStream(fd, f'{name}[{pid}]')
            else:
                stream = ReadableStream(fd, f'{name}[{pid}]')
                stream.on('close', self._stream_closed)
                self.stdio[slot] = stream
                self._open += 1

        self.channel = channel
        if channel is not None:
            self._open += 1
            channel.on('disconnect', self._channel_disconnected)
            channel.on('error', lambda e: self.emit('error', e))
            channel.start()

        self._timer = None
        if timeout:
            self._timer = threading.Timer(timeout, self._on_timeout)
            self._timer.daemon = True
            self._timer.start()

        self.ref()
        self._waiter = Thread(self._wait, name=f'childproc-wait-{pid}').start()

    @property
    def stdin(self):
        return self.stdio[0]

    @property
    def stdout(self):
        return self.stdio[1]

    @property
    def stderr(self):
        return self.stdio[2]

    @property
    def connected(self):
        return self.channel is not None and self.channel.connected

    def _wait(self):
        try:
            if wait_terminated(self.pid):
                with self._reap_lock:
                    code, signal = reap(self.pid)
                    self._reaped = True
            else:
                code, signal = reap(self.pid)
                with self._reap_lock:
                    self._reaped = True
        except ChildProcessError:
            # someone else reaped it (e.g. SIGCHLD ignored); the status is lost
            logger.warning('pid %d was reaped elsewhere; reporting exit code 0', self.pid)
            with self._reap_lock:
                self._reaped = True
            code, signal = 0, None

        if self._timer is not None:
            self._timer.cancel()
        with self._lock:
            self.exit_code, self.signal_code = code, signal
            self.state = EXITED if signal is None else SIGNALED
            self._release_keepalive()
        logger.debug('pid %d %s (code=%s, signal=%s)', self.pid, self.state, code, signal)
        self._emit_once('exit', code, signal)
        self._exited.set()
        if self.stdin is not None:
            self.stdin.close()
        self._maybe_close()

    def _emit_once(self, event, *args):
        with self._lock:
            if event in self._fired:
                return None
            self._fired.add(event)
        return self.emit(event, *args)

    def _stream_closed(self):
        with self._lock:
            self._open -= 1
        self._maybe_close()

    def _channel_disconnected(self):
        self._emit_once('disconnect')
        self._stream_closed()

    def _maybe_close(self):
        with self._lock:
            ready = self._exited.is_set() and self._open == 0
        if ready and self._emit_once('close', self.exit_code, self.signal_code) is not None:
            self._closed.set()

    def _on_timeout(self):
        if self._signal(self.kill_signal, timed_out=True):
            logger.debug('pid %d timed out', self.pid)

    def kill(self, sig: Signals | int | str = SIGTERM):
        """send sig to the process (or its group, if detached)

        Returns whether the signal was sent. Once the process is reaped this
        does nothing and returns False. The state only changes when the
        process actually terminates.
        """
        return self._signal(get_signal(sig))

    def _signal(self, sig, timed_out=False):
        with self._reap_lock:
            if self._reaped:
                return False
            try:
                if self.detached:
                    os.killpg(self.pid, sig)
                else:
                    os.kill(self.pid, sig)
            except ProcessLookupError:
                return False
            except OSError as e:
                error = e
            else:
                error = None
                self.killed = True
                self.timed_out = self.timed_out or timed_out
        if error is not None:
            self.emit('error', CommunicationError(error.errno, f'kill {self.pid}: {error.strerror}'))
            return False
        logger.debug('sent %s to pid %d', sig.name, self.pid)
        return True

    def send(self, message, handle=None, keep_open=False):
        """send a message (and optionally a socket) over the IPC channel"""
        if self.channel is None:
            raise ValueError(f'{self!r} has no IPC channel')
        return self.channel.send(message, handle, keep_open)

    def disconnect(self):
        """close the IPC channel; the process keeps running"""
        if self.channel is not None:
            self.channel.disconnect()

    def _listening(self, event):
        if event != 'message' or self.channel is None:
            return
        with self._lock:
            if self._forwarding:
                return
            self._forwarding = True
        self.channel.on('message', lambda message, handle: self.emit('message', message, handle))

    def ref(self):
        """keep the interpreter alive until the process exits"""
        with self._lock:
            self.referenced = True
            if self._keepalive is None and self.state == RUNNING:
                self._keepalive = threading.Event()
                Thread(self._keepalive.wait, name=f'childproc-ref-{self.pid}', daemon=False).start()
        return self

    def unref(self):
        """stop keeping the interpreter alive for this process"""
        with self._lock:
            self.referenced = False
            self._release_keepalive()
        return self

    def _release_keepalive(self):
        if self._keepalive is not None:
            self._keepalive.set()
            self._keepalive = None

    def result(self):
        """the Result so far; complete once the process closed"""
        if self.capture is not None:
            return self.capture.result()
        return Result(
            self.argv, self.exit_code, self.signal_code,
            timed_out=self.timed_out, pid=self.pid,
        )

    def wait(self, timeout=None):
        """wait for the process to exit and return its Result

        With captured output (exec_command/exec_file), also waits until the
        output is complete. Raises TimeoutError if timeout runs out first.
        """
        events = (self._exited,) if self.capture is None else (self._exited, self._closed)
        for event in events:
            if not event.wait(timeout):
                raise TimeoutError(f'{self.argv!r} (pid {self.pid}) still running after {timeout} seconds')
        return self.result()

    def wait_closed(self, timeout=None):
        """block until 'close' was emitted; returns False on timeout"""
        return self._closed.wait(timeout)

    def poll(self):
        """None while running, else the Result"""
        done = self._exited if self.capture is None else self._closed
        return self.result() if done.is_set() else None

    def close_local(self):
        """close every parent end that is not being drained"""
        if self.stdin is not None:
            self.stdin.close()
        for stream in self.stdio[1:]:
            if isinstance(stream, ReadableStream) and not stream.flowing:
                stream.destroy()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, value, traceback):
        self.close_local()
        self.wait()

    def __repr__(self):
        return f'{type(self).__name__}(pid={self.pid}, argv={self.argv!r}, state={self.state!r})'
