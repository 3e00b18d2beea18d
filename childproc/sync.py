r"""running a process to completion

>>> spawn_sync('tr', ['a-z', 'A-Z'], input='abc')
Result(argv=['tr', 'a-z', 'A-Z'], status=0, stdout=b'ABC', stderr=b'')
>>> spawn_sync('sh', ['-c', 'echo err >&2; exit 2'], encoding='utf-8')
Result(argv=['sh', '-c', 'echo err >&2; exit 2'], status=2, stdout='', stderr='err\n')

Nothing is raised when the program cannot be started:

>>> result = spawn_sync('/nonexistent/program')
>>> result.status, result.signal, type(result.error).__name__
(None, None, 'LaunchError')

A child that does not read its input is fine:

>>> spawn_sync('true', input=b'x' * 1000000).status
0

The *_sync shortcuts check the result:

>>> exec_command_sync('echo hi | tr a-z A-Z')
Result(argv=['/bin/sh', '-c', 'echo hi | tr a-z A-Z'], status=0, stdout=b'HI\n', stderr=b'')
>>> exec_file_sync('false')
Traceback (most recent call last):
  ...
childproc.result.ResultError: Command ['false'] returned non-zero exit status 1.
"""

__all__ = 'spawn_sync', 'exec_command_sync', 'exec_file_sync'

import errno
import logging

from .capture import Capture, DEFAULT_MAX_BUFFER
from .errors import CommunicationError, LaunchError
from .launch import LaunchSpec, launch
from .result import Result
from .thread import Thread

logger = logging.getLogger(__name__)


def feed(stdin, data, encoding):
    """write data to stdin and close it, whether or not the child listens"""
    try:
        if data is not None:
            if isinstance(data, str):
                data = data.encode(encoding or 'utf-8')
            stdin.write(data)
    except CommunicationError as e:
        if e.errno == errno.EPIPE:
            logger.debug('%s: child stopped reading its input', stdin.name)
        else:
            logger.warning('%s: could not write input: %s', stdin.name, e)
    finally:
        stdin.close()


def spawn_sync(command, args=(), *, input=None, encoding=None, max_buffer=DEFAULT_MAX_BUFFER, **options):
    """run command to completion and return its Result

    input:      bytes or str written to stdin, which is then closed
    encoding:   decode stdout and stderr; None or 'buffer' keeps bytes
    max_buffer: bytes kept per stream; more kills the child
    options:    the fields of LaunchSpec (timeout, kill_signal, env, ...)

    A timeout kills the child with kill_signal:

    >>> spawn_sync('sleep', ['10'], timeout=0.1)
    Result(argv=['sleep', '10'], signal='SIGTERM', stdout=b'', stderr=b'', timed_out=True)
    """
    spec = LaunchSpec(command, tuple(args), **options)
    try:
        child = launch(spec)
    except LaunchError as e:
        return Result(spec.argv, error=e)

    Capture(child, encoding, max_buffer, child.kill_signal)
    if child.stdin is not None:
        Thread(lambda: feed(child.stdin, input, encoding), name=f'childproc-input-{child.pid}').start()
    return child.wait()


def exec_command_sync(line, *, shell=True, **options):
    """run a shell command line; raises ResultError unless it succeeds"""
    if not shell:
        raise ValueError('exec_command_sync() always runs a shell; use exec_file_sync() without one')
    return spawn_sync(line, shell=shell, **options).check()


def exec_file_sync(file, args=(), **options):
    """run file with args; raises ResultError unless it succeeds"""
    return spawn_sync(file, args, **options).check()
