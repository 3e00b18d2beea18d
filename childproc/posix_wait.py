"""waiting on and reaping child processes

>>> import os
>>> pid = os.posix_spawnp('sh', ['sh', '-c', 'exit 3'], os.environ)
>>> _ = wait_terminated(pid); reap(pid)
(3, None)
>>> pid = os.posix_spawnp('sleep', ['sleep', '10'], os.environ)
>>> os.kill(pid, 9); reap(pid)
(None, 'SIGKILL')
"""

__all__ = 'wait_terminated', 'reap', 'decode_status'

import os
from signal import Signals


def signal_name(number):
    try:
        return Signals(number).name
    except ValueError:
        return f'SIG{number}'


def decode_status(status):
    """turn a raw wait status into (exit code, signal name); exactly one is set"""
    if os.WIFSIGNALED(status):
        return None, signal_name(os.WTERMSIG(status))
    if os.WIFEXITED(status):
        return os.WEXITSTATUS(status), None
    raise RuntimeError(f'weird exit status: {hex(status)}')


def wait_terminated(pid):
    """block until pid has terminated, leaving it unreaped where possible

    A zombie keeps its pid, so until reap() nothing else can be given that
    pid and signalling it stays safe. Without os.waitid this returns at once
    and reap() does the blocking. Returns whether it waited.
    """
    if not hasattr(os, 'waitid'):
        return False
    os.waitid(os.P_PID, pid, os.WEXITED | os.WNOWAIT)
    return True


def reap(pid):
    """reap a terminated pid and return (exit code, signal name)"""
    pid_, status = os.waitpid(pid, 0)
    if pid_ != pid:
        raise RuntimeError(f'pid is {pid_}, expected {pid}')
    return decode_status(status)
