"""low-level module for spawning processes with posix_spawn

It only contains one function, spawn(); waiting is in posix_wait


>>> import os
>>> from tempfile import TemporaryDirectory
>>> from childproc.posix_wait import reap
>>> with TemporaryDirectory() as dir:
...     fd = os.open(f'{dir}/file', os.O_WRONLY | os.O_CREAT)
...     reap(spawn('echo', ['echo', 'hello world'], os.environ, {1: fd}))
...     os.close(fd)
...     with open(f'{dir}/file') as file:
...         print(file.read(), end='')
...
(0, None)
hello world
"""

__all__ = 'spawn', 'FEATURES'

import os
import signal

FEATURES = frozenset({'detached'})


def spawn(path, argv, env, fds, *, detached=False):
    """spawn a process and return its pid

    path:     executable, looked up in PATH unless it contains a slash
    fds:      {child_fd: parent_fd}; parent_fds should be close-on-exec and
              must not collide with any child_fd
    detached: start a new session (and process group)

    >>> from time import time
    >>> from childproc.posix_wait import reap
    >>> start = time(); pid = spawn('sleep', ['sleep', '0.2'], os.environ, {}); reap(pid); print(round(time() - start, 1))
    (0, None)
    0.2
    """
    file_actions = [
        (os.POSIX_SPAWN_DUP2, parent_fd, child_fd)
        for child_fd, parent_fd in fds.items()
    ]

    setsigdef = (getattr(signal, sig, None) for sig in ('SIGPIPE', 'SIGXFZ', 'SIGXFSZ'))
    setsigdef = [ sig for sig in setsigdef if sig is not None ]

    return os.posix_spawnp(
        path, argv, env,
        file_actions=file_actions,
        setsigdef=setsigdef,
        setsid=detached,
    )
