"""low-level module for spawning processes with os.fork and os.execve

It only contains one function, spawn(); waiting is in posix_wait. Unlike
posix_spawn, it can change directory and user in the child.


>>> import os
>>> from tempfile import TemporaryDirectory
>>> from childproc.posix_wait import reap
>>> with TemporaryDirectory() as dir:
...     fd = os.open(f'{dir}/file', os.O_WRONLY | os.O_CREAT)
...     reap(spawn('pwd', ['pwd'], os.environ, {1: fd}, cwd='/'))
...     os.close(fd)
...     with open(f'{dir}/file') as file:
...         print(file.read(), end='')
...
(0, None)
/

Failures in the child are raised in the parent:

>>> try: spawn('/nonexistent/program', ['x'], os.environ, {})
... except FileNotFoundError as e: e.filename
...
'/nonexistent/program'
"""

__all__ = 'spawn', 'FEATURES'

import errno
import os
import signal
from .pipe import Pipe

FEATURES = frozenset({'cwd', 'uid', 'gid', 'detached'})


def candidates(path, env):
    if os.sep in path:
        return [path]
    return [os.path.join(dir, path) for dir in os.get_exec_path(env)]


def spawn(path, argv, env, fds, *, cwd=None, uid=None, gid=None, detached=False):
    """spawn a process and return its pid; see posix_spawn.spawn()"""
    paths = [os.fsencode(p) for p in candidates(path, env)]
    argv = [os.fsencode(arg) for arg in argv]
    launch_pipe = Pipe()
    # the report end must survive the dup2 calls below
    report_fd = launch_pipe.write_fd.dup_above(max(fds, default=2) + 1)
    launch_pipe.write_fd.close()

    pid = os.fork()
    if pid:
        report_fd.close()
        report = launch_pipe.read()
        launch_pipe.read_fd.close()
        if report:
            os.waitpid(pid, 0)
            step, code = report.decode().split(':')
            code = int(code)
            raise OSError(code, f'{os.strerror(code)} ({step})', path)
        return pid

    # child: no locks, no imports, no logging from here on
    step = 'exec'
    try:
        for name in 'SIGPIPE', 'SIGXFZ', 'SIGXFSZ':
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            signal.signal(sig, signal.SIG_DFL)
        if detached:
            step = 'setsid'
            os.setsid()
        step = 'dup2'
        for child_fd, parent_fd in fds.items():
            os.dup2(parent_fd, child_fd)
        if cwd is not None:
            step = 'chdir'
            os.chdir(cwd)
        if uid is not None or gid is not None:
            try:
                os.setgroups([])
            except OSError:
                pass
        if gid is not None:
            step = 'setgid'
            os.setgid(gid)
        if uid is not None:
            step = 'setuid'
            os.setuid(uid)
        step = 'exec'
        error = None
        for candidate in paths:
            try:
                os.execve(candidate, argv, env)
            except OSError as e:
                if error is None or e.errno not in (errno.ENOENT, errno.ENOTDIR):
                    error = e
        raise error or OSError(errno.ENOENT, os.strerror(errno.ENOENT))
    except OSError as e:
        os.write(int(report_fd), f'{step}:{e.errno or 0}'.encode())
    finally:
        os._exit(127)
