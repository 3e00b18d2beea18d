r"""funcpipes shortcuts for running processes

>>> run('echo', ['abc'])
Result(argv=['echo', 'abc'], status=0, stdout='abc\n', stderr='')
>>> run.sh('echo abc | tr a-z A-Z') | get.stdout
'ABC\n'
>>> run.sh.b('printf abc') | check | get.stdout
b'abc'

Launches between barriers (like now) happen in parallel:

>>> from time import time
>>> sleepers = +proc.partial(stdio='ignore') & now & +wait & to(tuple)
>>> start = time(); results = [Arguments('sleep', ['0.3'])] * 5 | sleepers; time() - start < 1
True
>>> [result.status for result in results]
[0, 0, 0, 0, 0]

Nothing is left open behind a finished process or a failed launch:

>>> before = lsof()
>>> _ = run('echo', ['abc'])
>>> from childproc import spawn_sync
>>> _ = spawn_sync('/nonexistent/program')
>>> lsof() == before
True
"""

__all__ = (
    'lsof', 'lsof_iter',
    'to', 'now', 'get', 'Arguments',
    'proc', 'wait', 'check', 'die', 'run',
)

import os
from pathlib import Path

from funcpipes import Pipe, to, now, get, Arguments
from .launch import spawn, exec_file


@Pipe
def lsof_iter(pid=None, return_targets=True):
    """list open file descriptors

    if return_targets is True (default), yields (fd, target) tuples
    otherwise, only yields the file descriptors

    This needs /proc to be properly mounted.
    """
    if pid is None:
        pid = os.getpid()
    proc_path = Path('/', 'proc', str(pid), 'fd')
    return (
        (int(fd.name), fd.resolve()) if return_targets else int(fd.name)
        for fd in proc_path.iterdir()
    )


@Pipe
def lsof(pid=None):
    """list open file descriptors

    returns a dict of the form {fd: target}

    This needs /proc to be properly mounted.
    """
    return dict(lsof_iter(pid))


@Pipe
def proc(*args, **kwargs):
    """starts a ChildProcess, see help(childproc.spawn)"""
    return spawn(*args, **kwargs)


@Pipe
def capture(*args, **kwargs):
    """starts a ChildProcess that collects its output, see help(childproc.exec_file)"""
    return exec_file(*args, **kwargs)


wait = to.wait
check = to.check
die = to.die
run = capture & wait

for func in proc, run:
    func.sh = func.partial(shell=True)

for func in run, run.sh:
    func.b = func.partial(encoding=None)
