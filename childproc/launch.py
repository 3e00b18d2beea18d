r"""turning a launch request into a running ChildProcess

>>> child = spawn('sh', ['-c', 'echo $GREETING'], env={'GREETING': 'hi', 'PATH': os.defpath})
>>> child.stdout.read()
b'hi\n'
>>> child.wait().status
0

A shell gets the command and its arguments as one line:

>>> child = spawn('echo', ['$((1 + 2))'], shell=True, stdio=['ignore', 'pipe', 'ignore'])
>>> child.argv, child.stdout.read()
(['/bin/sh', '-c', 'echo $((1 + 2))'], b'3\n')
>>> _ = child.wait()

Failures to start raise LaunchError and leave no handle behind:

>>> import errno
>>> try: spawn('/nonexistent/program')
... except LaunchError as e: e.errno == errno.ENOENT, e.filename
...
(True, '/nonexistent/program')
>>> spawn('ls', cwd='/nonexistent/directory')
Traceback (most recent call last):
  ...
childproc.errors.LaunchError: [Errno 2] No such file or directory (chdir): 'ls'

Bad requests fail before anything is allocated:

>>> spawn('')
Traceback (most recent call last):
  ...
ValueError: command must be a non-empty string
>>> spawn('env', env={'A=B': 'c'})
Traceback (most recent call last):
  ...
ValueError: invalid environment variable name: 'A=B'
"""

__all__ = (
    'LaunchSpec', 'launch', 'spawn', 'fork', 'exec_command', 'exec_file',
    'get_backend', 'change_default_backend',
)

import logging
import os
import sys
from dataclasses import dataclass, field
from shlex import split
from signal import Signals, SIGTERM
from typing import Any, Mapping, Sequence

from .capture import Capture, DEFAULT_MAX_BUFFER
from .channel import Channel, CHANNEL_FD, CHANNEL_SERIALIZATION, SERIALIZERS
from .errors import LaunchError
from .process import ChildProcess, get_signal
from .stdio import normalize, plumb, PIPE, INHERIT, IPC

logger = logging.getLogger(__name__)


def get_backend(name=None):
    if name == 'posix_spawn':
        from . import posix_spawn as backend
        return backend
    if name == 'fork_exec':
        from . import fork_exec as backend
        return backend
    if name == 'default' or name is None:
        return get_backend.default
    raise ValueError(f'unknown backend: {name}')


if 'CHILDPROC_BACKEND' in os.environ:
    get_backend.default = get_backend(os.environ['CHILDPROC_BACKEND'])
elif hasattr(os, 'posix_spawnp'):
    get_backend.default = get_backend('posix_spawn')
else:
    get_backend.default = get_backend('fork_exec')


def change_default_backend(name_or_namespace):
    """change the backend used by launches that do not ask for one

    Takes a name or anything with spawn() and FEATURES, like the backend
    modules themselves.
    """
    if isinstance(name_or_namespace, str):
        get_backend.default = get_backend(name_or_namespace)
    else:
        name_or_namespace.spawn
        name_or_namespace.FEATURES
        get_backend.default = name_or_namespace
    return get_backend.default


def shell_prefix(shell):
    """
    >>> shell_prefix(True), shell_prefix('bash'), shell_prefix('bash -e -c')
    (['/bin/sh', '-c'], ['bash', '-c'], ['bash', '-e', '-c'])
    """
    if shell is True:
        return ['/bin/sh', '-c']
    if isinstance(shell, str):
        shell = split(shell)
        if len(shell) == 1:
            shell.append('-c')
        return shell
    return list(shell)


def check_env_value(name, value):
    if isinstance(value, bytes):
        value = os.fsdecode(value)
    elif not isinstance(value, str):
        value = str(value)
    if '\0' in value:
        raise ValueError(f'environment variable {name!r} contains a NUL byte')
    return value


@dataclass(frozen=True)
class LaunchSpec:
    """everything needed to start one process

    command: program to run, looked up in PATH unless it contains a slash;
             with shell, the start of the command line
    args:    further arguments
    cwd:     working directory of the child
    env:     complete environment of the child; None for this process's
    uid/gid: user and group to run as
    detached: make the child a process group (and session) leader
    shell:   False; True for /bin/sh -c; or a shell command line like 'bash'
    timeout: seconds until the child is sent kill_signal; None or 0 for never
    stdio:   see childproc.stdio
    argv0:   what the child sees as argv[0]
    serialization: 'json' or 'pickle', for an 'ipc' slot
    windows_hide, windows_verbatim_arguments: accepted and ignored
    backend: 'default', 'posix_spawn', 'fork_exec' or a backend namespace

    >>> LaunchSpec('echo', ['a', 'b']).argv
    ['echo', 'a', 'b']
    >>> LaunchSpec('echo a | tr a b', shell='bash').argv
    ['bash', '-c', 'echo a | tr a b']
    >>> LaunchSpec('sleep', timeout=-1)
    Traceback (most recent call last):
      ...
    ValueError: timeout must be a non-negative number of seconds, not -1
    """
    command: str
    args: Sequence[str] = ()
    cwd: Any = None
    env: Mapping | None = None
    uid: int | None = None
    gid: int | None = None
    detached: bool = False
    shell: Any = False
    timeout: float | None = None
    kill_signal: Signals | int | str = SIGTERM
    stdio: Any = None
    argv0: str | None = None
    serialization: str = 'json'
    windows_hide: bool = False
    windows_verbatim_arguments: bool = False
    backend: Any = field(default='default', compare=False)

    def __post_init__(self):
        if not isinstance(self.command, str) or not self.command:
            raise ValueError('command must be a non-empty string')
        if isinstance(self.args, (str, bytes)):
            raise TypeError('args must be a sequence of strings, not a single string')
        object.__setattr__(self, 'args', tuple(os.fspath(arg) for arg in self.args))
        for arg in (self.command, *self.args):
            if '\0' in arg:
                raise ValueError(f'argument contains a NUL byte: {arg!r}')
        if self.timeout is not None and (isinstance(self.timeout, bool) or not self.timeout >= 0):
            raise ValueError(f'timeout must be a non-negative number of seconds, not {self.timeout!r}')
        try:
            object.__setattr__(self, 'kill_signal', get_signal(self.kill_signal))
        except (KeyError, ValueError):
            raise ValueError(f'unknown signal: {self.kill_signal!r}') from None
        if self.serialization not in SERIALIZERS:
            raise ValueError(f'unknown serialization {self.serialization!r}')
        for name in 'uid', 'gid':
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise ValueError(f'{name} must be a non-negative integer, not {value!r}')
        if self.env is not None:
            env = {}
            for name, value in self.env.items():
                name = os.fsdecode(name) if isinstance(name, bytes) else name
                if not isinstance(name, str) or not name or '=' in name or '\0' in name:
                    raise ValueError(f'invalid environment variable name: {name!r}')
                env[name] = check_env_value(name, value)
            object.__setattr__(self, 'env', env)

    @property
    def path(self):
        """the program that is executed"""
        return shell_prefix(self.shell)[0] if self.shell else self.command

    @property
    def argv(self):
        """the arguments the program receives"""
        if self.shell:
            argv = shell_prefix(self.shell) + [' '.join([self.command, *self.args])]
        else:
            argv = [self.command, *self.args]
        if self.argv0 is not None:
            argv[0] = self.argv0
        return argv

    def environment(self, ipc_slot=None):
        env = dict(os.environ if self.env is None else self.env)
        if ipc_slot is not None:
            env[CHANNEL_FD] = str(ipc_slot)
            env[CHANNEL_SERIALIZATION] = self.serialization
        return env

    def options(self):
        """keyword arguments for a backend's spawn()"""
        options = {'detached': self.detached} if self.detached else {}
        for name in 'cwd', 'uid', 'gid':
            value = getattr(self, name)
            if value is not None:
                options[name] = os.fspath(value) if name == 'cwd' else value
        return options

    def select_backend(self):
        """the requested backend, or fork_exec if that one cannot do what is asked"""
        backend = get_backend(self.backend) if isinstance(self.backend, str) else self.backend
        missing = set(self.options()) - backend.FEATURES
        if missing:
            fallback = get_backend('fork_exec')
            if missing - fallback.FEATURES:
                raise ValueError(f'no backend supports {sorted(missing)}')
            logger.debug('%s cannot do %s; using %s', backend.__name__, sorted(missing), fallback.__name__)
            backend = fallback
        return backend


def launch(spec: LaunchSpec) -> ChildProcess:
    """start the process described by spec

    Raises LaunchError if it could not be started; every descriptor
    allocated for it is closed again by then.
    """
    slots = normalize(spec.stdio)
    ipc_slot = slots.index(IPC) if IPC in slots else None
    backend = spec.select_backend()
    path, argv = spec.path, spec.argv
    env = spec.environment(ipc_slot)

    try:
        plumbing = plumb(slots)
    except OSError as e:
        raise LaunchError.wrap(e, path) from e
    try:
        pid = backend.spawn(path, argv, env, plumbing.prepare(), **spec.options())
    except OSError as e:
        plumbing.abort()
        logger.debug('could not start %r: %s', argv, e)
        raise LaunchError.wrap(e, path) from e
    except BaseException:
        plumbing.abort()
        raise
    plumbing.handoff()
    logger.debug('started %r as pid %d (%s)', argv, pid, backend.__name__)

    endpoints = plumbing.endpoints
    channel = None
    if ipc_slot is not None:
        channel = Channel(endpoints.pop(ipc_slot), spec.serialization, name=f'channel[{pid}]')
    return ChildProcess(
        argv, pid, endpoints,
        slots=len(slots), channel=channel, detached=spec.detached,
        kill_signal=spec.kill_signal, timeout=spec.timeout,
    )


def spawn(command, args=(), **options):
    """start command with args; options are the fields of LaunchSpec

    By default stdin, stdout and stderr are pipes, reachable as
    child.stdin, child.stdout and child.stderr.
    """
    return launch(LaunchSpec(command, tuple(args), **options))


def fork(module, args=(), *, exec_path=None, exec_argv=(), silent=False, stdio=None, **options):
    """run a Python script with an IPC channel to it

    The script gets its end with childproc.channel.connect(). Its standard
    streams are inherited, or pipes if silent; a custom stdio needs an 'ipc'
    slot, a shorthand string gets one added.
    """
    if stdio is None:
        stdio = [PIPE if silent else INHERIT] * 3 + [IPC]
    elif isinstance(stdio, str):
        stdio = [stdio] * 3 + [IPC]
    elif IPC not in list(stdio):
        raise ValueError("fork() needs an 'ipc' slot in stdio")
    command = exec_path or sys.executable
    return spawn(command, [*exec_argv, os.fspath(module), *args], stdio=stdio, **options)


def exec_command(line, *, encoding='utf-8', max_buffer=DEFAULT_MAX_BUFFER, shell=True, **options):
    """run a shell command line and collect its output

    child.wait() returns the Result with stdout and stderr (decoded unless
    encoding is None or 'buffer'). Output past max_buffer bytes kills the
    child. shell is True for /bin/sh or a shell command line like 'bash'.

    >>> exec_command('echo hi', shell=False)
    Traceback (most recent call last):
      ...
    ValueError: exec_command() always runs a shell; use exec_file() without one
    """
    if not shell:
        raise ValueError('exec_command() always runs a shell; use exec_file() without one')
    child = spawn(line, shell=shell, **options)
    Capture(child, encoding, max_buffer, child.kill_signal)
    return child


def exec_file(file, args=(), *, encoding='utf-8', max_buffer=DEFAULT_MAX_BUFFER, **options):
    """like exec_command(), but runs file with args directly, without a shell

    >>> exec_file('sh', ['-c', 'echo out; echo err >&2; exit 4']).wait()
    Result(argv=['sh', '-c', 'echo out; echo err >&2; exit 4'], status=4, stdout='out\n', stderr='err\n')
    """
    child = spawn(file, args, **options)
    Capture(child, encoding, max_buffer, child.kill_signal)
    return child
