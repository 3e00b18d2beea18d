r"""turning a stdio configuration into descriptors for a child

A configuration is either one of the shorthands 'pipe', 'ignore' and
'inherit', which apply to slots 0, 1 and 2, or a sequence with one entry per
slot:

>>> normalize('inherit')
['inherit', 'inherit', 'inherit']
>>> normalize([None, 'ignore', 2, None, 'ipc'])
['pipe', 'ignore', Descriptor(2), 'ignore', 'ipc']
>>> normalize(['ipc', 'pipe', 'pipe', 'ipc'])
Traceback (most recent call last):
  ...
ValueError: at most one 'ipc' slot is allowed

Anything with a fileno() method is duplicated into the child:

>>> import sys
>>> normalize([sys.stdin])  # doctest: +ELLIPSIS
[Duplicate(<...>), 'pipe', 'pipe']

plumb() then allocates the OS resources:

>>> plumbing = plumb(normalize(['pipe', 'pipe', 'ignore', 'ipc']))
>>> sorted(plumbing.child_fds), sorted(plumbing.endpoints), plumbing.ipc_slot
([0, 1, 2, 3], [0, 1, 3], 3)
>>> plumbing.abort()
"""

__all__ = (
    'PIPE', 'IGNORE', 'INHERIT', 'IPC',
    'Duplicate', 'Descriptor', 'Plumbing',
    'normalize', 'plumb',
)

import logging
import os
import socket

from .fd import FD, devnull
from .pipe import InputPipe, OutputPipe

logger = logging.getLogger(__name__)

PIPE = 'pipe'
IGNORE = 'ignore'
INHERIT = 'inherit'
IPC = 'ipc'
KINDS = PIPE, IGNORE, INHERIT, IPC


class Duplicate:
    """install a copy of an existing stream's descriptor in the child"""
    def __init__(self, stream):
        self.stream = stream

    def fileno(self):
        return self.stream.fileno()

    def __eq__(self, other):
        return isinstance(other, Duplicate) and other.stream is self.stream

    def __repr__(self):
        return f'{type(self).__name__}({self.stream!r})'


class Descriptor:
    """install a raw descriptor number of this process in the child"""
    def __init__(self, fd):
        if not isinstance(fd, int) or fd < 0:
            raise ValueError(f'invalid descriptor: {fd!r}')
        self.fd = fd

    def fileno(self):
        return self.fd

    def __eq__(self, other):
        return isinstance(other, Descriptor) and other.fd == self.fd

    def __repr__(self):
        return f'{type(self).__name__}({self.fd})'


def max_slots():
    try:
        return os.sysconf('SC_OPEN_MAX')
    except (ValueError, OSError):
        return 256


def normalize_slot(index, slot):
    if slot is None:
        return PIPE if index < 3 else IGNORE
    if isinstance(slot, str):
        if slot not in KINDS:
            raise ValueError(f'unknown stdio value {slot!r} for slot {index}')
        return slot
    if isinstance(slot, (Duplicate, Descriptor)):
        return slot
    if isinstance(slot, bool):
        raise TypeError(f'invalid stdio value {slot!r} for slot {index}')
    if isinstance(slot, int):
        return Descriptor(slot)
    # a ChildProcess (or anything else) exposing a readable stdout chains on it
    stdout = getattr(slot, 'stdout', None)
    if stdout is not None and hasattr(stdout, 'fileno') and not hasattr(slot, 'fileno'):
        return Duplicate(stdout)
    if hasattr(slot, 'fileno'):
        return Duplicate(slot)
    raise TypeError(f'invalid stdio value {slot!r} of type {type(slot).__name__} for slot {index}')


def normalize(stdio=None):
    """validate a stdio configuration and expand it to one entry per slot

    Nothing is allocated, so an invalid configuration fails before any
    descriptor exists.
    """
    if stdio is None:
        stdio = PIPE
    if isinstance(stdio, str):
        if stdio not in (PIPE, IGNORE, INHERIT):
            raise ValueError(f'unknown stdio shorthand {stdio!r}')
        return [stdio] * 3
    try:
        stdio = list(stdio)
    except TypeError:
        raise TypeError(f'stdio must be a string or a sequence, not {type(stdio).__name__}') from None
    stdio += [None] * (3 - len(stdio))
    if len(stdio) > max_slots():
        raise ValueError(f'too many stdio slots: {len(stdio)}')
    slots = [normalize_slot(i, slot) for i, slot in enumerate(stdio)]
    if slots.count(IPC) > 1:
        raise ValueError("at most one 'ipc' slot is allowed")
    return slots


class Plumbing:
    """descriptors allocated for one launch

    child_fds: {slot: FD} to install in the child
    endpoints: {slot: FD or socket} kept by the parent
    owned:     FDs created here that the parent closes after handoff
    """
    def __init__(self, slots):
        self.slots = slots
        self.child_fds = {}
        self.endpoints = {}
        self.owned = []
        self.ipc_slot = None
        self._sources = []

    def prepare(self):
        """move every child-side source above the slot range

        Returns {slot: fd} of close-on-exec descriptors that a backend can
        dup2() into their slots in any order.

        >>> p = plumb(normalize(['pipe', 'inherit', 'inherit']))
        >>> all(fd >= 3 for fd in p.prepare().values())
        True
        >>> p.abort()
        """
        floor = max(len(self.slots), 3)
        mapping = {}
        for slot, fd in self.child_fds.items():
            try:
                source = fd.dup_above(floor)
            except OSError as e:
                if self.slots[slot] == INHERIT:
                    logger.debug('slot %d: nothing to inherit (%s)', slot, e.strerror)
                    continue
                raise
            self._sources.append(source)
            mapping[slot] = source.fd
        return mapping

    def handoff(self):
        """close the parent's copies of everything that now lives in the child"""
        for fd in self._sources + self.owned:
            fd.close()
        self._sources = []
        self.owned = []

    def abort(self):
        """release everything; used when the child could not be created"""
        self.handoff()
        for endpoint in self.endpoints.values():
            endpoint.close()
        self.endpoints = {}


def plumb(slots):
    """allocate pipes, sockets and /dev/null for normalized slots"""
    plumbing = Plumbing(slots)
    try:
        for slot, kind in enumerate(slots):
            if kind == PIPE:
                pipe = InputPipe() if slot == 0 else OutputPipe()
                plumbing.child_fds[slot] = pipe.child_end
                plumbing.owned.append(pipe.child_end)
                plumbing.endpoints[slot] = pipe.parent_end
            elif kind == IGNORE:
                if slot < 3:
                    null = devnull('r' if slot == 0 else 'w')
                    plumbing.child_fds[slot] = null
                    plumbing.owned.append(null)
            elif kind == INHERIT:
                plumbing.child_fds[slot] = FD(slot)
            elif kind == IPC:
                parent, child = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
                child_fd = FD(child.detach(), 'r+b')
                plumbing.child_fds[slot] = child_fd
                plumbing.owned.append(child_fd)
                plumbing.endpoints[slot] = parent
                plumbing.ipc_slot = slot
            else:
                plumbing.child_fds[slot] = FD(kind.fileno())
    except BaseException:
        plumbing.abort()
        raise
    return plumbing
