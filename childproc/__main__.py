from doctest import testmod
import childproc
from . import (
    errors, fd, thread, pipe, events, streams, stdio, result, channel,
    posix_wait, posix_spawn, fork_exec,
    process, capture, launch, sync, util,
)

from .launch import change_default_backend, get_backend

print('checking building blocks...')
for mod in errors, fd, thread, pipe, events, streams, stdio, result, channel, posix_wait, posix_spawn, fork_exec:
    print(f'\t{mod.__name__}...')
    testmod(mod)
print()

for backend in 'posix_spawn', 'fork_exec':
    change_default_backend(backend)
    print(f'with backend {get_backend.default.__name__}...')
    for mod in process, capture, launch, sync, util, childproc:
        print(f'\t{mod.__name__}...')
        testmod(mod)
    print()
