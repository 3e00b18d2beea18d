import doctest
import importlib

import pytest

from childproc.launch import change_default_backend, get_backend

BUILDING_BLOCKS = (
    'errors', 'fd', 'thread', 'pipe', 'events', 'streams', 'stdio', 'result',
    'channel', 'posix_wait', 'posix_spawn', 'fork_exec',
)
LAUNCHING = 'process', 'capture', 'launch', 'sync', 'util', None
BACKENDS = 'posix_spawn', 'fork_exec'


def run_doctests(name):
    module = importlib.import_module('childproc' if name is None else f'childproc.{name}')
    failed, attempted = doctest.testmod(module)
    assert attempted > 0
    assert failed == 0


@pytest.fixture
def backend(request):
    previous = get_backend.default
    change_default_backend(request.param)
    yield request.param
    change_default_backend(previous)


@pytest.mark.parametrize('name', BUILDING_BLOCKS)
def test_building_block(name) -> None:
    run_doctests(name)


@pytest.mark.parametrize('backend', BACKENDS, indirect=True)
@pytest.mark.parametrize('name', LAUNCHING)
def test_launching(name, backend) -> None:
    run_doctests(name)
