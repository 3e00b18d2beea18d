r"""childproc - launching and talking to child processes

spawn() starts a process and hands back a ChildProcess with its pipes:

>>> child = spawn('tr', ['a-z', 'A-Z'])
>>> child.stdin.end('abc')
>>> child.stdout.read()
b'ABC'
>>> child.wait()
Result(argv=['tr', 'a-z', 'A-Z'], status=0)

exec_file() and exec_command() also collect the output, decoded as UTF-8
unless asked otherwise:

>>> exec_file('/bin/echo', ['hi']).wait()
Result(argv=['/bin/echo', 'hi'], status=0, stdout='hi\n', stderr='')
>>> exec_command('echo $((6 * 7))', encoding='buffer').wait().stdout
b'42\n'

The synchronous variants block until the process is done:

>>> spawn_sync('false')
Result(argv=['false'], status=1, stdout=b'', stderr=b'')
>>> spawn_sync('sleep', ['10'], timeout=0.1)
Result(argv=['sleep', '10'], signal='SIGTERM', stdout=b'', stderr=b'', timed_out=True)

Captured output is bounded by max_buffer bytes per stream. Going over keeps
the first max_buffer bytes and kills the process:

>>> exec_command('printf abc', max_buffer=3).wait()
Result(argv=['/bin/sh', '-c', 'printf abc'], status=0, stdout='abc', stderr='')
>>> result = exec_command('printf abcd', max_buffer=3).wait()
>>> result.stdout, result.truncated, type(result.error).__name__
('abc', True, 'MaxBufferError')
>>> result = exec_file('yes', max_buffer=10000).wait()
>>> result.truncated, len(result.stdout), result.signal is not None
(True, 10000, True)

A process is killed at most once and never after it was reaped:

>>> child = spawn('sleep', ['10'], stdio='ignore')
>>> child.kill(), child.wait().signal, child.kill()
(True, 'SIGTERM', False)

'close' comes last:

>>> child = exec_command('echo out; echo err >&2')
>>> events = []
>>> _ = child.on('exit', lambda code, signal: events.append(('exit', code)))
>>> _ = child.on('close', lambda code, signal: events.append(('close', code)))
>>> child.wait_closed(5), events[-1]
(True, ('close', 0))

fork() runs a Python script with a channel for messages:

>>> import os
>>> from queue import SimpleQueue
>>> from tempfile import TemporaryDirectory
>>> root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
>>> ECHO = '''
... from childproc import connect
... channel = connect()
... channel.on('message', lambda message, handle: channel.send({'echo': message}))
... channel.wait()
... '''
>>> with TemporaryDirectory() as dir:
...     script = os.path.join(dir, 'echo.py')
...     with open(script, 'w') as file:
...         _ = file.write(ECHO)
...     child = fork(script, env=dict(os.environ, PYTHONPATH=root))
...     replies = SimpleQueue()
...     _ = child.on('message', lambda message, handle: replies.put(message))
...     _ = child.send({'n': 1}), child.send(['two'])
...     print(replies.get(timeout=10), replies.get(timeout=10))
...     child.disconnect()
...     child.wait(10).status
...
{'echo': {'n': 1}} {'echo': ['two']}
0
"""

from .errors import *  # noqa: F401 F403
from .result import Result, ResultError  # noqa: F401
from .stdio import PIPE, IGNORE, INHERIT, IPC  # noqa: F401
from .process import ChildProcess  # noqa: F401
from .capture import DEFAULT_MAX_BUFFER  # noqa: F401
from .channel import Channel, connect, HIGH_WATER_MARK  # noqa: F401
from .launch import *  # noqa: F401 F403
from .sync import *  # noqa: F401 F403
from .util import *  # noqa: F401 F403

from funcpipes import Pipe as _Pipe, to, now, get, Arguments  # noqa: F401
