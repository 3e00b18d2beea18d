import os
import socket
import sys
import textwrap
import time
from pathlib import Path
from queue import SimpleQueue

import pytest

from childproc import (
    LaunchError, ResultError, exec_command, exec_command_sync, exec_file, exec_file_sync, fork, lsof,
    spawn, spawn_sync,
)
from childproc.channel import HIGH_WATER_MARK

ROOT = str(Path(__file__).resolve().parent.parent)


def write_script(tmp_path, source):
    script = tmp_path / 'script.py'
    script.write_text(textwrap.dedent(source))
    return script


def child_env():
    return dict(os.environ, PYTHONPATH=ROOT)


def test_exit_code_and_signal_are_exclusive() -> None:
    exited = spawn('sh', ['-c', 'exit 5'], stdio='ignore')
    killed = spawn('sleep', ['10'], stdio='ignore')
    killed.kill('SIGKILL')

    assert (exited.wait().status, exited.signal_code) == (5, None)
    assert (killed.wait().status, killed.signal_code) == (None, 'SIGKILL')
    assert killed.state == 'signaled'


def test_kill_after_reap_does_nothing() -> None:
    child = spawn('true', stdio='ignore')
    child.wait()

    assert child.kill() is False
    assert child.killed is False


def test_failed_launch_leaves_nothing_open() -> None:
    before = lsof()
    with pytest.raises(LaunchError):
        spawn('/nonexistent/program', stdio=['pipe', 'pipe', 'pipe', 'pipe', 'ipc'])

    assert lsof() == before


def test_invalid_stdio_fails_before_allocation() -> None:
    before = lsof()
    with pytest.raises(ValueError):
        spawn('true', stdio=['ipc', 'pipe', 'pipe', 'ipc'])
    with pytest.raises(TypeError):
        spawn('true', stdio=[object()])

    assert lsof() == before


def test_extra_pipe_slot_is_readable() -> None:
    child = spawn('sh', ['-c', 'echo extra >&3'], stdio=['ignore', 'ignore', 'ignore', 'pipe'])

    assert child.stdio[3].read() == b'extra\n'
    assert child.wait().status == 0


def test_output_chains_into_next_process() -> None:
    first = spawn('echo', ['abc'], stdio=['ignore', 'pipe', 'ignore'])
    second = exec_file('tr', ['a-z', 'A-Z'], stdio=[first, 'pipe', 'pipe'])
    first.stdout.destroy()

    assert second.wait().stdout == 'ABC\n'
    assert first.wait().status == 0


def test_detached_child_leads_its_group() -> None:
    child = exec_file(sys.executable, ['-c', 'import os; print(os.getpgid(0))'], detached=True)
    result = child.wait()

    assert int(result.stdout) == child.pid


def test_cwd_and_argv0() -> None:
    assert exec_file('pwd', cwd='/').wait().stdout == '/\n'
    assert exec_command('echo $0', argv0='custom').wait().stdout == 'custom\n'


def test_env_replaces_parent_environment() -> None:
    result = spawn_sync('/usr/bin/env', env={'ONLY': 'this'}, encoding='utf-8')

    assert result.stdout == 'ONLY=this\n'


def test_sync_input_larger_than_pipe() -> None:
    data = b'x' * 1000000

    result = spawn_sync('cat', input=data, max_buffer=None)

    assert result.stdout == data
    assert not result.truncated


def test_sync_variant_raises_on_failure() -> None:
    with pytest.raises(ResultError) as info:
        exec_file_sync('sh', ['-c', 'echo nope >&2; exit 7'])

    assert info.value.status == 7
    assert info.value.stderr == b'nope\n'


def test_timeout_marks_result() -> None:
    result = exec_file('sleep', ['10'], timeout=0.1, kill_signal='SIGKILL').wait()

    assert result.timed_out
    assert result.signal == 'SIGKILL'
    assert result.status is None


def test_context_manager_waits() -> None:
    with spawn('cat', stdio=['pipe', 'ignore', 'ignore']) as child:
        child.stdin.write(b'ignored')

    assert child.state == 'exited'
    assert child.poll().status == 0


def test_fork_exchanges_messages_in_order(tmp_path) -> None:
    script = write_script(tmp_path, '''
        from childproc import connect
        channel = connect()
        channel.on('message', lambda message, handle: channel.send(message * 2))
        channel.wait()
    ''')
    child = fork(script, env=child_env())
    replies = SimpleQueue()
    child.on('message', lambda message, handle: replies.put(message))

    for n in range(100):
        child.send(n)

    assert [replies.get(timeout=10) for _ in range(100)] == [n * 2 for n in range(100)]
    child.disconnect()
    assert child.wait(10).status == 0
    assert not child.connected


def test_fork_passes_a_listening_socket(tmp_path) -> None:
    script = write_script(tmp_path, '''
        from childproc import connect
        channel = connect()

        def serve(message, server):
            connection, _ = server.accept()
            connection.sendall(message.encode())
            connection.close()
            server.close()
            channel.disconnect()

        channel.on('message', serve)
        channel.wait()
    ''')
    server = socket.socket()
    server.bind(('127.0.0.1', 0))
    server.listen()
    address = server.getsockname()
    child = fork(script, env=child_env())

    child.send('served by the child', server)
    with socket.create_connection(address, timeout=10) as connection:
        assert connection.recv(100) == b'served by the child'
    assert child.wait(10).status == 0
    assert server.fileno() == -1


def test_fork_silent_captures_output(tmp_path) -> None:
    script = write_script(tmp_path, '''
        import sys
        from childproc import connect
        print('hello from', sys.argv[1])
        connect().disconnect()
    ''')
    child = fork(script, ['child'], silent=True, env=child_env())

    assert child.stdout.read() == b'hello from child\n'
    assert child.wait(10).status == 0


def test_fork_needs_ipc_slot() -> None:
    with pytest.raises(ValueError):
        fork('script.py', stdio=['pipe', 'pipe', 'pipe'])


def test_send_over_high_water_mark_still_delivers(tmp_path) -> None:
    script = write_script(tmp_path, '''
        from childproc import connect
        channel = connect()
        channel.on('message', lambda message, handle: channel.send(len(message)))
        channel.wait()
    ''')
    child = fork(script, env=child_env())
    replies = SimpleQueue()
    child.on('message', lambda message, handle: replies.put(message))

    big = 'x' * (HIGH_WATER_MARK * 2)
    accepted = [child.send(big) for _ in range(4)]

    assert [replies.get(timeout=10) for _ in range(4)] == [len(big)] * 4
    assert False in accepted
    child.disconnect()
    child.wait(10)


def test_send_after_disconnect_reports_error(tmp_path) -> None:
    script = write_script(tmp_path, '''
        from childproc import connect
        connect().wait()
    ''')
    child = fork(script, env=child_env())
    errors = []
    child.on('error', errors.append)
    child.disconnect()

    assert child.send('late') is False
    assert type(errors[0]).__name__ == 'ChannelClosedError'
    child.wait(10)


def test_unref_releases_keepalive() -> None:
    child = spawn('sleep', ['10'], stdio='ignore')
    assert child.referenced
    child.unref()
    assert not child.referenced
    child.kill()
    child.wait()


@pytest.mark.skipif(sys.platform != 'linux', reason='needs /proc')
def test_finished_process_leaves_nothing_open() -> None:
    before = lsof()
    for _ in range(5):
        exec_command('echo out; echo err >&2').wait()

    assert lsof() == before


def test_capture_collects_every_readable_slot() -> None:
    result = spawn_sync('sh', ['-c', 'echo out; echo extra >&3'], stdio=['pipe'] * 4)

    assert result.status == 0
    assert result.output == [None, b'out\n', b'', b'extra\n']
    assert (result.stdout, result.stderr) == (result.output[1], result.output[2])


def test_capture_with_extra_slot_finishes() -> None:
    assert exec_file('true', stdio=['pipe'] * 4).wait(5).output == [None, '', '', '']

    start = time.monotonic()
    result = spawn_sync('sleep', ['10'], timeout=0.2, stdio=['pipe'] * 4)

    assert result.timed_out
    assert time.monotonic() - start < 2


def test_extra_slot_counts_towards_max_buffer() -> None:
    result = spawn_sync('sh', ['-c', 'printf abcd >&3'], stdio=['pipe'] * 4, max_buffer=3)

    assert result.truncated
    assert result.output[3] == b'abc'
    assert str(result.error) == 'fd3 maxBuffer length exceeded (3 bytes)'


def test_timeout_does_not_wait_for_grandchildren() -> None:
    start = time.monotonic()
    result = spawn_sync('sh', ['-c', 'sleep 30; :'], timeout=0.2)

    assert result.timed_out
    assert result.signal == 'SIGTERM'
    assert time.monotonic() - start < 2


def test_overflow_does_not_wait_for_grandchildren() -> None:
    start = time.monotonic()
    result = spawn_sync('sh', ['-c', 'sleep 30 & printf abcd; wait'], max_buffer=3)

    assert result.truncated
    assert result.stdout == b'abc'
    assert time.monotonic() - start < 2


def test_shell_helpers_reject_shell_false() -> None:
    with pytest.raises(ValueError):
        exec_command('echo hi', shell=False)
    with pytest.raises(ValueError):
        exec_command_sync('echo hi', shell=False)
    assert exec_command('echo $0', shell='sh').wait().stdout == 'sh\n'
