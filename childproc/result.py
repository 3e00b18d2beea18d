r"""what is left of a process once it is done

>>> Result(['echo', 'hi'], status=0, stdout='hi\n', stderr='')
Result(argv=['echo', 'hi'], status=0, stdout='hi\n', stderr='')
>>> Result(['sleep', '10'], signal='SIGTERM', timed_out=True).check()
Traceback (most recent call last):
  ...
childproc.result.ResultError: Command ['sleep', '10'] was killed by SIGTERM (timed out).
"""

__all__ = 'Result', 'ResultError'


class ResultBase:
    FIELDS = 'argv', 'status', 'signal', 'stdout', 'stderr', 'truncated', 'timed_out', 'error'

    def __init__(
        self, argv, status=None, signal=None, stdout=None, stderr=None,
        truncated=False, timed_out=False, error=None, pid=None, output=None,
    ):
        self.argv = argv
        self.status = status
        self.signal = signal
        self.stdout = stdout
        self.stderr = stderr
        self.truncated = truncated
        self.timed_out = timed_out
        self.error = error
        self.pid = pid
        self.output = output

    def __repr__(self):
        param_str = ', '.join(
            f'{n}={repr(getattr(self, n))}'
            for n in self.FIELDS
            if getattr(self, n) is not None and getattr(self, n) is not False
        )
        return f'{type(self).__name__}({param_str})'

    def __iter__(self):
        return iter(getattr(self, n) for n in self.FIELDS)

    @property
    def ok(self):
        return self.error is None and self.status == 0

    def describe(self):
        if self.error is not None and self.status is None and self.signal is None:
            return f'Command {self.argv!r} failed to start: {self.error}.'
        if self.signal is not None:
            cause = ' (timed out)' if self.timed_out else ''
            text = f'Command {self.argv!r} was killed by {self.signal}{cause}.'
        else:
            text = f'Command {self.argv!r} returned non-zero exit status {self.status}.'
        if self.error is not None:
            text += f' {self.error}.'
        return text


class Result(ResultBase):
    """the result after waiting on a process

    status and signal are never both set; both are None only when the
    process never started (see error). output holds what was captured from
    each stdio slot, None for slots that were not captured; stdout and
    stderr are output[1] and output[2].
    """
    def check(self):
        """raise an error unless the process started and exited with 0"""
        if not self.ok:
            raise ResultError(*self, pid=self.pid, output=self.output)
        return self

    def die(self):
        """exit with status if the process failed"""
        from sys import stderr, exit
        if self.ok:
            return self
        if self.stderr is not None:
            stderr.write(self.stderr if isinstance(self.stderr, str) else self.stderr.decode(errors='replace'))
        exit(self.status if self.status else 1)


class ResultError(ResultBase, Exception):
    """the result as an error, raised by Result.check()"""
    def __str__(self):
        return self.describe()
