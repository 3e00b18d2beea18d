"""exceptions raised or reported by childproc

>>> e = LaunchError(2, 'No such file or directory', 'nope')
>>> isinstance(e, OSError), e.errno, e.filename
(True, 2, 'nope')
>>> MaxBufferError('stdout', 10)
MaxBufferError('stdout maxBuffer length exceeded (10 bytes)')
"""

__all__ = 'LaunchError', 'CommunicationError', 'ChannelClosedError', 'MaxBufferError'


class LaunchError(OSError):
    """the process could not be created; no handle exists for it"""

    @classmethod
    def wrap(cls, error, filename=None):
        """turn an OSError from a spawn primitive into a LaunchError"""
        if isinstance(error, cls):
            return error
        return cls(error.errno, error.strerror, filename if filename is not None else error.filename)


class CommunicationError(OSError):
    """a pipe or channel failed while the process was alive"""


class ChannelClosedError(CommunicationError):
    """the IPC channel is already disconnected"""
    def __init__(self, message='channel closed'):
        super().__init__(message)


class MaxBufferError(Exception):
    """captured output went over max_buffer; the process was killed"""
    def __init__(self, stream, max_buffer):
        super().__init__(f'{stream} maxBuffer length exceeded ({max_buffer} bytes)')
        self.stream = stream
        self.max_buffer = max_buffer
