from abc import abstractmethod

from scopecontrol.support.proxy import make_exception_notify_proxy


class Conduit:
    """
    A conduit allows two-way communication with a device endpoint.

    Conduits are polled from the host's update loop, so reads never wait: read_available()
    returns whatever bytes have already arrived (possibly none). Writes may be buffered
    by the conduit and completed on later calls.
    """

    @property
    @abstractmethod
    def target(self):
        """ the underlying resource (serial port, socket, process.) """
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        """ determines if this conduit is open. When open, it can be read from and written to. """
        raise NotImplementedError

    @property
    def ready(self) -> bool:
        """ determines if the endpoint has completed its handshake and can exchange data.
            Conduits that are ready as soon as they are open need not override this. """
        return self.open

    @abstractmethod
    def read_available(self) -> bytes:
        """ returns the bytes received since the last call, or b'' if there are none. """
        raise NotImplementedError

    @abstractmethod
    def write(self, data: bytes):
        raise NotImplementedError

    @abstractmethod
    def close(self):
        raise NotImplementedError


class ConduitDecorator(Conduit):
    """
    A ConduitDecorator wraps another conduit and delegates to it's methods.
    This allows subclasses to easily override some behaviors while keeping others
    unchanged.
    """

    def __init__(self, decorate: Conduit):
        self.decorate = decorate

    @property
    def target(self):
        return self.decorate.target

    @property
    def open(self) -> bool:
        return self.decorate.open

    @property
    def ready(self) -> bool:
        return self.decorate.ready

    def read_available(self) -> bytes:
        return self.decorate.read_available()

    def write(self, data: bytes):
        self.decorate.write(data)

    def close(self):
        self.decorate.close()


class DefaultConduit(Conduit):
    """ provides the conduit from specific read/write file-like types (which may be the same value).
        The read stream should be non-blocking; a read that would block returns None, which is
        treated as no data. """

    def __init__(self, read=None, write=None):
        self._read = self._write = None
        self._closed = False
        self.set_streams(read, write)

    def set_streams(self, read, write=None):
        self._read = read
        self._write = write if write is not None else read

    @property
    def target(self):
        return self._read

    @property
    def open(self):
        return not self._closed and self._read is not None

    def read_available(self) -> bytes:
        data = self._read.read()
        return data or b''

    def write(self, data: bytes):
        self._write.write(data)
        self._write.flush()

    def close(self):
        self._closed = True
        if self._write is not None and self._write is not self._read:
            self._write.close()
        if self._read is not None:
            self._read.close()


class StreamErrorReportingConduit(ConduitDecorator):
    """
    Reports exceptions that occur when reading or writing the decorated conduit.
    The exception is still raised to the caller after the handler has been notified.
    """
    def __init__(self, decorate: Conduit, handler):
        """
        :param handler a callable that is invoked with the exception each time one occurs.
        """
        super().__init__(make_exception_notify_proxy(decorate, handler))
        self.handler = handler
