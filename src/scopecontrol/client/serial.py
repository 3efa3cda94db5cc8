"""
Telescopes attached directly to a serial port, driven by a queue of commands.

One command is in flight at a time. Each tick sends the next queued command once the previous
reply is complete; replies are accumulated across ticks so the host is never kept waiting.
"""
import logging
import time
from abc import abstractmethod
from collections import deque

from scopecontrol.client.base import TelescopeClient, ClientTimeoutError
from scopecontrol.conduit.base import StreamErrorReportingConduit
from scopecontrol.conduit.serial_conduit import serial_conduit_factory

logger = logging.getLogger(__name__)


class Command:
    """ A request written to the device, and the decoding of its reply. """

    @abstractmethod
    def encode(self) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def decode(self, buffer: bytearray, log) -> bool:
        """
        Consumes the reply from the start of the buffer.
        :return: True if the reply is complete, False if more bytes are needed.
        raises ProtocolError if the reply is malformed.
        """
        raise NotImplementedError

    def __str__(self):
        return type(self).__name__


def take_until(buffer: bytearray, terminator=b'#'):
    """ removes and returns the bytes before the terminator, or None if the terminator has not arrived. """
    index = buffer.find(terminator)
    if index < 0:
        return None
    reply = bytes(buffer[:index])
    del buffer[:index + len(terminator)]
    return reply


class SerialTelescope(TelescopeClient):
    """
    :param serial_port the name of the serial port.
    :param conduit_factory  called with the port name to open the conduit.
    """
    reply_timeout = 1.0

    def __init__(self, id, serial_port, conduit_factory=serial_conduit_factory, monotonic=time.monotonic, **kwargs):
        super().__init__(id, **kwargs)
        self.serial_port = serial_port
        self.conduit_factory = conduit_factory
        self.monotonic = monotonic
        self.conduit = None
        self._queue = deque()
        self._pending = None
        self._sent_at = None
        self._buffer = bytearray()
        self.initialize()

    def _open(self):
        self.conduit = StreamErrorReportingConduit(self.conduit_factory(self.serial_port), self._conduit_error)
        self._connected = True

    def _conduit_error(self, e):
        logger.debug("serial port %s error: %s", self.serial_port, e)
        self._connected = False

    def _close(self):
        if self.conduit is not None:
            self.conduit.close()

    def prepare_communication(self):
        return self.live and (self._pending is not None or bool(self._queue) or self.poll(dry_run=True) <= 0)

    def _goto(self, target_j2000):
        self._queue.extend(self.goto_commands(self._device_position(target_j2000)))

    def _communicate(self, log):
        self._buffer += self.conduit.read_available()
        if self._pending is not None:
            if self._pending.decode(self._buffer, log):
                self._pending = None
                self._connected = True
            elif self.monotonic() - self._sent_at > self.reply_timeout:
                self._reset()
                raise ClientTimeoutError("no reply from %s" % self.serial_port)
        if self._pending is None:
            if not self._queue and self.poll() <= 0:
                self._queue.extend(self.poll_commands())
            if self._queue:
                self._send(self._queue.popleft(), log)

    def _send(self, command, log):
        if self._buffer:
            log.debug("discarding unexpected bytes %r", bytes(self._buffer))
            self._buffer.clear()
        data = command.encode()
        log.debug("sending %s %r", command, data)
        self.conduit.write(data)
        self._pending = command
        self._sent_at = self.monotonic()

    def _fault(self, error, log=logger):
        self._reset()
        super()._fault(error, log)

    def _reset(self):
        self._queue.clear()
        self._pending = None
        self._buffer.clear()

    @abstractmethod
    def poll_commands(self):
        """ the commands that read the current position. """
        raise NotImplementedError

    @abstractmethod
    def goto_commands(self, target):
        """ the commands that slew to the target, given in the device's equinox. """
        raise NotImplementedError
