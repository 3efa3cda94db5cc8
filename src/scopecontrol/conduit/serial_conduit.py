"""
Implements a conduit over a serial port.
"""

import logging

import serial
from serial.tools import list_ports

from scopecontrol.conduit.base import Conduit

logger = logging.getLogger(__name__)


class SerialConduit(Conduit):
    """
    A conduit that provides comms via a serial port.
    The port is expected to be opened with a zero read timeout so reads never wait.
    """

    def __init__(self, ser: serial.Serial):
        self.ser = ser
        # patch flushing since this causes a lockup if the serial is disconnected during
        # the flush.
        ser.flush = self._no_flush

    def _no_flush(self, *args, **kwargs):
        pass

    @property
    def target(self):
        return self.ser

    @property
    def open(self) -> bool:
        return self.ser.is_open

    def read_available(self) -> bytes:
        waiting = self.ser.in_waiting
        return self.ser.read(waiting) if waiting else b''

    def write(self, data: bytes):
        self.ser.write(data)

    def close(self):
        self.ser.close()


def serial_conduit_factory(port, baudrate=9600, write_timeout=0.1, **kwargs):
    """
    Opens the serial port and wraps it in a conduit. Further arguments are passed to `serial.Serial`.
    raises serial.SerialException when the port cannot be opened.
    """
    ser = serial.Serial(port, baudrate, timeout=0, write_timeout=write_timeout, **kwargs)
    logger.info("opened serial port %s" % port)
    return SerialConduit(ser)


def serial_port_info():
    """
    :return: a tuple of ListPortInfo for the serial ports present on this machine.
    """
    return tuple(list_ports.comports())


def serial_ports():
    """
    Returns a generator for all available serial port device names.
    """
    for port in serial_port_info():
        yield port.device
