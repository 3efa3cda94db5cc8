import unittest
from unittest.mock import Mock, patch, PropertyMock

from hamcrest import assert_that, is_

from scopecontrol.conduit.serial_conduit import SerialConduit, serial_conduit_factory, serial_ports


class SerialConduitTest(unittest.TestCase):

    def setUp(self):
        self.ser = Mock()
        self.sut = SerialConduit(self.ser)

    def test_flush_is_disabled(self):
        self.ser.flush()    # would lock up a disconnected port
        assert_that(self.ser.flush, is_(self.sut._no_flush))

    def test_target_and_open(self):
        self.ser.is_open = True
        assert_that(self.sut.target, is_(self.ser))
        assert_that(self.sut.open, is_(True))
        assert_that(self.sut.ready, is_(True))

    def test_read_available_reads_only_what_is_waiting(self):
        type(self.ser).in_waiting = PropertyMock(return_value=4)
        self.ser.read.return_value = b'12:3'
        assert_that(self.sut.read_available(), is_(b'12:3'))
        self.ser.read.assert_called_once_with(4)

    def test_read_available_with_nothing_waiting(self):
        type(self.ser).in_waiting = PropertyMock(return_value=0)
        assert_that(self.sut.read_available(), is_(b''))
        self.ser.read.assert_not_called()

    def test_write_and_close(self):
        self.sut.write(b':GR#')
        self.ser.write.assert_called_once_with(b':GR#')
        self.sut.close()
        self.ser.close.assert_called_once()


class SerialFactoryTest(unittest.TestCase):

    @patch('serial.Serial')
    def test_factory_opens_non_blocking_port(self, serial_class):
        conduit = serial_conduit_factory('/dev/ttyUSB0')
        serial_class.assert_called_once_with('/dev/ttyUSB0', 9600, timeout=0, write_timeout=0.1)
        assert_that(conduit.target, is_(serial_class.return_value))

    @patch('scopecontrol.conduit.serial_conduit.list_ports.comports')
    def test_serial_ports(self, comports):
        port = Mock()
        port.device = 'COM3'
        comports.return_value = [port]
        assert_that(list(serial_ports()), is_(['COM3']))
