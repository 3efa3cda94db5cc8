import math
import unittest
from unittest.mock import Mock, MagicMock

from alpaca.exceptions import NotConnectedException
from hamcrest import assert_that, is_, close_to, calling, raises

from scopecontrol.client.alpaca import AlpacaTelescope, parse_driver_id
from scopecontrol.client.base import ClientNotInitializedError
from scopecontrol.coordinates import vector_to_radec, radec_to_vector


class ParseDriverIdTest(unittest.TestCase):

    def test_address_and_number(self):
        assert_that(parse_driver_id('observatory:11111/2'), is_(('observatory:11111', 2)))
        assert_that(parse_driver_id('localhost:11111'), is_(('localhost:11111', 0)))

    def test_malformed(self):
        assert_that(calling(parse_driver_id).with_args('/1'), raises(ClientNotInitializedError))
        assert_that(calling(parse_driver_id).with_args('host:1/x'), raises(ClientNotInitializedError))


class AlpacaTelescopeTest(unittest.TestCase):

    def setUp(self):
        self.device = MagicMock()
        self.device.Connected = False
        self.device.RightAscension = 6.0
        self.device.Declination = 45.0
        self.factory = Mock(return_value=self.device)
        self.log = Mock()
        self.sut = AlpacaTelescope('A', 'observatory:11111/1', telescope_factory=self.factory)

    def test_creates_device(self):
        self.factory.assert_called_once_with('observatory:11111', 1)
        assert_that(self.sut.initialized, is_(True))
        assert_that(self.sut.connected, is_(False))

    def test_connects_and_reads_position(self):
        assert_that(self.sut.prepare_communication(), is_(True))
        self.sut.perform_communication(self.log)
        assert_that(self.device.Connected, is_(True))
        assert_that(self.sut.connected, is_(True))
        ra, dec = vector_to_radec(self.sut.current_equatorial_position())
        assert_that(ra, close_to(math.pi / 2, 1e-9))
        assert_that(dec, close_to(math.pi / 4, 1e-9))

    def test_poll_is_rate_limited(self):
        self.sut.perform_communication(self.log)
        assert_that(self.sut.prepare_communication(), is_(False))

    def test_goto_is_sent_on_next_tick(self):
        self.sut.perform_communication(self.log)
        self.sut.goto(radec_to_vector(math.pi, -math.pi / 6))
        self.device.SlewToCoordinatesAsync.assert_not_called()
        assert_that(self.sut.prepare_communication(), is_(True))
        self.sut.perform_communication(self.log)
        (ra, dec), _ = self.device.SlewToCoordinatesAsync.call_args
        assert_that(ra, close_to(12, 1e-9))
        assert_that(dec, close_to(-30, 1e-9))

    def test_alpaca_error_disconnects(self):
        self.sut.perform_communication(self.log)
        type(self.device).RightAscension = property(Mock(side_effect=NotConnectedException('gone')))
        self.sut.poll.reset()
        self.sut.perform_communication(self.log)
        assert_that(self.sut.connected, is_(False))
        assert_that(self.log.warning.called, is_(True))

    def test_unreachable_server_is_retried_once_per_period(self):
        sut = AlpacaTelescope('B', 'observatory:11111/1', telescope_factory=self.factory, delay=10000000)
        connected = Mock(side_effect=ConnectionError('connection refused'))
        type(self.device).Connected = property(connected)
        for _ in range(5):
            sut.perform_communication(self.log)
        assert_that(connected.call_count, is_(1))
        assert_that(sut.connected, is_(False))
        assert_that(sut.prepare_communication(), is_(False))

    def test_stop_disconnects_device(self):
        self.sut.perform_communication(self.log)
        self.sut.stop()
        assert_that(self.device.Connected, is_(False))

    def test_bad_driver_id_fails_initialization(self):
        sut = AlpacaTelescope('A', '/1', telescope_factory=self.factory)
        assert_that(sut.initialized, is_(False))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
