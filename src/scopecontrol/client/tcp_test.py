import math
import socket
import unittest
from unittest.mock import Mock

import timeout_decorator
from hamcrest import assert_that, is_, close_to, empty, contains

from scopecontrol.client.lx200_test import FakeConduit
from scopecontrol.client.tcp import TcpTelescope, POSITION, GOTO, encode_goto, decode_position
from scopecontrol.coordinates import vector_to_radec, radec_to_vector


def position_frame(time_us, ra_int, dec_int, status=0):
    return POSITION.pack(POSITION.size, 0, time_us, ra_int, dec_int, status)


class TcpFramingTest(unittest.TestCase):

    def test_goto_frame(self):
        frame = encode_goto(radec_to_vector(math.pi, math.pi / 4), 12.5)
        assert_that(len(frame), is_(20))
        assert_that(GOTO.unpack(frame), is_((20, 0, 12500000, 0x80000000, 0x20000000)))

    def test_position_frame(self):
        timestamp, position, status = decode_position(position_frame(2000000, 0x40000000, -0x20000000, 3))
        ra, dec = vector_to_radec(position)
        assert_that(timestamp, is_(2.0))
        assert_that(ra, close_to(math.pi / 2, 1e-9))
        assert_that(dec, close_to(-math.pi / 4, 1e-9))
        assert_that(status, is_(3))


class TcpTelescopeTest(unittest.TestCase):

    def setUp(self):
        self.conduit = FakeConduit()
        self.log = Mock()
        self.sut = TcpTelescope('T', 'localhost', 10001, conduit_factory=lambda host, port: self.conduit,
                                clock=lambda: 100.0)

    def test_partial_frames_are_buffered(self):
        frame = position_frame(100000000, 0x80000000, 0)
        self.conduit.feed(frame[:10])
        self.sut.perform_communication(self.log)
        assert_that(self.sut.connected, is_(True))
        assert_that(self.sut.has_known_position(), is_(False))
        self.conduit.feed(frame[10:] + frame[:3])
        self.sut.perform_communication(self.log)
        assert_that(self.sut.has_known_position(), is_(True))
        assert_that(len(self.sut._buffer), is_(3))

    def test_unknown_messages_are_skipped(self):
        self.conduit.feed(b'\x06\x00\x05\x00ab' + position_frame(100000000, 0, 0))
        self.sut.perform_communication(self.log)
        assert_that(self.sut.current_equatorial_position(), contains(1, 0, 0))

    def test_bad_length_disconnects(self):
        self.conduit.feed(b'\x01\x00\x00\x00')
        self.sut.perform_communication(self.log)
        assert_that(self.sut.connected, is_(False))
        assert_that(self.conduit.closed, is_(True))

    def test_goto_is_sent_on_next_tick(self):
        self.sut.goto((1, 0, 0))
        assert_that(self.conduit.written, is_(empty()))
        self.sut.perform_communication(self.log)
        assert_that(self.conduit.written, contains(encode_goto((1, 0, 0), 100.0)))


class TcpTelescopeSocketTest(unittest.TestCase):

    @timeout_decorator.timeout(5)
    def test_exchange_with_server(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.addCleanup(server.close)
        server.bind(('127.0.0.1', 0))
        server.listen(1)
        log = Mock()
        sut = TcpTelescope('T', '127.0.0.1', server.getsockname()[1])
        self.addCleanup(sut.stop)
        peer, _ = server.accept()
        self.addCleanup(peer.close)
        while not sut.connected:
            sut.perform_communication(log)

        peer.sendall(position_frame(1000000, 0x80000000, 0x20000000))
        while not sut.has_known_position():
            sut.perform_communication(log)
        ra, dec = vector_to_radec(sut.current_equatorial_position())
        assert_that(ra, close_to(math.pi, 1e-9))
        assert_that(dec, close_to(math.pi / 4, 1e-9))

        sut.goto(radec_to_vector(0, 0))
        sut.perform_communication(log)
        frame = peer.recv(GOTO.size)
        assert_that(GOTO.unpack(frame)[3:], is_((0, 0)))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
