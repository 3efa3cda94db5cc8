import unittest
from unittest.mock import Mock

from hamcrest import assert_that, is_, none, contains

from scopecontrol.client.virtual import VirtualTelescope


class VirtualTelescopeTest(unittest.TestCase):

    def test_goto_is_reached_on_next_tick(self):
        sut = VirtualTelescope('Scope1')
        assert_that(sut.connected, is_(True))
        assert_that(sut.current_equatorial_position(), is_(none()))
        sut.goto((0, 0, 1))
        assert_that(sut.has_known_position(), is_(False))
        assert_that(sut.prepare_communication(), is_(True))
        sut.perform_communication(Mock())
        assert_that(sut.current_equatorial_position(), contains(0, 0, 1))

    def test_no_goto_keeps_position(self):
        sut = VirtualTelescope('Scope1', fov_circles=[1.5])
        sut.perform_communication(Mock())
        assert_that(sut.has_known_position(), is_(False))
        assert_that(sut.fov_circles(), contains(1.5))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
