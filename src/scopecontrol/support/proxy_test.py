import unittest
from unittest.mock import Mock

from hamcrest import assert_that, is_, calling, raises

from scopecontrol.support.proxy import make_exception_notify_proxy


class Port:
    def __init__(self):
        self.name = "/dev/ttyUSB0"

    def read(self, size):
        return b"x" * size

    def write(self, data):
        raise OSError("device unplugged")


class ExceptionNotifyProxyTest(unittest.TestCase):

    def setUp(self):
        self.listener = Mock()
        self.sut = make_exception_notify_proxy(Port(), self.listener)

    def test_successful_call_passes_through(self):
        assert_that(self.sut.read(3), is_(b"xxx"))
        self.listener.assert_not_called()

    def test_attributes_pass_through(self):
        assert_that(self.sut.name, is_("/dev/ttyUSB0"))

    def test_exception_is_reported_and_reraised(self):
        assert_that(calling(self.sut.write).with_args(b"1"), raises(OSError))
        assert_that(self.listener.call_count, is_(1))
        error = self.listener.call_args[0][0]
        assert_that(str(error), is_("device unplugged"))
