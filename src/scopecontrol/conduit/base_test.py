import unittest
from unittest.mock import Mock, PropertyMock

from hamcrest import is_, assert_that, raises, calling

from scopecontrol.conduit.base import ConduitDecorator, DefaultConduit, Conduit, StreamErrorReportingConduit


class ConduitTest(unittest.TestCase):

    def test_abstract_methods(self):
        sut = Conduit()
        assert_that(calling(sut.close), raises(NotImplementedError))
        assert_that(calling(sut.read_available), raises(NotImplementedError))
        assert_that(calling(sut.write).with_args(b'1'), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('open'), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('ready'), raises(NotImplementedError))
        assert_that(calling(sut.__getattribute__).with_args('target'), raises(NotImplementedError))


class ConduitDecoratorTest(unittest.TestCase):
    def test_target(self):
        mock = Mock()
        prop = PropertyMock(return_value="123")
        type(mock).target = prop
        sut = ConduitDecorator(mock)
        assert_that(sut.target, is_("123"))
        prop.assert_called_once()

    def test_close(self):
        mock = Mock()
        sut = ConduitDecorator(mock)
        assert_that(sut.close(), is_(None))
        mock.close.assert_called_once()

    def test_open_and_ready(self):
        mock = Mock()
        type(mock).open = PropertyMock(return_value=True)
        type(mock).ready = PropertyMock(return_value=False)
        sut = ConduitDecorator(mock)
        assert_that(sut.open, is_(True))
        assert_that(sut.ready, is_(False))

    def test_read_and_write(self):
        mock = Mock()
        mock.read_available.return_value = b'abc'
        sut = ConduitDecorator(mock)
        assert_that(sut.read_available(), is_(b'abc'))
        sut.write(b'xyz')
        mock.write.assert_called_once_with(b'xyz')


class DefaultConduitTest(unittest.TestCase):

    def test_same_stream_for_read_and_write(self):
        stream = Mock()
        sut = DefaultConduit(stream)
        assert_that(sut.target, is_(stream))
        assert_that(sut.open, is_(True))
        sut.close()
        stream.close.assert_called_once()
        assert_that(sut.open, is_(False))

    def test_separate_streams(self):
        read, write = Mock(), Mock()
        read.read.return_value = None
        sut = DefaultConduit(read, write)
        assert_that(sut.read_available(), is_(b''))
        sut.write(b'1')
        write.write.assert_called_once_with(b'1')
        write.flush.assert_called_once()
        sut.close()
        read.close.assert_called_once()
        write.close.assert_called_once()

    def test_ready_follows_open(self):
        sut = DefaultConduit(Mock())
        assert_that(sut.ready, is_(True))

    def test_not_open_without_streams(self):
        assert_that(DefaultConduit().open, is_(False))


class StreamErrorReportingConduitTest(unittest.TestCase):

    def test_errors_are_reported_and_raised(self):
        read = Mock()
        read.read.side_effect = OSError("gone")
        decorated = DefaultConduit(read, Mock())
        handler = Mock()
        sut = StreamErrorReportingConduit(decorated, handler)
        assert_that(calling(sut.read_available), raises(OSError))
        assert_that(handler.call_count, is_(1))

    def test_success_is_not_reported(self):
        decorated = DefaultConduit(Mock(), Mock())
        decorated._read.read.return_value = b'data'
        handler = Mock()
        sut = StreamErrorReportingConduit(decorated, handler)
        assert_that(sut.read_available(), is_(b'data'))
        assert_that(sut.open, is_(True))
        handler.assert_not_called()
