import logging
import os
import shutil
import tempfile
import unittest

from hamcrest import assert_that, is_, none, instance_of, contains_string, same_instance, empty

from scopecontrol.devicelog import DeviceLogs


class DeviceLogsTest(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.dir)

    def test_disabled_logs_discard(self):
        sut = DeviceLogs(self.dir)
        log = sut.add('Scope1')
        self.addCleanup(sut.close)
        log.info('hello')
        assert_that(log.handlers[0], instance_of(logging.NullHandler))
        assert_that(os.listdir(self.dir), is_(empty()))

    def test_enabled_logs_write_file(self):
        sut = DeviceLogs(self.dir, enabled=True)
        log = sut.add('Scope1')
        log.warning('no reply')
        sut.remove('Scope1')
        with open(os.path.join(self.dir, 'deviceLog_Scope1.txt')) as f:
            assert_that(f.read(), contains_string('WARNING no reply'))
        assert_that(sut.get('Scope1'), is_(none()))
        assert_that(log.handlers, is_(empty()))

    def test_file_is_truncated_when_opened(self):
        path = os.path.join(self.dir, 'deviceLog_Scope1.txt')
        with open(path, 'w') as f:
            f.write('old\n')
        sut = DeviceLogs(self.dir, enabled=True)
        sut.add('Scope1')
        sut.close()
        with open(path) as f:
            assert_that(f.read(), is_(''))

    def test_add_is_idempotent(self):
        sut = DeviceLogs(self.dir)
        self.addCleanup(sut.close)
        assert_that(sut.add('Scope1'), is_(same_instance(sut.add('Scope1'))))
        assert_that(sut.add('Scope1').handlers, is_([sut.add('Scope1').handlers[0]]))
        assert_that('Scope1' in sut, is_(True))

    def test_unwritable_directory_falls_back(self):
        sut = DeviceLogs(os.path.join(self.dir, 'missing'), enabled=True)
        self.addCleanup(sut.close)
        log = sut.add('Scope1')
        assert_that(log.handlers[0], instance_of(logging.NullHandler))

    def test_device_logs_do_not_propagate(self):
        sut = DeviceLogs(self.dir)
        self.addCleanup(sut.close)
        assert_that(sut.add('Scope1').propagate, is_(False))
        assert_that(sut.add('Scope1').name, is_('scopecontrol.device.Scope1'))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
