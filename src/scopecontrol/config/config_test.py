import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from configobj import ConfigObjError, ConfigObj
from hamcrest import assert_that, is_, equal_to, calling, raises, ends_with

from scopecontrol.config.config import config_filename, config_flavor, load_config_file_base, load_config, \
    map_os_name, fetch_conf_path, apply_conf, load_settings, Settings, package_config_dir


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.missing_user_file = os.path.join(self.dir, 'no_such_user.cfg')

    def tearDown(self):
        shutil.rmtree(self.dir)

    def write(self, name, text):
        with open(os.path.join(self.dir, name), 'w') as f:
            f.write(text)

    def test_config_file_not_found(self):
        assert_that(calling(load_config_file_base).with_args('blah'), raises(IOError))

    def test_optional_config_file_not_found_is_empty(self):
        assert_that(load_config_file_base(os.path.join(self.dir, 'blah.cfg'), False), is_(equal_to({})))

    def test_config_file_invalid_syntax(self):
        self.write('bad.cfg', '[[section]]\n')
        assert_that(calling(load_config_file_base).with_args(os.path.join(self.dir, 'bad.cfg')),
                    raises(ConfigObjError, ".* at .*bad.cfg"))

    def test_config_flavor(self):
        assert_that(config_flavor('app'), is_('app'))
        assert_that(config_flavor('app', 'default'), is_('app.default'))
        assert_that(config_filename('app.default', self.dir), ends_with('app.default.cfg'))

    def test_map_os_name(self):
        assert_that(map_os_name('Windows'), is_('windows'))
        assert_that(map_os_name('Darwin'), is_('osx'))
        assert_that(map_os_name('Linux'), is_('linux'))

    @patch('platform.system', return_value='Windows')
    def test_flavors_merge_in_order(self, system):
        self.write('app.schema.cfg', "[app]\nvalue1 = string(default='schema')\nvalue2 = integer(default=1)\n"
                                     "value3 = string(default='schema')\n")
        self.write('app.default.cfg', "[app]\nvalue1 = default\nvalue2 = 2\n")
        self.write('app.windows.cfg', "[app]\nvalue1 = windows\n")
        conf = load_config('app', self.dir, self.missing_user_file)
        assert_that(conf['app']['value1'], is_('windows'))
        assert_that(conf['app']['value2'], is_(2))
        assert_that(conf['app']['value3'], is_('schema'))

    def test_user_and_local_override(self):
        self.write('app.schema.cfg', "[app]\nvalue1 = string(default='schema')\n")
        self.write('user.cfg', "[app]\nvalue1 = user\n")
        conf = load_config('app', self.dir, os.path.join(self.dir, 'user.cfg'))
        assert_that(conf['app']['value1'], is_('user'))
        local = os.path.join(self.dir, 'local')
        os.mkdir(local)
        with open(os.path.join(local, 'app.cfg'), 'w') as f:
            f.write("[app]\nvalue1 = local\n")
        conf = load_config('app', self.dir, os.path.join(self.dir, 'user.cfg'), local)
        assert_that(conf['app']['value1'], is_('local'))

    def test_config_file_invalid_value(self):
        self.write('app.schema.cfg', "[app]\nvalue2 = integer(default=1)\n")
        self.write('app.default.cfg', "[app]\nvalue2 = abc\n")
        assert_that(calling(load_config).with_args('app', self.dir, self.missing_user_file),
                    raises(ConfigObjError, "the config file app failed validation app.value2"))

    def test_non_existent_config_path(self):
        sut = ConfigObj()
        assert_that(fetch_conf_path(sut, ['abcd']), is_(None))

    def test_apply_conf_sets_known_attributes_only(self):
        target = Settings()
        apply_conf({'enable_device_logs': True, 'missing_value': 1}, target)
        assert_that(target.enable_device_logs, is_(True))
        assert_that(hasattr(target, 'missing_value'), is_(False))


class SettingsTestCase(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.dir)

    @patch('platform.system', return_value='Linux')
    def test_packaged_defaults(self, system):
        settings = load_settings(user_file=os.path.join(self.dir, 'missing.cfg'))
        assert_that(settings.serial_port_prefix, is_('/dev/'))
        assert_that(settings.enable_device_logs, is_(False))
        assert_that(settings.driver_server_port, is_(7624))
        assert_that(settings.connections_file, is_('connections.cfg'))

    @patch('platform.system', return_value='Windows')
    def test_windows_serial_prefix(self, system):
        settings = load_settings(user_file=os.path.join(self.dir, 'missing.cfg'))
        assert_that(settings.serial_port_prefix, is_('COM'))

    def test_user_override(self):
        user_file = os.path.join(self.dir, 'user.cfg')
        with open(user_file, 'w') as f:
            f.write("[scopecontrol]\nuser_dir = %s\nenable_device_logs = True\n" % self.dir)
        settings = load_settings(user_file=user_file)
        assert_that(settings.enable_device_logs, is_(True))
        assert_that(settings.connections_path, is_(os.path.join(self.dir, 'connections.cfg')))
        assert_that(settings.device_models_path, is_(os.path.join(self.dir, 'device_models.cfg')))
        assert_that(settings.device_log_path('Scope1'), is_(os.path.join(self.dir, 'deviceLog_Scope1.txt')))

    def test_packaged_files_exist(self):
        assert_that(os.path.exists(config_filename('scopecontrol.schema', package_config_dir)), is_(True))
        assert_that(os.path.exists(config_filename('scopecontrol.default', package_config_dir)), is_(True))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
