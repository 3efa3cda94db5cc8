import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from validate import Validator

# The default extension for configuration files
config_extension = '.cfg'

# The directory holding the packaged configuration files
package_config_dir = os.path.dirname(__file__)


def config_flavor(name, flavor=None):
    configname = name if not flavor else name + '.' + flavor
    return configname


def config_filename(name, directory=None):
    """
    Determines the location of a config file in the given directory.
    """
    config_file = os.path.join(directory, name + config_extension)
    return config_file


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def config_flavor_file(name, directory, subpart=None) -> ConfigObj:
    """
    Loads a specialization of a config file. The configuration file is expected to be named
    after the base, followed by a period and then the specialization, if the specialization is given,
    otherwise just the base name.
    :param name:    The name of the base configuration
    :param subpart: The name of the specialization.
    :return: The ConfigObj for the configuration file, empty if the file does not exist.
    """
    configname = config_flavor(name, subpart)
    file = config_filename(configname, directory)
    config = load_config_file_base(file, False)
    return config


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def user_config_file(name):
    return os.path.expanduser('~/' + name + config_extension)


def load_config(name, directory, user_file=None, local_directory=None):
    """
        Loads all the configuration files that relate to the given name.
        Configurations are merged in this order, later ones overriding earlier ones:
        - the default specialization
        - the platform specialization
        - the user override (~/<name>.cfg unless user_file is given)
        - the local configuration in local_directory (if given)
        The merged configuration is then validated against the schema specialization,
        which also supplies defaults and converts values to their declared types.
    :param directory: the location of the default, platform and schema files
    :return: the validated ConfigObj
    """
    default_config = config_flavor_file(name, directory, 'default')
    platform_config = config_flavor_file(name, directory, os_name())
    user_config = load_config_file_base(user_file or user_config_file(name), must_exist=False)
    local_config = config_flavor_file(name, local_directory) if local_directory else ConfigObj()

    config = ConfigObj(configspec=config_filename(config_flavor(name, 'schema'), directory))
    config.merge(default_config)
    config.merge(platform_config)
    config.merge(user_config)
    config.merge(local_config)

    result = config.validate(Validator(), preserve_errors=True)
    if result is not True:
        failures = ['.'.join(sections + [key or '']) for sections, key, _ in flatten_errors(config, result)]
        raise ConfigObjError("the config file %s failed validation %s" % (name, ', '.join(failures)))
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:        The root configuration
    :param path:        An iterable that lists the names of the sections to resolve
    :return: The configuration section identified by the path, or None.
    """
    for p in path:    # lookup specific section
        conf = conf.get(p, None)
        if conf is None:
            return
    return conf


def apply_conf(conf: Section, target):
    """
    Applies the attributes contained in a configuration object to a target object.
    It does this by iterating over the items in the configuration and setting any attributes with the same name.
    """
    for k, v in conf.items():
        if hasattr(target, k):
            setattr(target, k, v)


class Settings:
    """
    The application settings. Attribute values are the defaults used when no configuration is applied.
    """
    def __init__(self):
        self.user_dir = os.path.join('~', '.scopecontrol')
        self.connections_file = 'connections.cfg'
        self.device_models_file = 'device_models.cfg'
        self.enable_device_logs = False
        self.serial_port_prefix = '/dev/'
        self.driver_catalog = '/usr/share/indi/drivers.xml'
        self.driver_server = 'indiserver'
        self.driver_server_port = 7624
        self.driver_fifo = '/tmp/scopecontrol_indififo'

    @property
    def directory(self):
        return os.path.expanduser(self.user_dir)

    @property
    def connections_path(self):
        return os.path.join(self.directory, self.connections_file)

    @property
    def device_models_path(self):
        return os.path.join(self.directory, self.device_models_file)

    def device_log_path(self, connection_id):
        return os.path.join(self.directory, 'deviceLog_%s.txt' % connection_id)


def load_settings(name='scopecontrol', directory=package_config_dir, user_file=None, local_directory=None):
    """
    Loads the application settings from the configuration files named after `name`.
    The values are read from the section of the same name.
    """
    settings = Settings()
    conf = fetch_conf_path(load_config(name, directory, user_file, local_directory), [name])
    if conf:
        apply_conf(conf, settings)
    return settings
