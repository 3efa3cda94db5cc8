"""
Reading and writing the connections file and the device model catalog.

Both are configobj files with a version. Neither ever stops the host from starting: a file that
is missing, unreadable or of another version gives an empty set of connections (or the embedded
device models) and a warning.
"""
import logging
import os
import shutil
import stat
from collections import OrderedDict
from datetime import datetime
from enum import Enum

from configobj import ConfigObj, ConfigObjError, flatten_errors
from validate import Validator

from scopecontrol.model import VERSION, EMBEDDED_SERVERS, DEFAULT_DELAY, DeviceModel
from scopecontrol.support.mixins import StringerMixin

logger = logging.getLogger(__name__)

MISSING_VERSION = "0.0.0"

# types for the keys of each connection. Values that do not convert are dropped so the registry's
# defaults apply to them.
CONNECTION_SPEC = """
version = string(default=None)
[__many__]
interface = string(default=None)
is_remote = boolean(default=False)
host = string(default=None)
tcp_port = integer(default=None)
driver_id = string(default=None)
device_model = string(default=None)
serial_port = string(default=None)
equinox = string(default=None)
delay = integer(default=None)
connect_at_startup = boolean(default=False)
fov_circles = force_list(default=list())
shortcut = integer(default=None)
bus_device = string(default=None)
bus_connection = string(default=None)
""".splitlines()

embedded_device_models = os.path.join(os.path.dirname(__file__), 'device_models.cfg')


class LoadStatus(Enum):
    MISSING = "missing"
    LOADED = "loaded"
    UNREADABLE = "unreadable"
    VERSION_MISMATCH = "version mismatch"


class LoadResult(StringerMixin):
    """
    The connections read from the file, as id -> raw properties, and how the file was found.
    :param backup_path  where an incompatible file was moved to, if it was moved.
    """

    def __init__(self, configs=None, status=LoadStatus.LOADED, backup_path=None):
        self.configs = configs if configs is not None else OrderedDict()
        self.status = status
        self.backup_path = backup_path


def backup_name(path, now):
    return path + '.backup.' + now.strftime('%Y-%m-%d-%H-%M-%S')


def _read(path, configspec=None):
    return ConfigObj(path, configspec=configspec, file_error=True, encoding='utf-8')


class ConnectionStore:
    """ The connections file. """

    def __init__(self, path, now=datetime.now):
        self.path = path
        self.now = now

    def load(self) -> LoadResult:
        if not os.path.exists(self.path):
            return LoadResult(status=LoadStatus.MISSING)
        try:
            conf = _read(self.path, CONNECTION_SPEC)
        except (ConfigObjError, OSError, ValueError) as e:
            logger.warning("no connections loaded, unable to read %s: %s", self.path, e)
            return LoadResult(status=LoadStatus.UNREADABLE)

        version = conf.get('version') or MISSING_VERSION
        if version != VERSION:
            logger.warning("the connections file %s has version %s, which is not compatible with version %s",
                           self.path, version, VERSION)
            return LoadResult(status=LoadStatus.VERSION_MISMATCH, backup_path=self._backup())

        self._validate(conf)
        configs = OrderedDict()
        for id in conf.sections:
            configs[id] = dict(conf[id])
        logger.debug("read %d connections from %s", len(configs), self.path)
        return LoadResult(configs)

    def _validate(self, conf):
        result = conf.validate(Validator(), preserve_errors=True)
        if result is True:
            return
        for sections, key, error in flatten_errors(conf, result):
            if key is None or not sections:
                continue
            section = conf[sections[0]]
            logger.warning("connection %s: ignoring %s = %r (%s)", sections[0], key, section.get(key), error)
            section.pop(key, None)

    def _backup(self):
        """ moves the file aside. :return: the new name, or None if it could not be moved. """
        target = backup_name(self.path, self.now())
        try:
            os.rename(self.path, target)
        except OSError as e:
            logger.warning("the file %s cannot be replaced: %s", self.path, e)
            return None
        logger.warning("the file has been backed up as %s", target)
        return target

    def save(self, configs) -> bool:
        """
        Writes the given connection configs, replacing the file.
        :return: True if the file was written.
        """
        conf = ConfigObj(encoding='utf-8')
        conf.filename = self.path
        conf['version'] = VERSION
        for config in configs:
            conf[config.id] = config.to_dict()
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            conf.write()
        except OSError as e:
            logger.warning("connections can not be saved to %s: %s", self.path, e)
            return False
        return True


class DeviceModelCatalog:
    """
    The device models in the user's catalog file. The file is created from the embedded catalog when it
    is missing, and replaced when its version is older than this package's. When neither works the
    embedded catalog is used directly.
    """

    def __init__(self, path, embedded=embedded_device_models, now=datetime.now):
        self.path = path
        self.embedded = embedded
        self.now = now

    def load(self):
        """ :return: an OrderedDict of name -> DeviceModel """
        path = self.path if self._prepare() else self.embedded
        if path == self.embedded:
            logger.warning("using the embedded device models list")
        try:
            conf = _read(path)
        except (ConfigObjError, OSError, ValueError) as e:
            logger.warning("unable to read the device models list %s: %s", path, e)
            return OrderedDict()
        return self.parse(conf)

    def _prepare(self):
        """ makes sure the user catalog exists and is current. :return: False if it can't be used. """
        if not os.path.exists(self.path):
            return self.restore()
        try:
            version = _read(self.path).get('version') or MISSING_VERSION
        except (ConfigObjError, OSError, ValueError) as e:
            logger.warning("can't read %s: %s", self.path, e)
            return False
        if version < VERSION:
            target = backup_name(self.path, self.now())
            try:
                os.rename(self.path, target)
            except OSError as e:
                logger.warning("the device models list %s is obsolete and can't be renamed: %s", self.path, e)
                return False
            logger.warning("the device models list %s is obsolete, backed up as %s", self.path, target)
            return self.restore()
        return True

    def restore(self):
        """ copies the embedded catalog to the user's catalog file. """
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            shutil.copyfile(self.embedded, self.path)
            os.chmod(self.path, os.stat(self.path).st_mode | stat.S_IWUSR)
        except OSError as e:
            logger.warning("unable to copy the default device models list to %s: %s", self.path, e)
            return False
        logger.debug("the default device models list has been copied to %s", self.path)
        return True

    @staticmethod
    def parse(conf):
        models = OrderedDict()
        entries = conf.get('list', {})
        for key in getattr(entries, 'sections', ()):
            entry = entries[key]
            name = str(entry.get('name', '')).strip()
            if not name:
                logger.warning("skipping device model %s: no name", key)
                continue
            if name in models:
                logger.warning("skipping device model: duplicate name %s", name)
                continue
            server = str(entry.get('server', '')).strip()
            if not server:
                logger.warning("skipping device model: no server specified for %s", name)
                continue
            if server not in EMBEDDED_SERVERS:
                logger.warning("skipping device model: no server %s found for %s", server, name)
                continue
            try:
                delay = int(entry.get('default_delay', DEFAULT_DELAY))
            except (TypeError, ValueError):
                delay = DEFAULT_DELAY
            description = entry.get('description') or "No description is available."
            models[name] = DeviceModel(name, description, server, delay)
        return models
