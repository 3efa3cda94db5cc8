"""
Per-connection device logs. Each local connection gets its own logger, passed to the client on every
communication tick, so that what a device says ends up in that device's file.
"""
import logging
import os

logger = logging.getLogger(__name__)

DEVICE_LOGGER_PREFIX = 'scopecontrol.device.'
LOG_FORMAT = '%(asctime)s %(levelname)s %(message)s'


class DeviceLogs:
    """
    :param directory    where the log files are written
    :param enabled      when False, device loggers discard what they are given.
    """

    def __init__(self, directory, enabled=False):
        self.directory = directory
        self.enabled = enabled
        self._loggers = dict()

    def __contains__(self, id):
        return id in self._loggers

    def filename(self, id):
        return os.path.join(self.directory, 'deviceLog_%s.txt' % id)

    def add(self, id):
        """ the logger for the connection, opening its file if needed. """
        log = self._loggers.get(id)
        if log is not None:
            return log
        log = logging.getLogger(DEVICE_LOGGER_PREFIX + id)
        log.propagate = False
        log.setLevel(logging.DEBUG)
        log.addHandler(self._handler(id))
        self._loggers[id] = log
        return log

    def _handler(self, id):
        if not self.enabled:
            return logging.NullHandler()
        path = self.filename(id)
        try:
            handler = logging.FileHandler(path, mode='w', encoding='utf-8')
        except OSError as e:
            logger.warning("unable to create a log file for %s at %s: %s", id, path, e)
            return logging.NullHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        return handler

    def get(self, id):
        """ the logger for the connection, or None if it has none. """
        return self._loggers.get(id)

    def remove(self, id):
        log = self._loggers.pop(id, None)
        if log is None:
            return
        for handler in list(log.handlers):
            log.removeHandler(handler)
            handler.close()

    def close(self):
        for id in list(self._loggers):
            self.remove(id)
