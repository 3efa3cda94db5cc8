"""
Value types shared by the registry, the persistence gateway and the supervisor.
"""
from enum import Enum

from scopecontrol.support.mixins import CommonEqualityMixin, StringerMixin

# version written to the connections file and the device model catalog
VERSION = "1.4"

MAX_CIRCLE_COUNT = 10

# poll delays are in microseconds
DEFAULT_DELAY = 500000
MAX_DELAY = 10000000

SHORTCUT_SLOTS = range(1, 10)

DEFAULT_HOST = "localhost"

# names of the device servers built into this package (the direct serial protocols)
EMBEDDED_SERVERS = ("Lx200", "NexStar")

# characters that may not appear in a connection id
FORBIDDEN_ID_CHARACTERS = '\\"[]\n\r\t'

# the connections file stores its format version under this key, so it can't be a connection id
RESERVED_IDS = ("version",)


class InterfaceKind(Enum):
    VIRTUAL = "virtual"
    NATIVE = "native"
    EXTERNAL_DRIVER = "indi"
    EXTERNAL_DRIVER_POINTER = "indi-pointer"
    VENDOR_AUTOMATION = "alpaca"

    @classmethod
    def parse(cls, value):
        """ returns the kind for a name or kind, or None if not recognized. """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class Equinox(Enum):
    J2000 = "J2000"
    JNOW = "JNow"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


def is_valid_tcp_port(port):
    """ ports in IANA's registered and dynamic ranges. """
    return isinstance(port, int) and 1023 < port <= 65535


def is_valid_delay(delay):
    return isinstance(delay, int) and 0 < delay <= MAX_DELAY


class ConnectionConfig(CommonEqualityMixin, StringerMixin):
    """
    One normalized connection definition, as accepted by the registry.
    Instances are replaced rather than modified: the registry only inserts and removes them.
    """

    def __init__(self, id, interface, is_remote=False, host=None, tcp_port=None, driver_id=None,
                 device_model=None, serial_port=None, equinox=Equinox.J2000, delay=None,
                 connect_at_startup=False, fov_circles=(), shortcut=None, bus_device=None,
                 bus_connection=None):
        self.id = id
        self.interface = interface
        self.is_remote = is_remote
        self.host = host
        self.tcp_port = tcp_port
        self.driver_id = driver_id
        self.device_model = device_model
        self.serial_port = serial_port
        self.equinox = equinox
        self.delay = delay
        self.connect_at_startup = connect_at_startup
        self.fov_circles = tuple(fov_circles)
        self.shortcut = shortcut
        self.bus_device = bus_device
        self.bus_connection = bus_connection

    @property
    def poll_delay(self):
        return self.delay if self.delay is not None else DEFAULT_DELAY

    def to_dict(self):
        """
        The persisted form: enum values by name and unset fields omitted.
        The result can be given back to the registry to recreate an equal config.
        """
        result = {}
        for key, value in self.__dict__.items():
            if key == 'id' or value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, tuple):
                if not value:
                    continue
                value = list(value)
            result[key] = value
        return result


class DeviceModel(CommonEqualityMixin, StringerMixin):
    """ A named preset for a device reached through one of the embedded servers. """

    def __init__(self, name, description, server, default_delay=DEFAULT_DELAY):
        self.name = name
        self.description = description
        self.server = server
        self.default_delay = default_delay
