"""
The connection registry: validated connection definitions keyed by id, together with the
TCP ports claimed by remote connections and the shortcut slot bindings.
"""
import logging
from collections import Counter, OrderedDict
from enum import Enum

from scopecontrol.model import ConnectionConfig, InterfaceKind, Equinox, EMBEDDED_SERVERS, DEFAULT_DELAY, \
    DEFAULT_HOST, FORBIDDEN_ID_CHARACTERS, RESERVED_IDS, MAX_CIRCLE_COUNT, SHORTCUT_SLOTS, is_valid_tcp_port, \
    is_valid_delay
from scopecontrol.support.mixins import StringerMixin, CommonEqualityMixin

logger = logging.getLogger(__name__)


class RejectReason(Enum):
    EMPTY_ID = "empty id"
    INVALID_ID = "invalid id"
    DUPLICATE_ID = "duplicate id"
    UNKNOWN_INTERFACE = "unknown interface"
    MISSING_DRIVER = "missing driver"
    INVALID_SERIAL_PORT = "invalid serial port"
    UNKNOWN_BUS_DRIVER = "unknown bus driver"
    MISSING_BUS_DEVICE = "missing bus device"
    NO_LIVE_PARENT = "no live parent connection"
    MISSING_HOST = "missing host"
    INVALID_EQUINOX = "invalid equinox"


class ConfigurationError(Exception):
    """ A connection definition cannot be accepted. """

    def __init__(self, reason: RejectReason, detail=None):
        super().__init__(reason.value if detail is None else "%s: %s" % (reason.value, detail))
        self.reason = reason
        self.detail = detail


class InsertResult(StringerMixin, CommonEqualityMixin):
    """
    The outcome of adding a connection. Truthy when the connection was added.
    Accepted connections may still carry warnings about values that were replaced or ignored.
    """

    def __init__(self, ok, id, reason=None, detail=None, warnings=()):
        self.ok = ok
        self.id = id
        self.reason = reason
        self.detail = detail
        self.warnings = list(warnings)

    def __bool__(self):
        return self.ok

    @classmethod
    def accepted(cls, id, warnings=()):
        return cls(True, id, warnings=warnings)

    @classmethod
    def rejected(cls, id, error: ConfigurationError):
        return cls(False, id, error.reason, error.detail)


class TcpPortPool:
    """
    The ports used by remote connections. A port may be claimed more than once when two
    connections were explicitly given the same port; it is free again only once every
    claim has been released.
    """
    reserved_ports = range(10001, 10010)
    dynamic_ports = range(49152, 65536)
    fallback_port = 10001

    def __init__(self):
        self._claims = Counter()

    def __contains__(self, port):
        return self._claims[port] > 0

    def claim(self, port):
        self._claims[port] += 1

    def release(self, port):
        if self._claims[port] > 1:
            self._claims[port] -= 1
        else:
            del self._claims[port]

    def clear(self):
        self._claims.clear()

    def used_ports(self):
        return sorted(self._claims)

    def allocate(self):
        """
        Finds a port not yet claimed, first in the reserved range, then in the dynamic range.
        The port is not claimed.
        :return: a tuple (port, exhausted). When every candidate is taken the fallback
            port is returned, even though it is already in use, and exhausted is True.
        """
        for ranges in (self.reserved_ports, self.dynamic_ports):
            for port in ranges:
                if port not in self:
                    return port, False
        return self.fallback_port, True


def _as_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, str):
        value = value.strip().lower()
        if value in ('true', 'yes', 'on', '1'):
            return True
        if value in ('false', 'no', 'off', '0', ''):
            return False
        return default
    return bool(value)


def _as_int(value):
    """ the integer value, or None if there is none. """
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_text(value):
    return '' if value is None else str(value).strip()


def _as_float_list(values):
    if values is None:
        return []
    if isinstance(values, (str, int, float)):
        values = [values]
    result = []
    for value in values:
        if isinstance(value, bool):
            continue
        try:
            result.append(float(value))
        except (TypeError, ValueError):
            continue
    return result


class ConnectionRegistry:
    """
    Connection definitions keyed by id, in insertion order.

    Definitions are validated and normalized by validate_and_insert(); the registry never
    holds a partially validated definition. Removing a definition frees its TCP port and
    its shortcut slot.

    :param serial_port_prefix   local serial ports must start with this prefix
    :param device_models        a mapping from model name to DeviceModel
    :param driver_catalog       an object with a contains(device, driver) method, listing the
        drivers the local driver bus can start.
    :param parent_is_live       a callable taking a connection id that returns True if that
        connection is currently running. Pointer connections can only be added under a live parent.
    """

    def __init__(self, serial_port_prefix='/dev/', device_models=None, driver_catalog=None, parent_is_live=None):
        self.serial_port_prefix = serial_port_prefix
        self.device_models = device_models if device_models is not None else {}
        self.driver_catalog = driver_catalog
        self.parent_is_live = parent_is_live or (lambda id: False)
        self.port_pool = TcpPortPool()
        self._configs = OrderedDict()
        self._shortcuts = dict()    # slot -> id

    def __contains__(self, id):
        return id in self._configs

    def __len__(self):
        return len(self._configs)

    def __iter__(self):
        return iter(list(self._configs))

    def ids(self):
        return list(self._configs)

    def configs(self):
        return list(self._configs.values())

    def get(self, id) -> ConnectionConfig:
        return self._configs.get(id)

    def id_for_shortcut(self, slot):
        return self._shortcuts.get(slot)

    def used_shortcut_slots(self):
        return sorted(self._shortcuts)

    def validate_and_insert(self, id, properties) -> InsertResult:
        """
        Validates the raw properties of a connection and adds the normalized definition.
        :param id: the connection id
        :param properties: a mapping of field names (as in the connections file) to raw values.
        :return: an InsertResult, rejected with the first failing check, or accepted with any warnings.
        """
        try:
            config, warnings = self.normalize(id, properties)
        except ConfigurationError as e:
            logger.debug("unable to add connection %s: %s", id, e)
            return InsertResult.rejected(id, e)

        if config.is_remote:
            if config.tcp_port in self.port_pool:
                warnings.append("tcp port %d is also used by another connection" % config.tcp_port)
            self.port_pool.claim(config.tcp_port)
        if config.shortcut is not None:
            bound = self._shortcuts.setdefault(config.shortcut, id)
            if bound != id:
                warnings.append("shortcut %d is already bound to %s" % (config.shortcut, bound))
        self._configs[id] = config

        for warning in warnings:
            logger.warning("connection %s: %s", id, warning)
        return InsertResult.accepted(id, warnings)

    def remove(self, id):
        """
        Removes a connection, releasing its port and shortcut slot.
        :return: True if the connection was present.
        """
        config = self._configs.pop(id, None)
        if config is None:
            return False
        if config.is_remote and config.tcp_port is not None:
            self.port_pool.release(config.tcp_port)
        if config.shortcut is not None and self._shortcuts.get(config.shortcut) == id:
            del self._shortcuts[config.shortcut]
        return True

    def clear(self):
        self._configs.clear()
        self._shortcuts.clear()
        self.port_pool.clear()

    def verify(self, config: ConnectionConfig):
        """
        Checks that a stored definition still satisfies the rules it was inserted under, such as the
        parent connection of a pointer being live.
        Raises ConfigurationError if not.
        """
        self.normalize(config.id, config.to_dict(), check_duplicate=False)

    def normalize(self, id, properties, check_duplicate=True):
        """
        Builds the normalized definition for the given raw properties without changing the registry.
        :return: a tuple of the ConnectionConfig and a list of warnings.
        """
        warnings = []
        self._check_id(id, check_duplicate)
        kind = InterfaceKind.parse(properties.get('interface'))
        if kind is None:
            raise ConfigurationError(RejectReason.UNKNOWN_INTERFACE, properties.get('interface'))

        fields = dict(id=id, interface=kind)
        is_remote = kind in (InterfaceKind.NATIVE, InterfaceKind.EXTERNAL_DRIVER) \
            and _as_bool(properties.get('is_remote'))
        fields['is_remote'] = is_remote

        if kind == InterfaceKind.NATIVE and not is_remote:
            fields.update(self._native_fields(properties))
        elif kind == InterfaceKind.EXTERNAL_DRIVER and not is_remote:
            fields.update(self._external_driver_fields(properties))
        elif kind == InterfaceKind.EXTERNAL_DRIVER_POINTER:
            fields.update(self._pointer_fields(properties))
        elif kind == InterfaceKind.VENDOR_AUTOMATION:
            driver_id = _as_text(properties.get('driver_id'))
            if not driver_id:
                raise ConfigurationError(RejectReason.MISSING_DRIVER)
            fields['driver_id'] = driver_id

        if is_remote:
            fields.update(self._remote_fields(properties, warnings))

        if kind == InterfaceKind.VIRTUAL:
            fields['equinox'] = None
        else:
            fields['equinox'] = self._equinox(kind, properties.get('equinox'), warnings)
            delay = _as_int(properties.get('delay'))
            if delay is not None and not is_valid_delay(delay):
                warnings.append("delay %d is out of range, using %d" % (delay, DEFAULT_DELAY))
            fields['delay'] = delay if is_valid_delay(delay) else DEFAULT_DELAY

        fields['connect_at_startup'] = _as_bool(properties.get('connect_at_startup'))
        circles = _as_float_list(properties.get('fov_circles'))
        if len(circles) > MAX_CIRCLE_COUNT:
            warnings.append("only the first %d fov circles are kept" % MAX_CIRCLE_COUNT)
        fields['fov_circles'] = circles[:MAX_CIRCLE_COUNT]

        shortcut = _as_int(properties.get('shortcut'))
        if shortcut is not None and shortcut not in SHORTCUT_SLOTS:
            if shortcut != 0:
                warnings.append("shortcut %d is not a valid slot" % shortcut)
            shortcut = None
        fields['shortcut'] = shortcut
        return ConnectionConfig(**fields), warnings

    def _check_id(self, id, check_duplicate):
        if not id:
            raise ConfigurationError(RejectReason.EMPTY_ID)
        if any(c in FORBIDDEN_ID_CHARACTERS for c in id) or id in RESERVED_IDS or id != id.strip():
            raise ConfigurationError(RejectReason.INVALID_ID, id)
        if check_duplicate and id in self._configs:
            raise ConfigurationError(RejectReason.DUPLICATE_ID, id)

    def _native_fields(self, properties):
        driver_id = _as_text(properties.get('driver_id'))
        if driver_id not in EMBEDDED_SERVERS:
            raise ConfigurationError(RejectReason.MISSING_DRIVER, driver_id or None)
        serial_port = _as_text(properties.get('serial_port'))
        if not serial_port or not serial_port.startswith(self.serial_port_prefix):
            raise ConfigurationError(RejectReason.INVALID_SERIAL_PORT, serial_port or None)
        fields = dict(driver_id=driver_id, serial_port=serial_port)
        model = self.device_models.get(_as_text(properties.get('device_model')))
        if model is not None:
            fields.update(driver_id=model.server, device_model=model.name)
        return fields

    def _external_driver_fields(self, properties):
        device_model = _as_text(properties.get('device_model'))
        driver_id = _as_text(properties.get('driver_id'))
        if not device_model or not driver_id:
            raise ConfigurationError(RejectReason.MISSING_DRIVER)
        if self.driver_catalog is None or not self.driver_catalog.contains(device_model, driver_id):
            raise ConfigurationError(RejectReason.UNKNOWN_BUS_DRIVER, "%s (%s)" % (device_model, driver_id))
        return dict(driver_id=driver_id, device_model=device_model)

    def _pointer_fields(self, properties):
        bus_device = _as_text(properties.get('bus_device'))
        if not bus_device:
            raise ConfigurationError(RejectReason.MISSING_BUS_DEVICE)
        bus_connection = _as_text(properties.get('bus_connection'))
        if not bus_connection or not self.parent_is_live(bus_connection):
            raise ConfigurationError(RejectReason.NO_LIVE_PARENT, bus_connection or None)
        return dict(bus_device=bus_device, bus_connection=bus_connection)

    def _remote_fields(self, properties, warnings):
        host = properties.get('host')
        host = DEFAULT_HOST if host is None else _as_text(host)
        if not host:
            raise ConfigurationError(RejectReason.MISSING_HOST)
        port = _as_int(properties.get('tcp_port'))
        if not is_valid_tcp_port(port):
            port, exhausted = self.port_pool.allocate()
            if exhausted:
                warnings.append("no free tcp port, using %d which is already in use" % port)
        return dict(host=host, tcp_port=port)

    @staticmethod
    def _equinox(kind, value, warnings):
        if value is None or value == '':
            return Equinox.J2000
        equinox = Equinox.parse(value)
        if equinox is None:
            if kind in (InterfaceKind.EXTERNAL_DRIVER, InterfaceKind.EXTERNAL_DRIVER_POINTER):
                warnings.append("unknown equinox %s, using J2000" % value)
                return Equinox.J2000
            raise ConfigurationError(RejectReason.INVALID_EQUINOX, value)
        return equinox
