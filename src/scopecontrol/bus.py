"""
The external driver bus: INDI servers hosting one or more devices, reached through PyIndi.

A BusConnection is shared by every telescope client using a device on that server. Clients attach
to the connection and detach when they stop; the connection closes itself when the last one detaches.
Local drivers run inside one driver server process controlled through a FIFO.

PyIndi reports what the server sends from its own listener thread. The callbacks only copy the
property values and queue them; they are applied to the connection's devices, and bus events are fired,
when pump() is called on the tick thread.
"""
import logging
import os
from collections import OrderedDict
from xml.etree import ElementTree

import PyIndi

from scopecontrol.client.base import ClientNotConnectedError
from scopecontrol.conduit.process_conduit import ProcessConduit
from scopecontrol.support.events import EventSource, QueuedEventSource
from scopecontrol.support.poll_strategy import PeriodPollStrategy

logger = logging.getLogger(__name__)

# number vectors that carry a telescope position, and the equinox each is in
COORDINATE_PROPERTIES = OrderedDict([("EQUATORIAL_EOD_COORD", "JNow"), ("EQUATORIAL_COORD", "J2000")])

# not a valid connection id, so it cannot clash with a remote connection
LOCAL_CONNECTION = "[local]"


class BusEvent:
    """ base class for events about a device on a bus connection. """
    def __init__(self, connection, device):
        self.connection = connection
        self.device = device


class DeviceDefinedEvent(BusEvent):
    """ A device was seen for the first time on the connection. """


class CoordinatesDefinedEvent(BusEvent):
    """ A device defined a coordinate property, so it can be used as a telescope. """


class PropertySnapshot:
    """ the values of one device property, copied when the server defined or updated it. """

    def __init__(self, device, name, kind, values=None, state=None):
        self.device = device
        self.name = name
        self.kind = kind
        self.values = values
        self.state = state

    @classmethod
    def of(cls, prop):
        kind = prop.getType()
        if kind == PyIndi.INDI_NUMBER:
            values = OrderedDict((w.getName(), w.getValue()) for w in PyIndi.PropertyNumber(prop))
        elif kind == PyIndi.INDI_SWITCH:
            values = OrderedDict((w.getName(), w.getState() == PyIndi.ISS_ON) for w in PyIndi.PropertySwitch(prop))
        else:
            values = None
        return cls(prop.getDeviceName(), prop.getName(), kind, values, prop.getState())


class DeviceSeen:
    def __init__(self, device):
        self.device = device


class DeviceRemoved(DeviceSeen):
    pass


class PropertyRemoved:
    def __init__(self, device, name):
        self.device = device
        self.name = name


class ServerLost:
    def __init__(self, code):
        self.code = code


class BusDevice:
    """ the properties defined by one device on a bus connection. """

    def __init__(self, name):
        self.name = name
        self.numbers = dict()       # property -> {element: value}
        self.switches = dict()      # property -> {element: bool}
        self.states = dict()        # property -> state

    @property
    def coordinate_property(self):
        for name in COORDINATE_PROPERTIES:
            if name in self.numbers:
                return name
        return None

    @property
    def equinox(self):
        name = self.coordinate_property
        return COORDINATE_PROPERTIES[name] if name else None

    @property
    def connected(self):
        return self.switches.get('CONNECTION', {}).get('CONNECT', False)

    def position(self):
        """ :return: (ra hours, dec degrees), or None. """
        values = self.numbers.get(self.coordinate_property)
        if not values or 'RA' not in values or 'DEC' not in values:
            return None
        return values['RA'], values['DEC']

    def update(self, snapshot: PropertySnapshot):
        if snapshot.state is not None:
            self.states[snapshot.name] = snapshot.state
        if snapshot.kind == PyIndi.INDI_NUMBER:
            self.numbers.setdefault(snapshot.name, dict()).update(snapshot.values)
        elif snapshot.kind == PyIndi.INDI_SWITCH:
            self.switches.setdefault(snapshot.name, dict()).update(snapshot.values)

    def remove(self, name):
        for table in (self.numbers, self.switches, self.states):
            table.pop(name, None)


class BusConnection(PyIndi.BaseClient):
    """
    A PyIndi client of one driver server.

    pump() connects to the server when needed and applies whatever the server has reported since the
    last call; it is called by the clients using the connection on each tick. While the server cannot be
    reached, connecting is retried every retry_period seconds, for as long as clients remain attached.
    Connecting waits at most connect_timeout seconds.
    """

    def __init__(self, name, host, port, retry_period=5, connect_timeout=1):
        super().__init__()
        self.name = name
        self.host = host
        self.port = port
        self.setServer(host, int(port))
        self.setConnectionTimeout(connect_timeout, 0)
        self.events = EventSource()
        self.devices = OrderedDict()
        self.released = EventSource()
        self.retry = PeriodPollStrategy(retry_period)
        self._updates = QueuedEventSource()
        self._updates.add(self._apply)
        self._references = 0
        self._server_connected = False
        self._coordinates_announced = set()
        self._finished = False

    def __str__(self):
        return "%s (%s:%s)" % (self.name, self.host, self.port)

    @property
    def references(self):
        return self._references

    @property
    def connected(self):
        return self._server_connected

    def attach(self):
        self._references += 1
        return self

    def detach(self):
        """ Releases one reference. The connection is closed when there are none left. """
        self._references = max(0, self._references - 1)
        if not self._references:
            self.shutdown()
            self.released.fire(self)
        return self._references

    def pump(self):
        """ connects if needed, then applies the updates received from the server. """
        if self._finished:
            return
        if not self._server_connected and self.retry() <= 0:
            self._connect()
        self._updates.publish()

    def _connect(self):
        logger.info("opening driver bus connection %s", self)
        if self.connectServer():
            self._server_connected = True
        else:
            logger.warning("unable to reach the driver server %s", self)

    def close(self):
        if self._server_connected:
            self._server_connected = False
            self.disconnectServer()

    def shutdown(self):
        """ closes the connection for good: it is not reopened. """
        self._finished = True
        self.close()

    def new_number(self, device, name, values):
        vector = self._property(device, name, self._bus_device(device).getNumber(name))
        for widget in vector:
            if widget.getName() in values:
                widget.setValue(float(values[widget.getName()]))
        self.sendNewNumber(vector)

    def new_switch(self, device, name, switch_on):
        """ turns on the named switch element and the others of the vector off. """
        vector = self._property(device, name, self._bus_device(device).getSwitch(name))
        for widget in vector:
            widget.setState(PyIndi.ISS_ON if widget.getName() == switch_on else PyIndi.ISS_OFF)
        self.sendNewSwitch(vector)

    def _bus_device(self, name):
        device = self.getDevice(name)
        if device is None or not device.isValid():
            raise ClientNotConnectedError("%s has no device %s" % (self, name))
        return device

    def _property(self, device_name, name, vector):
        if vector is None or not vector.isValid():
            raise ClientNotConnectedError("%s has no property %s.%s" % (self, device_name, name))
        return vector

    # called by PyIndi on its listener thread

    def newDevice(self, d):
        self._updates.fire(DeviceSeen(d.getDeviceName()))

    def removeDevice(self, d):
        self._updates.fire(DeviceRemoved(d.getDeviceName()))

    def newProperty(self, p):
        self._updates.fire(PropertySnapshot.of(p))

    def updateProperty(self, p):
        self._updates.fire(PropertySnapshot.of(p))

    def removeProperty(self, p):
        self._updates.fire(PropertyRemoved(p.getDeviceName(), p.getName()))

    def newMessage(self, d, m):
        logger.info("%s %s: %s", self.name, d.getDeviceName(), d.messageQueue(m))

    def serverDisconnected(self, code):
        self._updates.fire(ServerLost(code))

    # applied on the tick thread

    def _apply(self, update):
        if isinstance(update, ServerLost):
            self._server_lost(update.code)
        elif isinstance(update, DeviceRemoved):
            self.devices.pop(update.device, None)
            self._coordinates_announced.discard(update.device)
        elif isinstance(update, DeviceSeen):
            self._device(update.device)
        elif isinstance(update, PropertyRemoved):
            device = self.devices.get(update.device)
            if device is not None:
                device.remove(update.name)
        elif isinstance(update, PropertySnapshot):
            device = self._device(update.device)
            device.update(update)
            if update.device not in self._coordinates_announced and device.coordinate_property:
                self._coordinates_announced.add(update.device)
                self.events.fire(CoordinatesDefinedEvent(self, update.device))

    def _device(self, name):
        device = self.devices.get(name)
        if device is None:
            device = self.devices[name] = BusDevice(name)
            self.events.fire(DeviceDefinedEvent(self, name))
        return device

    def _server_lost(self, code):
        if self._server_connected:
            logger.warning("driver bus connection %s lost (%s)", self, code)
        self._server_connected = False
        self.devices.clear()
        self._coordinates_announced.clear()


class DriverCatalog:
    """
    The drivers that can be started on the local driver server, read from an INDI drivers.xml file:
    devGroup elements containing device elements with a label and a driver.
    """

    def __init__(self, entries=()):
        self.entries = list(entries)    # (group, device label, driver executable)

    def contains(self, device, driver):
        return any(label == device and executable == driver for _, label, executable in self.entries)

    def groups(self):
        return list(OrderedDict.fromkeys(group for group, _, _ in self.entries))

    def devices(self, group=None):
        return [(label, executable) for g, label, executable in self.entries if group is None or g == group]

    @classmethod
    def parse(cls, source):
        root = ElementTree.parse(source).getroot()
        entries = []
        for group in root.iter('devGroup'):
            for device in group.iter('device'):
                driver = device.find('driver')
                if driver is None or not (driver.text or '').strip():
                    continue
                entries.append((group.get('group'), device.get('label'), driver.text.strip()))
        return cls(entries)

    @classmethod
    def load(cls, path):
        """ the catalog in the given file, or an empty catalog if it cannot be read. """
        try:
            return cls.parse(path)
        except (OSError, ElementTree.ParseError) as e:
            logger.warning("unable to read the driver catalog %s: %s", path, e)
            return cls()


class LocalDriverServer:
    """
    The driver server process hosting the local drivers. It is started when the first driver is started
    and stopped when the last one is stopped. Drivers are started and stopped by writing
    commands to the server's FIFO.
    """

    def __init__(self, executable='indiserver', port=7624, fifo='/tmp/scopecontrol_indififo',
                 process_factory=ProcessConduit):
        self.executable = executable
        self.port = port
        self.fifo = fifo
        self.process_factory = process_factory
        self._process = None
        self._fifo_fd = None
        self._drivers = []

    @property
    def running(self):
        return self._process is not None and self._process.open

    @property
    def drivers(self):
        return list(self._drivers)

    def start(self):
        if self.running:
            return
        if not os.path.exists(self.fifo):
            os.mkfifo(self.fifo)
        self._process = self.process_factory(self.executable, '-p', str(self.port), '-f', self.fifo)
        # read-write so that opening does not wait for the server to open its end
        self._fifo_fd = os.open(self.fifo, os.O_RDWR | os.O_NONBLOCK)
        logger.info("started driver server %s on port %d", self.executable, self.port)

    def start_driver(self, driver, name):
        self.start()
        self._command('start %s -n "%s"' % (driver, name))
        self._drivers.append((driver, name))

    def stop_driver(self, driver, name):
        if (driver, name) not in self._drivers:
            return
        self._drivers.remove((driver, name))
        self._command('stop %s -n "%s"' % (driver, name))
        if not self._drivers:
            self.stop()

    def _command(self, command):
        logger.debug("driver server command: %s", command)
        os.write(self._fifo_fd, (command + '\n').encode('utf-8'))

    def drain(self):
        """ reads the server's output so that its pipe does not fill. """
        if self.running:
            for line in self._process.read_available().decode('utf-8', 'replace').splitlines():
                logger.debug("driver server: %s", line)

    def stop(self):
        self._drivers = []
        if self._fifo_fd is not None:
            os.close(self._fifo_fd)
            self._fifo_fd = None
        if self._process is not None:
            self._process.close()
            self._process = None
            logger.info("stopped driver server")


class DriverBusService:
    """
    Owns the bus connections, keyed by name, and the local driver server.
    Connections opened by name are shared: opening an existing name attaches to it again.
    """

    def __init__(self, catalog: DriverCatalog, server: LocalDriverServer, connection_factory=BusConnection,
                 local_host='localhost'):
        self.catalog = catalog
        self.server = server
        self.connection_factory = connection_factory
        self.local_host = local_host
        self.events = EventSource()
        self._connections = OrderedDict()

    def open_connection(self, name, host, port) -> BusConnection:
        """ the connection with the given name, created if needed. Clients using it attach to it. """
        connection = self._connections.get(name)
        if connection is None:
            connection = self._connections[name] = self.connection_factory(name, host, port)
            connection.events.add(self.events.fire)
            connection.released.add(self._released)
        return connection

    def _released(self, connection):
        if self._connections.get(connection.name) is connection:
            del self._connections[connection.name]
            logger.debug("closed driver bus connection %s", connection)

    def close_connection(self, name):
        """ closes the named connection now, whatever clients remain attached. """
        connection = self._connections.pop(name, None)
        if connection is not None:
            connection.shutdown()

    def get_connection(self, name):
        return self._connections.get(name)

    def connection_names(self):
        return list(self._connections)

    def common_connection(self) -> BusConnection:
        """ the connection to the local driver server. """
        return self.open_connection(LOCAL_CONNECTION, self.local_host, self.server.port)

    def start_driver(self, driver, name):
        self.server.start_driver(driver, name)

    def stop_driver(self, driver, name):
        self.server.stop_driver(driver, name)

    def pump(self):
        self.server.drain()

    def shutdown(self):
        for connection in list(self._connections.values()):
            connection.shutdown()
        self._connections.clear()
        self.server.stop()
