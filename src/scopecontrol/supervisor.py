"""
The connection supervisor: starts and stops a client for each registered connection and drives
them all from the host's update loop.
"""
import logging
import math
import os
from collections import OrderedDict

from scopecontrol.bus import DriverBusService, DriverCatalog, LocalDriverServer, DeviceDefinedEvent, \
    CoordinatesDefinedEvent
from scopecontrol.client.alpaca import AlpacaTelescope
from scopecontrol.client.base import TRANSPORT_ERRORS
from scopecontrol.client.indi import IndiTelescope, BusHubClient
from scopecontrol.client.lx200 import Lx200Telescope
from scopecontrol.client.nexstar import NexStarTelescope
from scopecontrol.client.tcp import TcpTelescope
from scopecontrol.client.virtual import VirtualTelescope
from scopecontrol.conduit.serial_conduit import serial_ports
from scopecontrol.coordinates import normalize, dot
from scopecontrol.devicelog import DeviceLogs
from scopecontrol.host import NoSelection
from scopecontrol.model import InterfaceKind
from scopecontrol.persistence import ConnectionStore, DeviceModelCatalog
from scopecontrol.registry import ConnectionRegistry, ConfigurationError
from scopecontrol.support.events import EventSource, QueuedEventSource

logger = logging.getLogger(__name__)


class ClientEvent:
    """ Base class for events about a connection's client. """
    def __init__(self, id):
        self.id = id


class ClientConnectedEvent(ClientEvent):
    """ A client was started for the connection. """


class ClientDisconnectedEvent(ClientEvent):
    """ The connection's client was stopped. """


class TelescopeDefinedEvent(ClientEvent):
    """ A device on the driver bus defined its coordinates and is now listed as a telescope. """


class ConnectionSupervisor:
    """
    Owns the running clients.

    Each started connection has a client that is communicated with on every tick(). Most clients are
    telescopes from the start. Clients on the driver bus are staged until their device defines its
    coordinates; a connection to a remote driver server stages a client for each device found on it,
    with the id `<connection>/<device>`.

    Clients are polled in the order they were started. Events about the driver bus are queued while
    the clients are polled and handled once the tick is over, so the set of clients never changes
    during the poll.

    :param registry     the connection definitions
    :param store        reads and writes the definitions
    :param bus          the driver bus service
    :param device_logs  provides the log for each local connection
    :param device_models    the device models, name -> DeviceModel
    :param selection    a SelectionProvider
    :param view_direction   a ViewDirectionProvider, or None
    """
    serial_clients = {'Lx200': Lx200Telescope, 'NexStar': NexStarTelescope}
    tcp_client = TcpTelescope
    alpaca_client = AlpacaTelescope

    def __init__(self, registry: ConnectionRegistry, store: ConnectionStore, bus: DriverBusService,
                 device_logs: DeviceLogs, device_models=None, selection=None, view_direction=None):
        self.registry = registry
        self.store = store
        self.bus = bus
        self.device_logs = device_logs
        self.models = device_models if device_models is not None else OrderedDict()
        self.selection = selection or NoSelection()
        self.view_direction = view_direction
        self.events = EventSource()
        self._bus_events = QueuedEventSource()
        self._bus_events.add(self._bus_event)
        bus.events.add(self._bus_events.fire)
        registry.parent_is_live = self.is_running
        self._clients = OrderedDict()       # id -> client, every client communicated with
        self._telescopes = OrderedDict()    # id -> client, the clients that are telescopes
        self._pending = OrderedDict()       # id -> bus client waiting for its device's coordinates
        self._hubs = OrderedDict()          # remote driver server connection id -> ids of its device clients
        self._starters = {
            InterfaceKind.VIRTUAL: self._start_virtual,
            InterfaceKind.NATIVE: self._start_native,
            InterfaceKind.EXTERNAL_DRIVER: self._start_external_driver,
            InterfaceKind.EXTERNAL_DRIVER_POINTER: self._start_pointer,
            InterfaceKind.VENDOR_AUTOMATION: self._start_vendor_automation,
        }

    # connection lifecycle

    def start(self, id) -> bool:
        """
        Starts the client for the connection.
        :return: True if the client was started, False if the connection is unknown, already running or
            its client could not be initialized.
        """
        config = self.registry.get(id)
        if config is None:
            logger.debug("no connection %s", id)
            return False
        if id in self._clients:
            logger.debug("a client already exists with that id: %s", id)
            return False
        try:
            self.registry.verify(config)
        except ConfigurationError as e:
            logger.warning("not starting %s: %s", id, e)
            return False

        if not config.is_remote:
            self.device_logs.add(id)
        logger.debug("attempting to create a telescope client %s: %s", id, config)
        try:
            client = self._starters[config.interface](config)
        except TRANSPORT_ERRORS as e:
            logger.warning("unable to start %s: %s", id, e)
            client = None
        if client is not None and not client.initialized:
            client.stop()
            client = None
        if client is None:
            logger.debug("unable to create a telescope client: %s", id)
            self._driver_stopped(config)
            self.device_logs.remove(id)
            return False

        self._clients[id] = client
        if self._is_local_driver(config):
            self._pending[id] = client
        elif self._is_remote_driver(config):
            self._hubs[id] = []
        else:
            self._telescopes[id] = client
        self.events.fire(ClientConnectedEvent(id))
        return True

    def stop(self, id) -> bool:
        """
        Stops the connection's client. Stopping a connection that is not running does nothing.
        :return: True
        """
        client = self._clients.get(id)
        if client is None:
            return True
        config = self.registry.get(id)
        if config is not None and self._is_remote_driver(config):
            for pointer in self._pointers_on(id):
                self.stop(pointer)
        ids = [id] + self._hubs.pop(id, [])
        self._unselect([self._clients[i] for i in ids if i in self._clients])
        for i in reversed(ids):
            self._discard(i)
        if config is not None:
            if self._is_remote_driver(config):
                self.bus.close_connection(id)
            self._driver_stopped(config)
        self.device_logs.remove(id)
        self.events.fire(ClientDisconnectedEvent(id))
        return True

    def stop_all(self) -> bool:
        stopped = True
        for id in [id for id in self._clients if id in self.registry]:
            stopped = self.stop(id) and stopped
        return stopped

    def _pointers_on(self, id):
        """ the running pointer connections that use the bus connection with the given id. """
        return [c.id for c in self.registry.configs()
                if c.interface == InterfaceKind.EXTERNAL_DRIVER_POINTER and c.bus_connection == id and c.id in self._clients]

    def _discard(self, id):
        client = self._clients.pop(id, None)
        self._telescopes.pop(id, None)
        self._pending.pop(id, None)
        if client is not None:
            client.stop()

    def _unselect(self, clients):
        selected = self.selection.selected()
        if selected is not None and any(selected is client for client in clients):
            self.selection.unselect(selected)

    def _driver_stopped(self, config):
        if self._is_local_driver(config):
            try:
                self.bus.stop_driver(config.driver_id, config.id)
            except OSError as e:
                logger.warning("unable to stop driver %s for %s: %s", config.driver_id, config.id, e)

    @staticmethod
    def _is_local_driver(config):
        return config.interface == InterfaceKind.EXTERNAL_DRIVER and not config.is_remote

    @staticmethod
    def _is_remote_driver(config):
        return config.interface == InterfaceKind.EXTERNAL_DRIVER and config.is_remote

    # client construction, by interface

    @staticmethod
    def _client_args(config):
        return dict(equinox=config.equinox, delay=config.poll_delay, fov_circles=config.fov_circles)

    def _start_virtual(self, config):
        return VirtualTelescope(config.id, **self._client_args(config))

    def _start_native(self, config):
        if config.is_remote:
            return self.tcp_client(config.id, config.host, config.tcp_port, **self._client_args(config))
        client_type = self.serial_clients.get(config.driver_id)
        if client_type is None:
            logger.warning("no embedded server %s for %s", config.driver_id, config.id)
            return None
        return client_type(config.id, config.serial_port, **self._client_args(config))

    def _start_external_driver(self, config):
        if config.is_remote:
            connection = self.bus.open_connection(config.id, config.host, config.tcp_port)
            return BusHubClient(config.id, connection)
        self.bus.start_driver(config.driver_id, config.id)
        return IndiTelescope(config.id, config.id, self.bus.common_connection(), **self._client_args(config))

    def _start_pointer(self, config):
        connection = self.bus.get_connection(config.bus_connection)
        if connection is None:
            logger.debug("no such driver bus connection: %s", config.bus_connection)
            return None
        return IndiTelescope(config.id, config.bus_device, connection, **self._client_args(config))

    def _start_vendor_automation(self, config):
        return self.alpaca_client(config.id, config.driver_id, **self._client_args(config))

    # driver bus devices

    def _bus_event(self, event):
        if isinstance(event, DeviceDefinedEvent):
            self._device_defined(event)
        elif isinstance(event, CoordinatesDefinedEvent):
            self._coordinates_defined(event)

    def _device_defined(self, event):
        """ stages a client for a device found on a remote driver server. """
        hub = event.connection.name
        if hub not in self._hubs:
            return
        id = "%s/%s" % (hub, event.device)
        if id in self._clients:
            return
        client = IndiTelescope(id, event.device, event.connection)
        if not client.initialized:
            return
        logger.info("found device %s on %s", event.device, hub)
        self._clients[id] = self._pending[id] = client
        self._hubs[hub].append(id)

    def _coordinates_defined(self, event):
        """ moves the device's client from the staged clients to the telescopes. """
        for id, client in list(self._pending.items()):
            if client.connection is event.connection and client.device == event.device:
                del self._pending[id]
                if id not in self._telescopes:
                    self._telescopes[id] = client
                    logger.info("%s is now available as a telescope", id)
                    self.events.fire(TelescopeDefinedEvent(id))

    # the update loop

    def tick(self):
        """
        Communicates with every client, in the order they were started, each with its own log.
        An error in one client does not stop the others from being polled.
        """
        for id, client in list(self._clients.items()):
            if self._clients.get(id) is not client:
                continue
            log = self.device_logs.get(id) or logger
            try:
                if client.prepare_communication():
                    client.perform_communication(log)
            except Exception as e:
                logger.exception("unexpected exception '%s' communicating with %s" % (e, id))
                client.fault(e, log)
        try:
            self.bus.pump()
        except OSError as e:
            logger.warning("error reading the driver server output: %s", e)
        self._bus_events.publish()

    # goto

    def goto(self, id, target_j2000) -> bool:
        """ slews the telescope to the given J2000 unit vector. :return: False if no such telescope """
        client = self._telescopes.get(id)
        if client is None:
            return False
        client.goto(target_j2000)
        return True

    def goto_selected(self, slot) -> bool:
        """ slews the telescope bound to the shortcut slot to the selected object. """
        id = self.registry.id_for_shortcut(slot)
        selected = self.selection.selected()
        if id is None or selected is None:
            return False
        return self.goto(id, selected.j2000_position)

    def goto_view_direction(self, slot) -> bool:
        """ slews the telescope bound to the shortcut slot to the center of the view. """
        id = self.registry.id_for_shortcut(slot)
        if id is None or self.view_direction is None:
            return False
        return self.goto(id, self.view_direction.view_direction())

    # queries

    def is_running(self, id):
        return id in self._clients

    def is_connected(self, id):
        client = self._clients.get(id)
        return client is not None and client.connected

    def connection_ids(self):
        return self.registry.ids()

    def connected_telescope_ids(self):
        return list(self._telescopes)

    def telescope(self, id):
        return self._telescopes.get(id)

    def used_shortcut_slots(self):
        return self.registry.used_shortcut_slots()

    def get_connection(self, id):
        return self.registry.get(id)

    def device_models(self):
        return OrderedDict(self.models)

    @staticmethod
    def available_serial_ports():
        return list(serial_ports())

    def search_around(self, direction, limit_fov_degrees):
        """ the telescopes with a known position within the given angle of the direction. """
        v = normalize(direction)
        cos_limit = math.cos(math.radians(limit_fov_degrees))
        return [client for client in self._telescopes.values()
                if client.has_known_position() and dot(client.current_equatorial_position(), v) >= cos_limit]

    def search_by_name(self, name):
        for client in self._telescopes.values():
            if client.name == name:
                return client
        return None

    def list_matching(self, prefix, max_items):
        """ the names of the telescopes starting with the prefix, ignoring case, sorted. """
        if max_items == 0:
            return []
        prefix = prefix.upper()
        result = sorted(client.name for client in self._telescopes.values()
                        if client.name[:len(prefix)].upper() == prefix)
        return result[:max_items] if max_items > 0 else result

    # definitions

    def add_connection(self, id, properties):
        """ :return: the registry's InsertResult """
        return self.registry.validate_and_insert(id, properties)

    def remove_connection(self, id) -> bool:
        """ stops the connection and removes its definition. """
        self.stop(id)
        return self.registry.remove(id)

    def remove_all(self):
        self._unselect(list(self._telescopes.values()))
        for id in list(self._clients):
            if id in self._clients:
                self.stop(id)
        self.registry.clear()

    def load(self):
        """
        Replaces the connections with those in the connections file, starting the ones that connect at startup.
        :return: the LoadResult
        """
        result = self.store.load()
        self.remove_all()
        for id, properties in result.configs.items():
            if not self.add_connection(id, properties):
                continue
            if self.registry.get(id).connect_at_startup and not self.start(id):
                logger.debug("unable to create a connection: %s", id)
        if len(self.registry):
            logger.debug("loaded %d connections", len(self.registry))
        return result

    def save(self) -> bool:
        return self.store.save(self.registry.configs())

    def shutdown(self) -> bool:
        """ stops every client and the local driver server, then saves the connections. """
        self.stop_all()
        self.bus.shutdown()
        self.device_logs.close()
        return self.save()


def create_supervisor(settings, selection=None, view_direction=None) -> ConnectionSupervisor:
    """
    Builds the supervisor and its collaborators from the application settings.
    The connections are not loaded; call load() on the result.
    """
    try:
        os.makedirs(settings.directory, exist_ok=True)
    except OSError as e:
        logger.warning("unable to create %s: %s", settings.directory, e)
    models = DeviceModelCatalog(settings.device_models_path).load()
    catalog = DriverCatalog.load(settings.driver_catalog)
    server = LocalDriverServer(settings.driver_server, settings.driver_server_port, settings.driver_fifo)
    registry = ConnectionRegistry(settings.serial_port_prefix, models, catalog)
    return ConnectionSupervisor(registry, ConnectionStore(settings.connections_path), DriverBusService(catalog, server),
                                DeviceLogs(settings.directory, settings.enable_device_logs), models,
                                selection, view_direction)
