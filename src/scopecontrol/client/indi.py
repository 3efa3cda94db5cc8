"""
Clients on the external driver bus.

An IndiTelescope is one device on a shared BusConnection. A BusHubClient keeps a connection to a remote
driver server serviced while the devices found on it are staged as telescopes.
"""
import logging
import math

from scopecontrol.bus import BusConnection
from scopecontrol.client.base import TelescopeClient, ClientNotConnectedError
from scopecontrol.coordinates import radec_to_vector, vector_to_radec
from scopecontrol.model import Equinox

logger = logging.getLogger(__name__)


class BusClient(TelescopeClient):
    """
    A client of a bus connection. The client attaches to the connection when initialized and detaches
    when stopped; it does not own the connection.
    """

    def __init__(self, id, connection: BusConnection, **kwargs):
        super().__init__(id, **kwargs)
        self.connection = connection
        self._attached = False

    def _open(self):
        self.connection.attach()
        self._attached = True

    def _close(self):
        if self._attached:
            self._attached = False
            self.connection.detach()

    @property
    def connected(self):
        return self.live and self.connection.connected

    def _communicate(self, log):
        self.connection.pump()


class BusHubClient(BusClient):
    """ services the connection to a remote driver server. It is not a telescope itself. """

    def __init__(self, id, connection: BusConnection, **kwargs):
        super().__init__(id, connection, **kwargs)
        self.initialize()

    def goto(self, target_j2000):
        logger.debug("ignoring goto for driver server %s", self.id)

    def _goto(self, target_j2000):
        raise ClientNotConnectedError("%s is a driver server, not a telescope" % self.id)


class IndiTelescope(BusClient):
    """
    Reads the coordinates of a device on a bus connection and sends it gotos.
    The device's equinox follows the coordinate property it defines.
    """

    def __init__(self, id, device, connection: BusConnection, **kwargs):
        super().__init__(id, connection, **kwargs)
        self.device = device
        self._connect_requested = False
        self._last_position = None
        self.initialize()

    @property
    def bus_device(self):
        return self.connection.devices.get(self.device)

    @property
    def connected(self):
        device = self.bus_device
        return super().connected and device is not None and device.connected

    def goto(self, target_j2000):
        try:
            super().goto(target_j2000)
        except ClientNotConnectedError as e:
            logger.warning("goto ignored: %s", e)

    def _goto(self, target_j2000):
        device = self.bus_device
        if device is None or device.coordinate_property is None:
            raise ClientNotConnectedError("%s has no coordinates" % self.device)
        ra, dec = vector_to_radec(self._device_position(target_j2000))
        if 'ON_COORD_SET' in device.switches:
            self.connection.new_switch(self.device, 'ON_COORD_SET', 'TRACK')
        self.connection.new_number(self.device, device.coordinate_property,
                                   {'RA': ra * 12 / math.pi, 'DEC': math.degrees(dec)})

    def _communicate(self, log):
        super()._communicate(log)
        device = self.bus_device
        if device is None:
            # the server forgot the device, so it is asked to connect again once redefined
            self._connect_requested = False
            return
        if not device.connected and not self._connect_requested and 'CONNECTION' in device.switches:
            log.info("connecting device %s", self.device)
            self.connection.new_switch(self.device, 'CONNECTION', 'CONNECT')
            self._connect_requested = True
        self.equinox = Equinox.parse(device.equinox) or self.equinox
        position = device.position()
        if position is not None and position != self._last_position:
            ra_hours, dec_degrees = position
            self._position_received(radec_to_vector(ra_hours * math.pi / 12, math.radians(dec_degrees)))
        self._last_position = position
