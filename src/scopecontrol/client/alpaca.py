"""
A telescope reached through an ASCOM Alpaca server.

Alpaca calls are HTTP requests that wait for the reply, so the position is read at most once per
poll period and a goto is sent on the next tick rather than from the caller.
"""
import logging
import math

from alpaca.exceptions import AlpacaRequestException, DriverException, InvalidOperationException, \
    InvalidValueException, NotConnectedException, ParkedException
from alpaca.telescope import Telescope

from scopecontrol.client.base import TelescopeClient, ClientError, ClientNotInitializedError
from scopecontrol.coordinates import radec_to_vector, vector_to_radec

logger = logging.getLogger(__name__)

ALPACA_ERRORS = (AlpacaRequestException, DriverException, InvalidOperationException, InvalidValueException,
                 NotConnectedException, ParkedException)


def parse_driver_id(driver_id):
    """
    >>> parse_driver_id('observatory:11111/1')
    ('observatory:11111', 1)
    >>> parse_driver_id('localhost:11111')
    ('localhost:11111', 0)
    """
    address, _, number = driver_id.partition('/')
    if not address:
        raise ClientNotInitializedError("no server address in %r" % driver_id)
    try:
        return address, int(number) if number else 0
    except ValueError:
        raise ClientNotInitializedError("bad device number in %r" % driver_id)


class AlpacaTelescope(TelescopeClient):
    """
    :param driver_id    the server address and device number, as host:port/number
    :param telescope_factory    called with the address and device number to create the Alpaca device.
    """

    def __init__(self, id, driver_id, telescope_factory=Telescope, **kwargs):
        super().__init__(id, **kwargs)
        self.driver_id = driver_id
        self.telescope_factory = telescope_factory
        self.device = None
        self._target = None
        self.initialize()

    def _open(self):
        address, number = parse_driver_id(self.driver_id)
        self.device = self.telescope_factory(address, number)

    def _close(self):
        if self.device is not None:
            try:
                self.device.Connected = False
            except ALPACA_ERRORS as e:
                raise ClientError(str(e))

    def prepare_communication(self):
        return self.live and (self._target is not None or self.poll(dry_run=True) <= 0)

    def _goto(self, target_j2000):
        self._target = target_j2000

    def _communicate(self, log):
        target, self._target = self._target, None
        read_position = self.poll() <= 0
        if target is None and not read_position:
            return
        try:
            if not self._connected:
                if not self.device.Connected:
                    log.info("connecting to %s", self.driver_id)
                    self.device.Connected = True
                self._connected = True
            if target is not None:
                ra, dec = vector_to_radec(self._device_position(target))
                log.info("slewing to ra %.4fh dec %.4f", ra * 12 / math.pi, math.degrees(dec))
                self.device.SlewToCoordinatesAsync(ra * 12 / math.pi, math.degrees(dec))
            if read_position:
                ra_hours, dec_degrees = self.device.RightAscension, self.device.Declination
                self._position_received(radec_to_vector(ra_hours * math.pi / 12, math.radians(dec_degrees)))
        except ALPACA_ERRORS as e:
            raise ClientError("%s: %s" % (type(e).__name__, e))
