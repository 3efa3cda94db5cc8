import bisect
import logging
import time
from abc import abstractmethod
from collections import deque
from enum import Enum

from scopecontrol.coordinates import normalize, interpolate, j2000_to_jnow, jnow_to_j2000
from scopecontrol.model import Equinox, DEFAULT_DELAY, MAX_CIRCLE_COUNT
from scopecontrol.support.poll_strategy import PeriodPollStrategy, microseconds_to_period

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """ Indicates an error communicating with a telescope. """


class ClientNotInitializedError(ClientError):
    """ The client could not complete its setup. """


class ClientNotConnectedError(ClientError):
    """ The client is not connected when a connection is required. """


class ProtocolError(ClientError):
    """ A reply from the device did not follow the protocol. """


class ClientTimeoutError(ClientError):
    """ The device did not reply in time. """


# errors raised by transports that mean the device link is unusable
TRANSPORT_ERRORS = (ClientError, OSError, ValueError)


class ClientState(Enum):
    INITIALIZING = "initializing"
    LIVE = "live"
    FAILED = "failed"
    STOPPED = "stopped"


class PositionHistory:
    """
    Recent timestamped positions of a telescope. Positions between two entries are
    interpolated linearly; times outside the history are clamped to the first or last entry.
    """

    def __init__(self, max_entries=16):
        self._entries = deque(maxlen=max_entries)

    def __len__(self):
        return len(self._entries)

    def add(self, timestamp, position):
        if self._entries and timestamp < self._entries[-1][0]:
            # out of order: the history only describes the present going forward
            self._entries.clear()
        self._entries.append((timestamp, normalize(position)))

    def clear(self):
        self._entries.clear()

    def latest(self):
        return self._entries[-1][1] if self._entries else None

    def position(self, timestamp=None):
        entries = self._entries
        if not entries:
            return None
        if timestamp is None or timestamp >= entries[-1][0]:
            return entries[-1][1]
        if timestamp <= entries[0][0]:
            return entries[0][1]
        times = [t for t, _ in entries]
        index = bisect.bisect_right(times, timestamp)
        (t0, p0), (t1, p1) = entries[index - 1], entries[index]
        if t1 == t0:
            return p1
        return normalize(interpolate(p0, p1, (timestamp - t0) / (t1 - t0)))


class ClientProtocol:
    """
    The operations the host uses on every telescope client, whatever the transport.

    Clients are polled: the supervisor calls prepare_communication() once per tick and, if it returns True,
    perform_communication(). Neither blocks for long and perform_communication() does not raise;
    transport failures are reported through the connected property.
    """

    @property
    @abstractmethod
    def initialized(self) -> bool:
        raise NotImplementedError

    @property
    @abstractmethod
    def connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def has_known_position(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def current_equatorial_position(self, observation_time=None):
        """ the J2000 unit vector the telescope points at, at the given time, or None if not known. """
        raise NotImplementedError

    @abstractmethod
    def fov_circles(self):
        raise NotImplementedError

    @abstractmethod
    def add_fov_circle(self, diameter):
        raise NotImplementedError

    @abstractmethod
    def goto(self, target_j2000):
        """ asks the telescope to slew to the given J2000 unit vector. """
        raise NotImplementedError

    @abstractmethod
    def prepare_communication(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def perform_communication(self, log=logger):
        raise NotImplementedError

    @abstractmethod
    def fault(self, error, log=logger):
        """ reports an error raised while communicating; the client counts as disconnected afterwards. """
        raise NotImplementedError

    @abstractmethod
    def stop(self):
        raise NotImplementedError


class TelescopeClient(ClientProtocol):
    """
    Common behavior for clients: the lifecycle state, the position history, the field of view circles
    and the conversion of positions from and to the device's equinox.

    Subclasses call initialize() at the end of their constructor, and implement _open(), _communicate()
    and optionally _close().
    """

    def __init__(self, id, equinox=Equinox.J2000, delay=DEFAULT_DELAY, fov_circles=(), clock=time.time):
        self.id = id
        self.equinox = equinox or Equinox.J2000
        self.state = ClientState.INITIALIZING
        self.history = PositionHistory()
        self.poll = PeriodPollStrategy(microseconds_to_period(delay or DEFAULT_DELAY))
        self.clock = clock
        self._fov_circles = []
        self._connected = False
        for circle in fov_circles:
            self.add_fov_circle(circle)

    def __str__(self):
        return "%s(%s)" % (type(self).__name__, self.id)

    @property
    def name(self):
        return self.id

    def initialize(self):
        """ opens the transport. A failure leaves the client in the FAILED state. """
        try:
            self._open()
            self.state = ClientState.LIVE
        except TRANSPORT_ERRORS as e:
            logger.warning("unable to initialize telescope %s: %s", self.id, e)
            self.state = ClientState.FAILED
            self._close_quietly()

    @property
    def initialized(self):
        return self.state != ClientState.FAILED

    @property
    def live(self):
        return self.state == ClientState.LIVE

    @property
    def connected(self):
        return self.live and self._connected

    def has_known_position(self):
        return len(self.history) > 0

    def current_equatorial_position(self, observation_time=None):
        return self.history.position(observation_time)

    def fov_circles(self):
        return list(self._fov_circles)

    def add_fov_circle(self, diameter):
        if len(self._fov_circles) < MAX_CIRCLE_COUNT:
            self._fov_circles.append(float(diameter))

    def goto(self, target_j2000):
        if not self.connected:
            logger.debug("ignoring goto for %s: not connected", self.id)
            return
        self._goto(normalize(target_j2000))

    def prepare_communication(self):
        return self.live

    def perform_communication(self, log=logger):
        if not self.live:
            return
        try:
            self._communicate(log)
        except TRANSPORT_ERRORS as e:
            self._fault(e, log)

    def stop(self):
        if self.state != ClientState.STOPPED:
            self.state = ClientState.STOPPED
            self._connected = False
            self._close_quietly()

    def _position_received(self, position, timestamp=None):
        """ records a position reported by the device, in the device's equinox. """
        timestamp = self.clock() if timestamp is None else timestamp
        if self.equinox == Equinox.JNOW:
            position = jnow_to_j2000(position, timestamp)
        self.history.add(timestamp, position)

    def _device_position(self, target_j2000, timestamp=None):
        """ converts a J2000 position to the device's equinox. """
        if self.equinox == Equinox.JNOW:
            return normalize(j2000_to_jnow(target_j2000, self.clock() if timestamp is None else timestamp))
        return target_j2000

    def fault(self, error, log=logger):
        self._fault(error, log)

    def _fault(self, error, log=logger):
        if self._connected:
            logger.warning("telescope %s disconnected: %s", self.id, error)
        log.warning("communication error: %s", error)
        self._connected = False

    def _close_quietly(self):
        try:
            self._close()
        except TRANSPORT_ERRORS as e:
            logger.debug("error closing telescope %s: %s", self.id, e)

    @abstractmethod
    def _open(self):
        raise NotImplementedError

    @abstractmethod
    def _goto(self, target_j2000):
        raise NotImplementedError

    @abstractmethod
    def _communicate(self, log):
        raise NotImplementedError

    def _close(self):
        pass
