"""
A telescope reached through a separate telescope server over TCP, using the binary
little-endian relay protocol.

Every message starts with its length (uint16) and type (uint16). Type 0 carries a position:
the time in microseconds (int64), the right ascension (uint32, 2^32 = 24h) and the
declination (int32, 2^30 = 90 degrees). Position messages from the server add a status (int32).
"""
import logging
import math
import struct

from scopecontrol.client.base import TelescopeClient, ProtocolError
from scopecontrol.conduit.base import StreamErrorReportingConduit
from scopecontrol.conduit.socket_conduit import socket_conduit_factory
from scopecontrol.coordinates import vector_to_radec, radec_to_vector, normalize

logger = logging.getLogger(__name__)

HEADER = struct.Struct('<HH')
GOTO = struct.Struct('<HHqIi')
POSITION = struct.Struct('<HHqIii')
TYPE_POSITION = 0


def encode_goto(target, timestamp):
    ra, dec = vector_to_radec(target)
    ra_int = int(round(ra / (2 * math.pi) * 2 ** 32)) % 2 ** 32
    dec_int = int(round(dec / (math.pi / 2) * 2 ** 30))
    return GOTO.pack(GOTO.size, TYPE_POSITION, int(timestamp * 1000000), ra_int, dec_int)


def decode_position(frame):
    """ :return: (timestamp in seconds, position vector, status) """
    _, _, time_us, ra_int, dec_int, status = POSITION.unpack_from(frame)
    ra = ra_int / 2 ** 32 * 2 * math.pi
    dec = dec_int / 2 ** 30 * math.pi / 2
    return time_us / 1000000.0, radec_to_vector(ra, dec), status


class TcpTelescope(TelescopeClient):
    """
    Connects to the telescope server at host:port. The connection is made without waiting;
    the client is connected once the socket handshake completes.
    """

    def __init__(self, id, host, port, conduit_factory=socket_conduit_factory, **kwargs):
        super().__init__(id, **kwargs)
        self.host = host
        self.port = port
        self.conduit_factory = conduit_factory
        self.conduit = None
        self._buffer = bytearray()
        self._outgoing = []
        self.initialize()

    def _open(self):
        self.conduit = StreamErrorReportingConduit(self.conduit_factory(self.host, self.port), self._conduit_error)

    def _conduit_error(self, e):
        logger.debug("telescope server %s:%s error: %s", self.host, self.port, e)
        self._connected = False

    def _close(self):
        if self.conduit is not None:
            self.conduit.close()

    def goto(self, target_j2000):
        # a goto requested during the handshake is sent once connected
        if self.live and self.conduit.open:
            self._goto(normalize(target_j2000))

    def _goto(self, target_j2000):
        timestamp = self.clock()
        self._outgoing.append(encode_goto(self._device_position(target_j2000, timestamp), timestamp))

    def _communicate(self, log):
        conduit = self.conduit
        if not conduit.open:
            return
        if not conduit.ready:
            return
        if not self._connected:
            log.info("connected to %s:%s", self.host, self.port)
            self._connected = True
        for frame in self._outgoing:
            conduit.write(frame)
        self._outgoing = []
        self._buffer += conduit.read_available()
        self._parse(log)

    def _parse(self, log):
        buffer = self._buffer
        while len(buffer) >= HEADER.size:
            length, message_type = HEADER.unpack_from(buffer)
            if length < HEADER.size:
                raise ProtocolError("bad message length %d" % length)
            if len(buffer) < length:
                break
            frame = bytes(buffer[:length])
            del buffer[:length]
            if message_type == TYPE_POSITION and length >= POSITION.size:
                timestamp, position, status = decode_position(frame)
                if status:
                    log.debug("server status %d", status)
                self._position_received(position, timestamp)
            else:
                log.debug("skipping message type %d length %d", message_type, length)

    def _fault(self, error, log=logger):
        super()._fault(error, log)
        # the socket is unusable after an error
        self._close_quietly()
