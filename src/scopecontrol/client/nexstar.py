"""
The Celestron NexStar hand controller protocol.
Angles are sent as 32-bit hexadecimal fractions of a full turn.
"""
import math

from scopecontrol.client.base import ProtocolError
from scopecontrol.client.serial import Command, SerialTelescope, take_until
from scopecontrol.coordinates import radec_to_vector, vector_to_radec

TURN = 2 ** 32


def angle_to_hex(angle):
    return "%08X" % (int(round(angle / (2 * math.pi) * TURN)) % TURN)


def hex_to_angle(text):
    return int(text, 16) / TURN * 2 * math.pi


class GetRaDec(Command):
    """ 'e' answers RRRRRRRR,DDDDDDDD# """

    def __init__(self, telescope):
        self.telescope = telescope

    def encode(self):
        return b'e'

    def decode(self, buffer, log):
        reply = take_until(buffer)
        if reply is None:
            return False
        try:
            ra_text, dec_text = reply.decode('ascii').split(',')
            ra, dec = hex_to_angle(ra_text), hex_to_angle(dec_text)
        except (UnicodeDecodeError, ValueError):
            raise ProtocolError("bad position %r" % reply)
        if dec > math.pi:
            dec -= 2 * math.pi
        self.telescope._position_received(radec_to_vector(ra, dec))
        return True


class GotoRaDec(Command):
    """ 'rRRRRRRRR,DDDDDDDD' answers # """

    def __init__(self, ra, dec):
        self.ra = ra
        self.dec = dec

    def encode(self):
        return ('r%s,%s' % (angle_to_hex(self.ra), angle_to_hex(self.dec))).encode('ascii')

    def decode(self, buffer, log):
        reply = take_until(buffer)
        if reply is None:
            return False
        if reply:
            raise ProtocolError("unexpected reply %r to goto" % reply)
        return True


class NexStarTelescope(SerialTelescope):

    def poll_commands(self):
        return [GetRaDec(self)]

    def goto_commands(self, target):
        ra, dec = vector_to_radec(target)
        return [GotoRaDec(ra, dec)]
