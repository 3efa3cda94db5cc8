"""
The Meade LX200 command set over a serial port.

Positions are read with :GR# and :GD#; a goto sets the target with :Sr and :Sd, then starts the slew with :MS#.
"""
import math

from scopecontrol.client.base import ProtocolError
from scopecontrol.client.serial import Command, SerialTelescope, take_until
from scopecontrol.coordinates import radec_to_vector, vector_to_radec

# the degree sign is sent as '*' by some firmware and as 0xDF by others
_DEGREE_SIGNS = b"*\xdf'"


def parse_ra(text: bytes):
    """ parses HH:MM:SS or HH:MM.T to radians. """
    try:
        fields = text.decode('ascii').split(':')
        hours = int(fields[0])
        if len(fields) == 3:
            minutes = int(fields[1]) + int(fields[2]) / 60.0
        else:
            minutes = float(fields[1])
    except (UnicodeDecodeError, ValueError, IndexError):
        raise ProtocolError("bad right ascension %r" % text)
    return (hours + minutes / 60.0) * math.pi / 12


def parse_dec(text: bytes):
    """ parses sDD*MM:SS or sDD*MM to radians. """
    try:
        sign = -1 if text[:1] == b'-' else 1
        body = text[1:] if text[:1] in (b'+', b'-') else text
        for c in _DEGREE_SIGNS:
            body = body.replace(bytes([c]), b':')
        fields = [int(f) for f in body.decode('ascii').split(':')]
        degrees = fields[0] + fields[1] / 60.0 + (fields[2] / 3600.0 if len(fields) > 2 else 0)
    except (UnicodeDecodeError, ValueError, IndexError):
        raise ProtocolError("bad declination %r" % text)
    return sign * math.radians(degrees)


def format_ra(ra):
    seconds = int(round(ra * 12 / math.pi * 3600)) % (24 * 3600)
    return "%02d:%02d:%02d" % (seconds // 3600, seconds // 60 % 60, seconds % 60)


def format_dec(dec):
    seconds = int(round(abs(math.degrees(dec)) * 3600))
    return "%s%02d*%02d:%02d" % ('-' if dec < 0 else '+', seconds // 3600, seconds // 60 % 60, seconds % 60)


class GetRa(Command):

    def __init__(self, telescope):
        self.telescope = telescope

    def encode(self):
        return b':GR#'

    def decode(self, buffer, log):
        reply = take_until(buffer)
        if reply is None:
            return False
        self.telescope.ra = parse_ra(reply)
        return True


class GetDec(Command):

    def __init__(self, telescope):
        self.telescope = telescope

    def encode(self):
        return b':GD#'

    def decode(self, buffer, log):
        reply = take_until(buffer)
        if reply is None:
            return False
        dec = parse_dec(reply)
        if self.telescope.ra is not None:
            self.telescope._position_received(radec_to_vector(self.telescope.ra, dec))
            self.telescope.ra = None
        return True


class SetTarget(Command):
    """ :Sr or :Sd; the device answers 1 when the value was accepted and 0 otherwise. """

    def __init__(self, command, value):
        self.command = command
        self.value = value

    def encode(self):
        return (':%s%s#' % (self.command, self.value)).encode('ascii')

    def decode(self, buffer, log):
        if not buffer:
            return False
        reply = buffer[0:1]
        del buffer[0:1]
        if reply == b'0':
            log.warning("%s %s rejected by the device", self.command, self.value)
        elif reply != b'1':
            raise ProtocolError("unexpected reply %r to %s" % (reply, self.command))
        return True

    def __str__(self):
        return "Set%s(%s)" % (self.command, self.value)


class MoveTo(Command):
    """ :MS# answers 0 when the slew starts, otherwise 1 or 2 followed by a message ending with '#'. """

    def encode(self):
        return b':MS#'

    def decode(self, buffer, log):
        if not buffer:
            return False
        if buffer[0:1] == b'0':
            del buffer[0:1]
            return True
        if buffer[0:1] not in (b'1', b'2'):
            raise ProtocolError("unexpected reply %r to goto" % bytes(buffer[0:1]))
        message = take_until(buffer[1:])
        if message is None:
            return False
        take_until(buffer)
        log.warning("goto refused: %s", message.decode('ascii', 'replace'))
        return True


class Lx200Telescope(SerialTelescope):

    def __init__(self, id, serial_port, **kwargs):
        self.ra = None
        super().__init__(id, serial_port, **kwargs)

    def poll_commands(self):
        return [GetRa(self), GetDec(self)]

    def goto_commands(self, target):
        ra, dec = vector_to_radec(target)
        return [SetTarget('Sr', format_ra(ra)), SetTarget('Sd', format_dec(dec)), MoveTo()]
