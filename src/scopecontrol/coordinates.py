"""
Equatorial positions as unit vectors, and conversion between the J2000 and JNow frames.

Vectors are plain (x, y, z) tuples. x points to RA 0h on the equator, z to the north celestial pole.
JNow is the true equator and equinox of the observation time, the frame astropy calls TETE.
"""
import math
import time

from astropy import units as u
from astropy.coordinates import SkyCoord, ICRS, TETE
from astropy.time import Time


def radec_to_vector(ra, dec):
    """
    :param ra:  right ascension in radians
    :param dec: declination in radians
    """
    cos_dec = math.cos(dec)
    return math.cos(ra) * cos_dec, math.sin(ra) * cos_dec, math.sin(dec)


def vector_to_radec(v):
    """ :return: (ra, dec) in radians, with ra in [0, 2*pi) """
    x, y, z = normalize(v)
    ra = math.atan2(y, x) % (2 * math.pi)
    dec = math.asin(max(-1.0, min(1.0, z)))
    return ra, dec


def normalize(v):
    length = math.sqrt(sum(c * c for c in v))
    if not length:
        raise ValueError("cannot normalize a zero vector")
    return tuple(c / length for c in v)


def dot(a, b):
    return sum(x * y for x, y in zip(a, b))


def angular_separation(a, b):
    """ the angle in radians between two direction vectors. """
    cosine = dot(normalize(a), normalize(b))
    return math.acos(max(-1.0, min(1.0, cosine)))


def interpolate(a, b, fraction):
    """ linear interpolation between two vectors. """
    return tuple(x + (y - x) * fraction for x, y in zip(a, b))


def observation_time(unix_time=None):
    return Time(time.time() if unix_time is None else unix_time, format='unix')


def _sky_coord(v, frame):
    ra, dec = vector_to_radec(v)
    return SkyCoord(ra=ra * u.rad, dec=dec * u.rad, frame=frame)


def _vector(coord):
    return radec_to_vector(coord.ra.rad, coord.dec.rad)


def j2000_to_jnow(v, unix_time=None):
    jnow = _sky_coord(v, ICRS()).transform_to(TETE(obstime=observation_time(unix_time)))
    return _vector(jnow)


def jnow_to_j2000(v, unix_time=None):
    j2000 = _sky_coord(v, TETE(obstime=observation_time(unix_time))).transform_to(ICRS())
    return _vector(j2000)
