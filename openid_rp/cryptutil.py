"""Integers and random strings in the encodings OpenID messages use."""
import random
import string

from openid_rp.oidutil import fromBase64, toBase64

__all__ = [
    'base64ToLong',
    'longToBase64',
    'int_to_bytes',
    'bytes_to_int',
    'randomString',
]

_system_random = random.SystemRandom()

DEFAULT_RANDOM_CHARS = string.ascii_letters + string.digits


def bytes_to_int(value):
    """@type value: bytes
    @rtype: int
    """
    return int.from_bytes(value, 'big')


def int_to_bytes(value):
    """Encode a non-negative integer as the C{btwoc} of the OpenID
    specification: big-endian two's complement in as few bytes as
    possible.

    See http://openid.net/specs/openid-authentication-2_0.html#btwoc

    @type value: int
    @rtype: bytes
    """
    # One more byte than the bits need keeps the sign bit clear.
    return value.to_bytes(value.bit_length() // 8 + 1, 'big')


def longToBase64(value):
    return toBase64(int_to_bytes(value))


def base64ToLong(text):
    return bytes_to_int(fromBase64(text))


def randomString(length, chrs=DEFAULT_RANDOM_CHARS):
    """Random string from the operating system's random source."""
    return ''.join(_system_random.choice(chrs) for _ in range(length))
