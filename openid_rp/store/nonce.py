"""One-way nonces: a UTC timestamp in C{YYYY-MM-DDTHH:MM:SSZ} form
followed by a random salt.

The timestamp bounds how long a store has to remember a nonce, the salt
makes it unique.
"""
import calendar
import string
import time

from openid_rp.cryptutil import randomString

__all__ = [
    'split',
    'mkNonce',
    'checkTimestamp',
]

NONCE_CHARS = string.ascii_letters + string.digits

# Seconds a nonce stays acceptable on either side of now, covering the
# time the user spends at the provider and the skew of its clock.
SKEW = 60 * 60 * 5

# Length of the salt of the nonces made here.
SALT_LENGTH = 16

TIME_FORMAT = '%Y-%m-%dT%H:%M:%SZ'
TIME_LENGTH = len('0000-00-00T00:00:00Z')


def split(nonce_string):
    """Split a nonce into its timestamp and its salt.

    @rtype: Tuple[int, str]
    @raises ValueError: if the nonce does not start with a valid timestamp
    """
    timestamp = calendar.timegm(time.strptime(nonce_string[:TIME_LENGTH], TIME_FORMAT))
    if timestamp < 0:
        raise ValueError('Nonce timestamp before the epoch: %r' % (nonce_string,))
    return timestamp, nonce_string[TIME_LENGTH:]


def checkTimestamp(nonce_string, allowed_skew=SKEW, now=None):
    """Is the nonce well formed and its timestamp within C{allowed_skew}
    seconds of now?

    @type now: Optional[int]
    @rtype: bool
    """
    try:
        stamp, _ = split(nonce_string)
    except ValueError:
        return False
    if now is None:
        now = time.time()
    return abs(stamp - now) <= allowed_skew


def mkNonce(when=None, salt_length=SALT_LENGTH):
    """Make a nonce stamped with C{when}, the current time by default.

    @type when: Optional[int]
    @rtype: str
    """
    stamp = time.strftime(TIME_FORMAT, time.gmtime(when))
    return stamp + randomString(salt_length, NONCE_CHARS)
