"""Small helpers shared by the message, association and consumer modules."""
import base64
import binascii
from urllib.parse import urlencode

__all__ = ['appendArgs', 'toBase64', 'fromBase64', 'Symbol']


def appendArgs(url, args):
    """Add query arguments to a URL, after any it already carries.

    @param args: a dictionary, appended in key order, or a sequence of
        pairs, appended in the given order
    @type args: Union[Dict[str, str], List[Tuple[str, str]]]

    @rtype: str
    """
    if hasattr(args, 'items'):
        args = sorted(args.items())
    query = urlencode(list(args))
    if not query:
        return url
    return url + ('&' if '?' in url else '?') + query


def toBase64(data):
    """@type data: bytes
    @rtype: str
    """
    return base64.b64encode(data).decode('ascii')


def fromBase64(text):
    """Decode base64 text received from a provider.

    @type text: str
    @rtype: bytes
    @raises ValueError: if the text is not valid base64
    """
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as error:
        raise ValueError('Invalid base64 value %r: %s' % (text, error)) from error


class Symbol(object):
    """A named sentinel, equal only to itself.

    Copies of a message keep the very sentinels of the original.
    """

    __slots__ = ('name',)

    def __init__(self, name):
        self.name = name

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __repr__(self):
        return '<Symbol %s>' % (self.name,)
