"""Normalization of HTTP and HTTPS identifiers, RFC 3986 section 6.

Claimed identifiers and return_to URLs are compared in normal form.
"""
import string
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

__all__ = ['urinorm']

GEN_DELIMS = ':/?#[]@'
SUB_DELIMS = "!$&'()*+,;="
RESERVED = GEN_DELIMS + SUB_DELIMS
UNRESERVED = string.ascii_letters + string.digits + '-._~'
PERCENT_ENCODING_CHARACTER = '%'

_ALLOWED_CHARACTERS = frozenset(RESERVED + UNRESERVED + PERCENT_ENCODING_CHARACTER)

DEFAULT_PORTS = {'http': 80, 'https': 443}


def _checkCharacters(text, part):
    # A rough check, the URI grammar itself is not enforced.
    if not _ALLOWED_CHARACTERS.issuperset(text):
        raise ValueError('Illegal characters in URI %s: %s' % (part, text))


def remove_dot_segments(path):
    """Resolve the C{.} and C{..} segments of an absolute path."""
    segments = path.split('/')
    output = []
    for segment in segments:
        if segment == '.':
            continue
        if segment == '..':
            # The root is never popped.
            if len(output) > 1:
                output.pop()
            continue
        output.append(segment)
    if segments[-1] in ('.', '..'):
        output.append('')
    return '/'.join(output)


def _normalizeHost(split_uri):
    hostname = unquote((split_uri.hostname or '').lower())
    try:
        hostname = hostname.encode('idna').decode('ascii')
    except UnicodeError as error:
        raise ValueError('Invalid hostname %r: %s' % (hostname, error)) from error
    _checkCharacters(hostname, 'hostname')
    if ':' in hostname:
        hostname = '[%s]' % (hostname,)

    try:
        port = split_uri.port
    except ValueError as error:
        raise ValueError('Invalid port in %r: %s' % (split_uri.netloc, error)) from error
    if port is not None and port != DEFAULT_PORTS[split_uri.scheme.lower()]:
        hostname = '%s:%d' % (hostname, port)

    userinfo = ':'.join(part for part in (split_uri.username, split_uri.password) if part is not None)
    if userinfo:
        _checkCharacters(userinfo, 'userinfo')
        return userinfo + '@' + hostname
    return hostname


def urinorm(uri):
    """Normalize an HTTP or HTTPS URI.

    The scheme and the host are lowercased, IDN hosts encoded and the
    default port dropped.  Percent encoding of the path is made
    consistent and its dot segments resolved.

    @type uri: str
    @rtype: str
    @raise ValueError: If URI is invalid.
    """
    split_uri = urlsplit(uri)

    scheme = split_uri.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError('Not an absolute HTTP or HTTPS URI: %r' % (uri,))
    if not split_uri.netloc:
        raise ValueError('Not an absolute URI: %r' % (uri,))

    netloc = _normalizeHost(split_uri)

    path = remove_dot_segments(quote(unquote(split_uri.path), safe='/' + SUB_DELIMS)) or '/'
    _checkCharacters(path, 'path')

    query = urlencode(parse_qsl(split_uri.query, keep_blank_values=True))
    _checkCharacters(query, 'query')

    fragment = unquote(split_uri.fragment)
    _checkCharacters(fragment, 'fragment')

    return urlunsplit((scheme, netloc, path, query, fragment))
