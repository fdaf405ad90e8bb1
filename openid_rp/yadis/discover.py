"""The Yadis protocol: locate and fetch the XRDS document of a URL."""
import logging

from openid_rp import fetchers
from openid_rp.errors import DiscoveryError
from openid_rp.yadis.constants import YADIS_ACCEPT_HEADER, YADIS_CONTENT_TYPE, YADIS_HEADER_NAME
from openid_rp.yadis.parsehtml import MetaNotFound, findHTMLMeta

__all__ = ['DiscoveryResult', 'discover']

_LOGGER = logging.getLogger(__name__)


class DiscoveryResult(object):
    """Contains the result of performing Yadis discovery on a URI"""

    # The URI that was passed to the fetcher
    request_uri = None

    # The result of following redirects from the request_uri
    normalized_uri = None

    # The URI from which the response text was returned (set to
    # None if there was no XRDS document found)
    xrds_uri = None

    # The content-type returned with the response_text
    content_type = None

    # The document returned from the xrds_uri
    response_text = None

    def __init__(self, request_uri):
        """Initialize the state of the object

        sets all attributes to None except the request_uri
        """
        self.request_uri = request_uri

    def usedYadisLocation(self):
        """Was the Yadis protocol's indirection used?"""
        if self.xrds_uri is None:
            return False
        return self.normalized_uri != self.xrds_uri

    def isXRDS(self):
        """Is the response text supposed to be an XRDS document?"""
        return (self.usedYadisLocation() or _mediaType(self.content_type) == YADIS_CONTENT_TYPE)


def discover(uri):
    """Discover services for a given URI.

    @param uri: The identity URI as a well-formed http or https
        URI. The well-formedness and the protocol are not checked, but
        the results of this function are undefined if those properties
        do not hold.

    @return: DiscoveryResult object

    @raises DiscoveryError: when the HTTP response does not have a 200
        code or the fetch fails.
    """
    result = DiscoveryResult(uri)
    resp = _fetch(uri, headers={'Accept': YADIS_ACCEPT_HEADER})
    if resp.status not in (200, 206):
        raise DiscoveryError(
            'HTTP Response status from identity URL host is not 200. '
            'Got status %r' % (resp.status,), resp, uri)

    # Note the URL after following redirects
    result.normalized_uri = resp.final_url

    # Attempt to find out where to go to discover the document
    # or if we already have it
    result.content_type = resp.headers.get('content-type')

    result.xrds_uri = whereIsYadis(resp)

    if result.xrds_uri and result.usedYadisLocation():
        _LOGGER.debug('Following Yadis location %s for %s', result.xrds_uri, uri)
        resp = _fetch(result.xrds_uri)
        if resp.status not in (200, 206):
            raise DiscoveryError(
                'HTTP Response status from Yadis host is not 200. '
                'Got status %r' % (resp.status,), resp, uri)
        result.content_type = resp.headers.get('content-type')

    result.response_text = resp.body
    return result


def _mediaType(content_type):
    if content_type is None:
        return None
    return content_type.split(';', 1)[0].strip().lower()


def _fetch(url, headers=None):
    try:
        return fetchers.fetch(url, headers=headers)
    except fetchers.HTTPFetchingError as error:
        raise DiscoveryError('Error fetching %s: %s' % (url, error.why), identity_url=url) from error


def whereIsYadis(resp):
    """Given a HTTPResponse, return the location of the Yadis document.

    May be the URL just retrieved, another URL, or None if no suitable URL can
    be found.

    @returns: str or None
    """
    # Attempt to find out where to go to discover the document
    # or if we already have it
    content_type = resp.headers.get('content-type')

    # The content-type must name the XRDS media type exactly,
    # otherwise we look for an indirection.
    if _mediaType(content_type) == YADIS_CONTENT_TYPE:
        return resp.final_url
    else:
        # Try the header
        yadis_loc = resp.headers.get(YADIS_HEADER_NAME.lower())

        if not yadis_loc:
            # Parse as HTML if the header is missing.
            try:
                yadis_loc = findHTMLMeta(resp.body)
            except MetaNotFound as error:
                _LOGGER.debug('No Yadis location in %s: %s', resp.final_url, error)

        return yadis_loc
