"""XRI resolution through a proxy resolver."""
import logging
from urllib.parse import urlencode

from openid_rp import fetchers
from openid_rp.yadis import etxrd
from openid_rp.yadis.constants import YADIS_CONTENT_TYPE
from openid_rp.yadis.xri import toURINormal

__all__ = ['ProxyResolver']

_LOGGER = logging.getLogger(__name__)

DEFAULT_PROXY = 'https://xri.net/'


class ProxyResolver(object):
    """Resolve XRIs by asking an HTTP proxy resolver for their XRDS."""

    def __init__(self, proxy_url=DEFAULT_PROXY):
        self.proxy_url = proxy_url

    def queryURL(self, xri, service_type=None):
        """Build a URL to query the proxy resolver.

        @param xri: An XRI to resolve.
        @type xri: str

        @param service_type: The service type to resolve, if you desire
            service endpoint selection.  A service type is a URI.
        @type service_type: str

        @returns: a URL
        @returntype: str
        """
        # Trim off the xri:// prefix, the proxy resolver does not accept it.
        qxri = toURINormal(xri)[6:]
        hxri = self.proxy_url + qxri
        args = {
            '_xrd_r': YADIS_CONTENT_TYPE,
        }
        if service_type:
            args['_xrd_t'] = service_type
        else:
            # Don't perform service endpoint selection.
            args['_xrd_r'] += ';sep=false'
        return _appendArgs(hxri, args)

    def query(self, xri, service_types):
        """Resolve some services for an XRI.

        Note: I don't implement any service endpoint selection beyond what
        the resolver I'm querying does, so the Services I return may well
        include Services that were not of the types you asked for.

        May raise fetchers.HTTPFetchingError or L{etxrd.XRDSError} if
        the fetching or parsing don't go so well.

        @param xri: An XRI to resolve.
        @type xri: str

        @param service_types: A list of services types to query for. Service
            types are URIs.
        @type service_types: list of str

        @returns: tuple of (CanonicalID, Service elements)
        @returntype: (str, list of C{lxml.etree._Element})
        """
        services = []
        # Make a seperate request to the proxy resolver for each service
        # type, as, if it is following Refs, it could return a different
        # XRDS for each.

        canonicalID = None

        for service_type in service_types:
            url = self.queryURL(xri, service_type)
            response = fetchers.fetch(url)
            if response.status not in (200, 206):
                _LOGGER.warning('Proxy resolver returned status %s for %s', response.status, url)
                continue
            et = etxrd.parseXRDS(response.body)
            canonicalID = etxrd.getCanonicalID(xri, et)
            services.extend(etxrd.iterServices(et))
        return canonicalID, services


def _appendArgs(url, args):
    """Append some arguments to an HTTP query.
    """
    args = sorted(args.items())
    if len(args) == 0:
        return url
    # According to XRI Resolution section "QXRI query parameters":
    # "If the original QXRI had a null query component (only a leading
    # question mark), or a query component consisting of only question
    # marks, one additional leading question mark MUST be added when
    # adding any XRI resolution parameters."
    if '?' in url.rstrip('?'):
        sep = '&'
    else:
        sep = '?'
    return '%s%s%s' % (url, sep, urlencode(args))
