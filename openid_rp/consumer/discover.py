"""Functions to discover OpenID endpoints from identifiers.
"""
import logging
from urllib.parse import urldefrag, urlparse

from openid_rp import fetchers, urinorm
from openid_rp.errors import DiscoveryError
from openid_rp.message import OPENID1_NS as OPENID_1_0_MESSAGE_NS, OPENID2_NS as OPENID_2_0_MESSAGE_NS
from openid_rp.yadis import etxrd, xri, xrires
from openid_rp.yadis.discover import discover as yadisDiscover
from openid_rp.yadis.etxrd import XRD_NS_2_0, XRDSError, nsTag
from openid_rp.yadis.parsehtml import parseHTML

__all__ = [
    'DiscoveryError',
    'OPENID_1_0_NS',
    'OPENID_1_0_TYPE',
    'OPENID_1_1_TYPE',
    'OPENID_2_0_TYPE',
    'OPENID_IDP_2_0_TYPE',
    'OpenIDServiceEndpoint',
    'discover',
]

_LOGGER = logging.getLogger(__name__)

OPENID_1_0_NS = 'http://openid.net/xmlns/1.0'
OPENID_IDP_2_0_TYPE = 'http://specs.openid.net/auth/2.0/server'
OPENID_2_0_TYPE = 'http://specs.openid.net/auth/2.0/signon'
OPENID_1_1_TYPE = 'http://openid.net/signon/1.1'
OPENID_1_0_TYPE = 'http://openid.net/signon/1.0'


class OpenIDServiceEndpoint(object):
    """Object representing an OpenID service endpoint.

    @ivar claimed_id: the identifier the user claims, C{None} for an
        OP identifier (identifier select) endpoint.
    @ivar server_url: the OP endpoint URL.
    @ivar local_id: the OP-local identifier, if it differs from the
        claimed identifier.
    @ivar canonicalID: For XRI, the persistent identifier.
    """

    # OpenID service type URIs, listed in order of preference.  The
    # ordering of this list affects yadis and XRI service discovery.
    openid_type_uris = [
        OPENID_IDP_2_0_TYPE,

        OPENID_2_0_TYPE,
        OPENID_1_1_TYPE,
        OPENID_1_0_TYPE,
    ]

    def __init__(self):
        self.claimed_id = None
        self.server_url = None
        self.type_uris = []
        self.local_id = None
        self.canonicalID = None
        self.used_yadis = False  # whether this came from an XRDS
        self.display_identifier = None

    def usesExtension(self, extension_uri):
        return extension_uri in self.type_uris

    def preferredNamespace(self):
        if (OPENID_IDP_2_0_TYPE in self.type_uris or OPENID_2_0_TYPE in self.type_uris):
            return OPENID_2_0_MESSAGE_NS
        else:
            return OPENID_1_0_MESSAGE_NS

    def supportsType(self, type_uri):
        """Does this endpoint support this type?

        I consider C{/server} endpoints to implicitly support C{/signon}.
        """
        return ((type_uri in self.type_uris) or
                (type_uri == OPENID_2_0_TYPE and self.isOPIdentifier()))

    def getDisplayIdentifier(self):
        """Return the display_identifier if set, else return the claimed_id.
        """
        if self.display_identifier is not None:
            return self.display_identifier
        if self.claimed_id is None:
            return None
        else:
            return urldefrag(self.claimed_id)[0]

    def compatibilityMode(self):
        return self.preferredNamespace() != OPENID_2_0_MESSAGE_NS

    def isOPIdentifier(self):
        return OPENID_IDP_2_0_TYPE in self.type_uris

    def parseService(self, yadis_url, uri, type_uris, service_element):
        """Set the state of this object based on the contents of the
        service element."""
        self.type_uris = type_uris
        self.server_url = uri
        self.used_yadis = True

        if not self.isOPIdentifier():
            # A Service element that contains both 'server' and 'signon'
            # types is treated as an OP identifier.
            self.local_id = findOPLocalIdentifier(service_element, self.type_uris)
            self.claimed_id = yadis_url

    def getLocalID(self):
        """Return the identifier that should be sent as the
        openid.identity parameter to the server."""
        if (self.local_id is self.canonicalID is None):
            return self.claimed_id
        else:
            return self.local_id or self.canonicalID

    @classmethod
    def fromServiceElement(cls, yadis_url, type_uris, uri, service_element):
        """Create a new instance of this class from a parsed XRDS
        service element.

        @return: None or OpenIDServiceEndpoint for this service element
        """
        # If any Type URIs match and there is an endpoint URI
        # specified, then this is an OpenID endpoint
        if uri is None or not set(type_uris).intersection(cls.openid_type_uris):
            return None

        openid_endpoint = cls()
        openid_endpoint.parseService(yadis_url, uri, type_uris, service_element)
        return openid_endpoint

    @classmethod
    def fromXRDS(cls, uri, xrds):
        """Parse the given document as XRDS looking for OpenID services.

        @rtype: [OpenIDServiceEndpoint]

        @raises XRDSError: When the XRDS does not parse.
        """
        et = etxrd.parseXRDS(xrds)
        endpoints = []
        for type_uris, service_uri, service_element in etxrd.expandServices(etxrd.iterServices(et)):
            endpoint = cls.fromServiceElement(uri, type_uris, service_uri, service_element)
            if endpoint is not None:
                endpoints.append(endpoint)
        return endpoints

    @classmethod
    def fromHTML(cls, uri, html):
        """Parse the given document as HTML looking for an OpenID <link
        rel=...>

        @rtype: [OpenIDServiceEndpoint]
        """
        discovery_types = [
            (OPENID_2_0_TYPE, 'openid2.provider', 'openid2.local_id'),
            (OPENID_1_1_TYPE, 'openid.server', 'openid.delegate'),
        ]

        link_hrefs = findLinkHrefs(html)
        services = []
        for type_uri, op_endpoint_rel, local_id_rel in discovery_types:
            op_endpoint_url = link_hrefs.get(op_endpoint_rel)
            if op_endpoint_url is None:
                continue

            service = cls()
            service.claimed_id = uri
            service.local_id = link_hrefs.get(local_id_rel)
            service.server_url = op_endpoint_url
            service.type_uris = [type_uri]

            services.append(service)

        return services

    @classmethod
    def fromOPEndpointURL(cls, op_endpoint_url):
        """Construct an OP-Identifier OpenIDServiceEndpoint object for
        a given OP Endpoint URL

        @param op_endpoint_url: The URL of the endpoint
        @rtype: OpenIDServiceEndpoint
        """
        service = cls()
        service.server_url = op_endpoint_url
        service.type_uris = [OPENID_IDP_2_0_TYPE]
        return service

    def __repr__(self):
        return ("<%s.%s server_url=%r claimed_id=%r local_id=%r canonicalID=%r used_yadis=%s >"
                % (self.__class__.__module__, self.__class__.__name__,
                   self.server_url, self.claimed_id, self.local_id, self.canonicalID, self.used_yadis))


def findLinkHrefs(html):
    """Find the first C{href} for every relation of the C{<link>}
    elements in the head of an HTML page.

    @type html: bytes or str
    @return: mapping from lower-cased relation to the href
    @rtype: Dict[str, str]
    """
    hrefs = {}
    tree = parseHTML(html)
    if tree is None:
        return hrefs

    for link in tree.iterfind('.//head/link'):
        href = link.get('href')
        if href is None:
            continue
        for rel in link.get('rel', '').lower().split():
            hrefs.setdefault(rel, href.strip())
    return hrefs


def findOPLocalIdentifier(service_element, type_uris):
    """Find the OP-Local Identifier for this xrd:Service element.

    This considers openid:Delegate to be a synonym for xrd:LocalID if
    both OpenID 1.X and OpenID 2.0 types are present. If only OpenID
    1.X is present, it returns the value of openid:Delegate. If only
    OpenID 2.0 is present, it returns the value of xrd:LocalID. If
    there is more than one LocalID tag and the values are different,
    it raises a DiscoveryError. This is also triggered when the
    xrd:LocalID and openid:Delegate tags are different.

    @param service_element: The xrd:Service element
    @type service_element: lxml.etree._Element

    @param type_uris: The xrd:Type values present in this service
        element. This function could extract them, but higher level
        code needs to do that anyway.
    @type type_uris: [str]

    @raises DiscoveryError: if the service element holds conflicting
        local identifiers.

    @returns: The OP-Local Identifier for this service element, if one
        is present, or None otherwise.
    @rtype: str or NoneType
    """
    # Build the list of tags that could contain the OP-Local Identifier
    local_id_tags = []
    if (OPENID_1_1_TYPE in type_uris or OPENID_1_0_TYPE in type_uris):
        local_id_tags.append(nsTag(OPENID_1_0_NS, 'Delegate'))

    if OPENID_2_0_TYPE in type_uris:
        local_id_tags.append(nsTag(XRD_NS_2_0, 'LocalID'))

    # Walk through all the matching tags and make sure that they all
    # have the same value
    local_id = None
    for local_id_tag in local_id_tags:
        for local_id_element in service_element.findall(local_id_tag):
            if local_id is None:
                local_id = local_id_element.text
            elif local_id != local_id_element.text:
                message = 'More than one %r tag found in one service element' % (local_id_tag,)
                raise DiscoveryError(message)

    return local_id


def normalizeURL(url):
    """Normalize a URL, converting normalization failures to
    DiscoveryError"""
    try:
        normalized = urinorm.urinorm(url)
    except ValueError as why:
        raise DiscoveryError('Normalizing identifier: %s' % (why,), identity_url=url) from why
    else:
        return urldefrag(normalized)[0]


def normalizeXRI(xri):
    """Normalize an XRI, stripping its xri:// scheme if present"""
    if xri.startswith("xri://"):
        xri = xri[6:]
    return xri


def arrangeByType(service_list, preferred_types):
    """Rearrange service_list in a new list so services are ordered by
    types listed in preferred_types.  Return the new list."""

    def bestMatchingService(service):
        """Return the index of the first matching type, or something
        higher if no type matches.

        This provides an ordering in which service elements that
        contain a type that comes earlier in the preferred types list
        come before service elements that come later. If a service
        element has more than one type, the most preferred one wins.
        """
        for i, t in enumerate(preferred_types):
            if t in service.type_uris:
                return i

        return len(preferred_types)

    # Build a list with the service elements in tuples whose
    # comparison will prefer the one with the best matching service
    prio_services = sorted((bestMatchingService(s), orig_index, s)
                           for (orig_index, s) in enumerate(service_list))

    # Now that the services are sorted by priority, remove the sort
    # keys from the list.
    return [s for (_, _, s) in prio_services]


def getOPOrUserServices(openid_services):
    """Extract OP Identifier services.  If none found, return the
    rest, sorted with most preferred first according to
    OpenIDServiceEndpoint.openid_type_uris.

    openid_services is a list of OpenIDServiceEndpoint objects.

    Returns a list of OpenIDServiceEndpoint objects."""

    op_services = [s for s in openid_services if s.isOPIdentifier()]

    openid_services = arrangeByType(openid_services, OpenIDServiceEndpoint.openid_type_uris)

    return op_services or openid_services


def discoverYadis(uri):
    """Discover OpenID services for a URI. Tries Yadis and falls back
    on old-style <link rel='...'> discovery if Yadis fails.

    @param uri: normalized identity URL
    @type uri: str

    @return: (claimed_id, services)
    @rtype: (str, list(OpenIDServiceEndpoint))

    @raises DiscoveryError: when no document came back for the URI
    """
    # A failure to fetch anything for the URI is not recovered by
    # falling back to HTML discovery on the same URI.
    response = yadisDiscover(uri)

    yadis_url = response.normalized_uri
    body = response.response_text
    try:
        openid_services = OpenIDServiceEndpoint.fromXRDS(yadis_url, body)
    except XRDSError as error:
        # Does not parse as a Yadis XRDS file
        _LOGGER.debug('No XRDS at %s: %s', yadis_url, error)
        openid_services = []

    if not openid_services:
        # Either not an XRDS or there are no OpenID services.

        if response.isXRDS():
            # if we got the Yadis content-type or followed the Yadis
            # header, re-fetch the document without following the Yadis
            # header, with no Accept header.
            return discoverNoYadis(uri)

        # Try to parse the response as HTML.
        # <link rel="...">
        openid_services = OpenIDServiceEndpoint.fromHTML(yadis_url, body)

    return (yadis_url, getOPOrUserServices(openid_services))


def discoverXRI(iname):
    """Discover OpenID services for an XRI through the proxy resolver.

    @return: (claimed_id, services)
    @rtype: (str, list(OpenIDServiceEndpoint))

    @raises DiscoveryError: when the XRI does not resolve
    """
    endpoints = []
    iname = normalizeXRI(iname)
    try:
        canonicalID, services = xrires.ProxyResolver().query(iname, OpenIDServiceEndpoint.openid_type_uris)
    except fetchers.HTTPFetchingError as error:
        raise DiscoveryError('Error resolving XRI %s: %s' % (iname, error.why), identity_url=iname) from error
    except XRDSError as error:
        raise DiscoveryError('XRDS error on %s: %s' % (iname, error), identity_url=iname) from error

    if canonicalID is None:
        raise DiscoveryError('No CanonicalID found for XRI %r' % (iname,), identity_url=iname)

    for type_uris, uri, service_element in etxrd.expandServices(services):
        endpoint = OpenIDServiceEndpoint.fromServiceElement(iname, type_uris, uri, service_element)
        if endpoint is not None:
            endpoints.append(endpoint)

    for endpoint in endpoints:
        endpoint.canonicalID = canonicalID
        endpoint.claimed_id = canonicalID
        endpoint.display_identifier = iname

    return iname, getOPOrUserServices(endpoints)


def discoverNoYadis(uri):
    """Discover OpenID services from the C{<link>} elements of the page.

    @raises DiscoveryError: when the page can not be fetched
    """
    try:
        http_resp = fetchers.fetch(uri)
    except fetchers.HTTPFetchingError as error:
        raise DiscoveryError('Error fetching %s: %s' % (uri, error.why), identity_url=uri) from error
    if http_resp.status not in (200, 206):
        raise DiscoveryError(
            'HTTP Response status from identity URL host is not 200. '
            'Got status %r' % (http_resp.status,), http_resp, uri)

    claimed_id = http_resp.final_url
    openid_services = OpenIDServiceEndpoint.fromHTML(claimed_id, http_resp.body)
    return claimed_id, getOPOrUserServices(openid_services)


def discoverURI(uri):
    """Discover OpenID services for an HTTP(S) identifier.

    A bare host name is taken as an http URL.

    @return: (claimed_id, services), the claimed identifier normalized
        and without fragment
    @raises DiscoveryError: when the identifier is malformed or discovery fails
    """
    try:
        parsed = urlparse(uri)
    except ValueError as why:
        raise DiscoveryError('Malformed identifier: %s' % (why,), identity_url=uri) from why
    if parsed[0] and parsed[1]:
        if parsed[0] not in ['http', 'https']:
            raise DiscoveryError('URI scheme is not HTTP or HTTPS', identity_url=uri)
    else:
        uri = 'http://' + uri

    uri = normalizeURL(uri)
    claimed_id, openid_services = discoverYadis(uri)
    claimed_id = normalizeURL(claimed_id)
    _LOGGER.debug('Discovered %d OpenID services for %s', len(openid_services), claimed_id)
    return claimed_id, openid_services


def discover(identifier):
    """Discover the OpenID services of a user-supplied identifier.

    @param identifier: URL or XRI
    @type identifier: str

    @return: (claimed_id, services) with services ordered from the most
        preferred
    @rtype: (str, list(OpenIDServiceEndpoint))

    @raises DiscoveryError: on any failure; discovery is never retried.
    """
    if not identifier or not identifier.strip():
        raise DiscoveryError('Empty identifier')
    identifier = identifier.strip()
    if xri.identifierScheme(identifier) == "XRI":
        return discoverXRI(identifier)
    else:
        return discoverURI(identifier)
