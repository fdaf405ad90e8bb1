"""Test `openid_rp.consumer.discover` module."""
import logging
import unittest
from urllib.parse import parse_qs, urlparse

import responses
from testfixtures import LogCapture

from openid_rp import fetchers
from openid_rp.consumer import discover
from openid_rp.consumer.discover import (OPENID_1_0_TYPE, OPENID_1_1_TYPE, OPENID_2_0_TYPE, OPENID_IDP_2_0_TYPE,
                                         OpenIDServiceEndpoint)
from openid_rp.errors import DiscoveryError
from openid_rp.message import OPENID1_NS, OPENID2_NS
from openid_rp.yadis import etxrd
from openid_rp.yadis.constants import YADIS_ACCEPT_HEADER

IDENTITY_URL = 'https://alice.example.test/'
PROVIDER_URL = 'https://example-provider.test/server'

HTML_PAGE = '''<html>
<head>
  <title>Alice</title>
  <link rel="openid.server" href="https://example-provider.test/openid1">
  <link rel="openid.delegate" href="https://alice.example-provider.test/">
  <link rel="openid2.provider" href="https://example-provider.test/server">
  <link rel="openid2.local_id" href="https://alice.example-provider.test/">
</head>
<body><p>Alice</p></body>
</html>
'''

XRDS_TEMPLATE = '''<?xml version="1.0" encoding="UTF-8"?>
<xrds:XRDS xmlns:xrds="xri://$xrds" xmlns="xri://$xrd*($v*2.0)" xmlns:openid="http://openid.net/xmlns/1.0">
  <XRD>
%s
  </XRD>
</xrds:XRDS>
'''

USER_SERVICES = '''
    <CanonicalID>=!1000</CanonicalID>
    <Service priority="20">
      <Type>http://openid.net/signon/1.0</Type>
      <URI>https://example-provider.test/openid1</URI>
      <openid:Delegate>https://alice.example-provider.test/</openid:Delegate>
    </Service>
    <Service priority="10">
      <Type>http://specs.openid.net/auth/2.0/signon</Type>
      <URI>https://example-provider.test/server</URI>
      <LocalID>https://alice.example-provider.test/</LocalID>
    </Service>
    <Service priority="0">
      <Type>http://example.test/not-openid</Type>
      <URI>https://example.test/service</URI>
    </Service>
'''

OP_SERVICES = '''
    <Service priority="10">
      <Type>http://specs.openid.net/auth/2.0/signon</Type>
      <URI>https://example-provider.test/server</URI>
    </Service>
    <Service priority="20">
      <Type>http://specs.openid.net/auth/2.0/server</Type>
      <URI>https://example-provider.test/server</URI>
    </Service>
'''


def makeXRDS(services):
    return XRDS_TEMPLATE % services


def parseService(service):
    """Return the only service element of an XRDS document."""
    return list(etxrd.iterServices(etxrd.parseXRDS(makeXRDS(service))))[0]


def makeEndpoint(type_uris, claimed_id=IDENTITY_URL):
    endpoint = OpenIDServiceEndpoint()
    endpoint.claimed_id = claimed_id
    endpoint.server_url = PROVIDER_URL
    endpoint.type_uris = type_uris
    return endpoint


class TestServiceEndpoint(unittest.TestCase):

    def test_preferredNamespace(self):
        self.assertEqual(makeEndpoint([OPENID_2_0_TYPE]).preferredNamespace(), OPENID2_NS)
        self.assertEqual(makeEndpoint([OPENID_IDP_2_0_TYPE]).preferredNamespace(), OPENID2_NS)
        self.assertEqual(makeEndpoint([OPENID_1_1_TYPE]).preferredNamespace(), OPENID1_NS)
        self.assertEqual(makeEndpoint([]).preferredNamespace(), OPENID1_NS)

    def test_compatibilityMode(self):
        self.assertFalse(makeEndpoint([OPENID_2_0_TYPE, OPENID_1_1_TYPE]).compatibilityMode())
        self.assertTrue(makeEndpoint([OPENID_1_0_TYPE]).compatibilityMode())

    def test_supportsType(self):
        endpoint = makeEndpoint([OPENID_IDP_2_0_TYPE])
        self.assertTrue(endpoint.isOPIdentifier())
        self.assertTrue(endpoint.supportsType(OPENID_IDP_2_0_TYPE))
        # Provider endpoints accept signon requests.
        self.assertTrue(endpoint.supportsType(OPENID_2_0_TYPE))
        self.assertFalse(endpoint.supportsType(OPENID_1_1_TYPE))
        self.assertFalse(makeEndpoint([OPENID_1_1_TYPE]).supportsType(OPENID_2_0_TYPE))

    def test_getLocalID(self):
        endpoint = makeEndpoint([OPENID_2_0_TYPE])
        self.assertEqual(endpoint.getLocalID(), IDENTITY_URL)
        endpoint.local_id = 'https://alice.example-provider.test/'
        self.assertEqual(endpoint.getLocalID(), 'https://alice.example-provider.test/')
        endpoint.local_id = None
        endpoint.canonicalID = 'xri://=!1000'
        self.assertEqual(endpoint.getLocalID(), 'xri://=!1000')

    def test_getDisplayIdentifier(self):
        self.assertEqual(makeEndpoint([], 'https://alice.example.test/#frag').getDisplayIdentifier(), IDENTITY_URL)
        self.assertIsNone(makeEndpoint([], None).getDisplayIdentifier())
        endpoint = makeEndpoint([])
        endpoint.display_identifier = '=alice'
        self.assertEqual(endpoint.getDisplayIdentifier(), '=alice')

    def test_fromOPEndpointURL(self):
        endpoint = OpenIDServiceEndpoint.fromOPEndpointURL(PROVIDER_URL)
        self.assertTrue(endpoint.isOPIdentifier())
        self.assertEqual(endpoint.server_url, PROVIDER_URL)
        self.assertIsNone(endpoint.claimed_id)
        self.assertIsNone(endpoint.getLocalID())

    def test_fromHTML(self):
        services = OpenIDServiceEndpoint.fromHTML(IDENTITY_URL, HTML_PAGE)
        self.assertEqual([s.type_uris for s in services], [[OPENID_2_0_TYPE], [OPENID_1_1_TYPE]])
        self.assertEqual([s.server_url for s in services],
                         [PROVIDER_URL, 'https://example-provider.test/openid1'])
        for service in services:
            self.assertEqual(service.claimed_id, IDENTITY_URL)
            self.assertEqual(service.local_id, 'https://alice.example-provider.test/')
            self.assertFalse(service.used_yadis)

    def test_fromHTML_no_links(self):
        self.assertEqual(OpenIDServiceEndpoint.fromHTML(IDENTITY_URL, '<html><head></head></html>'), [])
        self.assertEqual(OpenIDServiceEndpoint.fromHTML(IDENTITY_URL, b''), [])

    def test_fromXRDS(self):
        services = OpenIDServiceEndpoint.fromXRDS(IDENTITY_URL, makeXRDS(USER_SERVICES))
        self.assertEqual([s.type_uris for s in services], [[OPENID_2_0_TYPE], [OPENID_1_0_TYPE]])
        self.assertEqual([s.server_url for s in services],
                         [PROVIDER_URL, 'https://example-provider.test/openid1'])
        for service in services:
            self.assertEqual(service.claimed_id, IDENTITY_URL)
            self.assertEqual(service.local_id, 'https://alice.example-provider.test/')
            self.assertTrue(service.used_yadis)

    def test_fromXRDS_op_identifier(self):
        services = OpenIDServiceEndpoint.fromXRDS(IDENTITY_URL, makeXRDS(OP_SERVICES))
        self.assertFalse(services[0].isOPIdentifier())
        self.assertTrue(services[1].isOPIdentifier())
        self.assertIsNone(services[1].claimed_id)

    def test_fromXRDS_invalid(self):
        self.assertRaises(etxrd.XRDSError, OpenIDServiceEndpoint.fromXRDS, IDENTITY_URL, HTML_PAGE)


class TestFindLinkHrefs(unittest.TestCase):

    def test_links(self):
        hrefs = discover.findLinkHrefs(
            '<html><head>'
            '<link rel="OpenID.Server openid2.provider" href=" https://a.example.test/ ">'
            '<link rel="openid.server" href="https://b.example.test/">'
            '<link rel="stylesheet">'
            '</head><body><link rel="openid.delegate" href="https://c.example.test/"></body></html>')
        self.assertEqual(hrefs, {
            'openid.server': 'https://a.example.test/',
            'openid2.provider': 'https://a.example.test/',
        })

    def test_empty(self):
        self.assertEqual(discover.findLinkHrefs(''), {})


class TestFindOPLocalIdentifier(unittest.TestCase):

    def test_openid2(self):
        element = parseService('<Service><LocalID>https://a.test/</LocalID>'
                               '<openid:Delegate>https://b.test/</openid:Delegate></Service>')
        self.assertEqual(discover.findOPLocalIdentifier(element, [OPENID_2_0_TYPE]), 'https://a.test/')
        self.assertEqual(discover.findOPLocalIdentifier(element, [OPENID_1_1_TYPE]), 'https://b.test/')

    def test_none(self):
        element = parseService('<Service><LocalID>https://a.test/</LocalID></Service>')
        self.assertIsNone(discover.findOPLocalIdentifier(element, [OPENID_1_0_TYPE]))
        self.assertIsNone(discover.findOPLocalIdentifier(element, []))

    def test_same(self):
        element = parseService('<Service><LocalID>https://a.test/</LocalID>'
                               '<openid:Delegate>https://a.test/</openid:Delegate></Service>')
        types = [OPENID_2_0_TYPE, OPENID_1_1_TYPE]
        self.assertEqual(discover.findOPLocalIdentifier(element, types), 'https://a.test/')

    def test_conflict(self):
        element = parseService('<Service><LocalID>https://a.test/</LocalID>'
                               '<openid:Delegate>https://b.test/</openid:Delegate></Service>')
        types = [OPENID_2_0_TYPE, OPENID_1_1_TYPE]
        self.assertRaises(DiscoveryError, discover.findOPLocalIdentifier, element, types)

        element = parseService('<Service><LocalID>https://a.test/</LocalID><LocalID>https://b.test/</LocalID>'
                               '</Service>')
        self.assertRaises(DiscoveryError, discover.findOPLocalIdentifier, element, [OPENID_2_0_TYPE])


class TestArrangement(unittest.TestCase):

    def test_arrangeByType(self):
        openid1 = makeEndpoint([OPENID_1_0_TYPE])
        openid11 = makeEndpoint([OPENID_1_1_TYPE])
        openid2 = makeEndpoint([OPENID_2_0_TYPE])
        other = makeEndpoint(['http://example.test/other'])
        services = [other, openid1, openid11, openid2]
        self.assertEqual(discover.arrangeByType(services, OpenIDServiceEndpoint.openid_type_uris),
                         [openid2, openid11, openid1, other])

    def test_arrangeByType_stable(self):
        first = makeEndpoint([OPENID_2_0_TYPE], 'https://first.test/')
        second = makeEndpoint([OPENID_2_0_TYPE], 'https://second.test/')
        self.assertEqual(discover.arrangeByType([first, second], [OPENID_2_0_TYPE]), [first, second])

    def test_getOPOrUserServices(self):
        user = makeEndpoint([OPENID_2_0_TYPE])
        op = makeEndpoint([OPENID_IDP_2_0_TYPE], None)
        self.assertEqual(discover.getOPOrUserServices([user, op]), [op])
        self.assertEqual(discover.getOPOrUserServices([user]), [user])
        self.assertEqual(discover.getOPOrUserServices([]), [])


class TestNormalizeURL(unittest.TestCase):

    def test_normalize(self):
        self.assertEqual(discover.normalizeURL('HTTPS://Alice.Example.Test:443/a/../b#frag'),
                         'https://alice.example.test/b')

    def test_invalid(self):
        with self.assertRaises(DiscoveryError) as context:
            discover.normalizeURL('https://alice.example.test:99999/')
        self.assertEqual(context.exception.identity_url, 'https://alice.example.test:99999/')

    def test_normalizeXRI(self):
        self.assertEqual(discover.normalizeXRI('xri://=alice'), '=alice')
        self.assertEqual(discover.normalizeXRI('=alice'), '=alice')


class TestDiscoverURI(unittest.TestCase):

    def setUp(self):
        fetchers.setDefaultFetcher(None)

    def tearDown(self):
        fetchers.setDefaultFetcher(None)

    @responses.activate
    def test_html(self):
        responses.add(responses.GET, IDENTITY_URL, body=HTML_PAGE, content_type='text/html')
        claimed_id, services = discover.discover('  https://Alice.example.test#me ')
        self.assertEqual(claimed_id, IDENTITY_URL)
        self.assertEqual([s.server_url for s in services], [PROVIDER_URL, 'https://example-provider.test/openid1'])
        self.assertEqual(services[0].getLocalID(), 'https://alice.example-provider.test/')

    @responses.activate
    def test_bare_host(self):
        responses.add(responses.GET, 'http://alice.example.test/', body=HTML_PAGE, content_type='text/html')
        claimed_id, services = discover.discover('alice.example.test')
        self.assertEqual(claimed_id, 'http://alice.example.test/')
        self.assertEqual(len(services), 2)

    @responses.activate
    def test_redirect(self):
        responses.add(responses.GET, 'https://alice.example.test/old', status=302, headers={'Location': IDENTITY_URL})
        responses.add(responses.GET, IDENTITY_URL, body=HTML_PAGE, content_type='text/html')
        claimed_id, services = discover.discover('https://alice.example.test/old')
        # The identifier is the one the redirects lead to.
        self.assertEqual(claimed_id, IDENTITY_URL)
        self.assertEqual(services[0].claimed_id, IDENTITY_URL)

    @responses.activate
    def test_xrds(self):
        responses.add(responses.GET, IDENTITY_URL, body=makeXRDS(USER_SERVICES), content_type='application/xrds+xml')
        claimed_id, services = discover.discover(IDENTITY_URL)
        self.assertEqual(claimed_id, IDENTITY_URL)
        self.assertEqual([s.type_uris for s in services], [[OPENID_2_0_TYPE], [OPENID_1_0_TYPE]])
        self.assertTrue(all(s.used_yadis for s in services))

    @responses.activate
    def test_xrds_op_identifier(self):
        responses.add(responses.GET, 'https://example-provider.test/', body=makeXRDS(OP_SERVICES),
                      content_type='application/xrds+xml')
        claimed_id, services = discover.discover('https://example-provider.test/')
        self.assertEqual(len(services), 1)
        self.assertTrue(services[0].isOPIdentifier())
        self.assertEqual(services[0].server_url, PROVIDER_URL)

    @responses.activate
    def test_xrds_without_openid(self):
        # An XRDS without OpenID services falls back to the links of the page.
        responses.add(responses.GET, IDENTITY_URL, body=makeXRDS('<Service><Type>http://example.test/</Type>'
                                                                 '<URI>https://example.test/</URI></Service>'),
                      content_type='application/xrds+xml')
        responses.add(responses.GET, IDENTITY_URL, body=HTML_PAGE, content_type='text/html')
        claimed_id, services = discover.discover(IDENTITY_URL)
        self.assertEqual(len(responses.calls), 2)
        self.assertNotEqual(responses.calls[1].request.headers.get('Accept'), YADIS_ACCEPT_HEADER)
        self.assertEqual([s.server_url for s in services], [PROVIDER_URL, 'https://example-provider.test/openid1'])

    @responses.activate
    def test_invalid_xrds(self):
        responses.add(responses.GET, IDENTITY_URL, body='<xrds', content_type='application/xrds+xml')
        responses.add(responses.GET, IDENTITY_URL, body='<html></html>', content_type='text/html')
        claimed_id, services = discover.discover(IDENTITY_URL)
        self.assertEqual(claimed_id, IDENTITY_URL)
        self.assertEqual(services, [])

    @responses.activate
    def test_no_services(self):
        responses.add(responses.GET, IDENTITY_URL, body='<html><head></head></html>', content_type='text/html')
        self.assertEqual(discover.discover(IDENTITY_URL), (IDENTITY_URL, []))

    @responses.activate
    def test_failures(self):
        for status in (301, 404, 500):
            with self.subTest(status=status):
                responses.reset()
                responses.add(responses.GET, IDENTITY_URL, status=status)
                with self.assertRaises(DiscoveryError) as context:
                    discover.discover(IDENTITY_URL)
                self.assertEqual(context.exception.identity_url, IDENTITY_URL)

    @responses.activate
    def test_fallback_failure(self):
        responses.add(responses.GET, IDENTITY_URL, body=makeXRDS(''), content_type='application/xrds+xml')
        responses.add(responses.GET, IDENTITY_URL, status=503)
        self.assertRaises(DiscoveryError, discover.discover, IDENTITY_URL)

    def test_bad_identifiers(self):
        for identifier in ('', '   ', 'ftp://alice.example.test/', 'https://alice.example.test:99999/'):
            with self.subTest(identifier=identifier):
                self.assertRaises(DiscoveryError, discover.discover, identifier)

    def test_malformed_host(self):
        for identifier in ('http://[::1', 'https://[bad/alice', '[bad'):
            with self.subTest(identifier=identifier):
                with self.assertRaises(DiscoveryError) as context:
                    discover.discover(identifier)
                self.assertIsInstance(context.exception.__cause__, ValueError)


XRI_SERVICES = '''
    <Query>*alice</Query>
    <CanonicalID>=!1000</CanonicalID>
    <Service priority="10">
      <Type>http://specs.openid.net/auth/2.0/signon</Type>
      <URI>https://example-provider.test/server</URI>
    </Service>
'''


class TestDiscoverXRI(unittest.TestCase):

    def setUp(self):
        fetchers.setDefaultFetcher(None)

    def tearDown(self):
        fetchers.setDefaultFetcher(None)

    def proxyCallback(self, body):
        """Answer the proxy resolver query for OpenID 2.0 signon services."""
        def callback(request):
            query = parse_qs(urlparse(request.url).query)
            if query.get('_xrd_t') == [OPENID_2_0_TYPE]:
                return (200, {'Content-Type': 'application/xrds+xml'}, body)
            return (404, {}, '')
        return callback

    @responses.activate
    def test_xri(self):
        responses.add_callback(responses.GET, 'https://xri.net/=alice',
                               callback=self.proxyCallback(makeXRDS(XRI_SERVICES)))
        with LogCapture(level=logging.WARNING):
            claimed_id, services = discover.discover('xri://=alice')
        self.assertEqual(claimed_id, '=alice')
        self.assertEqual(len(services), 1)
        service = services[0]
        self.assertEqual(service.server_url, PROVIDER_URL)
        self.assertEqual(service.claimed_id, 'xri://=!1000')
        self.assertEqual(service.canonicalID, 'xri://=!1000')
        self.assertEqual(service.getLocalID(), 'xri://=!1000')
        self.assertEqual(service.getDisplayIdentifier(), '=alice')

    @responses.activate
    def test_no_canonical_id(self):
        responses.add_callback(responses.GET, 'https://xri.net/=alice',
                               callback=self.proxyCallback(makeXRDS(XRI_SERVICES.replace('CanonicalID', 'Query'))))
        with LogCapture(level=logging.WARNING):
            with self.assertRaises(DiscoveryError) as context:
                discover.discover('=alice')
        self.assertEqual(context.exception.identity_url, '=alice')

    @responses.activate
    def test_fraud(self):
        responses.add_callback(responses.GET, 'https://xri.net/=alice',
                               callback=self.proxyCallback(makeXRDS(XRI_SERVICES.replace('=!1000', '@!1000'))))
        with LogCapture(level=logging.WARNING):
            self.assertRaises(DiscoveryError, discover.discover, '=alice')

    @responses.activate
    def test_not_xrds(self):
        responses.add_callback(responses.GET, 'https://xri.net/=alice', callback=self.proxyCallback('<html/>'))
        with LogCapture(level=logging.WARNING):
            self.assertRaises(DiscoveryError, discover.discover, '=alice')
