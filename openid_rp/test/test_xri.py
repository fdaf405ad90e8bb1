"""Test `openid_rp.yadis.xri` module."""
import unittest

from openid_rp.yadis import xri


class XriDiscoveryTestCase(unittest.TestCase):

    def test_isXRI(self):
        i = xri.identifierScheme
        self.assertEqual(i('=john.smith'), 'XRI')
        self.assertEqual(i('@smiths/john'), 'XRI')
        self.assertEqual(i('!!1000'), 'XRI')
        self.assertEqual(i('+contact'), 'XRI')
        self.assertEqual(i('$v*2.0'), 'XRI')
        self.assertEqual(i('(=john)'), 'XRI')
        self.assertEqual(i('xri://=john'), 'XRI')
        self.assertEqual(i('https://example.test/'), 'URI')
        self.assertEqual(i('example.test'), 'URI')
        self.assertEqual(i(''), 'URI')


class XriEscapingTestCase(unittest.TestCase):

    def test_scheme(self):
        self.assertEqual(xri.toIRINormal('@example'), 'xri://@example')
        self.assertEqual(xri.toIRINormal('xri://@example'), 'xri://@example')

    def test_escaping_percents(self):
        self.assertEqual(xri.escapeForIRI('@example/abc%2Fd/ef'), '@example/abc%252Fd/ef')

    def test_escaping_xref(self):
        # no escapes
        esc = xri.escapeForIRI
        self.assertEqual(esc('@example/foo/(@bar)'), '@example/foo/(@bar)')
        # escape slashes
        self.assertEqual(esc('@example/foo/(@bar/baz)'), '@example/foo/(@bar%2Fbaz)')
        self.assertEqual(esc('@example/foo/(@bar/baz)/(+a/b)'), '@example/foo/(@bar%2Fbaz)/(+a%2Fb)')
        # escape query ? and fragment #
        self.assertEqual(esc('@example/foo/(@baz?p=q#r)?i=j#k'), '@example/foo/(@baz%3Fp=q%23r)?i=j#k')

    def test_iriToURI(self):
        self.assertEqual(xri.iriToURI('xri://=élève'), 'xri://=%C3%A9l%C3%A8ve')
        self.assertEqual(xri.iriToURI('xri://@example/a%20b?c=d#e'), 'xri://@example/a%20b?c=d#e')

    def test_toURINormal(self):
        self.assertEqual(xri.toURINormal('=é/(+a/b)'), 'xri://=%C3%A9/(+a%2Fb)')


class ProviderIsAuthoritativeTestCase(unittest.TestCase):

    def test_equals(self):
        self.assertTrue(xri.providerIsAuthoritative('=', '=!698.74D1.A1F2.86C7'))

    def test_subauthority(self):
        self.assertTrue(xri.providerIsAuthoritative('=!1234', '=!1234!ABCD'))

    def test_wrongRoot(self):
        self.assertFalse(xri.providerIsAuthoritative('@', '=!1234'))

    def test_deeperSubauthority(self):
        self.assertFalse(xri.providerIsAuthoritative('=', '=!1234!ABCD'))


class RootAuthorityTestCase(unittest.TestCase):

    def test_rootAuthority(self):
        cases = [
            ('@foo', 'xri://@'),
            ('@foo/bar', 'xri://@'),
            ('xri://@foo*bar', 'xri://@'),
            ('=john.smith', 'xri://='),
            ('!!1000!de21.4536.2cb2.8074', 'xri://!'),
            ('(=foo)/bar', 'xri://(=foo)'),
            ('xri://(=foo)*bar/baz', 'xri://(=foo)'),
            ('example.test*foo!bar/baz', 'xri://example.test'),
        ]
        for identifier, root in cases:
            with self.subTest(identifier=identifier):
                self.assertEqual(xri.rootAuthority(identifier), xri.XRI(root))

    def test_XRI(self):
        self.assertEqual(xri.XRI('=john'), 'xri://=john')
        self.assertEqual(xri.XRI('xri://=john'), 'xri://=john')
