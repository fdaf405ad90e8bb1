"""Test utilities."""
from openid_rp import message
from openid_rp.association import Association
from openid_rp.consumer.discover import OPENID_2_0_TYPE, OPENID_IDP_2_0_TYPE, OpenIDServiceEndpoint
from openid_rp.store import nonce

PROVIDER_URL = 'https://example-provider.test/server'
CLAIMED_ID = 'https://example-provider.test/alice'
RETURN_TO = 'https://app.test/callback'
REALM = 'https://app.test/'


class OpenIDTestMixin(object):
    """Mixin providing custom asserts."""

    def assertOpenIDValueEqual(self, msg, key, expected, ns=None):
        """Check OpenID message contains key with expected value."""
        if ns is None:
            ns = message.OPENID_NS

        actual = msg.getArg(ns, key)
        error_format = 'Wrong value for openid.%s: expected=%s, actual=%s'
        error_message = error_format % (key, expected, actual)
        self.assertEqual(actual, expected, error_message)

    def assertOpenIDKeyMissing(self, msg, key, ns=None):
        if ns is None:
            ns = message.OPENID_NS

        error_message = 'openid.%s unexpectedly present' % key
        self.assertFalse(msg.hasKey(ns, key), error_message)


def makeEndpoint(claimed_id=CLAIMED_ID, server_url=PROVIDER_URL, local_id=None, type_uris=None):
    """Create an endpoint as discovery would."""
    endpoint = OpenIDServiceEndpoint()
    endpoint.claimed_id = claimed_id
    endpoint.server_url = server_url
    endpoint.local_id = local_id
    if type_uris is None:
        type_uris = [OPENID_2_0_TYPE]
    endpoint.type_uris = type_uris
    return endpoint


def makeOPEndpoint(server_url=PROVIDER_URL):
    """Create an OP identifier endpoint."""
    return makeEndpoint(None, server_url, type_uris=[OPENID_IDP_2_0_TYPE])


def makeAssociation(handle='{HMAC-SHA256}{alice}', lifetime=3600, assoc_type='HMAC-SHA256'):
    if assoc_type == 'HMAC-SHA256':
        secret = b'\x2a' * 32
    else:
        secret = b'\x2a' * 20
    return Association.fromExpiresIn(lifetime, handle, secret, assoc_type)


def signMessage(assoc, msg):
    """Sign every OpenID argument of the message with the association, as providers do."""
    msg.setArg(message.OPENID_NS, 'assoc_handle', assoc.handle)
    fields = [key[len('openid.'):] for key in msg.toPostArgs() if key.startswith('openid.')]
    msg.setArg(message.OPENID_NS, 'signed', ','.join(sorted(fields + ['signed'])))
    msg.setArg(message.OPENID_NS, 'sig', assoc.getMessageSignature(msg))
    return msg


class FakeProvider(object):
    """Answers authentication requests the way an OpenID provider does,
    signing its assertions with a known association.
    """

    def __init__(self, server_url=PROVIDER_URL, assoc=None):
        if assoc is None:
            assoc = makeAssociation()
        self.server_url = server_url
        self.assoc = assoc

    def positiveAssertion(self, request, claimed_id=None, local_id=None, extra=None, response_nonce=None):
        """Build the arguments of a signed positive assertion for the request.

        @param request: the request message of the relying party
        @type request: L{message.Message}

        @param extra: additional arguments, keyed by their full name
        @type extra: Dict[str, str]

        @rtype: Dict[str, str]
        """
        if claimed_id is None:
            claimed_id = request.getArg(message.OPENID_NS, 'claimed_id')
        if local_id is None:
            local_id = request.getArg(message.OPENID_NS, 'identity')
        if response_nonce is None:
            response_nonce = nonce.mkNonce()

        args = {
            'openid.ns': message.OPENID2_NS,
            'openid.mode': 'id_res',
            'openid.op_endpoint': self.server_url,
            'openid.return_to': request.getArg(message.OPENID_NS, 'return_to'),
            'openid.response_nonce': response_nonce,
            'openid.assoc_handle': self.assoc.handle,
        }
        if claimed_id is not None:
            args['openid.claimed_id'] = claimed_id
            args['openid.identity'] = local_id
        if extra:
            args.update(extra)

        response = message.Message.fromPostArgs(args)
        return signMessage(self.assoc, response).toPostArgs()

    def openID1Assertion(self, request, extra=None):
        """Build the arguments of a signed OpenID 1.1 positive assertion."""
        args = {
            'openid.mode': 'id_res',
            'openid.identity': request.getArg(message.OPENID_NS, 'identity'),
            'openid.return_to': request.getArg(message.OPENID_NS, 'return_to'),
            'openid.assoc_handle': self.assoc.handle,
        }
        if extra:
            args.update(extra)
        response = message.Message.fromPostArgs(args)
        return signMessage(self.assoc, response).toPostArgs()
