"""Negotiating, caching and looking up associations with OpenID providers."""
import logging

from cryptography.hazmat.primitives import hashes

from openid_rp import fetchers, oidutil
from openid_rp.association import Association, getSecretSize
from openid_rp.dh import DiffieHellman
from openid_rp.errors import AssociationError, ProtocolError, ServerError
from openid_rp.message import OPENID1_NS, OPENID2_NS, OPENID_NS, Message, no_default

__all__ = ['AssociationManager', 'SessionNegotiator', 'default_negotiator', 'encrypted_negotiator', 'makeKVPost']

_LOGGER = logging.getLogger(__name__)


# Session types each association type can be negotiated with.
SESSION_TYPES = {
    'HMAC-SHA256': ('DH-SHA256', 'no-encryption'),
    'HMAC-SHA1': ('DH-SHA1', 'no-encryption'),
}


class SessionNegotiator(object):
    """The association and session types a relying party accepts.

    The manager asks providers for the first pair.  A provider that does
    not support it may suggest another pair, which is tried once if it
    is allowed here as well.

    @ivar allowed_types: (assoc_type, session_type) pairs, most preferred first
    @type allowed_types: List[Tuple[str, str]]
    """

    def __init__(self, allowed_types):
        for assoc_type, session_type in allowed_types:
            if session_type not in SESSION_TYPES.get(assoc_type, ()):
                raise ValueError('Session type %r not valid for association type %r' % (session_type, assoc_type))
        self.allowed_types = list(allowed_types)

    def isAllowed(self, assoc_type, session_type):
        return (assoc_type, session_type) in self.allowed_types

    def getAllowedType(self):
        """The preferred pair, C{(None, None)} when nothing is allowed."""
        if not self.allowed_types:
            return None, None
        return self.allowed_types[0]


default_negotiator = SessionNegotiator([
    ('HMAC-SHA256', 'DH-SHA256'),
    ('HMAC-SHA256', 'no-encryption'),
    ('HMAC-SHA1', 'DH-SHA1'),
    ('HMAC-SHA1', 'no-encryption'),
])

# Never sends the MAC key in the clear.
encrypted_negotiator = SessionNegotiator([
    ('HMAC-SHA256', 'DH-SHA256'),
    ('HMAC-SHA1', 'DH-SHA1'),
])


def makeKVPost(request_message, server_url):
    """Make a Direct Request to an OpenID Provider and return the
    result as a Message object.

    @raises fetchers.HTTPFetchingError: if the request fails or the
        provider answers with an unexpected status
    @raises ServerError: if the provider answers with an error message
    @rtype: openid_rp.message.Message
    """
    resp = fetchers.fetch(server_url, body=request_message.toURLEncoded())

    if resp.status == 400:
        raise ServerError.fromMessage(Message.fromKVForm(resp.body))
    elif resp.status != 200:
        raise fetchers.HTTPFetchingError('bad status code from server %s: %s' % (server_url, resp.status))

    return Message.fromKVForm(resp.body)


class DiffieHellmanSHA1ConsumerSession(object):
    session_type = 'DH-SHA1'
    hash_algorithm = hashes.SHA1
    allowed_assoc_types = ['HMAC-SHA1']

    def __init__(self, dh=None):
        if dh is None:
            dh = DiffieHellman.fromDefaults()

        self.dh = dh

    def getRequest(self):
        args = {'dh_consumer_public': self.dh.public_key}

        if not self.dh.usingDefaultValues():
            modulus, generator = self.dh.parameters
            args.update({
                'dh_modulus': modulus,
                'dh_gen': generator,
            })

        return args

    def extractSecret(self, response):
        dh_server_public64 = response.getArg(OPENID_NS, 'dh_server_public', no_default)
        enc_mac_key64 = response.getArg(OPENID_NS, 'enc_mac_key', no_default)
        return self.dh.xorSecret(dh_server_public64, oidutil.fromBase64(enc_mac_key64), self.hash_algorithm())


class DiffieHellmanSHA256ConsumerSession(DiffieHellmanSHA1ConsumerSession):
    session_type = 'DH-SHA256'
    hash_algorithm = hashes.SHA256
    allowed_assoc_types = ['HMAC-SHA256']


class PlainTextConsumerSession(object):
    session_type = 'no-encryption'
    allowed_assoc_types = ['HMAC-SHA1', 'HMAC-SHA256']

    def getRequest(self):
        return {}

    def extractSecret(self, response):
        mac_key64 = response.getArg(OPENID_NS, 'mac_key', no_default)
        return oidutil.fromBase64(mac_key64)


class AssociationManager(object):
    """Keeps the associations of a relying party with OpenID providers.

    Associations are shared by all login attempts through the store, so
    an instance holds no per-attempt state and may be shared too.

    @ivar store: the store the associations are kept in, or C{None}
        for stateless operation.
    @type store: L{openid_rp.store.interface.OpenIDStore}

    @ivar negotiator: the association and session types this relying
        party is willing to use.
    @type negotiator: L{SessionNegotiator}
    """

    session_types = {
        'DH-SHA1': DiffieHellmanSHA1ConsumerSession,
        'DH-SHA256': DiffieHellmanSHA256ConsumerSession,
        'no-encryption': PlainTextConsumerSession,
    }

    def __init__(self, store, negotiator=None):
        self.store = store
        if negotiator is None:
            negotiator = default_negotiator
        self.negotiator = negotiator

    def isStateless(self):
        """Whether no associations can be kept at all."""
        return self.store is None or self.store.isDumb()

    def getAssociation(self, endpoint):
        """Get an association for the endpoint's server_url.

        First try seeing if we have a good association in the
        store. If we do not, then attempt to negotiate an association
        with the server.

        @returns: A valid association for the endpoint's server_url or
            C{None} in stateless mode
        @rtype: openid_rp.association.Association or NoneType

        @raises AssociationError: if a new association can not be
            negotiated
        """
        if self.isStateless():
            return None

        assoc = self.store.getAssociation(endpoint.server_url)

        if assoc is None or assoc.isExpired():
            assoc = self.associate(endpoint)

        return assoc

    def lookup(self, server_url, handle):
        """Return the stored association of the provider with this
        handle, or C{None} if it is unknown or expired.

        @rtype: openid_rp.association.Association or NoneType
        """
        if self.isStateless():
            return None
        assoc = self.store.getAssociation(server_url, handle)
        if assoc is not None and assoc.isExpired():
            # The store should not return these, evict it ourselves.
            self.store.removeAssociation(server_url, handle)
            return None
        return assoc

    def invalidate(self, server_url, handle):
        """Forget the association, the provider told us it is no longer valid.

        @return: whether the association was known
        @rtype: bool
        """
        if self.isStateless():
            return False
        _LOGGER.info('Invalidating association %s with %s', handle, server_url)
        return self.store.removeAssociation(server_url, handle)

    def associate(self, endpoint):
        """Make association requests to the server, creating and
        storing a new association.

        @returns: a new association object
        @rtype: openid_rp.association.Association

        @raises AssociationError: if no association could be negotiated
        """
        # Get our preferred session/association type from the negotiatior.
        assoc_type, session_type = self.negotiator.getAllowedType()
        if assoc_type is None:
            raise AssociationError('No association type is allowed', endpoint.server_url)

        try:
            assoc = self._requestAssociation(endpoint, assoc_type, session_type)
        except ServerError as why:
            # Any error message whose code is not 'unsupported-type'
            # should be considered a total failure.
            if why.error_code != 'unsupported-type' or why.message.isOpenID1():
                raise AssociationError(
                    'Server error when requesting an association from %r: %s' % (endpoint.server_url, why.error_text),
                    endpoint.server_url) from why

            # The server didn't like the association/session type
            # that we sent, and it sent us back a message that
            # might tell us how to handle it.
            _LOGGER.warning('Unsupported association type %s: %s', assoc_type, why.error_text)

            # Extract the session_type and assoc_type from the
            # error message
            assoc_type = why.message.getArg(OPENID_NS, 'assoc_type')
            session_type = why.message.getArg(OPENID_NS, 'session_type')

            if assoc_type is None or session_type is None:
                raise AssociationError('Server responded with unsupported association session but did not supply '
                                       'a fallback.', endpoint.server_url) from why
            elif not self.negotiator.isAllowed(assoc_type, session_type):
                raise AssociationError('Server sent unsupported session/association type: session_type=%s, '
                                       'assoc_type=%s' % (session_type, assoc_type), endpoint.server_url) from why

            # Attempt to create an association from the assoc_type
            # and session_type that the server told us it
            # supported.
            try:
                assoc = self._requestAssociation(endpoint, assoc_type, session_type)
            except ServerError as why:
                # Do not keep trying, since it rejected the
                # association type that it told us to use.
                raise AssociationError('Server %s refused its suggested association type: session_type=%s, '
                                       'assoc_type=%s' % (endpoint.server_url, session_type, assoc_type),
                                       endpoint.server_url) from why

        self.store.storeAssociation(endpoint.server_url, assoc)
        _LOGGER.info('Created %s association %s with %s', assoc.assoc_type, assoc.handle, endpoint.server_url)
        return assoc

    def _requestAssociation(self, endpoint, assoc_type, session_type):
        """Make and process one association request to this endpoint's
        OP endpoint URL.

        @returns: An association object.

        @raises ServerError: if the provider answered with an error
        @raises AssociationError: on any other failure
        """
        assoc_session, args = self._createAssociateRequest(endpoint, assoc_type, session_type)

        _LOGGER.debug('Requesting %s/%s association from %s', assoc_type, session_type, endpoint.server_url)
        try:
            response = makeKVPost(args, endpoint.server_url)
        except fetchers.HTTPFetchingError as why:
            raise AssociationError('openid.associate request failed: %s' % (why,), endpoint.server_url) from why
        except ValueError as why:
            raise AssociationError('Malformed association response from %s: %s' % (endpoint.server_url, why),
                                   endpoint.server_url) from why

        try:
            return self._extractAssociation(response, assoc_session)
        except KeyError as why:
            raise AssociationError('Missing required parameter in response from %s: %s'
                                   % (endpoint.server_url, why.args[0]), endpoint.server_url) from why
        except ProtocolError as why:
            raise AssociationError('Protocol error parsing response from %s: %s' % (endpoint.server_url, why),
                                   endpoint.server_url) from why

    def _createAssociateRequest(self, endpoint, assoc_type, session_type):
        """Create an association request for the given assoc_type and
        session_type.

        @param endpoint: The endpoint whose server_url will be
            queried. The important bit about the endpoint is whether
            it's in compatiblity mode (OpenID 1.1)

        @param assoc_type: The association type that the request
            should ask for.
        @type assoc_type: str

        @param session_type: The session type that should be used in
            the association request. The session_type is used to
            create an association session object, and that session
            object is asked for any additional fields that it needs to
            add to the request.
        @type session_type: str

        @returns: a pair of the association session object and the
            request message that will be sent to the server.
        @rtype: (association session type (depends on session_type),
                 openid_rp.message.Message)
        """
        session_type_class = self.session_types[session_type]
        assoc_session = session_type_class()

        args = {
            'mode': 'associate',
            'assoc_type': assoc_type,
        }

        if not endpoint.compatibilityMode():
            args['ns'] = OPENID2_NS

        # Leave out the session type if we're in compatibility mode
        # *and* it's no-encryption.
        if (not endpoint.compatibilityMode() or assoc_session.session_type != 'no-encryption'):
            args['session_type'] = assoc_session.session_type

        args.update(assoc_session.getRequest())
        message = Message.fromOpenIDArgs(args)
        return assoc_session, message

    def _getOpenID1SessionType(self, assoc_response):
        """Given an association response message, extract the OpenID
        1.X session type.

        This function mostly takes care of the 'no-encryption' default
        behavior in OpenID 1.

        If the association type is plain-text, this function will
        return 'no-encryption'

        @returns: The association type for this message
        @rtype: str
        """
        # If it's an OpenID 1 message, allow session_type to default
        # to None (which signifies "no-encryption")
        session_type = assoc_response.getArg(OPENID1_NS, 'session_type')

        # Handle the differences between no-encryption association
        # respones in OpenID 1 and 2:

        # no-encryption is not really a valid session type for
        # OpenID 1, but we'll accept it anyway, while issuing a
        # warning.
        if session_type == 'no-encryption':
            _LOGGER.warning('OpenID server sent "no-encryption" for OpenID 1.X')

        # Missing or empty session type is the way to flag a
        # 'no-encryption' response. Change the session type to
        # 'no-encryption' so that it can be handled in the same
        # way as OpenID 2 'no-encryption' respones.
        elif session_type == '' or session_type is None:
            session_type = 'no-encryption'

        return session_type

    def _extractAssociation(self, assoc_response, assoc_session):
        """Attempt to extract an association from the response, given
        the association response message and the established
        association session.

        @param assoc_response: The association response message from
            the server
        @type assoc_response: openid_rp.message.Message

        @param assoc_session: The association session object that was
            used when making the request
        @type assoc_session: depends on the session type of the request

        @raises ProtocolError: if data is malformed
        @raises KeyError: if a field is missing

        @rtype: openid_rp.association.Association
        """
        # Extract the common fields from the response, raising an
        # exception if they are not found
        assoc_type = assoc_response.getArg(OPENID_NS, 'assoc_type', no_default)
        assoc_handle = assoc_response.getArg(OPENID_NS, 'assoc_handle', no_default)

        # expires_in is a base-10 string. The Python parsing will
        # accept literals that have whitespace around them and will
        # accept negative values. Neither of these are really in-spec,
        # but we think it's OK to accept them.
        expires_in_str = assoc_response.getArg(OPENID_NS, 'expires_in', no_default)
        try:
            expires_in = int(expires_in_str)
        except ValueError as e:
            raise ProtocolError('Invalid expires_in field: %s' % (e,)) from e

        # OpenID 1 has funny association session behaviour.
        if assoc_response.isOpenID1():
            session_type = self._getOpenID1SessionType(assoc_response)
        else:
            session_type = assoc_response.getArg(OPENID2_NS, 'session_type', no_default)

        # Session type mismatch
        if assoc_session.session_type != session_type:
            if (assoc_response.isOpenID1() and session_type == 'no-encryption'):
                # In OpenID 1, any association request can result in a
                # 'no-encryption' association response. Setting
                # assoc_session to a new no-encryption session should
                # make the rest of this function work properly for
                # that case.
                assoc_session = PlainTextConsumerSession()
            else:
                # Any other mismatch, regardless of protocol version
                # results in the failure of the association session
                # altogether.
                fmt = 'Session type mismatch. Expected %r, got %r'
                message = fmt % (assoc_session.session_type, session_type)
                raise ProtocolError(message)

        # Make sure assoc_type is valid for session_type
        if assoc_type not in assoc_session.allowed_assoc_types:
            fmt = 'Unsupported assoc_type for session %s returned: %s'
            raise ProtocolError(fmt % (assoc_session.session_type, assoc_type))

        # Delegate to the association session to extract the secret
        # from the response, however is appropriate for that session
        # type.
        try:
            secret = assoc_session.extractSecret(assoc_response)
        except ValueError as why:
            fmt = 'Malformed response for %s session: %s'
            raise ProtocolError(fmt % (assoc_session.session_type, why)) from why

        if len(secret) != getSecretSize(assoc_type):
            raise ProtocolError('Secret of length %d does not match %s' % (len(secret), assoc_type))

        return Association.fromExpiresIn(expires_in, assoc_handle, secret, assoc_type)
