# -*- test-case-name: openid_rp.test.test_consumer -*-
"""OpenID support for Relying Parties (aka Consumers).

This module documents the main interface with the OpenID consumer
library.  The only part of the library which has to be used and isn't
documented in full here is the store required to create an
C{L{Consumer}} instance.

OVERVIEW
========

    The OpenID identity verification process most commonly uses the
    following steps, as visible to the user of this library:

        1. The user enters their OpenID into a field on the consumer's
           site, and hits a login button.

        2. The consumer site discovers the user's OpenID provider using
           the Yadis protocol.

        3. The consumer site sends the browser a redirect to the
           OpenID provider.  This is the authentication request as
           described in the OpenID specification.

        4. The OpenID provider's site sends the browser a redirect
           back to the consumer site.  This redirect contains the
           provider's response to the authentication request.

    The most important part of the flow to note is the consumer's site
    must handle two separate HTTP requests in order to perform the
    full identity check.

LOGIN ATTEMPTS
==============

    Every login is a C{L{LoginAttempt}}.  The attempt is created when the
    redirect to the provider is prepared, remembers the exact return URL
    and the random nonce that were sent, and moves from C{PENDING} to
    either C{VERIFIED} or C{REJECTED} when the callback is verified.
    The attempt lives in the user's session, never in the consumer, so
    any number of logins can be verified at the same time.

    A verified callback can not be verified a second time: its nonce is
    used up and the replay is rejected with reason C{nonce-replayed}.

ERRORS
======

    Nothing in this module answers a failed check with a successful
    login.  C{L{Consumer.begin}} raises
    C{L{DiscoveryError<openid_rp.errors.DiscoveryError>}} or
    C{L{AssociationError<openid_rp.errors.AssociationError>}},
    C{L{Consumer.complete}} returns a C{L{VerificationResult}} or
    raises C{L{VerificationError<openid_rp.errors.VerificationError>}}
    with a reason code, and driving the flow out of order raises
    C{L{StateError<openid_rp.errors.StateError>}}.

STORES AND STATELESS MODE
=========================

    Associations and used nonces are kept in a store implementing
    C{L{OpenIDStore<openid_rp.store.interface.OpenIDStore>}}.  If the
    store is dumb, or negotiating an association fails and
    C{L{Consumer.allow_stateless}} is set, the request is sent without
    an association and the provider is asked to check its own
    signature with a C{check_authentication} request.
"""
import logging
import time
from urllib.parse import parse_qsl, urldefrag, urlparse

from openid_rp import fetchers, oidutil
from openid_rp.consumer.associate import AssociationManager, makeKVPost
from openid_rp.consumer.discover import OPENID_2_0_TYPE, OpenIDServiceEndpoint, discover
from openid_rp.errors import (CANCELLED, DISCOVERY_MISMATCH, EXPIRED_ASSOCIATION, MALFORMED_RESPONSE, NONCE_EXPIRED,
                              NONCE_REPLAYED, PROVIDER_ERROR, RETURN_URL_MISMATCH, SETUP_NEEDED, SIGNATURE_INVALID,
                              AssociationError, DiscoveryError, ServerError, StateError, VerificationError)
from openid_rp.extensions import ax
from openid_rp.message import BARE_NS, IDENTIFIER_SELECT, OPENID1_NS, OPENID2_NS, OPENID_NS, Message
from openid_rp.store import nonce

__all__ = ['AuthRequest', 'Consumer', 'GenericConsumer', 'LoginAttempt', 'VerificationResult',
           'NEW', 'PENDING', 'VERIFIED', 'REJECTED']

_LOGGER = logging.getLogger(__name__)

NEW = 'new'
PENDING = 'pending'
VERIFIED = 'verified'
REJECTED = 'rejected'


class LoginAttempt(object):
    """The state of a single login attempt.

    @ivar endpoint: the discovered endpoint the request is sent to
    @type endpoint: L{OpenIDServiceEndpoint}

    @ivar status: one of C{NEW}, C{PENDING}, C{VERIFIED} and C{REJECTED}.
        C{VERIFIED} and C{REJECTED} are final.

    @ivar return_to: the exact return URL sent to the provider,
        including the nonce, once the request was built
    @ivar nonce: the one-time nonce generated for this attempt
    @ivar assoc_handle: the handle of the association used to build the
        request, C{None} in stateless mode
    @ivar reason: the reason code of the rejection
    """

    def __init__(self, endpoint, assoc_handle=None):
        self.endpoint = endpoint
        self.assoc_handle = assoc_handle
        self.status = NEW
        self.created = int(time.time())
        self.return_to = None
        self.nonce = None
        self.reason = None

    @property
    def identity_url(self):
        return self.endpoint.claimed_id

    def isTerminal(self):
        return self.status in (VERIFIED, REJECTED)

    def markPending(self, return_to, rp_nonce):
        if self.status != NEW:
            raise StateError('Request for this login attempt was already built')
        self.return_to = return_to
        self.nonce = rp_nonce
        self.status = PENDING

    def markVerified(self):
        if self.status != PENDING:
            raise StateError('Login attempt in state %s can not be verified' % (self.status,))
        self.status = VERIFIED

    def markRejected(self, reason):
        # Final states never change.
        if self.isTerminal():
            return
        self.status = REJECTED
        self.reason = reason

    def __repr__(self):
        return "<%s.%s %s %r>" % (self.__class__.__module__, self.__class__.__name__,
                                  self.status, self.endpoint.claimed_id)


class Consumer(object):
    """An OpenID consumer implementation that performs discovery and
    does session management.

    @ivar consumer: an instance of an object implementing the OpenID
        protocol, but doing no discovery or session management.

    @type consumer: GenericConsumer

    @ivar session: A dictionary-like object representing the user's
        session data.  This is used for keeping state of the OpenID
        transaction when the user is redirected to the server.

    @cvar session_key_prefix: A string that is prepended to session
        keys to ensure that they are unique. This variable may be
        changed to suit your application.

    @cvar allow_stateless: Whether to fall back to stateless mode when
        no association can be negotiated with the provider.
    """
    session_key_prefix = "_openid_rp_"

    allow_stateless = True

    _attempt = 'last_attempt'

    def __init__(self, session, store, consumer_class=None):
        """Initialize a Consumer instance.

        You should create a new instance of the Consumer object with
        every HTTP request that handles OpenID transactions.

        @param session: See L{the session instance variable<openid_rp.consumer.consumer.Consumer.session>}

        @param store: an object that implements the interface in
            C{L{openid_rp.store.interface.OpenIDStore}}.

        @type store: C{L{openid_rp.store.interface.OpenIDStore}}

        @param consumer_class: The implementation of the protocol,
            C{L{GenericConsumer}} by default.

        @see: L{openid_rp.store.interface}
        """
        self.session = session
        if consumer_class is None:
            consumer_class = GenericConsumer
        self.consumer = consumer_class(store)
        self.consumer.allow_stateless = self.allow_stateless
        self._attempt_key = self.session_key_prefix + self._attempt

    def begin(self, user_url, anonymous=False):
        """Start the OpenID authentication process. See steps 1-2 in
        the overview at the top of this file.

        @param user_url: Identity URL given by the user. This method
            performs a textual transformation of the URL to try and
            make sure it is normalized. For example, a user_url of
            example.com will be normalized to http://example.com/
            normalizing and resolving any redirects the server might
            issue.

        @type user_url: str

        @param anonymous: Whether to make an anonymous request
            carrying extension data only.
        @type anonymous: bool

        @returns: An object containing the discovered information will
            be returned, with a method for building a redirect URL to
            the server, as described in step 3 of the overview. This
            object may also be used to add extension arguments to the
            request, using its
            L{addExtensionArg<openid_rp.consumer.consumer.AuthRequest.addExtensionArg>}
            method.

        @returntype: L{AuthRequest<openid_rp.consumer.consumer.AuthRequest>}

        @raises DiscoveryError: when no OpenID server can be found for
            this URL.
        @raises AssociationError: when no association can be negotiated
            and stateless mode is not allowed.
        """
        claimed_id, services = discover(user_url)
        if not services:
            raise DiscoveryError('No usable OpenID services found for %s' % (user_url,), identity_url=claimed_id)

        return self.beginWithoutDiscovery(services[0], anonymous)

    def beginWithoutDiscovery(self, service, anonymous=False):
        """Start OpenID verification without doing OpenID server
        discovery. This method is used internally by Consumer.begin
        after discovery is performed, and exists to provide an
        interface for library users needing to perform their own
        discovery.

        @param service: an OpenID service endpoint descriptor.  This
            object and factories for it are found in the
            L{openid_rp.consumer.discover} module.

        @type service:
            L{OpenIDServiceEndpoint<openid_rp.consumer.discover.OpenIDServiceEndpoint>}

        @returns: an OpenID authentication request object.

        @rtype: L{AuthRequest<openid_rp.consumer.consumer.AuthRequest>}

        @See: Openid.consumer.consumer.Consumer.begin
        @see: openid_rp.consumer.discover
        """
        auth_req = self.consumer.begin(service)
        auth_req.setAnonymous(anonymous)
        self.session[self._attempt_key] = auth_req.attempt
        return auth_req

    def getAttempt(self):
        """Return the login attempt kept in the session, if any.

        @rtype: LoginAttempt or NoneType
        """
        return self.session.get(self._attempt_key)

    def cleanup(self):
        """Forget the login attempt kept in the session."""
        self.session.pop(self._attempt_key, None)

    def complete(self, query, current_url=None):
        """Called to interpret the server's response to an OpenID
        request. It is called in step 4 of the flow described in the
        consumer overview.

        @param query: A dictionary of the query parameters for this
            HTTP request.

        @param current_url: The URL used to invoke the application.
            Extract the URL from your application's web request
            framework and specify it here to have it checked against
            the openid.return_to value in the response.

        @returns: the verified assertion
        @rtype: L{VerificationResult}

        @raises StateError: if no login attempt is in progress
        @raises VerificationError: if the response is not a valid
            positive assertion for the attempt
        """
        attempt = self.getAttempt()
        if attempt is None:
            raise StateError('No login attempt found in the session')

        try:
            self.consumer.checkAttempt(attempt)
            try:
                message = Message.fromPostArgs(query)
            except (TypeError, ValueError) as error:
                attempt.markRejected(MALFORMED_RESPONSE)
                raise VerificationError(MALFORMED_RESPONSE, 'Malformed callback: %s' % (error,),
                                        identity_url=attempt.identity_url) from error
            return self.consumer.complete(message, attempt, current_url)
        finally:
            # Store the attempt back, the session may hold a copy.
            self.session[self._attempt_key] = attempt


class GenericConsumer(object):
    """This is the implementation of the common logic for OpenID
    consumers. It is unaware of the application in which it is
    running.

    It keeps no state of its own between the requests, every login
    attempt carries its state in a L{LoginAttempt}.

    @ivar associations: the manager of associations with providers
    @type associations: L{AssociationManager}

    @cvar nonce_query_arg_name: The name of the query parameter that
        gets added to the return_to URL to carry the nonce of the login
        attempt.

    @cvar nonce_skew: The freshness window of nonces, in seconds.
    """

    nonce_query_arg_name = 'openid_rp_nonce'

    nonce_skew = nonce.SKEW

    allow_stateless = True

    def __init__(self, store, negotiator=None):
        if store is None:
            raise ValueError('A store is required to detect replayed responses')
        self.store = store
        self.associations = AssociationManager(store, negotiator)

    @property
    def negotiator(self):
        return self.associations.negotiator

    def begin(self, service_endpoint):
        """Create an authentication request for the endpoint.

        @rtype: AuthRequest

        @raises AssociationError: when no association can be negotiated
            and stateless mode is not allowed.
        """
        try:
            assoc = self.associations.getAssociation(service_endpoint)
        except AssociationError as error:
            if not self.allow_stateless:
                raise
            _LOGGER.warning('Falling back to stateless mode for %s: %s', service_endpoint.server_url, error)
            assoc = None

        request = AuthRequest(service_endpoint, assoc)
        request.nonce_query_arg_name = self.nonce_query_arg_name
        return request

    def checkAttempt(self, attempt):
        """Check the attempt can be completed.

        @raises StateError: if there is no attempt or its request was
            never built
        """
        if attempt is None:
            raise StateError('No login attempt to complete')
        if attempt.status == NEW:
            raise StateError('No redirect was built for this login attempt')

    def complete(self, message, attempt, current_url=None):
        """Verify the response of the provider to a login attempt.

        @param message: the callback, as a message
        @type message: L{Message}

        @param attempt: the login attempt the callback belongs to
        @type attempt: L{LoginAttempt}

        @param current_url: the URL the callback arrived at
        @type current_url: str or NoneType

        @rtype: L{VerificationResult}

        @raises StateError: if the attempt was never sent
        @raises VerificationError: if the response is rejected
        """
        self.checkAttempt(attempt)

        try:
            result = self._complete(message, attempt, current_url)
        except VerificationError as error:
            if error.identity_url is None:
                error.identity_url = attempt.identity_url
            attempt.markRejected(error.reason)
            _LOGGER.warning('Login attempt for %s rejected: %s', attempt.identity_url, error)
            raise

        attempt.markVerified()
        _LOGGER.info('Login attempt for %s verified', result.identity_url)
        return result

    def _complete(self, message, attempt, current_url):
        mode = message.getArg(OPENID_NS, 'mode', '<No mode set>')

        if mode == 'cancel':
            raise VerificationError(CANCELLED, 'Authentication cancelled')
        elif mode == 'error':
            error = message.getArg(OPENID_NS, 'error')
            contact = message.getArg(OPENID_NS, 'contact')
            reference = message.getArg(OPENID_NS, 'reference')
            raise VerificationError(PROVIDER_ERROR, error, contact=contact, reference=reference)
        elif message.isOpenID2() and mode == 'setup_needed':
            raise VerificationError(SETUP_NEEDED, 'Setup needed')
        elif mode == 'id_res':
            self._checkSetupNeeded(message)
            return self._doIdRes(message, attempt, current_url)
        else:
            raise VerificationError(MALFORMED_RESPONSE, 'Invalid openid.mode: %r' % (mode,))

    def _checkSetupNeeded(self, message):
        """Check an id_res message to see if it is a
        checkid_immediate cancel response.

        @raises VerificationError: if it is a checkid_immediate cancellation
        """
        if message.isOpenID1():
            # In OpenID 1, we check to see if this is a cancel from
            # immediate mode by the presence of the user_setup_url
            # parameter.
            user_setup_url = message.getArg(OPENID1_NS, 'user_setup_url')
            if user_setup_url is not None:
                raise VerificationError(SETUP_NEEDED, 'Setup needed', setup_url=user_setup_url)
        else:
            # In OpenID 2, a response carrying nothing but the mode is
            # a cancellation.
            openid_args = message.getArgs(OPENID2_NS)
            if openid_args == {'mode': 'id_res'}:
                raise VerificationError(SETUP_NEEDED, 'Setup needed')

    def _doIdRes(self, message, attempt, current_url):
        """Handle id_res responses that are not cancellations of
        immediate mode requests.

        The checks run in a fixed order, association and signature
        first, then the return URL, the asserted identity and finally
        the nonces, which are used up only when everything else holds.

        @returntype: L{VerificationResult}
        """
        endpoint = attempt.endpoint

        signed_list = self._idResCheckSignature(message, endpoint.server_url, attempt)
        # Checks for presence of appropriate fields (and checks
        # signed list fields)
        self._idResCheckForFields(message, signed_list)

        self._checkReturnTo(message, attempt, current_url)

        endpoint = self._verifyDiscoveryResults(message, endpoint)

        # A rejected attempt never verifies, its nonces are left to the store as they are.
        if attempt.status == REJECTED:
            raise StateError('Login attempt was already rejected: %s' % (attempt.reason,))

        self._idResCheckNonce(message, attempt, endpoint)

        signed_fields = ['openid.' + f for f in signed_list]
        return VerificationResult(endpoint, message, signed_fields)

    def _idResCheckSignature(self, message, server_url, attempt):
        assoc_handle = message.getArg(OPENID_NS, 'assoc_handle')
        if not (assoc_handle and message.getArg(OPENID_NS, 'sig') and message.getArg(OPENID_NS, 'signed')):
            raise VerificationError(SIGNATURE_INVALID, 'Response is not signed')

        assoc = self.associations.lookup(server_url, assoc_handle)

        if assoc is not None:
            # A known association other than the one of the request must not vouch for the response.
            if assoc_handle != attempt.assoc_handle:
                raise VerificationError(SIGNATURE_INVALID, 'Response signed with association %s, request used %s'
                                        % (assoc_handle, attempt.assoc_handle))
            try:
                valid = assoc.checkMessageSignature(message)
            except ValueError as error:
                raise VerificationError(SIGNATURE_INVALID, 'Can not check signature: %s' % (error,)) from error
            if not valid:
                raise VerificationError(SIGNATURE_INVALID, 'Bad signature')

        elif assoc_handle == attempt.assoc_handle:
            # The handle of the request is gone from the store.
            raise VerificationError(EXPIRED_ASSOCIATION, 'Association %s with %s expired'
                                    % (assoc_handle, server_url))

        else:
            # It's not an association we know about.  Stateless mode is our
            # only possible path for recovery.
            self._checkAuth(message, server_url)

        return message.getArg(OPENID_NS, 'signed').split(',')

    def _idResCheckForFields(self, message, signed_list):
        basic_fields = ['return_to', 'assoc_handle', 'sig', 'signed']
        basic_sig_fields = ['return_to', 'identity']

        require_fields = {
            OPENID2_NS: basic_fields + ['op_endpoint'],
            OPENID1_NS: basic_fields + ['identity'],
        }

        require_sigs = {
            OPENID2_NS: basic_sig_fields + ['response_nonce', 'claimed_id', 'assoc_handle', 'op_endpoint'],
            OPENID1_NS: basic_sig_fields,
        }

        if message.isOpenID1():
            openid_ns = OPENID1_NS
        else:
            openid_ns = OPENID2_NS

        for field in require_fields[openid_ns]:
            if not message.hasKey(OPENID_NS, field):
                raise VerificationError(MALFORMED_RESPONSE, 'Missing required field %r' % (field,))

        for field in require_sigs[openid_ns]:
            # Field is present and not in signed list
            if message.hasKey(OPENID_NS, field) and field not in signed_list:
                raise VerificationError(MALFORMED_RESPONSE, '"%s" not signed' % (field,))

        post_args = message.toPostArgs()
        for field in signed_list:
            if 'openid.' + field not in post_args:
                raise VerificationError(MALFORMED_RESPONSE, 'Signed field %r is missing' % (field,))

    def _checkReturnTo(self, message, attempt, current_url):
        """Check the openid.return_to of the response against the one
        sent with the request and against the URL the response arrived at.

        @raises VerificationError: if the return URL does not match
        """
        msg_return_to = message.getArg(OPENID_NS, 'return_to')
        if msg_return_to != attempt.return_to:
            raise VerificationError(RETURN_URL_MISMATCH, 'openid.return_to %r does not match the request'
                                    % (msg_return_to,))

        if current_url is None:
            return

        # Check the openid.return_to args against args in the original
        # message.
        self._verifyReturnToArgs(message.toPostArgs())

        # The URL scheme, authority, and path MUST be the same between
        # the two URLs.
        app_parts = urlparse(urldefrag(current_url)[0])
        msg_parts = urlparse(msg_return_to)
        for part in range(0, 3):
            if app_parts[part] != msg_parts[part]:
                raise VerificationError(RETURN_URL_MISMATCH, 'openid.return_to %r does not match return URL %r'
                                        % (msg_return_to, current_url))

    @staticmethod
    def _verifyReturnToArgs(query):
        """Verify that the arguments in the return_to URL are present in this
        response.
        """
        message = Message.fromPostArgs(query)
        return_to = message.getArg(OPENID_NS, 'return_to')
        if not return_to:
            raise VerificationError(RETURN_URL_MISMATCH, "no openid.return_to in query")
        parsed_url = urlparse(return_to)
        rt_query = parsed_url[4]
        for rt_key, rt_value in parse_qsl(rt_query, keep_blank_values=True):
            try:
                value = query[rt_key]
            except KeyError as error:
                raise VerificationError(RETURN_URL_MISMATCH, "return_to parameter %s absent from query"
                                        % (rt_key,)) from error
            if rt_value != value:
                raise VerificationError(RETURN_URL_MISMATCH, "parameter %s value %r does not match return_to's "
                                        "value %r" % (rt_key, value, rt_value))

        # Make sure all non-OpenID arguments in the response are also
        # in the signed return_to.
        bare_args = message.getArgs(BARE_NS)
        return_to_keys = set(k for k, _ in parse_qsl(rt_query, keep_blank_values=True))
        for pair in bare_args.items():
            if pair[0] not in return_to_keys:
                raise VerificationError(RETURN_URL_MISMATCH, 'Parameter %s not in return_to URL' % (pair[0],))

    def _verifyDiscoveryResults(self, resp_msg, endpoint):
        """Check the identity asserted by the response against the
        discovered information.

        @returns: the endpoint of the asserted identifier
        @rtype: L{OpenIDServiceEndpoint}

        @raises VerificationError: if the discovered information does
            not match the assertion
        """
        if resp_msg.isOpenID2():
            return self._verifyDiscoveryResultsOpenID2(resp_msg, endpoint)
        else:
            return self._verifyDiscoveryResultsOpenID1(resp_msg, endpoint)

    def _verifyDiscoveryResultsOpenID2(self, resp_msg, endpoint):
        to_match = OpenIDServiceEndpoint()
        to_match.type_uris = [OPENID_2_0_TYPE]
        to_match.claimed_id = resp_msg.getArg(OPENID2_NS, 'claimed_id')
        to_match.local_id = resp_msg.getArg(OPENID2_NS, 'identity')

        to_match.server_url = resp_msg.getArg(OPENID2_NS, 'op_endpoint')

        if to_match.server_url != endpoint.server_url:
            raise VerificationError(DISCOVERY_MISMATCH, 'Response came from %r, not from %r'
                                    % (to_match.server_url, endpoint.server_url))

        # claimed_id and identifier must both be present or both
        # be absent
        if (to_match.claimed_id is None and to_match.local_id is not None):
            raise VerificationError(MALFORMED_RESPONSE, 'openid.identity is present without openid.claimed_id')

        elif (to_match.claimed_id is not None and to_match.local_id is None):
            raise VerificationError(MALFORMED_RESPONSE, 'openid.claimed_id is present without openid.identity')

        # This is a response without identifiers, so there's really no
        # checking that we can do, so return an endpoint that's for
        # the specified `openid.op_endpoint'
        elif to_match.claimed_id is None:
            return OpenIDServiceEndpoint.fromOPEndpointURL(to_match.server_url)

        if to_match.claimed_id == IDENTIFIER_SELECT:
            raise VerificationError(MALFORMED_RESPONSE, 'Provider asserted the identifier select placeholder')

        # The claimed ID doesn't match, so we have to do discovery
        # again. This covers not using sessions, OP identifier
        # endpoints and responses that didn't match the original
        # request.
        if endpoint.isOPIdentifier() or urldefrag(to_match.claimed_id)[0] != endpoint.claimed_id:
            _LOGGER.debug('Claimed ID %r differs from the request, doing discovery', to_match.claimed_id)
            endpoint = self._discoverAndVerify(to_match.claimed_id, to_match)
        else:
            self._verifyDiscoverySingle(endpoint, to_match)

        # The claimed ID of the result carries the fragment the
        # provider asserted.
        if endpoint.claimed_id != to_match.claimed_id:
            endpoint = _copyEndpoint(endpoint)
            endpoint.claimed_id = to_match.claimed_id
        return endpoint

    def _verifyDiscoveryResultsOpenID1(self, resp_msg, endpoint):
        identity = resp_msg.getArg(OPENID1_NS, 'identity')
        if identity is None:
            raise VerificationError(MALFORMED_RESPONSE, 'Missing required field openid.identity')

        if endpoint.getLocalID() != identity:
            raise VerificationError(DISCOVERY_MISMATCH, 'Mismatch between delegate (%r) and server (%r) response'
                                    % (endpoint.getLocalID(), identity))
        return endpoint

    def _verifyDiscoverySingle(self, endpoint, to_match):
        """Verify that the given endpoint matches the information
        extracted from the OpenID assertion, and raise an exception if
        there is a mismatch.

        @type endpoint: openid_rp.consumer.discover.OpenIDServiceEndpoint
        @type to_match: openid_rp.consumer.discover.OpenIDServiceEndpoint

        @raises VerificationError: when the endpoint does not match the
            discovered information.
        """
        # Every type URI that's in the to_match endpoint has to be
        # present in the discovered endpoint.
        for type_uri in to_match.type_uris:
            if not endpoint.supportsType(type_uri):
                raise VerificationError(DISCOVERY_MISMATCH, 'Type %r not discovered for %r'
                                        % (type_uri, endpoint.claimed_id))

        # Fragments do not influence discovery, so we can't compare a
        # claimed identifier with a fragment to discovered information.
        defragged_claimed_id = urldefrag(to_match.claimed_id)[0]
        if defragged_claimed_id != endpoint.claimed_id:
            raise VerificationError(DISCOVERY_MISMATCH, 'Claimed ID does not match (different subjects!), '
                                    'Expected %s, got %s' % (defragged_claimed_id, endpoint.claimed_id))

        if to_match.getLocalID() != endpoint.getLocalID():
            raise VerificationError(DISCOVERY_MISMATCH, 'local_id mismatch. Expected %s, got %s'
                                    % (to_match.getLocalID(), endpoint.getLocalID()))

        # If the server URL is None, this must be an OpenID 1
        # response, because op_endpoint is a required parameter in
        # OpenID 2. In that case, we don't actually care what the
        # discovered server_url is, because signature checking or
        # check_auth should take care of that check for us.
        if to_match.server_url is not None and to_match.server_url != endpoint.server_url:
            raise VerificationError(DISCOVERY_MISMATCH, 'OP Endpoint mismatch. Expected %s, got %s'
                                    % (to_match.server_url, endpoint.server_url))

    def _discoverAndVerify(self, claimed_id, to_match):
        """Given an endpoint object created from the information in an
        OpenID response, perform discovery and verify the discovery
        results, returning the matching endpoint that is the result of
        doing that discovery.

        @raises VerificationError: when discovery fails or no
            discovered endpoint matches.
        """
        try:
            _, services = discover(claimed_id)
        except DiscoveryError as error:
            raise VerificationError(DISCOVERY_MISMATCH, 'Discovery on %s failed: %s' % (claimed_id, error)) from error

        for endpoint in services:
            try:
                self._verifyDiscoverySingle(endpoint, to_match)
            except VerificationError as error:
                _LOGGER.debug('Discovered endpoint %r does not match: %s', endpoint, error)
            else:
                return endpoint

        raise VerificationError(DISCOVERY_MISMATCH, 'No matching endpoint found after discovering %s' % (claimed_id,))

    def _idResGetReturnToNonce(self, message):
        """Extract the nonce of the login attempt from the return_to
        URL of the response.

        @returns: The nonce as a string or None
        """
        return_to = message.getArg(OPENID_NS, 'return_to')
        if return_to is None:
            return None

        query = urlparse(return_to)[4]
        for k, v in parse_qsl(query):
            if k == self.nonce_query_arg_name:
                return v

        return None

    def _idResCheckNonce(self, message, attempt, endpoint):
        rp_nonce = self._idResGetReturnToNonce(message)
        if rp_nonce is None:
            raise VerificationError(MALFORMED_RESPONSE, 'Nonce missing from return_to')
        if rp_nonce != attempt.nonce:
            raise VerificationError(RETURN_URL_MISMATCH, 'Nonce does not belong to this login attempt')

        if message.isOpenID2():
            response_nonce = message.getArg(OPENID2_NS, 'response_nonce')
            if response_nonce is None:
                raise VerificationError(MALFORMED_RESPONSE, 'Response nonce missing')
            # Parse and check freshness of both before using any of them.
            rp_stamp = self._checkNonce(rp_nonce)
            response_stamp = self._checkNonce(response_nonce)
            self._useNonce('', rp_stamp)
            self._useNonce(endpoint.server_url, response_stamp)
        else:
            self._useNonce('', self._checkNonce(rp_nonce))

    def _checkNonce(self, nonce_string):
        """Parse the nonce and check its freshness.

        @return: timestamp and salt of the nonce
        @rtype: Tuple[int, str]
        """
        try:
            timestamp, salt = nonce.split(nonce_string)
        except ValueError as error:
            raise VerificationError(MALFORMED_RESPONSE, 'Malformed nonce %r' % (nonce_string,)) from error

        if not nonce.checkTimestamp(nonce_string, self.nonce_skew):
            raise VerificationError(NONCE_EXPIRED, 'Nonce %r is expired' % (nonce_string,))

        return timestamp, salt

    def _useNonce(self, server_url, stamp):
        timestamp, salt = stamp
        if not self.store.useNonce(server_url, timestamp, salt):
            raise VerificationError(NONCE_REPLAYED, 'Nonce already used')

    def _checkAuth(self, message, server_url):
        """Ask the provider to check its own signature.

        @raises VerificationError: unless the provider confirms the signature
        """
        request = self._createCheckAuthRequest(message)
        _LOGGER.debug('Using check_authentication with %s', server_url)
        try:
            response = makeKVPost(request, server_url)
        except (fetchers.HTTPFetchingError, ServerError, ValueError) as error:
            raise VerificationError(SIGNATURE_INVALID, 'check_authentication failed: %s' % (error,)) from error
        self._processCheckAuthResponse(response, server_url)

    def _createCheckAuthRequest(self, message):
        """Generate a check_authentication request message given an
        id_res message.
        """
        check_auth_message = message.copy()
        check_auth_message.setArg(OPENID_NS, 'mode', 'check_authentication')
        return check_auth_message

    def _processCheckAuthResponse(self, response, server_url):
        """Process the response message from a check_authentication
        request, invalidating associations if requested.
        """
        is_valid = response.getArg(OPENID_NS, 'is_valid', 'false')

        invalidate_handle = response.getArg(OPENID_NS, 'invalidate_handle')
        if invalidate_handle is not None:
            self.associations.invalidate(server_url, invalidate_handle)

        if is_valid != 'true':
            raise VerificationError(SIGNATURE_INVALID, 'Server denied check_authentication')


def _copyEndpoint(endpoint):
    copied = OpenIDServiceEndpoint()
    copied.__dict__.update(endpoint.__dict__)
    copied.type_uris = list(endpoint.type_uris)
    return copied


class AuthRequest(object):
    """An OpenID authentication request, ready to be sent to the provider.

    @ivar attempt: the login attempt this request starts
    @type attempt: L{LoginAttempt}

    @ivar return_to_args: extra arguments to add to the return URL
    @type return_to_args: Dict[str, str]
    """

    nonce_query_arg_name = GenericConsumer.nonce_query_arg_name

    def __init__(self, endpoint, assoc):
        """
        Creates a new AuthRequest object.  This just stores each
        argument in an appropriately named field.

        Users of this library should not create instances of this
        class.  Instances of this class are created by the library
        when needed.
        """
        self.assoc = assoc
        self.endpoint = endpoint
        if assoc is None:
            assoc_handle = None
        else:
            assoc_handle = assoc.handle
        self.attempt = LoginAttempt(endpoint, assoc_handle)
        self.return_to_args = {}
        self.message = Message(endpoint.preferredNamespace())
        self._anonymous = False

    def setAnonymous(self, is_anonymous):
        """Set whether this request should be made anonymously. If a
        request is anonymous, the identifier will not be sent in the
        request. This is only useful if you are making another kind of
        request with an extension in this request.

        Anonymous requests are not allowed when the request is made
        with OpenID 1.

        @raises ValueError: when attempting to set an OpenID1 request
            as anonymous
        """
        if is_anonymous and self.message.isOpenID1():
            raise ValueError('OpenID 1 requests MUST include the identifier in the request')
        else:
            self._anonymous = is_anonymous

    def addExtension(self, extension_request):
        """Add an extension to this checkid request.

        @param extension_request: An object that implements the
            extension interface for adding arguments to an OpenID
            message.
        @type extension_request: L{openid_rp.extension.Extension}
        """
        extension_request.toMessage(self.message)

    def addExtensionArg(self, namespace, key, value):
        """Add an extension argument to this OpenID authentication
        request.

        Use caution when adding arguments, because they will be
        URL-escaped and appended to the redirect URL, which can easily
        get quite long.

        @param namespace: The namespace for the extension. For
            example, the attribute exchange extension uses the
            namespace C{http://openid.net/srv/ax/1.0}.

        @type namespace: str

        @param key: The key within the extension namespace.

        @type key: str

        @param value: The value to provide to the server for this
            argument.

        @type value: str
        """
        self.message.setArg(namespace, key, value)

    def getMessage(self, realm, return_to, immediate=False):
        """Produce a L{openid_rp.message.Message} representing this request.

        A fresh nonce is appended to the return URL and the login
        attempt becomes pending.  A request can be built only once.

        @param realm: The URL (or URL pattern) that identifies your
            web site to the user when she is authorizing it.

        @type realm: str

        @param return_to: The URL that the OpenID provider will send the
            user back to after attempting to verify her identity.

        @type return_to: str

        @param immediate: If True, the OpenID provider is to send back
            a response immediately, useful for behind-the-scenes
            authentication attempts.  Otherwise the OpenID provider
            may engage the user before providing a response.  This is
            the default case, as the user may need to provide
            credentials or approve the request before a positive
            response can be sent.

        @type immediate: bool

        @returntype: L{openid_rp.message.Message}

        @raises ValueError: if no return_to is given
        @raises StateError: if the request was already built
        """
        if not return_to:
            raise ValueError('"return_to" is mandatory')
        if self.attempt.status != NEW:
            raise StateError('Request for this login attempt was already built')

        rp_nonce = nonce.mkNonce()
        return_to_args = dict(self.return_to_args)
        return_to_args[self.nonce_query_arg_name] = rp_nonce
        return_to = oidutil.appendArgs(return_to, return_to_args)

        if immediate:
            mode = 'checkid_immediate'
        else:
            mode = 'checkid_setup'

        message = self.message.copy()
        if message.isOpenID1():
            realm_key = 'trust_root'
        else:
            realm_key = 'realm'

        message.updateArgs(OPENID_NS, {
            realm_key: realm,
            'mode': mode,
            'return_to': return_to,
        })

        if not self._anonymous:
            if self.endpoint.isOPIdentifier():
                # This will never happen when we're in compatibility
                # mode, as long as isOPIdentifier() returns False
                # whenever preferredNamespace() returns OPENID1_NS.
                claimed_id = request_identity = IDENTIFIER_SELECT
            else:
                request_identity = self.endpoint.getLocalID()
                claimed_id = self.endpoint.claimed_id

            # This is true for both OpenID 1 and 2
            message.setArg(OPENID_NS, 'identity', request_identity)

            if message.isOpenID2():
                message.setArg(OPENID2_NS, 'claimed_id', claimed_id)

        if self.assoc:
            message.setArg(OPENID_NS, 'assoc_handle', self.assoc.handle)

        self.attempt.markPending(return_to, rp_nonce)
        _LOGGER.debug('Built %s request to %s', mode, self.endpoint.server_url)
        return message

    def redirectURL(self, realm, return_to, immediate=False):
        """Returns a URL with an encoded OpenID request.

        The resulting URL is the OpenID provider's endpoint URL with
        parameters appended as query arguments.  You should redirect
        the user agent to this URL.

        @see: L{getMessage}

        @returns: The URL to redirect the user agent to.
        @returntype: str
        """
        message = self.getMessage(realm, return_to, immediate)
        return message.toURL(self.endpoint.server_url)


class VerificationResult(object):
    """A verified positive assertion.  Indicates that the OpenID
    provider confirmed that the supplied identifier is, indeed,
    controlled by the requesting agent.

    @ivar identity_url: The identity URL that has been authenticated,
        C{None} for an anonymous request.

    @ivar endpoint: The endpoint that authenticated the identifier.  You
        may access other discovered information related to this endpoint,
        such as the CanonicalID of an XRI, through this object.
    @type endpoint: L{OpenIDServiceEndpoint<openid_rp.consumer.discover.OpenIDServiceEndpoint>}

    @ivar signed_fields: The arguments in the server's response that
        were signed and verified.

    @ivar signature_valid: Always C{True}, results exist only for valid
        signatures.

    @ivar ax_response: the signed attribute exchange fetch response, if any
    @type ax_response: L{ax.FetchResponse} or NoneType

    @ivar attributes: attributes of a signed attribute exchange fetch
        response, keyed by their alias.  Attributes without values are
        left out.
    @type attributes: Dict[str, List[str]]
    """

    signature_valid = True

    def __init__(self, endpoint, message, signed_fields=None):
        self.endpoint = endpoint
        self.identity_url = endpoint.claimed_id

        self.message = message

        if signed_fields is None:
            signed_fields = []
        self.signed_fields = signed_fields

        self.ax_response = self._extractFetchResponse()
        if self.ax_response is None:
            self.attributes = {}
        else:
            self.attributes = self.ax_response.getAttributesByAlias()

    def _extractFetchResponse(self):
        try:
            return ax.FetchResponse.fromSuccessResponse(self)
        except (ax.AXError, KeyError) as error:
            _LOGGER.warning('Ignoring malformed attribute exchange response: %s', error)
            return None

    def isOpenID1(self):
        """Was this authentication response an OpenID 1 authentication
        response?
        """
        return self.message.isOpenID1()

    def isSigned(self, ns_uri, ns_key):
        """Return whether a particular key is signed, regardless of
        its namespace alias
        """
        return self.message.getKey(ns_uri, ns_key) in self.signed_fields

    def getSigned(self, ns_uri, ns_key, default=None):
        """Return the specified signed field if available,
        otherwise return default
        """
        if self.isSigned(ns_uri, ns_key):
            return self.message.getArg(ns_uri, ns_key, default)
        else:
            return default

    def getSignedNS(self, ns_uri):
        """Get signed arguments from the response message.  Return a
        dict of all arguments in the specified namespace.  If any of
        the arguments are not signed, return None.
        """
        msg_args = self.message.getArgs(ns_uri)

        for key in msg_args.keys():
            if not self.isSigned(ns_uri, key):
                _LOGGER.info("Extension %s: key %s not signed!", ns_uri, key)
                return None

        return msg_args

    def extensionResponse(self, namespace_uri, require_signed):
        """Return response arguments in the specified namespace.

        @param namespace_uri: The namespace URI of the arguments to be
        returned.

        @param require_signed: True if the arguments should be among
        those signed in the response, False if you don't care.

        If require_signed is True and the arguments are not signed,
        return None.
        """
        if require_signed:
            return self.getSignedNS(namespace_uri)
        else:
            return self.message.getArgs(namespace_uri)

    def getReturnTo(self):
        """Get the openid.return_to argument from this response.

        @returns: The return_to URL supplied to the server on the
            initial request, or C{None} if the response did not contain
            an C{openid.return_to} argument.

        @returntype: str
        """
        return self.getSigned(OPENID_NS, 'return_to')

    def getDisplayIdentifier(self):
        """Return the display identifier for this response.
        """
        return self.endpoint.getDisplayIdentifier()

    def __repr__(self):
        return "<%s.%s id=%r signed=%r>" % (self.__class__.__module__, self.__class__.__name__,
                                            self.identity_url, self.signed_fields)
