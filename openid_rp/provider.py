# -*- test-case-name: openid_rp.test.test_provider -*-
"""Login with OpenID, the way an application uses a social login
provider.

    provider = OpenIdProvider({'id': 'https://example.com/alice'}, session)
    redirect(provider.getLoginRedirectURL('https://app.example/callback'))

    # In the callback
    profile = provider.verifyResponse(request.GET, request.url)
"""
import logging
from urllib.parse import urlparse

from openid_rp.consumer.consumer import Consumer
from openid_rp.errors import StateError
from openid_rp.profile import profileFetchRequest, profileFromAX
from openid_rp.store.memstore import MemoryStore

__all__ = ['OpenIdProvider']

_LOGGER = logging.getLogger(__name__)

# Store of the providers created without one.  The redirect and the
# callback of a login usually run on different instances.
DEFAULT_STORE = MemoryStore()


def defaultRealm(return_to):
    """The realm of a return URL, its scheme and authority.

    @rtype: str
    """
    parts = urlparse(return_to)
    return '%s://%s/' % (parts.scheme, parts.netloc)


class OpenIdProvider(object):
    """Authenticate a user with the OpenID identifier given in C{props}
    and read the profile the provider sends back.

    @ivar props: the configuration, C{props['id']} is the identifier
        supplied by the user and C{props['realm']} optionally overrides
        the realm derived from the return URL
    @ivar consumer: the consumer keeping the login attempt in the session
    @type consumer: L{Consumer}

    Providers created without a store share C{DEFAULT_STORE}.
    """

    provider_id = 'openid'

    def __init__(self, props, session, store=None):
        if store is None:
            store = DEFAULT_STORE
        self.props = props
        self.consumer = Consumer(session, store)

    def getLoginRedirectURL(self, redirect_uri):
        """Start a login, asking the provider for the profile of the user.

        @param redirect_uri: the URL the provider sends the user back to
        @type redirect_uri: str

        @returns: the URL to redirect the user to
        @rtype: str

        @raises DiscoveryError: if no provider is found for the identifier
        @raises AssociationError: if no association can be made and
            stateless mode is disabled
        """
        auth_request = self.consumer.begin(self.props['id'])
        auth_request.addExtension(profileFetchRequest())

        realm = self.props.get('realm') or defaultRealm(redirect_uri)
        url = auth_request.redirectURL(realm, redirect_uri)
        _LOGGER.debug('Redirecting %s to %s', self.props['id'], auth_request.endpoint.server_url)
        return url

    def verifyResponse(self, query, current_url=None):
        """Verify the response of the provider.

        @param query: the arguments of the callback
        @type query: Dict[str, str]

        @param current_url: the URL the callback arrived at
        @type current_url: str

        @rtype: L{Profile<openid_rp.profile.Profile>}

        @raises StateError: if no login was started
        @raises VerificationError: if the response is rejected
        """
        if self.consumer.getAttempt() is None:
            raise StateError('No login was started with this provider')

        result = self.consumer.complete(query, current_url)
        return profileFromAX(result.ax_response, result.identity_url, self.provider_id)

    def logout(self):
        """Forget the login attempt."""
        self.consumer.cleanup()
