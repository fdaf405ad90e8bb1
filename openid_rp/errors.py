"""Exceptions raised by the relying party.

Every failure of a login attempt is reported with one of these; the
library never turns a failed verification into a verified identity.
"""
from openid_rp.message import OPENID_NS

__all__ = [
    'OpenIDError',
    'DiscoveryError',
    'AssociationError',
    'VerificationError',
    'StateError',
    'ProtocolError',
    'ServerError',
]

EXPIRED_ASSOCIATION = 'expired-association'
SIGNATURE_INVALID = 'signature-invalid'
RETURN_URL_MISMATCH = 'return-url-mismatch'
NONCE_REPLAYED = 'nonce-replayed'
NONCE_EXPIRED = 'nonce-expired'
MALFORMED_RESPONSE = 'malformed-response'
DISCOVERY_MISMATCH = 'discovery-mismatch'
CANCELLED = 'cancelled'
PROVIDER_ERROR = 'provider-error'
SETUP_NEEDED = 'setup-needed'


class OpenIDError(Exception):
    """Base class of the errors raised by this library."""


class DiscoveryError(OpenIDError):
    """Raised when a user-supplied identifier can not be resolved to
    an OpenID provider endpoint.

    @ivar identity_url: the identifier that was being discovered
    @ivar http_response: the HTTP response that caused the failure,
        when one was received
    """

    def __init__(self, message, http_response=None, identity_url=None):
        OpenIDError.__init__(self, message)
        self.http_response = http_response
        self.identity_url = identity_url


class AssociationError(OpenIDError):
    """Raised when an association can not be negotiated with a provider.

    @ivar server_url: the provider endpoint
    """

    def __init__(self, message, server_url=None):
        OpenIDError.__init__(self, message)
        self.server_url = server_url


class VerificationError(OpenIDError):
    """Raised when a positive assertion fails verification.

    @ivar reason: one of the reason codes defined in this module, such
        as C{'signature-invalid'}
    @ivar identity_url: the identifier the attempt was made for, if known
    """

    def __init__(self, reason, message=None, identity_url=None,
                 contact=None, reference=None, setup_url=None):
        if message is None:
            message = reason
        OpenIDError.__init__(self, message)
        self.reason = reason
        self.identity_url = identity_url
        self.contact = contact
        self.reference = reference
        self.setup_url = setup_url

    def __repr__(self):
        return "<%s.%s reason=%r message=%r>" % (
            self.__class__.__module__, self.__class__.__name__,
            self.reason, self.args[0])


class StateError(OpenIDError):
    """Raised when the relying party is driven out of order, e.g. a
    callback is verified before its redirect was built."""


class ProtocolError(ValueError):
    """Exception that indicates that a message violated the
    protocol."""


class ServerError(OpenIDError):
    """Exception that is raised when the server returns a 400 response
    code to a direct request."""

    def __init__(self, error_text, error_code, message):
        OpenIDError.__init__(self, error_text)
        self.error_text = error_text
        self.error_code = error_code
        self.message = message

    @classmethod
    def fromMessage(cls, message):
        """Generate a ServerError instance, extracting the error text
        and the error code from the message."""
        error_text = message.getArg(
            OPENID_NS, 'error', '<no error message supplied>')
        error_code = message.getArg(OPENID_NS, 'error_code')
        return cls(error_text, error_code, message)
