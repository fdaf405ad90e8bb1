# -*- test-case-name: openid_rp.test.test_association -*-
"""Associations: secrets shared with a provider that sign its responses.

The L{association manager<openid_rp.consumer.associate.AssociationManager>}
negotiates associations and keeps them in a
L{store<openid_rp.store.interface.OpenIDStore>} under the endpoint URL
of their provider, where the verifier looks them up by handle.
"""
import time

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.constant_time import bytes_eq
from cryptography.hazmat.primitives.hmac import HMAC

from openid_rp import kvform, oidutil
from openid_rp.message import OPENID_NS

__all__ = ['Association', 'ASSOCIATION_TYPES', 'getSecretSize']

# Association type: (hash algorithm of the HMAC, size of the secret in bytes)
ASSOCIATION_TYPES = {
    'HMAC-SHA1': (hashes.SHA1, 20),
    'HMAC-SHA256': (hashes.SHA256, 32),
}


def getSecretSize(assoc_type):
    """Size of the MAC key of an association type, in bytes.

    @raises ValueError: for an unknown association type
    """
    try:
        return ASSOCIATION_TYPES[assoc_type][1]
    except KeyError:
        raise ValueError('Unsupported association type: %r' % (assoc_type,)) from None


class Association(object):
    """A secret shared with a provider.

    Associations are values: stores hand out the very objects they were
    given, so an association is never changed once created.

    @ivar handle: the handle the provider gave this association
    @type handle: str

    @ivar secret: the MAC key
    @type secret: bytes

    @ivar assoc_type: C{'HMAC-SHA1'} or C{'HMAC-SHA256'}
    @type assoc_type: str

    @ivar issued: when the association was created, a unix timestamp
    @type issued: int

    @ivar expires: when the association stops being usable, a unix timestamp
    @type expires: int
    """

    __slots__ = ('handle', 'secret', 'assoc_type', 'issued', 'expires')

    def __init__(self, handle, secret, assoc_type, issued, expires):
        if assoc_type not in ASSOCIATION_TYPES:
            raise ValueError('%r is not a supported association type' % (assoc_type,))
        if not isinstance(secret, bytes):
            raise TypeError('Association secret must be bytes, got %r' % (type(secret),))

        self.handle = handle
        self.secret = secret
        self.assoc_type = assoc_type
        self.issued = issued
        self.expires = expires

    @classmethod
    def fromExpiresIn(cls, expires_in, handle, secret, assoc_type, now=None):
        """Create an association the provider just issued.

        @param expires_in: lifetime announced by the provider, in seconds
        @type expires_in: int
        """
        if now is None:
            now = int(time.time())
        return cls(handle, secret, assoc_type, now, now + expires_in)

    def getExpiresIn(self, now=None):
        """Seconds the association is still usable for, C{0} once expired.

        @rtype: int
        """
        if now is None:
            now = int(time.time())
        return max(0, self.expires - now)

    expiresIn = property(getExpiresIn)

    def isExpired(self, now=None):
        return self.getExpiresIn(now) == 0

    def sign(self, pairs):
        """Compute the HMAC of (key, value) pairs in key-value form.

        @type pairs: Iterable[Tuple[str, str]]
        @rtype: bytes
        """
        algorithm = ASSOCIATION_TYPES[self.assoc_type][0]
        hmac = HMAC(self.secret, algorithm(), backend=default_backend())
        hmac.update(kvform.seqToKV(pairs).encode('utf-8'))
        return hmac.finalize()

    def getMessageSignature(self, message):
        """Sign the fields of the message listed in C{openid.signed}.

        @return: the signature, base64 encoded
        @rtype: str

        @raises ValueError: if the message has no signed list
        """
        signed = message.getArg(OPENID_NS, 'signed')
        if not signed:
            raise ValueError('Message has no signed list')

        post_args = message.toPostArgs()
        pairs = [(field, post_args.get('openid.' + field, '')) for field in signed.split(',')]
        return oidutil.toBase64(self.sign(pairs))

    def checkMessageSignature(self, message):
        """Does the signature of the message match the one this association computes?

        @rtype: bool
        @raises ValueError: if the message is not signed
        """
        message_sig = message.getArg(OPENID_NS, 'sig')
        if not message_sig:
            raise ValueError('Message has no signature')
        calculated_sig = self.getMessageSignature(message)
        return bytes_eq(calculated_sig.encode('utf-8'), message_sig.encode('utf-8'))
