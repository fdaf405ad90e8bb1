"""Diffie-Hellman key exchange of the DH-SHA1 and DH-SHA256 association sessions.

The provider encrypts the MAC key of the association by XORing it with
the hash of the secret both parties agree on.
"""
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.dh import DHParameterNumbers, DHPublicNumbers

from openid_rp import cryptutil
from openid_rp.constants import DEFAULT_DH_GENERATOR, DEFAULT_DH_MODULUS

__all__ = ['DiffieHellman', 'strxor']


def strxor(x, y):
    """XOR two byte strings of the same length.

    @raises ValueError: if the lengths differ
    """
    if len(x) != len(y):
        raise ValueError('Cannot XOR %d bytes with %d bytes' % (len(x), len(y)))
    return bytes(a ^ b for a, b in zip(x, y))


class DiffieHellman(object):
    """One party of a key exchange, holding a fresh private key.

    @ivar parameter_numbers: the modulus and the generator
    @ivar private_key: the key generated for this exchange
    """

    def __init__(self, modulus, generator):
        """@param modulus: the modulus, in base64 C{btwoc} form
        @param generator: the generator, in base64 C{btwoc} form
        """
        self.parameter_numbers = DHParameterNumbers(cryptutil.base64ToLong(modulus),
                                                    cryptutil.base64ToLong(generator))
        self.private_key = self.parameter_numbers.parameters(default_backend()).generate_private_key()

    @classmethod
    def fromDefaults(cls):
        """Use the modulus and generator the OpenID specification defines."""
        return cls(DEFAULT_DH_MODULUS, DEFAULT_DH_GENERATOR)

    @property
    def parameters(self):
        """(modulus, generator), both in base64 C{btwoc} form.

        @rtype: Tuple[str, str]
        """
        return (cryptutil.longToBase64(self.parameter_numbers.p),
                cryptutil.longToBase64(self.parameter_numbers.g))

    @property
    def public_key(self):
        """Our public key, in base64 C{btwoc} form.

        @rtype: str
        """
        return cryptutil.longToBase64(self.private_key.public_key().public_numbers().y)

    def usingDefaultValues(self):
        """Whether the request may leave out the modulus and the generator."""
        return self.parameters == (DEFAULT_DH_MODULUS, DEFAULT_DH_GENERATOR)

    def getSharedSecret(self, public_key):
        """The secret agreed on with the holder of the other public key.

        @param public_key: public key of the other party, in base64 C{btwoc} form
        @type public_key: str

        @rtype: bytes
        @raises ValueError: if the public key is not valid
        """
        other = DHPublicNumbers(cryptutil.base64ToLong(public_key), self.parameter_numbers)
        shared = self.private_key.exchange(other.public_key(default_backend()))
        # The exchange pads the secret to the size of the modulus, the hash is taken over its btwoc.
        return cryptutil.int_to_bytes(cryptutil.bytes_to_int(shared))

    def xorSecret(self, public_key, secret, algorithm):
        """Encrypt or decrypt a MAC key with the hash of the agreed secret.

        @param public_key: public key of the other party, in base64 C{btwoc} form
        @type public_key: str

        @param secret: the MAC key, as long as the digest of C{algorithm}
        @type secret: bytes

        @type algorithm: hashes.HashAlgorithm
        @rtype: bytes
        """
        digest = hashes.Hash(algorithm, backend=default_backend())
        digest.update(self.getSharedSecret(public_key))
        return strxor(secret, digest.finalize())
