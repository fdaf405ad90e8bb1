"""The interface of the stores keeping associations and used nonces."""


class OpenIDStore(object):
    """Persistence of a relying party.

    A store keeps the associations negotiated with providers, keyed by
    the endpoint URL of the provider and the association handle, and
    the nonces already seen, so that no response is accepted twice.

    One store serves every login attempt of an application, possibly on
    several threads and several consumer instances at once.
    Implementations must be thread-safe and L{useNonce} must be an
    atomic check-and-set.

    @sort: storeAssociation, getAssociation, removeAssociation,
        useNonce, cleanupNonces, cleanupAssociations, isDumb
    """

    def storeAssociation(self, server_url, association):
        """Keep an association, replacing any with the same handle.

        @param server_url: endpoint URL of the provider, any string
        @type server_url: str

        @type association: L{openid_rp.association.Association}
        """
        raise NotImplementedError

    def getAssociation(self, server_url, handle=None):
        """Look up an association of a provider.

        Without a handle, the association issued last is preferred.
        Expired associations are never returned and may be dropped on
        the way.

        @type server_url: str
        @type handle: Optional[str]
        @rtype: Optional[L{openid_rp.association.Association}]
        """
        raise NotImplementedError

    def removeAssociation(self, server_url, handle):
        """Forget an association.

        @return: whether the association was known
        @rtype: bool
        """
        raise NotImplementedError

    def useNonce(self, server_url, timestamp, salt):
        """Record a nonce, unless it was seen before or is out of date.

        A nonce whose timestamp is further than
        L{openid_rp.store.nonce.SKEW} from now is refused, so nonces need
        only be kept for that long.

        @param server_url: endpoint URL of the provider that issued the
            nonce, C{''} for nonces of the relying party itself
        @type server_url: str

        @param timestamp: creation time of the nonce, in seconds since the epoch
        @type timestamp: int

        @param salt: the part of the nonce that follows the timestamp
        @type salt: str

        @return: C{True} the first time a current nonce is used,
            C{False} otherwise
        @rtype: bool
        """
        raise NotImplementedError

    def cleanupNonces(self):
        """Drop the nonces too old to pass L{useNonce} anyway.

        @return: the number of nonces dropped
        @rtype: int
        """
        raise NotImplementedError

    def cleanupAssociations(self):
        """Drop expired associations.

        @return: the number of associations dropped
        @rtype: int
        """
        raise NotImplementedError

    def cleanup(self):
        """@return: the numbers of nonces and of associations dropped
        @rtype: Tuple[int, int]
        """
        return self.cleanupNonces(), self.cleanupAssociations()

    def isDumb(self):
        """A dumb store keeps no associations, every response is then
        verified directly with its provider.

        @rtype: bool
        """
        return False
