"""A simple store using only in-process memory."""
import heapq
import threading
import time

from openid_rp.store import nonce
from openid_rp.store.interface import OpenIDStore

__all__ = ['MemoryStore']


class ServerAssocs(object):
    """Associations of a single server, keyed by handle."""

    def __init__(self):
        self.assocs = {}

    def set(self, assoc):
        self.assocs[assoc.handle] = assoc

    def get(self, handle):
        return self.assocs.get(handle)

    def remove(self, handle):
        return self.assocs.pop(handle, None) is not None

    def best(self):
        """Returns the association issued last, or None if there are no
        associations."""
        if not self.assocs:
            return None
        return max(self.assocs.values(), key=lambda assoc: assoc.issued)

    def cleanup(self, now):
        """Remove expired associations.

        @return: tuple of (removed associations, remaining associations)
        """
        expired = [handle for handle, assoc in self.assocs.items() if assoc.isExpired(now)]
        for handle in expired:
            del self.assocs[handle]
        return len(expired), len(self.assocs)


class UsedNonces(object):
    """Nonces of one shard, with a heap ordering them by timestamp.

    Callers hold C{lock}.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.used = set()
        self.by_age = []

    def add(self, anonce):
        if anonce in self.used:
            return False
        self.used.add(anonce)
        heapq.heappush(self.by_age, (anonce[1], anonce))
        return True

    def evict(self, oldest):
        """Forget the nonces stamped before C{oldest}.

        @return: the number of nonces forgotten
        """
        evicted = 0
        while self.by_age and self.by_age[0][0] < oldest:
            _, anonce = heapq.heappop(self.by_age)
            self.used.discard(anonce)
            evicted += 1
        return evicted


class MemoryStore(OpenIDStore):
    """In-process memory store.

    Use for single long-running processes.  No persistence supplied.

    Associations are sharded by server URL and nonces by their salt,
    each shard guarded by its own lock, so that unrelated login
    attempts never wait on each other.  Associations are kept as
    given and must not be modified once stored.
    """

    def __init__(self, nonce_skew=nonce.SKEW, shards=16):
        self.nonce_skew = nonce_skew
        self._assoc_shards = [({}, threading.Lock()) for _ in range(shards)]
        self._nonce_shards = [UsedNonces() for _ in range(shards)]

    def _assocShard(self, server_url):
        return self._assoc_shards[hash(server_url) % len(self._assoc_shards)]

    def _nonceShard(self, anonce):
        return self._nonce_shards[hash(anonce) % len(self._nonce_shards)]

    def storeAssociation(self, server_url, assoc):
        server_assocs, lock = self._assocShard(server_url)
        with lock:
            server_assocs.setdefault(server_url, ServerAssocs()).set(assoc)

    def getAssociation(self, server_url, handle=None):
        server_assocs, lock = self._assocShard(server_url)
        with lock:
            assocs = server_assocs.get(server_url)
            if assocs is None:
                return None
            if handle is None:
                assoc = assocs.best()
            else:
                assoc = assocs.get(handle)

            # Expired associations are evicted on the way out.
            if assoc is not None and assoc.isExpired():
                assocs.remove(assoc.handle)
                return None
            return assoc

    def removeAssociation(self, server_url, handle):
        server_assocs, lock = self._assocShard(server_url)
        with lock:
            assocs = server_assocs.get(server_url)
            if assocs is None:
                return False
            return assocs.remove(handle)

    def useNonce(self, server_url, timestamp, salt):
        now = time.time()
        if abs(timestamp - now) > self.nonce_skew:
            return False

        anonce = (str(server_url), int(timestamp), str(salt))
        shard = self._nonceShard(anonce)
        with shard.lock:
            # Stamps older than the window are refused above, their nonces are not needed.
            shard.evict(now - self.nonce_skew)
            return shard.add(anonce)

    def cleanupNonces(self):
        oldest = time.time() - self.nonce_skew
        expired = 0
        for shard in self._nonce_shards:
            with shard.lock:
                expired += shard.evict(oldest)
        return expired

    def cleanupAssociations(self):
        now = int(time.time())
        removed_assocs = 0
        for server_assocs, lock in self._assoc_shards:
            with lock:
                for server_url, assocs in list(server_assocs.items()):
                    removed, remaining = assocs.cleanup(now)
                    removed_assocs += removed
                    if not remaining:
                        del server_assocs[server_url]
        return removed_assocs
