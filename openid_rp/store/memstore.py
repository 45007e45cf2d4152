"""A simple store using only in-process memory."""
import copy
import threading
import time

from openid_rp.store import nonce
from openid_rp.store.interface import OpenIDStore


class ServerAssocs(object):
    def __init__(self):
        self.assocs = {}

    def set(self, assoc):
        self.assocs[assoc.handle] = assoc

    def get(self, handle):
        return self.assocs.get(handle)

    def remove(self, handle):
        try:
            del self.assocs[handle]
        except KeyError:
            return False
        else:
            return True

    def best(self):
        """Returns association with the newest issued date.

        or None if there are no associations.
        """
        best = None
        for assoc in self.assocs.values():
            if best is None or best.issued < assoc.issued:
                best = assoc
        return best

    def cleanup(self, now):
        """Remove expired associations.

        @return: tuple of (removed associations, remaining associations)
        """
        remove = []
        for handle, assoc in self.assocs.items():
            if assoc.isExpired(now):
                remove.append(handle)
        for handle in remove:
            del self.assocs[handle]
        return len(remove), len(self.assocs)


class MemoryStore(OpenIDStore):
    """In-process memory store.

    Use for single long-running processes.  No persistence supplied.
    All operations hold one re-entrant lock, which makes C{useNonce}
    an atomic test and set.
    """

    def __init__(self):
        self.server_assocs = {}
        self.nonces = {}
        self._lock = threading.RLock()

    def _getServerAssocs(self, server_url):
        try:
            return self.server_assocs[server_url]
        except KeyError:
            assocs = self.server_assocs[server_url] = ServerAssocs()
            return assocs

    def storeAssociation(self, server_url, assoc):
        with self._lock:
            assocs = self._getServerAssocs(server_url)
            assocs.set(copy.deepcopy(assoc))

    def getAssociation(self, server_url, handle=None):
        with self._lock:
            assocs = self._getServerAssocs(server_url)
            if handle is None:
                assoc = assocs.best()
            else:
                assoc = assocs.get(handle)

            if assoc is None:
                return None
            if assoc.isExpired():
                assocs.remove(assoc.handle)
                return None
            return copy.deepcopy(assoc)

    def removeAssociation(self, server_url, handle):
        with self._lock:
            assocs = self._getServerAssocs(server_url)
            return assocs.remove(handle)

    def useNonce(self, server_url, timestamp, salt):
        anonce = (str(server_url), int(timestamp), str(salt))
        with self._lock:
            if anonce in self.nonces:
                return False
            self.nonces[anonce] = None
            return True

    def cleanupNonces(self, horizon=None):
        if horizon is None:
            horizon = time.time() - nonce.SKEW
        with self._lock:
            expired = [anonce for anonce in self.nonces if anonce[1] < horizon]
            for anonce in expired:
                del self.nonces[anonce]
            return len(expired)

    def cleanupAssociations(self):
        now = int(time.time())
        removed = 0
        with self._lock:
            for server_url, assocs in list(self.server_assocs.items()):
                removed_here, remaining = assocs.cleanup(now)
                removed += removed_here
                if not remaining:
                    del self.server_assocs[server_url]
        return removed
