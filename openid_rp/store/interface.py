"""
This module contains the definition of the C{L{OpenIDStore}}
interface.
"""


class OpenIDStore(object):
    """
    This is the interface for the store objects the relying party
    uses.  It is a single class that provides all of the persistence
    mechanisms that the library needs: associations and consumed
    nonces.

    Implementations must be safe for concurrent use.  In particular
    C{L{useNonce}} is a test and set operation and must be atomic.

    @sort: storeAssociation, getAssociation, removeAssociation,
        useNonce, cleanupNonces, cleanupAssociations, cleanup
    """

    def storeAssociation(self, server_url, association):
        """
        This method puts a C{L{Association
        <openid_rp.association.Association>}} object into storage,
        retrievable by server URL and handle.

        @param server_url: The URL of the provider endpoint that this
            association is with.  Don't assume there are any
            limitations on the character set of the input string.
        @type server_url: C{str}

        @param association: The C{L{Association
            <openid_rp.association.Association>}} to store.
        @type association: C{L{Association
            <openid_rp.association.Association>}}

        @return: C{None}
        """
        raise NotImplementedError

    def getAssociation(self, server_url, handle=None):
        """
        This method returns an C{L{Association
        <openid_rp.association.Association>}} object from storage that
        matches the server URL and, if specified, handle. It returns
        C{None} if no such association is found or if the matching
        association is expired.

        If no handle is specified, the store may return any
        association which matches the server URL.  If multiple
        associations are valid, the recommended return value for this
        method is the one most recently issued.

        This method is allowed (and encouraged) to garbage collect
        expired associations when found. This method must not return
        expired associations.

        @param server_url: The URL of the provider endpoint to get
            the association for.
        @type server_url: C{str}

        @param handle: This optional parameter is the handle of the
            specific association to get.
        @type handle: C{str} or C{NoneType}

        @rtype: C{L{Association <openid_rp.association.Association>}} or
            C{NoneType}
        """
        raise NotImplementedError

    def removeAssociation(self, server_url, handle):
        """
        This method removes the matching association if it's found,
        and returns whether the association was removed or not.

        @param server_url: The URL of the provider endpoint the
            association to remove belongs to.
        @type server_url: C{str}

        @param handle: This is the handle of the association to
            remove.
        @type handle: C{str}

        @return: Returns whether or not the given association existed.
        @rtype: C{bool}
        """
        raise NotImplementedError

    def useNonce(self, server_url, timestamp, salt):
        """Called when using a nonce.

        This method should return C{True} if the nonce has not been
        used before, and store it for a while to make sure nobody
        tries to use the same value again.  If the nonce has already
        been used for this server URL, return C{False}.

        @param server_url: The URL of the provider endpoint from which
            the nonce originated.
        @type server_url: C{str}

        @param timestamp: The time that the nonce was created (to the
            nearest second), in seconds since January 1 1970 UTC.
        @type timestamp: C{int}

        @param salt: A random string that makes two nonces from the
            same server issued during the same second unique.
        @type salt: str

        @return: Whether or not the nonce was valid.
        @rtype: C{bool}
        """
        raise NotImplementedError

    def cleanupNonces(self, horizon=None):
        """Remove expired nonces from the store.

        @param horizon: Nonces with a timestamp before this Unix time
            are removed. Defaults to the current time minus
            L{openid_rp.store.nonce.SKEW}.
        @type horizon: C{int}

        @return: the number of nonces expired.
        @returntype: int
        """
        raise NotImplementedError

    def cleanupAssociations(self):
        """Remove expired associations from the store.

        @return: the number of associations expired.
        @returntype: int
        """
        raise NotImplementedError

    def cleanup(self):
        """Shortcut for C{L{cleanupNonces}()}, C{L{cleanupAssociations}()}.

        @return: tuple of the number of expired nonces and the number
            of expired associations.
        """
        return self.cleanupNonces(), self.cleanupAssociations()
