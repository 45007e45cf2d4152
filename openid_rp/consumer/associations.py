# -*- test-case-name: openid_rp.test.test_associations -*-
"""Establishing and looking up associations with providers.

An association is created with a direct C{openid.mode=associate}
request.  The MAC key is either protected by a Diffie-Hellman exchange
or, over HTTPS only, sent in the clear.  The
L{SessionNegotiator<openid_rp.association.SessionNegotiator>} decides
which association and session types are asked for; when the provider
answers with an C{unsupported-type} error naming a type the negotiator
allows, the request is made once more with that type.
"""
import logging
import threading
import weakref

from cryptography.hazmat.primitives import hashes

from openid_rp import fetchers, oidutil
from openid_rp.association import Association, default_negotiator, getSecretSize
from openid_rp.dh import DiffieHellman
from openid_rp.message import OPENID2_NS, OPENID_NS, MalformedMessage, Message, no_default

__all__ = ['AssociationError', 'AssociationManager', 'ServerError', 'TIMEOUT', 'UNREACHABLE',
           'PROTOCOL_MISMATCH']

_LOGGER = logging.getLogger(__name__)

TIMEOUT = 'timeout'
UNREACHABLE = 'unreachable'
PROTOCOL_MISMATCH = 'protocol_mismatch'


class DiffieHellmanSHA1ConsumerSession(object):
    session_type = 'DH-SHA1'
    hash_func = hashes.SHA1
    secret_size = 20
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
        enc_mac_key = oidutil.fromBase64(response.getArg(OPENID_NS, 'enc_mac_key', no_default))
        return self.dh.xorSecret(dh_server_public64, enc_mac_key, self.hash_func())


class DiffieHellmanSHA256ConsumerSession(DiffieHellmanSHA1ConsumerSession):
    session_type = 'DH-SHA256'
    hash_func = hashes.SHA256
    secret_size = 32
    allowed_assoc_types = ['HMAC-SHA256']


class PlainTextConsumerSession(object):
    session_type = 'no-encryption'
    allowed_assoc_types = ['HMAC-SHA1', 'HMAC-SHA256']

    def getRequest(self):
        return {}

    def extractSecret(self, response):
        mac_key64 = response.getArg(OPENID_NS, 'mac_key', no_default)
        return oidutil.fromBase64(mac_key64)


class ProtocolError(ValueError):
    """Exception that indicates that a message violated the
    protocol. It is raised and caught internally to this module."""


class ServerError(Exception):
    """Exception that is raised when the server returns a 400 response
    code to a direct request."""

    def __init__(self, message):
        self.error_text = message.getArg(OPENID_NS, 'error', '<no error message supplied>')
        Exception.__init__(self, self.error_text)
        self.error_code = message.getArg(OPENID_NS, 'error_code')
        self.message = message


class AssociationError(Exception):
    """No association could be established with a provider.

    @ivar reason: One of L{TIMEOUT}, L{UNREACHABLE} or
        L{PROTOCOL_MISMATCH}.
    @ivar server_url: The provider endpoint.
    """

    def __init__(self, reason, server_url, detail=None):
        Exception.__init__(self, reason, server_url, detail)
        self.reason = reason
        self.server_url = server_url
        self.detail = detail

    def __str__(self):
        if self.detail:
            return 'Association with %s failed (%s): %s' % (self.server_url, self.reason, self.detail)
        return 'Association with %s failed (%s)' % (self.server_url, self.reason)


def makeKVPost(request_message, server_url, fetcher=None, timeout=None):
    """Make a Direct Request to an OpenID Provider and return the
    result as a Message object.

    @raises fetchers.HTTPFetchingError: If the server can not be reached.
    @raises ServerError: If the server answers with an error response.
    @raises MalformedMessage: If the answer is not a KV form message.
    @rtype: openid_rp.message.Message
    """
    if fetcher is None:
        fetcher = fetchers.getDefaultFetcher()
    body = request_message.toURLEncoded().encode('utf-8')
    headers = {'Content-Type': 'application/x-www-form-urlencoded'}
    resp = fetcher.fetch(server_url, body=body, headers=headers, timeout=timeout)

    if resp.status not in (200, 400):
        fmt = 'bad status code from server %s: %s'
        raise fetchers.HTTPFetchingError(fmt % (server_url, resp.status))

    response_message = Message.fromKVForm(resp.body)
    if resp.status == 400:
        raise ServerError(response_message)

    return response_message


class AssociationManager(object):
    """Creates, stores and looks up associations.

    Lookups and removals of one C{(server_url, handle)} pair are
    serialized by a per-pair lock.  A lock lives only while some
    thread uses it, so handles sent by clients do not accumulate.
    L{establish} talks to the provider without holding any lock and
    puts the association in the store only once it is complete.

    @ivar store: The L{OpenIDStore<openid_rp.store.interface.OpenIDStore>}
        keeping the associations.
    @ivar negotiator: The L{SessionNegotiator<openid_rp.association.SessionNegotiator>}
        choosing association and session types.
    @ivar fetcher: The HTTP fetcher, C{None} for the default fetcher.
    """

    session_types = {
        'DH-SHA1': DiffieHellmanSHA1ConsumerSession,
        'DH-SHA256': DiffieHellmanSHA256ConsumerSession,
        'no-encryption': PlainTextConsumerSession,
    }

    def __init__(self, store, fetcher=None, negotiator=None):
        self.store = store
        self.fetcher = fetcher
        if negotiator is None:
            negotiator = default_negotiator.copy()
        self.negotiator = negotiator
        self._locks = weakref.WeakValueDictionary()
        self._locks_lock = threading.Lock()

    def _lockFor(self, server_url, handle):
        with self._locks_lock:
            return self._locks.setdefault((server_url, handle), threading.Lock())

    def lookup(self, server_url, handle):
        """Return the live association with this handle.

        @rtype: L{Association<openid_rp.association.Association>} or C{None}
        """
        if not handle:
            return None
        with self._lockFor(server_url, handle):
            assoc = self.store.getAssociation(server_url, handle)
            if assoc is not None and assoc.isExpired():
                self.store.removeAssociation(server_url, handle)
                return None
            return assoc

    def invalidate(self, server_url, handle):
        """Forget an association.

        @returns: Whether the association was known.
        @rtype: bool
        """
        with self._lockFor(server_url, handle):
            removed = self.store.removeAssociation(server_url, handle)
        if removed:
            _LOGGER.info('Removed association %s for %s', handle, server_url)
        return removed

    def getAssociation(self, server_url, timeout=None):
        """Return a live association with the provider, establishing
        a new one if the store has none.

        @raises AssociationError: If a new association is needed and
            can not be established.
        """
        assoc = self.store.getAssociation(server_url)
        if assoc is not None and not assoc.isExpired():
            return assoc
        return self.establish(server_url, timeout)

    def establish(self, server_url, timeout=None):
        """Create a new association with the provider and store it.

        @param server_url: The provider endpoint URL.
        @type server_url: str

        @param timeout: Seconds to wait for each request to the
            provider.
        @type timeout: float

        @rtype: L{Association<openid_rp.association.Association>}

        @raises AssociationError: With reason L{TIMEOUT} or
            L{UNREACHABLE} when the provider does not answer, or
            L{PROTOCOL_MISMATCH} when no acceptable association can be
            agreed on.
        """
        secure = server_url.startswith('https://')
        assoc_type, session_type = self.negotiator.getAllowedType(secure)
        if assoc_type is None:
            raise AssociationError(PROTOCOL_MISMATCH, server_url, 'No allowed association type')

        try:
            assoc = self._requestAssociation(server_url, assoc_type, session_type, timeout)
        except ServerError as why:
            assoc_type, session_type = self._getFallbackTypes(server_url, why, secure)
            try:
                assoc = self._requestAssociation(server_url, assoc_type, session_type, timeout)
            except ServerError as why:
                # Do not keep trying, since it rejected the
                # association type that it told us to use.
                raise AssociationError(PROTOCOL_MISMATCH, server_url, why.error_text)

        self.store.storeAssociation(server_url, assoc)
        _LOGGER.info('Established %s association with %s', assoc.assoc_type, server_url)
        return assoc

    def _getFallbackTypes(self, server_url, why, secure):
        # Any error message whose code is not 'unsupported-type'
        # should be considered a total failure.
        if why.error_code != 'unsupported-type':
            _LOGGER.warning('Server error when requesting an association from %s: %s', server_url, why.error_text)
            raise AssociationError(PROTOCOL_MISMATCH, server_url, why.error_text)

        # Extract the session_type and assoc_type from the error message
        assoc_type = why.message.getArg(OPENID_NS, 'assoc_type')
        session_type = why.message.getArg(OPENID_NS, 'session_type')

        if assoc_type is None or session_type is None:
            _LOGGER.warning('Server responded with unsupported association session but did not supply a fallback.')
            raise AssociationError(PROTOCOL_MISMATCH, server_url, why.error_text)

        if not self.negotiator.isAllowed(assoc_type, session_type) or \
                (session_type == 'no-encryption' and not secure):
            _LOGGER.warning('Server sent unsupported session/association type: session_type=%s, assoc_type=%s',
                            session_type, assoc_type)
            raise AssociationError(PROTOCOL_MISMATCH, server_url, why.error_text)

        return assoc_type, session_type

    def _requestAssociation(self, server_url, assoc_type, session_type, timeout):
        """Make and process one association request to the provider.

        @raises ServerError: When the provider refuses the request.
        @raises AssociationError: For any other failure.
        """
        assoc_session, args = self._createAssociateRequest(assoc_type, session_type)

        try:
            response = makeKVPost(args, server_url, self.fetcher, timeout)
        except fetchers.FetchTimeout as why:
            _LOGGER.warning('openid.associate request to %s timed out', server_url)
            raise AssociationError(TIMEOUT, server_url, str(why.why))
        except fetchers.HTTPFetchingError as why:
            _LOGGER.warning('openid.associate request to %s failed: %s', server_url, why)
            raise AssociationError(UNREACHABLE, server_url, str(why))
        except MalformedMessage as why:
            raise AssociationError(PROTOCOL_MISMATCH, server_url, str(why))

        try:
            return self._extractAssociation(response, assoc_session, server_url)
        except KeyError as why:
            _LOGGER.warning('Missing required parameter in response from %s: %s', server_url, why)
            raise AssociationError(PROTOCOL_MISMATCH, server_url, 'Missing parameter %s' % (why,))
        except ProtocolError as why:
            _LOGGER.warning('Protocol error parsing response from %s: %s', server_url, why)
            raise AssociationError(PROTOCOL_MISMATCH, server_url, str(why))

    def _createAssociateRequest(self, assoc_type, session_type):
        """Create an association request for the given assoc_type and
        session_type.

        @returns: a pair of the association session object and the
            request message that will be sent to the server.
        @rtype: (association session type (depends on session_type),
                 openid_rp.message.Message)
        """
        session_type_class = self.session_types[session_type]
        assoc_session = session_type_class()

        args = {
            'mode': 'associate',
            'ns': OPENID2_NS,
            'assoc_type': assoc_type,
            'session_type': assoc_session.session_type,
        }
        args.update(assoc_session.getRequest())
        message = Message.fromOpenIDArgs(args)
        return assoc_session, message

    def _extractAssociation(self, assoc_response, assoc_session, server_url):
        """Attempt to extract an association from the response, given
        the association response message and the established
        association session.

        @raises ProtocolError: if data is malformed
        @raises KeyError: if a field is missing

        @rtype: openid_rp.association.Association
        """
        # Extract the common fields from the response, raising an
        # exception if they are not found
        assoc_type = assoc_response.getArg(OPENID_NS, 'assoc_type', no_default)
        assoc_handle = assoc_response.getArg(OPENID_NS, 'assoc_handle', no_default)

        expires_in_str = assoc_response.getArg(OPENID_NS, 'expires_in', no_default)
        try:
            expires_in = int(expires_in_str)
        except ValueError as why:
            raise ProtocolError('Invalid expires_in field: %s' % (why,))
        if expires_in <= 0:
            raise ProtocolError('Invalid expires_in field: %r' % (expires_in_str,))

        session_type = assoc_response.getArg(OPENID2_NS, 'session_type', no_default)

        # Session type mismatch
        if assoc_session.session_type != session_type:
            fmt = 'Session type mismatch. Expected %r, got %r'
            raise ProtocolError(fmt % (assoc_session.session_type, session_type))

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
            raise ProtocolError(fmt % (assoc_session.session_type, why))

        if len(secret) != getSecretSize(assoc_type):
            raise ProtocolError('Secret of %d bytes does not fit %s' % (len(secret), assoc_type))

        try:
            return Association.fromExpiresIn(expires_in, assoc_handle, secret, assoc_type, server_url=server_url)
        except (TypeError, ValueError) as why:
            raise ProtocolError('Invalid association: %s' % (why,))
