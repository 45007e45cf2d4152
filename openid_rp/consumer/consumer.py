# -*- test-case-name: openid_rp.test.test_consumer -*-
"""
This module documents the main interface with the OpenID relying
party library.  The only part of the library which has to be used and
isn't documented in full here is the store required to create a
C{L{Consumer}} instance.


OVERVIEW
========

    The OpenID identity verification process most commonly uses the
    following steps, as visible to the user of this library:

        1. The user enters their OpenID into a field on the relying
           party's site, and hits a login button.

        2. The relying party discovers the user's OpenID provider,
           either from a Yadis document or from the C{<link>} tags of
           the identity page.

        3. The relying party sends the browser a redirect to the
           provider.  This is the authentication request.

        4. The provider sends the browser a redirect back to the
           C{return_to} URL of the relying party.  This redirect
           carries the provider's assertion.

    The relying party has to handle two separate HTTP requests in
    order to perform the full identity check.  The pending
    C{L{AuthRequest}} is kept in the session mapping given to the
    C{L{Consumer}} between the two.


REQUEST STATES
==============

    Every sign-in attempt is one C{L{AuthRequest}}, which goes through
    the states C{IDLE}, C{REQUEST_BUILT} (an association was obtained),
    C{AWAITING_RESPONSE} (the redirect was generated), C{VERIFYING}
    and finally C{ACCEPTED} or C{REJECTED}.  A request is completed
    exactly once; retrying means starting a new request.


VERIFICATION
============

    An C{id_res} assertion is accepted only when, in this order:

        - all required fields are present,
        - the association it names is known and unexpired (or, with
          C{L{GenericConsumer.allow_stateless}}, the provider confirms
          the signature directly),
        - the signature verifies,
        - the required fields are covered by the signature,
        - C{openid.return_to} is exactly the URL the request was sent
          with, and its query arguments are present in the callback,
        - the asserted identifier matches the discovered information,
        - the response nonce is fresh and is now recorded.

    Attribute exchange values are extracted from the signed fields of
    accepted assertions.  The outcome is a C{L{VerificationResult}}
    carrying a failure reason from L{openid_rp.constants} when the
    assertion is rejected.

@var IDLE: State of a new C{L{AuthRequest}}.
@var REQUEST_BUILT: The request has its endpoint and association.
@var AWAITING_RESPONSE: The redirect to the provider was generated.
@var VERIFYING: The callback is being checked.
@var ACCEPTED: The assertion was verified.
@var REJECTED: The callback was not a verified assertion.
"""
import logging
from urllib.parse import urldefrag

from openid_rp import fetchers, oidutil, signature, trustroot
from openid_rp.constants import (ASSOCIATION_NOT_FOUND, DISCOVERY_MISMATCH, INVALID_NONCE, MAC_MISMATCH,
                                 MALFORMED_MESSAGE, MISSING_SIGNED_FIELD, PROVIDER_FAILURE, REPLAY_DETECTED,
                                 RETURN_URL_MISMATCH, USER_CANCELLED)
from openid_rp.consumer.associations import AssociationError, AssociationManager, ServerError, makeKVPost
from openid_rp.consumer.discover import DiscoveryFailure, discover
from openid_rp.extensions import ax
from openid_rp.message import (BARE_NS, IDENTIFIER_SELECT, OPENID2_NS, OPENID_NS, MalformedMessage, Message)
from openid_rp.store.nonce import InvalidNonce, NonceTracker

__all__ = ['AuthRequest', 'Consumer', 'GenericConsumer', 'VerificationResult', 'VerificationFailure',
           'IDLE', 'REQUEST_BUILT', 'AWAITING_RESPONSE', 'VERIFYING', 'ACCEPTED', 'REJECTED',
           'SUCCESS', 'CANCELLED', 'FAILED', 'TAMPERED']

_LOGGER = logging.getLogger(__name__)

IDLE = 'idle'
REQUEST_BUILT = 'request_built'
AWAITING_RESPONSE = 'awaiting_response'
VERIFYING = 'verifying'
ACCEPTED = 'accepted'
REJECTED = 'rejected'

# User facing outcome categories
SUCCESS = 'success'
CANCELLED = 'cancelled'
FAILED = 'failed'
TAMPERED = 'tampered'

# Failure reasons that indicate the assertion was altered or replayed
TAMPERING_REASONS = frozenset([
    MAC_MISMATCH,
    RETURN_URL_MISMATCH,
    REPLAY_DETECTED,
    MISSING_SIGNED_FIELD,
    DISCOVERY_MISMATCH,
])

DISPLAY_MESSAGES = {
    SUCCESS: 'Successfully authenticated.',
    CANCELLED: 'Authentication cancelled.',
    FAILED: 'Authentication failed.',
    TAMPERED: 'Authentication failed: the response could not be verified.',
}


class VerificationFailure(ValueError):
    """Raised inside the verification steps to reject an assertion.

    @ivar reason: The failure reason, one of the reasons in
        L{openid_rp.constants}.
    """

    def __init__(self, reason, message):
        ValueError.__init__(self, message)
        self.reason = reason


class Consumer(object):
    """An OpenID relying party that performs discovery and keeps the
    pending request in the user's session.

    @ivar consumer: an instance of an object implementing the OpenID
        protocol, but doing no discovery or session management.
    @type consumer: GenericConsumer

    @ivar session: A dictionary-like object representing the user's
        session data.  This is used for keeping the pending
        C{L{AuthRequest}} while the user is redirected to the provider.

    @cvar session_key_prefix: A string that is prepended to session
        keys to ensure that they are unique. This variable may be
        changed to suit your application.
    """
    session_key_prefix = "_openid_consumer_"

    _token = 'last_request'

    def __init__(self, session, store, fetcher=None, negotiator=None, timeout=None):
        """Initialize a Consumer instance.

        You should create a new instance of the Consumer object with
        every HTTP request that handles OpenID transactions.

        @param session: See L{the session instance variable<openid_rp.consumer.consumer.Consumer.session>}

        @param store: an object that implements the interface in
            C{L{openid_rp.store.interface.OpenIDStore}}.

        @param fetcher: The HTTP fetcher used for discovery and direct
            requests, C{None} for the default fetcher.

        @param negotiator: The association types to ask providers for,
            C{None} for the default negotiator.
        @type negotiator: L{SessionNegotiator<openid_rp.association.SessionNegotiator>}

        @param timeout: Seconds to wait for each request to a provider.
        @type timeout: float
        """
        self.session = session
        self.consumer = GenericConsumer(store, fetcher, negotiator, timeout)
        self._token_key = self.session_key_prefix + self._token

    def begin(self, user_url, anonymous=False):
        """Start the OpenID authentication process. See steps 1-2 in
        the overview at the top of this file.

        @param user_url: Identity URL given by the user. This method
            performs a textual transformation of the URL to try and
            make sure it is normalized. For example, a user_url of
            example.com will be normalized to http://example.com/
        @type user_url: str

        @returntype: L{AuthRequest<openid_rp.consumer.consumer.AuthRequest>}

        @raises openid_rp.consumer.discover.DiscoveryFailure: when no
            OpenID provider is found for this URL.
        @raises openid_rp.consumer.associations.AssociationError: when
            no association can be made with the provider.
        """
        claimed_id, services = discover(user_url, self.consumer.fetcher, self.consumer.timeout)
        if not services:
            raise DiscoveryFailure('No usable OpenID services found for %s' % (user_url,))
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

        @rtype: L{AuthRequest<openid_rp.consumer.consumer.AuthRequest>}
        """
        auth_req = self.consumer.begin(service)
        auth_req.setAnonymous(anonymous)
        self.session[self._token_key] = auth_req
        return auth_req

    def beginAuthentication(self, claimed_identity, return_to, realm):
        """Discover the provider of an identifier and return the URL
        to redirect the user to.

        @param claimed_identity: The identifier the user entered
        @type claimed_identity: str

        @param return_to: The URL the provider sends the user back to
        @type return_to: str

        @param realm: The URL pattern the user is asked to trust; it
            must cover C{return_to}.
        @type realm: str

        @rtype: str

        @raises openid_rp.trustroot.RealmError: If the realm is
            malformed or does not cover C{return_to}.
        """
        auth_req = self.begin(claimed_identity)
        return auth_req.redirectURL(realm, return_to)

    def completeAuthentication(self, raw_callback):
        """Check the provider's response to the pending request of
        this session.  See step 4 in the overview.

        @param raw_callback: The query string of the callback request,
            as C{str} or C{bytes}, or a mapping of its arguments.

        @rtype: L{VerificationResult}

        @raises ValueError: If the session has no pending request.
        """
        auth_req = self.session.pop(self._token_key, None)
        if auth_req is None:
            raise ValueError('No pending authentication request in session')
        return self.consumer.complete(raw_callback, auth_req)


class GenericConsumer(object):
    """This is the implementation of the common logic for OpenID
    relying parties. It is unaware of the application in which it is
    running.

    @cvar allow_stateless: Whether to ask the provider to check
        signatures made with associations this relying party does not
        know.  When disabled, such assertions are rejected with
        C{ASSOCIATION_NOT_FOUND}, and failing to associate at the start
        of a request is an error.

    @ivar associations: The L{AssociationManager}
    @ivar nonces: The L{NonceTracker<openid_rp.store.nonce.NonceTracker>}
    """

    allow_stateless = False

    def __init__(self, store, fetcher=None, negotiator=None, timeout=None):
        self.store = store
        if fetcher is not None and not isinstance(fetcher, fetchers.ExceptionWrappingFetcher):
            fetcher = fetchers.ExceptionWrappingFetcher(fetcher)
        self.fetcher = fetcher
        self.timeout = timeout
        self.associations = AssociationManager(store, fetcher, negotiator)
        self.nonces = NonceTracker(store)

    @property
    def negotiator(self):
        return self.associations.negotiator

    def begin(self, service_endpoint):
        """Build the request for an endpoint.

        @raises AssociationError: When no association can be made and
            stateless mode is not allowed.
        @rtype: L{AuthRequest}
        """
        try:
            assoc = self.associations.getAssociation(service_endpoint.server_url, self.timeout)
        except AssociationError as why:
            if not self.allow_stateless:
                raise
            _LOGGER.warning('Continuing without an association: %s', why)
            assoc = None

        request = AuthRequest(service_endpoint, assoc)
        request.state = REQUEST_BUILT
        return request

    def complete(self, message, auth_request):
        """Verify the provider's response to a request.

        @param message: The callback, as a L{Message}, a query string
            or a mapping of its arguments.

        @param auth_request: The request the response answers.
        @type auth_request: L{AuthRequest}

        @rtype: L{VerificationResult}

        @raises ValueError: If the request is not awaiting a response,
            for example because it was completed already.
        """
        if auth_request.state != AWAITING_RESPONSE:
            raise ValueError('Authentication request is %s, not awaiting a response' % (auth_request.state,))
        auth_request.state = VERIFYING

        try:
            message = self._parseCallback(message)
        except (MalformedMessage, TypeError) as why:
            result = VerificationResult(auth_request.endpoint, failure_reason=MALFORMED_MESSAGE, detail=str(why))
        else:
            result = self._completeMessage(message, auth_request)

        if result.verified:
            auth_request.state = ACCEPTED
            _LOGGER.info('Accepted assertion for %s', result.claimed_identity)
        else:
            auth_request.state = REJECTED
            _LOGGER.info('Rejected response from %s: %s', auth_request.endpoint.server_url, result.failure_reason)
        return result

    @staticmethod
    def _parseCallback(raw):
        if isinstance(raw, Message):
            return raw
        if isinstance(raw, (str, bytes)):
            return Message.fromQueryString(raw)
        return Message.fromPostArgs(dict(raw))

    def _completeMessage(self, message, auth_request):
        endpoint = auth_request.endpoint
        mode = message.getArg(OPENID_NS, 'mode', '<No mode set>')

        if mode == 'cancel':
            return VerificationResult(endpoint, message, USER_CANCELLED)
        elif mode == 'error':
            error = message.getArg(OPENID_NS, 'error')
            return VerificationResult(endpoint, message, PROVIDER_FAILURE, detail=error)
        elif mode == 'setup_needed':
            return VerificationResult(endpoint, message, PROVIDER_FAILURE, detail='Setup needed')
        elif mode == 'id_res':
            return self._doIdRes(message, auth_request)
        else:
            return VerificationResult(endpoint, message, PROVIDER_FAILURE, detail='Invalid openid.mode: %r' % (mode,))

    def _doIdRes(self, message, auth_request):
        """Handle id_res responses.

        @returntype: L{VerificationResult}
        """
        endpoint = auth_request.endpoint
        try:
            self._idResCheckForFields(message)
            signed_list = self._idResCheckSignature(message, endpoint.server_url)
            self._idResCheckSignedFields(message, signed_list)
            self._checkReturnTo(message, auth_request.return_to)
            endpoint = self._verifyDiscoveryResults(endpoint, message)
            nonce = self._idResCheckNonce(message, endpoint)
        except VerificationFailure as why:
            return VerificationResult(endpoint, message, why.reason, detail=str(why))

        # An assertion naming no identifier authenticates nobody
        claimed_identity = None
        if message.hasKey(OPENID_NS, 'claimed_id'):
            claimed_identity = endpoint.claimed_id

        signed_fields = ['openid.' + f for f in signed_list]
        attributes = ax.extract(message, signed_fields)
        return VerificationResult(endpoint, message, claimed_identity=claimed_identity, nonce=nonce,
                                  attributes=attributes, signed_fields=signed_fields)

    def _idResCheckForFields(self, message):
        for field in ('sig', 'signed'):
            if not message.hasKey(OPENID_NS, field):
                raise VerificationFailure(MISSING_SIGNED_FIELD, 'Missing required field %r' % (field,))

        for field in ('return_to', 'assoc_handle', 'op_endpoint', 'response_nonce'):
            if not message.hasKey(OPENID_NS, field):
                raise VerificationFailure(MALFORMED_MESSAGE, 'Missing required field %r' % (field,))

    def _idResCheckSignature(self, message, server_url):
        assoc_handle = message.getArg(OPENID_NS, 'assoc_handle')
        assoc = self.associations.lookup(server_url, assoc_handle)

        if assoc is None:
            # It's not an association we know about.  Stateless mode is
            # our only possible path for recovery.
            if not self.allow_stateless:
                raise VerificationFailure(ASSOCIATION_NOT_FOUND, 'No association for %s' % (server_url,))
            self._checkAuth(message, server_url)
            return message.getSignedList() or []

        check = signature.verify(message, assoc)
        if not check:
            raise VerificationFailure(check.failure_reason, 'Bad signature')

        invalidate_handle = message.getArg(OPENID_NS, 'invalidate_handle')
        if invalidate_handle:
            self.associations.invalidate(server_url, invalidate_handle)

        return check.signed_list

    def _idResCheckSignedFields(self, message, signed_list):
        require_sigs = ['return_to', 'identity', 'response_nonce', 'claimed_id', 'assoc_handle', 'op_endpoint']
        for field in require_sigs:
            # Field is present and not in signed list
            if message.hasKey(OPENID_NS, field) and field not in signed_list:
                raise VerificationFailure(MISSING_SIGNED_FIELD, '"%s" not signed' % (field,))

    def _checkReturnTo(self, message, return_to):
        """Check the C{openid.return_to} of a message against the URL
        the request was sent with.

        @raises VerificationFailure: With C{RETURN_URL_MISMATCH}.
        """
        msg_return_to = message.getArg(OPENID_NS, 'return_to')
        if return_to is None or msg_return_to != return_to:
            raise VerificationFailure(RETURN_URL_MISMATCH, 'openid.return_to does not match return URL')

        try:
            self._verifyReturnToArgs(message.toPostArgs())
        except ValueError as why:
            raise VerificationFailure(RETURN_URL_MISMATCH, str(why))

    @staticmethod
    def _verifyReturnToArgs(query):
        """Verify that the arguments in the return_to URL are present in this
        response.
        """
        return_to = query.get('openid.return_to')
        if not return_to:
            raise ValueError("no openid.return_to in query")

        for rt_key, rt_value in oidutil.getQueryArgs(return_to):
            try:
                value = query[rt_key]
            except KeyError:
                raise ValueError("return_to parameter %s absent from query" % (rt_key,))
            if rt_value != value:
                raise ValueError("parameter %s value %r does not match "
                                 "return_to's value %r" % (rt_key, value, rt_value))

    def _verifyDiscoveryResults(self, endpoint, message):
        """Check the identifier and provider of an assertion against
        the discovered information.

        @returns: The endpoint the assertion is about. For identifier
            select requests this is the endpoint found by discovering
            the asserted identifier.

        @raises VerificationFailure: With C{DISCOVERY_MISMATCH}.
        """
        op_endpoint = message.getArg(OPENID_NS, 'op_endpoint')
        if op_endpoint != endpoint.server_url:
            raise VerificationFailure(DISCOVERY_MISMATCH, 'OP endpoint %r is not the requested %r' % (
                op_endpoint, endpoint.server_url))

        claimed_id = message.getArg(OPENID_NS, 'claimed_id')
        identity = message.getArg(OPENID_NS, 'identity')
        if claimed_id is None and identity is None:
            # No identifier asserted, nothing to verify
            return endpoint
        if claimed_id is None or identity is None:
            raise VerificationFailure(MALFORMED_MESSAGE, 'openid.claimed_id and openid.identity must come together')

        if endpoint.isIdentifierSelect():
            return self._discoverAndVerify(claimed_id, identity, endpoint)

        if urldefrag(claimed_id)[0] != urldefrag(endpoint.claimed_id)[0]:
            raise VerificationFailure(DISCOVERY_MISMATCH, 'Claimed ID %r does not match %r' % (
                claimed_id, endpoint.claimed_id))
        if identity != endpoint.getLocalID():
            raise VerificationFailure(DISCOVERY_MISMATCH, 'Mismatch between delegate (%r) and server (%r) response' % (
                endpoint.getLocalID(), identity))
        return endpoint

    def _discoverAndVerify(self, claimed_id, identity, orig_endpoint):
        try:
            _, services = discover(urldefrag(claimed_id)[0], self.fetcher, self.timeout)
        except DiscoveryFailure as why:
            raise VerificationFailure(DISCOVERY_MISMATCH, 'Discovery of %r failed: %s' % (claimed_id, why))

        for service in services:
            if (service.server_url == orig_endpoint.server_url and
                    service.claimed_id == urldefrag(claimed_id)[0] and
                    service.getLocalID() == identity):
                return service

        raise VerificationFailure(DISCOVERY_MISMATCH, 'Discovery information does not match response message values')

    def _idResCheckNonce(self, message, endpoint):
        nonce = message.getArg(OPENID_NS, 'response_nonce')
        try:
            fresh = self.nonces.checkAndRecord(nonce, endpoint.server_url)
        except InvalidNonce as why:
            raise VerificationFailure(INVALID_NONCE, str(why))

        if not fresh:
            raise VerificationFailure(REPLAY_DETECTED, 'Nonce already used')
        return nonce

    def _checkAuth(self, message, server_url):
        """Ask the provider whether it signed the message.

        @raises VerificationFailure: When the provider does not
            confirm the signature.
        """
        request = self._createCheckAuthRequest(message)
        try:
            response = makeKVPost(request, server_url, self.fetcher, self.timeout)
        except (fetchers.HTTPFetchingError, ServerError, MalformedMessage) as why:
            _LOGGER.warning('check_authentication with %s failed: %s', server_url, why)
            raise VerificationFailure(PROVIDER_FAILURE, 'check_authentication failed')
        self._processCheckAuthResponse(response, server_url)

    def _createCheckAuthRequest(self, message):
        signed_list = message.getSignedList() or []
        post_args = message.toPostArgs()
        for field in signed_list:
            if 'openid.' + field not in post_args:
                raise VerificationFailure(MISSING_SIGNED_FIELD, 'Signed field %r is missing' % (field,))

        check_auth_message = message.copy()
        for key in list(check_auth_message.getArgs(BARE_NS)):
            check_auth_message.delArg(BARE_NS, key)
        check_auth_message.setArg(OPENID_NS, 'mode', 'check_authentication')
        return check_auth_message

    def _processCheckAuthResponse(self, response, server_url):
        is_valid = response.getArg(OPENID_NS, 'is_valid', 'false')

        invalidate_handle = response.getArg(OPENID_NS, 'invalidate_handle')
        if invalidate_handle is not None:
            self.associations.invalidate(server_url, invalidate_handle)

        if is_valid != 'true':
            _LOGGER.info('Server responds that checkAuth call is not valid')
            raise VerificationFailure(MAC_MISMATCH, 'Server denied check_authentication')


class AuthRequest(object):
    """A sign-in attempt.

    @ivar endpoint: The provider endpoint the request is for
    @ivar assoc: The association, or C{None} in stateless mode
    @ivar state: One of the request states of this module
    @ivar return_to: The C{return_to} URL the request was sent with,
        once it was built.
    @ivar return_to_args: Arguments to add to the C{return_to} URL;
        they must come back in the callback.
    """

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
        self.return_to_args = {}
        self.message = Message(OPENID2_NS)
        self.state = IDLE
        self.return_to = None
        self.realm = None
        self._anonymous = False

    def setAnonymous(self, is_anonymous):
        """Set whether this request should be made anonymously. If a
        request is anonymous, the identifier will not be sent in the
        request. This is only useful if you are making another kind of
        request with an extension in this request.
        """
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

        @param namespace: The namespace URI for the extension.
        @type namespace: str

        @param key: The key within the extension namespace.
        @type key: str

        @param value: The value to provide to the server for this
            argument.
        @type value: str
        """
        self.message.setArg(namespace, key, value)

    def getMessage(self, realm, return_to, immediate=False):
        """Produce a L{Message} representing this request.

        @param realm: The URL (or URL pattern) that identifies your
            web site to the user when she is authorizing it.
        @type realm: str

        @param return_to: The URL that the OpenID provider will send
            the user back to after attempting to verify her identity.
        @type return_to: str

        @param immediate: If True, the provider is asked to answer
            without interacting with the user.
        @type immediate: bool

        @returntype: L{openid_rp.message.Message}

        @raises ValueError: If no C{return_to} is given.
        @raises openid_rp.trustroot.RealmError: If the realm is
            malformed or does not cover C{return_to}.
        """
        if self.state not in (REQUEST_BUILT, AWAITING_RESPONSE):
            raise ValueError('Authentication request is %s' % (self.state,))
        if not return_to:
            raise ValueError('"return_to" is mandatory')

        return_to = oidutil.appendArgs(return_to, self.return_to_args)
        trustroot.validateURL(realm, return_to)

        if immediate:
            mode = 'checkid_immediate'
        else:
            mode = 'checkid_setup'

        message = self.message.copy()
        message.updateArgs(OPENID_NS, {
            'realm': realm,
            'mode': mode,
            'return_to': return_to,
        })

        if not self._anonymous:
            if self.endpoint.isOPIdentifier():
                claimed_id = request_identity = IDENTIFIER_SELECT
            else:
                request_identity = self.endpoint.getLocalID()
                claimed_id = self.endpoint.claimed_id

            message.setArg(OPENID_NS, 'identity', request_identity)
            message.setArg(OPENID_NS, 'claimed_id', claimed_id)

        if self.assoc:
            message.setArg(OPENID_NS, 'assoc_handle', self.assoc.handle)

        self.return_to = return_to
        self.realm = realm
        return message

    def redirectURL(self, realm, return_to, immediate=False):
        """Return the URL to redirect the user to.  The request is
        then awaiting the provider's response.

        @rtype: str
        """
        message = self.getMessage(realm, return_to, immediate)
        self.state = AWAITING_RESPONSE
        return message.toURL(self.endpoint.server_url)

    def formMarkup(self, realm, return_to, immediate=False, form_tag_attrs=None):
        """Get html for a form to submit this request to the IDP.

        @param form_tag_attrs: Dictionary of attributes to be added to
            the form tag. 'accept-charset' and 'enctype' have defaults
            that can be overridden. If a value is supplied for
            'action' or 'method', it will be replaced.
        @type form_tag_attrs: Dict[str, str]
        """
        message = self.getMessage(realm, return_to, immediate)
        self.state = AWAITING_RESPONSE
        return message.toFormMarkup(self.endpoint.server_url, form_tag_attrs)

    def __repr__(self):
        return '<%s %s state=%s>' % (self.__class__.__name__, self.endpoint.server_url, self.state)


class VerificationResult(object):
    """The outcome of checking a provider's response.

    @ivar endpoint: The endpoint the response is about.
    @type endpoint: L{OpenIDServiceEndpoint<openid_rp.consumer.discover.OpenIDServiceEndpoint>}

    @ivar message: The parsed response, C{None} if it did not parse.

    @ivar failure_reason: C{None} for a verified assertion, otherwise
        one of the reasons in L{openid_rp.constants}.

    @ivar claimed_identity: The verified identifier.  C{None} unless
        verified, or when the assertion was about no identifier.

    @ivar nonce: The consumed response nonce of a verified assertion.

    @ivar attributes: Attribute exchange values of a verified
        assertion, by type URI.
    @type attributes: {str: [str]}

    @ivar signed_fields: The arguments in the provider's response that
        were signed and verified, with the C{openid.} prefix.

    @ivar detail: Diagnostic text about a rejection, for logs only.
    """

    def __init__(self, endpoint, message=None, failure_reason=None, claimed_identity=None, nonce=None,
                 attributes=None, signed_fields=None, detail=None):
        self.endpoint = endpoint
        self.message = message
        self.failure_reason = failure_reason
        self.claimed_identity = claimed_identity
        self.nonce = nonce
        self.attributes = attributes or {}
        self.signed_fields = signed_fields or []
        self.detail = detail

    @property
    def verified(self):
        return self.failure_reason is None

    @property
    def category(self):
        """C{SUCCESS}, C{CANCELLED}, C{FAILED} or C{TAMPERED}."""
        if self.verified:
            return SUCCESS
        if self.failure_reason == USER_CANCELLED:
            return CANCELLED
        if self.failure_reason in TAMPERING_REASONS:
            return TAMPERED
        return FAILED

    def getDisplayMessage(self):
        """Return a message about the outcome that can be shown to
        the user.  It never contains verification details."""
        return DISPLAY_MESSAGES[self.category]

    def isSigned(self, ns_uri, ns_key):
        """Return whether a particular key is signed, regardless of
        its namespace alias
        """
        if self.message is None:
            return False
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
        for key in msg_args:
            if not self.isSigned(ns_uri, key):
                _LOGGER.debug('%r not signed, returning None', key)
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
        if self.message is None:
            return None
        if require_signed:
            return self.getSignedNS(namespace_uri)
        else:
            return self.message.getArgs(namespace_uri)

    def getReturnTo(self):
        """Get the signed openid.return_to argument from this response.

        @returntype: str
        """
        return self.getSigned(OPENID_NS, 'return_to')

    def __repr__(self):
        return "<%s.%s id=%r reason=%r>" % (
            self.__class__.__module__, self.__class__.__name__,
            self.claimed_identity, self.failure_reason)
