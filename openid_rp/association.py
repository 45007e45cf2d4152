"""
This module contains code for dealing with associations between
relying parties and providers. Associations contain a shared secret
that is used to sign C{openid.mode=id_res} messages.

Users of the library should not usually need to interact directly with
associations. The L{store<openid_rp.store>} and the
L{association manager<openid_rp.consumer.associations>} create and
manage them. The manager makes use of a C{L{SessionNegotiator}},
which enables users to express a preference for what kind of
associations should be allowed, and what kind of exchange should be
done to establish the association.

@var default_negotiator: A C{L{SessionNegotiator}} that allows all
    association types that are specified by the OpenID
    specification. It prefers to use HMAC-SHA256/DH-SHA256, if it's
    available.

@var encrypted_negotiator: A C{L{SessionNegotiator}} that
    does not support C{'no-encryption'} associations.
"""
import time

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.hmac import HMAC

from openid_rp import oidutil
from openid_rp.message import OPENID_NS, decodeKV, encodeKV

__all__ = [
    'default_negotiator',
    'encrypted_negotiator',
    'SessionNegotiator',
    'Association',
]


all_association_types = [
    'HMAC-SHA256',
    'HMAC-SHA1',
]

default_association_order = [
    ('HMAC-SHA256', 'DH-SHA256'),
    ('HMAC-SHA256', 'no-encryption'),
    ('HMAC-SHA1', 'DH-SHA1'),
    ('HMAC-SHA1', 'no-encryption'),
]

only_encrypted_association_order = [
    ('HMAC-SHA256', 'DH-SHA256'),
    ('HMAC-SHA1', 'DH-SHA1'),
]


def getSessionTypes(assoc_type):
    """Return the allowed session types for a given association type"""
    assoc_to_session = {
        'HMAC-SHA256': ['DH-SHA256', 'no-encryption'],
        'HMAC-SHA1': ['DH-SHA1', 'no-encryption'],
    }
    return assoc_to_session.get(assoc_type, [])


def checkSessionType(assoc_type, session_type):
    """Check to make sure that this pair of assoc type and session
    type are allowed"""
    if session_type not in getSessionTypes(assoc_type):
        raise ValueError(
            'Session type %r not valid for assocation type %r'
            % (session_type, assoc_type))


class SessionNegotiator(object):
    """A session negotiator controls the allowed and preferred
    association types and association session types.

    When the relying party makes an association request, it calls
    C{L{getAllowedTypes}} to get the preferred association type and
    association session type.

    If the relying party gets an error response indicating that the
    requested association/session type is not supported by the
    provider, and the response names an association/session type to
    try, it calls C{L{isAllowed}} to determine if it should try again
    with the given combination.

    @ivar allowed_types: A list of association/session types that are
        allowed. The order of the pairs in this list determines
        preference.
    @type allowed_types: List[Tuple[str, str]]
    """

    def __init__(self, allowed_types):
        self.setAllowedTypes(allowed_types)

    def copy(self):
        return self.__class__(list(self.allowed_types))

    def setAllowedTypes(self, allowed_types):
        """Set the allowed association types, checking to make sure
        each combination is valid."""
        for (assoc_type, session_type) in allowed_types:
            checkSessionType(assoc_type, session_type)

        self.allowed_types = list(allowed_types)

    def addAllowedType(self, assoc_type, session_type=None):
        """Add an association type and session type to the allowed
        types list. The assocation/session pairs are tried in the
        order that they are added."""
        if session_type is None:
            available = getSessionTypes(assoc_type)

            if not available:
                raise ValueError('No session available for association type %r'
                                 % (assoc_type,))

            for session_type in available:
                self.addAllowedType(assoc_type, session_type)
        else:
            checkSessionType(assoc_type, session_type)
            self.allowed_types.append((assoc_type, session_type))

    def isAllowed(self, assoc_type, session_type):
        """Is this combination of association type and session type allowed?"""
        assoc_good = (assoc_type, session_type) in self.allowed_types
        matches = session_type in getSessionTypes(assoc_type)
        return assoc_good and matches

    def getAllowedType(self, secure=True):
        """Get a pair of assocation type and session type that are
        supported.

        @param secure: Whether the provider is reached over a secure
            channel. C{'no-encryption'} sessions are skipped otherwise.
        """
        for assoc_type, session_type in self.allowed_types:
            if session_type == 'no-encryption' and not secure:
                continue
            return (assoc_type, session_type)
        return (None, None)


default_negotiator = SessionNegotiator(default_association_order)
encrypted_negotiator = SessionNegotiator(only_encrypted_association_order)


def getSecretSize(assoc_type):
    if assoc_type == 'HMAC-SHA1':
        return 20
    elif assoc_type == 'HMAC-SHA256':
        return 32
    else:
        raise ValueError('Unsupported association type: %r' % (assoc_type,))


class Association(object):
    """
    This class represents an association between a provider and a
    relying party.  In general, users of this library will never see
    instances of this object.  The only exception is if you implement
    a custom C{L{OpenIDStore<openid_rp.store.interface.OpenIDStore>}}.

    If you do implement such a store, it will need to store the values
    of the C{L{handle}}, C{L{secret}}, C{L{issued}}, C{L{lifetime}}, and
    C{L{assoc_type}} instance variables, keyed by the provider
    endpoint URL.

    @ivar handle: This is the handle the provider gave this association.
    @type handle: str

    @ivar secret: This is the shared secret the provider generated for
        this association.
    @type secret: bytes

    @ivar issued: This is the time this association was issued, in
        seconds since 00:00 GMT, January 1, 1970.  (ie, a unix
        timestamp)
    @type issued: C{int}

    @ivar lifetime: This is the amount of time this association is
        good for, measured in seconds since the association was
        issued. Always positive.
    @type lifetime: C{int}

    @ivar assoc_type: This is the type of association this instance
        represents, C{'HMAC-SHA1'} or C{'HMAC-SHA256'}.
    @type assoc_type: str

    @ivar server_url: The provider endpoint this association is with,
        if known.
    @type server_url: str or NoneType

    @cvar hmac_algorithms: Mapping of association type to hash algorithm.
    @type hmac_algorithms: Dict[str, hashes.HashAlgorithm]
    """

    # The ordering and name of keys as stored by serialize
    assoc_keys = [
        'version',
        'handle',
        'secret',
        'issued',
        'lifetime',
        'assoc_type',
    ]

    hmac_algorithms = {
        'HMAC-SHA1': hashes.SHA1(),
        'HMAC-SHA256': hashes.SHA256(),
    }

    @classmethod
    def fromExpiresIn(cls, expires_in, handle, secret, assoc_type, server_url=None, now=None):
        """
        This is an alternate constructor used by the association
        manager to create associations from an association response.

        @param expires_in: This is the amount of time this association
            is good for, measured in seconds since the association was
            issued.
        @type expires_in: C{int}

        @param now: The issue time, defaults to the current time.
        @type now: C{int}
        """
        if now is None:
            now = int(time.time())
        return cls(handle, secret, now, expires_in, assoc_type, server_url)

    def __init__(self, handle, secret, issued, lifetime, assoc_type, server_url=None):
        """
        This is the standard constructor for creating an association.

        @raises ValueError: If the association type is not supported or
            the lifetime is not positive.
        """
        if assoc_type not in all_association_types:
            fmt = '%r is not a supported association type'
            raise ValueError(fmt % (assoc_type,))

        if lifetime <= 0:
            raise ValueError('Association lifetime must be positive, got %r' % (lifetime,))

        if not isinstance(secret, bytes):
            raise TypeError('Association secret must be bytes')

        self.handle = handle
        self.secret = secret
        self.issued = issued
        self.lifetime = lifetime
        self.assoc_type = assoc_type
        self.server_url = server_url

    @property
    def expires(self):
        """The unix timestamp after which this association is no longer valid."""
        return self.issued + self.lifetime

    def getExpiresIn(self, now=None):
        """
        This returns the number of seconds this association is still
        valid for, or C{0} if the association is no longer valid.

        @rtype: C{int}
        """
        if now is None:
            now = int(time.time())

        return max(0, self.expires - now)

    expiresIn = property(getExpiresIn)

    def isExpired(self, now=None):
        return self.getExpiresIn(now) <= 0

    def __eq__(self, other):
        """
        This checks to see if two C{L{Association}} instances
        represent the same association.

        @rtype: C{bool}
        """
        return type(self) == type(other) and self.__dict__ == other.__dict__

    def __ne__(self, other):
        return not (self == other)

    def __hash__(self):
        return hash((self.server_url, self.handle))

    def serialize(self):
        """
        Convert an association to KV form.

        @return: String in KV form suitable for deserialization by
            deserialize.

        @rtype: str
        """
        data = {
            'version': '2',
            'handle': self.handle,
            'secret': oidutil.toBase64(self.secret),
            'issued': str(int(self.issued)),
            'lifetime': str(int(self.lifetime)),
            'assoc_type': self.assoc_type
        }

        assert len(data) == len(self.assoc_keys)
        pairs = []
        for field_name in self.assoc_keys:
            pairs.append((field_name, data[field_name]))

        return encodeKV(pairs)

    @classmethod
    def deserialize(cls, assoc_s, server_url=None):
        """
        Parse an association as stored by serialize().

        inverse of serialize

        @param assoc_s: Association as serialized by serialize()
        @type assoc_s: str

        @return: instance of this class
        """
        pairs = decodeKV(assoc_s)
        keys = []
        values = []
        for k, v in pairs:
            keys.append(k)
            values.append(v)

        if keys != cls.assoc_keys:
            raise ValueError('Unexpected key values: %r' % (keys,))

        version, handle, secret, issued, lifetime, assoc_type = values
        if version != '2':
            raise ValueError('Unknown version: %r' % version)
        issued = int(issued)
        lifetime = int(lifetime)
        secret = oidutil.fromBase64(secret)
        return cls(handle, secret, issued, lifetime, assoc_type, server_url)

    def sign(self, pairs):
        """
        Generate a signature for a sequence of (key, value) pairs

        @param pairs: The pairs to sign, in order
        @type pairs: Iterable[Tuple[str, str]]

        @return: The binary signature of this sequence of pairs
        @rtype: bytes

        @raises openid_rp.message.MalformedMessage: If a pair can not be
            represented in KV form.
        """
        kv = encodeKV(pairs, strict=False)

        try:
            algorithm = self.hmac_algorithms[self.assoc_type]
        except KeyError:
            raise ValueError(
                'Unknown association type: %r' % (self.assoc_type,))

        hmac = HMAC(self.secret, algorithm)
        hmac.update(kv.encode('utf-8'))
        return hmac.finalize()

    def makePairs(self, message):
        """Return the signed (key, value) pairs of a message in the
        order of its signed list.

        @raises ValueError: If the message has no signed list.
        @raises KeyError: If a key in the signed list is absent from
            the message.
        """
        signed_list = message.getSignedList()
        if signed_list is None:
            raise ValueError('Message has no signed list')

        data = message.toPostArgs()
        pairs = []
        for field in signed_list:
            pairs.append((field, data['openid.' + field]))
        return pairs

    def getMessageSignature(self, message):
        """Return the signature of a message.

        @return: the signature, base64 encoded
        @rtype: str

        @raises ValueError: If there is no signed list.
        @raises KeyError: If a signed field is missing.
        """
        pairs = self.makePairs(message)
        return oidutil.toBase64(self.sign(pairs))

    def signMessage(self, message, signed_list=None):
        """Add a signature (and a signed list) to a message.

        @param signed_list: Keys to sign, without the C{openid.}
            prefix, in order. Defaults to every C{openid.} argument of
            the message, sorted.

        @return: a new Message object with a signature
        @rtype: L{openid_rp.message.Message}
        """
        if (message.hasKey(OPENID_NS, 'sig') or message.hasKey(OPENID_NS, 'signed')):
            raise ValueError('Message already has signed list or signature')

        extant_handle = message.getArg(OPENID_NS, 'assoc_handle')
        if extant_handle and extant_handle != self.handle:
            raise ValueError("Message has a different association handle")

        signed_message = message.copy()
        signed_message.setArg(OPENID_NS, 'assoc_handle', self.handle)
        if signed_list is None:
            message_keys = signed_message.toPostArgs().keys()
            signed_list = [k[7:] for k in message_keys
                           if k.startswith('openid.')]
            signed_list.append('signed')
            signed_list.sort()
        signed_message.setArg(OPENID_NS, 'signed', ','.join(signed_list))
        sig = self.getMessageSignature(signed_message)
        signed_message.setArg(OPENID_NS, 'sig', sig)
        return signed_message

    def __repr__(self):
        return "<%s.%s %s %s>" % (
            self.__class__.__module__,
            self.__class__.__name__,
            self.assoc_type,
            self.handle)
