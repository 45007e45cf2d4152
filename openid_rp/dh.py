"""Diffie-Hellman key agreement protecting the MAC key of an
association.

Integers travel base64 encoded in their big-endian two's complement
form, called btwoc in the OpenID 2.0 specification (section 4.2).
"""
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.dh import DHParameterNumbers, DHPublicNumbers

from openid_rp.constants import DEFAULT_DH_GENERATOR, DEFAULT_DH_MODULUS
from openid_rp.oidutil import fromBase64, toBase64

__all__ = ['DiffieHellman', 'KeyExchangeError', 'btwocToInt', 'intToBtwoc']


class KeyExchangeError(ValueError):
    """The values sent by the other party can not complete the
    exchange."""


def intToBtwoc(value):
    """Encode a non-negative integer in the fewest bytes that keep the
    top bit clear.

    @type value: int
    @rtype: bytes
    """
    return value.to_bytes(value.bit_length() // 8 + 1, 'big')


def btwocToInt(data):
    """
    @type data: bytes
    @rtype: int
    """
    return int.from_bytes(data, 'big')


def _readInt(value64, name):
    try:
        data = fromBase64(value64)
    except ValueError as why:
        raise KeyExchangeError('%s is not base64: %s' % (name, why))
    if not data:
        raise KeyExchangeError('%s is empty' % (name,))
    return btwocToInt(data)


class DiffieHellman(object):
    """One side of a key exchange, with a freshly generated private key.

    @ivar modulus: The prime modulus
    @type modulus: int
    @ivar generator: The generator
    @type generator: int
    """

    def __init__(self, modulus, generator):
        """Create a new instance.

        @type modulus: str, base64 encoded
        @type generator: str, base64 encoded
        @raises KeyExchangeError: If the parameters are unusable.
        """
        self.modulus = _readInt(modulus, 'Modulus')
        self.generator = _readInt(generator, 'Generator')
        try:
            self.parameter_numbers = DHParameterNumbers(self.modulus, self.generator)
            self.private_key = self.parameter_numbers.parameters().generate_private_key()
        except ValueError as why:
            raise KeyExchangeError('Unusable parameters: %s' % (why,))

    @classmethod
    def fromDefaults(cls):
        """Create Diffie-Hellman with the default modulus and generator."""
        return cls(DEFAULT_DH_MODULUS, DEFAULT_DH_GENERATOR)

    @property
    def parameters(self):
        """Base64 encoded modulus and generator, as sent in an
        association request.

        @rtype: Tuple[str, str]
        """
        return toBase64(intToBtwoc(self.modulus)), toBase64(intToBtwoc(self.generator))

    @property
    def public_key(self):
        """Base64 encoded public key.

        @rtype: str
        """
        return toBase64(intToBtwoc(self.private_key.public_key().public_numbers().y))

    def usingDefaultValues(self):
        return self.parameters == (DEFAULT_DH_MODULUS, DEFAULT_DH_GENERATOR)

    def sharedSecret(self, other_public):
        """Agree on the shared secret.

        @param other_public: Base64 encoded public key of the other party
        @type other_public: str

        @return: The shared secret in btwoc form
        @rtype: bytes

        @raises KeyExchangeError: If the key is malformed or not within
            M{1 < y < p - 1}.
        """
        y = _readInt(other_public, 'Public key')
        if not 1 < y < self.modulus - 1:
            raise KeyExchangeError('Public key is out of range')
        try:
            shared = self.private_key.exchange(DHPublicNumbers(y, self.parameter_numbers).public_key())
        except ValueError as why:
            raise KeyExchangeError('Exchange failed: %s' % (why,))
        # The backend pads the secret to the modulus size
        return intToBtwoc(btwocToInt(shared))

    def xorSecret(self, other_public, secret, algorithm):
        """Mask a MAC key with the hash of the shared secret.

        Masking is its own inverse: the provider masks the key with it
        and the relying party unmasks it the same way.

        @param other_public: Base64 encoded public key of the other party
        @type other_public: str
        @type secret: bytes
        @type algorithm: hashes.HashAlgorithm
        @rtype: bytes

        @raises KeyExchangeError: If the public key is unusable or the
            secret is not as long as the digest.
        """
        digest = hashes.Hash(algorithm)
        digest.update(self.sharedSecret(other_public))
        mask = digest.finalize()
        if len(secret) != len(mask):
            raise KeyExchangeError('Secret of %d bytes does not match a %s digest' % (len(secret), algorithm.name))
        return bytes(a ^ b for a, b in zip(secret, mask))
