"""Verification of the signature on a positive assertion.

The provider signs the fields it lists in C{openid.signed}, in that
order, as newline terminated C{key:value} pairs.  L{verify} rebuilds
that string from the response, computes the MAC with the association
secret and compares it with C{openid.sig} in constant time.  Fields
not in the signed list take no part in the check.

Every malformed input resolves to a failed L{SignatureCheck}, never to
an exception.
"""
import logging

from cryptography.hazmat.primitives.constant_time import bytes_eq

from openid_rp import oidutil
from openid_rp.constants import ASSOCIATION_NOT_FOUND, MAC_MISMATCH, MISSING_SIGNED_FIELD
from openid_rp.message import OPENID_NS

__all__ = ['SignatureCheck', 'verify']

_LOGGER = logging.getLogger(__name__)


class SignatureCheck(object):
    """Outcome of a signature check.

    Instances are true when the signature verified.

    @ivar failure_reason: C{None} or one of C{MISSING_SIGNED_FIELD},
        C{MAC_MISMATCH} or C{ASSOCIATION_NOT_FOUND}.
    @ivar signed_list: The keys covered by the signature, without the
        C{openid.} prefix, when it verified.
    """

    def __init__(self, failure_reason=None, signed_list=None):
        self.failure_reason = failure_reason
        self.signed_list = signed_list or []

    @property
    def verified(self):
        return self.failure_reason is None

    def __bool__(self):
        return self.verified

    def __repr__(self):
        return '<%s verified=%r reason=%r>' % (self.__class__.__name__, self.verified, self.failure_reason)


def verify(message, association, now=None):
    """Check the signature of a message against an association.

    @param message: The response message
    @type message: L{openid_rp.message.Message}

    @param association: The association named by the response handle,
        or C{None} if it is unknown.
    @type association: L{openid_rp.association.Association} or NoneType

    @rtype: L{SignatureCheck}
    """
    if association is None or association.isExpired(now):
        _LOGGER.info('No usable association for signature check')
        return SignatureCheck(ASSOCIATION_NOT_FOUND)

    message_sig = message.getArg(OPENID_NS, 'sig')
    if not message_sig:
        _LOGGER.info('Response has no signature')
        return SignatureCheck(MISSING_SIGNED_FIELD)

    try:
        pairs = association.makePairs(message)
    except ValueError:
        _LOGGER.info('Response has no signed list')
        return SignatureCheck(MISSING_SIGNED_FIELD)
    except KeyError as error:
        _LOGGER.info('Signed field %s is missing from the response', error.args[0])
        return SignatureCheck(MISSING_SIGNED_FIELD)

    try:
        received = oidutil.fromBase64(message_sig)
        calculated = association.sign(pairs)
    except ValueError as error:
        _LOGGER.debug('Can not compute signature: %s', error)
        return SignatureCheck(MAC_MISMATCH)

    if not bytes_eq(calculated, received):
        _LOGGER.info('Signature mismatch for association %s', association.handle)
        return SignatureCheck(MAC_MISMATCH)

    return SignatureCheck(signed_list=[key for key, _ in pairs])
