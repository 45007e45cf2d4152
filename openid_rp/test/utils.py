"""Test utilities."""
import time

from openid_rp import message
from openid_rp.association import Association
from openid_rp.store.nonce import mkNonce

SERVER_URL = 'http://server.example.com/openid'
CLAIMED_ID = 'http://dimitrij.example.com/'
LOCAL_ID = 'http://dimitrij.example.com/'
RETURN_TO = 'http://rp.example.com/users/auth/open_id/callback'
REALM = 'http://rp.example.com/'
ASSOC_HANDLE = '{HMAC-SHA1}{5f0c0f6b}{1XvjTg==}'
SECRET = b'\x8a\x13\xd5\x0b\x8e\x85\xbc\x1c\x7fS\xe2\xd3\x8e\xff\xec\x85\x17\x8a{\xa0'

# The signed list providers use for positive assertions
SIGNED_LIST = ['op_endpoint', 'claimed_id', 'identity', 'return_to', 'response_nonce', 'assoc_handle']


class OpenIDTestMixin(object):
    """Mixin providing custom asserts."""

    def assertOpenIDValueEqual(self, msg, key, expected, ns=None):
        """Check OpenID message contains key with expected value."""
        if ns is None:
            ns = message.OPENID_NS

        actual = msg.getArg(ns, key)
        error_format = 'Wrong value for openid.%s: expected=%s, actual=%s'
        error_message = error_format % (key, expected, actual)
        self.assertEqual(actual, expected, error_message)

    def assertOpenIDKeyMissing(self, msg, key, ns=None):
        if ns is None:
            ns = message.OPENID_NS

        error_message = 'openid.%s unexpectedly present' % key
        self.assertFalse(msg.hasKey(ns, key), error_message)


def makeAssociation(handle=ASSOC_HANDLE, secret=SECRET, lifetime=600, assoc_type='HMAC-SHA1', server_url=SERVER_URL,
                    issued=None):
    """Return an association issued now, unless told otherwise."""
    if issued is None:
        issued = int(time.time())
    return Association(handle, secret, issued, lifetime, assoc_type, server_url)


def makeIdRes(assoc, return_to=RETURN_TO, nonce=None, extra=None, signed_list=None, **overrides):
    """Build a signed positive assertion as a provider would send it.

    @param extra: Further arguments, without the C{openid.} prefix,
        added before signing.
    @param overrides: Core fields to replace before signing, C{None}
        drops the field.
    @rtype: L{openid_rp.message.Message}
    """
    if nonce is None:
        nonce = mkNonce()
    args = {
        'ns': message.OPENID2_NS,
        'mode': 'id_res',
        'op_endpoint': SERVER_URL,
        'claimed_id': CLAIMED_ID,
        'identity': LOCAL_ID,
        'return_to': return_to,
        'response_nonce': nonce,
    }
    args.update(overrides)
    if extra:
        args.update(extra)
    args = dict((key, value) for key, value in args.items() if value is not None)
    msg = message.Message.fromOpenIDArgs(args)
    if signed_list is None:
        signed_list = list(SIGNED_LIST)
    return assoc.signMessage(msg, signed_list)


def toCallback(msg):
    """Return the query string a provider redirect would carry."""
    return msg.toURLEncoded()
