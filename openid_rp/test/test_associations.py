"""Tests for establishing associations with a provider."""
import time
import unittest
from urllib.parse import parse_qsl

import requests
import responses
from cryptography.hazmat.primitives import hashes
from testfixtures import LogCapture

from openid_rp import fetchers
from openid_rp.association import SessionNegotiator
from openid_rp.consumer.associations import (PROTOCOL_MISMATCH, TIMEOUT, UNREACHABLE, AssociationError,
                                             AssociationManager, ServerError, makeKVPost)
from openid_rp.dh import DiffieHellman
from openid_rp.message import OPENID2_NS, OPENID_NS, MalformedMessage, Message, encodeKV
from openid_rp.oidutil import toBase64
from openid_rp.store.memstore import MemoryStore

from .utils import SERVER_URL, makeAssociation

HTTPS_URL = 'https://server.example.com/openid'

HASHES = {'DH-SHA1': hashes.SHA1, 'DH-SHA256': hashes.SHA256}


class ProviderStub(object):
    """Answers association requests the way a provider would.

    @ivar requests: The arguments of each request received.
    @ivar errors: Error responses to send, in order, before answering
        normally.
    @ivar server_public: Public key to send in place of the real one.
    """

    def __init__(self, secret=b'\x42' * 32, handle='{HMAC-SHA256}{handle}', expires_in='3600'):
        self.secret = secret
        self.handle = handle
        self.expires_in = expires_in
        self.requests = []
        self.errors = []
        self.server_public = None

    def __call__(self, request):
        args = dict(parse_qsl(request.body.decode('utf-8')))
        self.requests.append(args)
        if self.errors:
            return 400, {}, encodeKV(sorted(self.errors.pop(0).items()))

        session_type = args['openid.session_type']
        assoc_type = args['openid.assoc_type']
        secret = self.secret[:32 if assoc_type == 'HMAC-SHA256' else 20]
        response = {
            'ns': OPENID2_NS,
            'assoc_handle': self.handle,
            'assoc_type': assoc_type,
            'session_type': session_type,
            'expires_in': self.expires_in,
        }
        if session_type == 'no-encryption':
            response['mac_key'] = toBase64(secret)
        else:
            server_dh = DiffieHellman.fromDefaults()
            response['dh_server_public'] = server_dh.public_key
            if self.server_public is not None:
                response['dh_server_public'] = self.server_public
            enc_mac_key = server_dh.xorSecret(args['openid.dh_consumer_public'], secret, HASHES[session_type]())
            response['enc_mac_key'] = toBase64(enc_mac_key)
        return 200, {}, encodeKV(sorted(response.items()))


class MakeKVPostTest(unittest.TestCase):
    def setUp(self):
        self.request = Message.fromOpenIDArgs({'ns': OPENID2_NS, 'mode': 'check_authentication'})

    def test_success(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, SERVER_URL, body='ns:%s\nis_valid:true\n' % OPENID2_NS)
            response = makeKVPost(self.request, SERVER_URL)
            body = rsps.calls[0].request.body
            content_type = rsps.calls[0].request.headers['Content-Type']
        self.assertEqual(response.getArg(OPENID_NS, 'is_valid'), 'true')
        self.assertEqual(content_type, 'application/x-www-form-urlencoded')
        self.assertEqual(dict(parse_qsl(body.decode('utf-8')))['openid.mode'], 'check_authentication')

    def test_server_error(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, SERVER_URL, status=400,
                     body='ns:%s\nerror:Go away\nerror_code:bad\n' % OPENID2_NS)
            with self.assertRaises(ServerError) as catcher:
                makeKVPost(self.request, SERVER_URL)
        self.assertEqual(catcher.exception.error_text, 'Go away')
        self.assertEqual(catcher.exception.error_code, 'bad')

    def test_bad_status(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, SERVER_URL, status=500, body='Oops')
            self.assertRaises(fetchers.HTTPFetchingError, makeKVPost, self.request, SERVER_URL)

    def test_not_kv(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, SERVER_URL, body='<html>Not KV</html>\n')
            self.assertRaises(MalformedMessage, makeKVPost, self.request, SERVER_URL)


class EstablishTest(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.manager = AssociationManager(self.store)
        self.provider = ProviderStub()

    def establish(self, server_url=SERVER_URL):
        with responses.RequestsMock() as rsps:
            rsps.add_callback(responses.POST, server_url, callback=self.provider)
            return self.manager.establish(server_url)

    def test_dh_sha256(self):
        with LogCapture() as logbook:
            assoc = self.establish()
        self.assertEqual(assoc.handle, '{HMAC-SHA256}{handle}')
        self.assertEqual(assoc.assoc_type, 'HMAC-SHA256')
        self.assertEqual(assoc.secret, b'\x42' * 32)
        self.assertEqual(assoc.lifetime, 3600)
        self.assertEqual(assoc.server_url, SERVER_URL)
        self.assertEqual(self.store.getAssociation(SERVER_URL, assoc.handle), assoc)
        request = self.provider.requests[0]
        self.assertEqual(request['openid.mode'], 'associate')
        self.assertEqual(request['openid.ns'], OPENID2_NS)
        self.assertEqual(request['openid.session_type'], 'DH-SHA256')
        # Default modulus and generator are not sent
        self.assertNotIn('openid.dh_modulus', request)
        logbook.check_present(('openid_rp.consumer.associations', 'INFO',
                               'Established HMAC-SHA256 association with %s' % SERVER_URL))

    def test_secret_not_logged(self):
        with LogCapture() as logbook:
            self.establish()
        for record in logbook.records:
            self.assertNotIn(toBase64(b'\x42' * 32), record.getMessage())

    def test_dh_sha1(self):
        self.manager.negotiator = SessionNegotiator([('HMAC-SHA1', 'DH-SHA1')])
        assoc = self.establish()
        self.assertEqual(assoc.assoc_type, 'HMAC-SHA1')
        self.assertEqual(assoc.secret, b'\x42' * 20)

    def test_dh_public_key_out_of_range(self):
        for server_public in ('AQ==', '', 'A'):
            self.provider.server_public = server_public
            with self.assertRaises(AssociationError) as catcher:
                self.establish()
            self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)
        self.assertIsNone(self.store.getAssociation(SERVER_URL))

    def test_no_encryption_https(self):
        self.manager.negotiator = SessionNegotiator([('HMAC-SHA256', 'no-encryption')])
        assoc = self.establish(HTTPS_URL)
        self.assertEqual(assoc.secret, b'\x42' * 32)
        self.assertEqual(self.provider.requests[0]['openid.session_type'], 'no-encryption')

    def test_no_encryption_short_secret(self):
        self.manager.negotiator = SessionNegotiator([('HMAC-SHA256', 'no-encryption')])
        self.provider.secret = b'\x42' * 20
        with self.assertRaises(AssociationError) as catcher:
            self.establish(HTTPS_URL)
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)
        self.assertIsNone(self.store.getAssociation(HTTPS_URL))

    def test_no_encryption_http(self):
        self.manager.negotiator = SessionNegotiator([('HMAC-SHA256', 'no-encryption')])
        with self.assertRaises(AssociationError) as catcher:
            self.manager.establish(SERVER_URL)
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)

    def test_fallback(self):
        self.provider.errors.append({'ns': OPENID2_NS, 'error': 'Use SHA1', 'error_code': 'unsupported-type',
                                     'assoc_type': 'HMAC-SHA1', 'session_type': 'DH-SHA1'})
        assoc = self.establish()
        self.assertEqual(assoc.assoc_type, 'HMAC-SHA1')
        self.assertEqual([r['openid.session_type'] for r in self.provider.requests], ['DH-SHA256', 'DH-SHA1'])

    def test_fallback_once(self):
        error = {'ns': OPENID2_NS, 'error': 'Use SHA1', 'error_code': 'unsupported-type',
                 'assoc_type': 'HMAC-SHA1', 'session_type': 'DH-SHA1'}
        self.provider.errors.extend([error, error])
        with self.assertRaises(AssociationError) as catcher:
            self.establish()
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)
        self.assertEqual(len(self.provider.requests), 2)

    def test_fallback_not_allowed(self):
        self.provider.errors.append({'ns': OPENID2_NS, 'error': 'Use plain text', 'error_code': 'unsupported-type',
                                     'assoc_type': 'HMAC-SHA1', 'session_type': 'no-encryption'})
        with self.assertRaises(AssociationError) as catcher:
            self.establish()
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)
        self.assertEqual(len(self.provider.requests), 1)

    def test_fallback_missing_types(self):
        self.provider.errors.append({'ns': OPENID2_NS, 'error': 'No', 'error_code': 'unsupported-type'})
        with self.assertRaises(AssociationError) as catcher:
            self.establish()
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)

    def test_other_server_error(self):
        self.provider.errors.append({'ns': OPENID2_NS, 'error': 'Internal trouble'})
        with self.assertRaises(AssociationError) as catcher:
            self.establish()
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)
        self.assertEqual(catcher.exception.detail, 'Internal trouble')

    def test_bad_expires_in(self):
        for expires_in in ('never', '0', '-10'):
            self.provider.expires_in = expires_in
            with self.assertRaises(AssociationError) as catcher:
                self.establish()
            self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)
        self.assertIsNone(self.store.getAssociation(SERVER_URL))

    def test_session_mismatch(self):
        def provider(request):
            status, headers, body = self.provider(request)
            return status, headers, body.replace('session_type:DH-SHA256', 'session_type:DH-SHA1')

        with responses.RequestsMock() as rsps:
            rsps.add_callback(responses.POST, SERVER_URL, callback=provider)
            with self.assertRaises(AssociationError) as catcher:
                self.manager.establish(SERVER_URL)
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)

    def test_missing_field(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, SERVER_URL, body='ns:%s\nassoc_type:HMAC-SHA256\n' % OPENID2_NS)
            with self.assertRaises(AssociationError) as catcher:
                self.manager.establish(SERVER_URL)
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)

    def test_timeout(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, SERVER_URL, body=requests.exceptions.ReadTimeout('Too slow'))
            with self.assertRaises(AssociationError) as catcher:
                self.manager.establish(SERVER_URL, timeout=0.5)
        self.assertEqual(catcher.exception.reason, TIMEOUT)
        self.assertIsNone(self.store.getAssociation(SERVER_URL))

    def test_unreachable(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, SERVER_URL, body=requests.exceptions.ConnectionError('Name or service not known'))
            with self.assertRaises(AssociationError) as catcher:
                self.manager.establish(SERVER_URL)
        self.assertEqual(catcher.exception.reason, UNREACHABLE)
        self.assertIn(SERVER_URL, str(catcher.exception))

    def test_nothing_allowed(self):
        self.manager.negotiator = SessionNegotiator([])
        with self.assertRaises(AssociationError) as catcher:
            self.manager.establish(SERVER_URL)
        self.assertEqual(catcher.exception.reason, PROTOCOL_MISMATCH)


class LookupTest(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.manager = AssociationManager(self.store)
        self.assoc = makeAssociation()
        self.store.storeAssociation(SERVER_URL, self.assoc)

    def test_lookup(self):
        self.assertEqual(self.manager.lookup(SERVER_URL, self.assoc.handle), self.assoc)
        self.assertIsNone(self.manager.lookup(SERVER_URL, 'unknown'))
        self.assertIsNone(self.manager.lookup(SERVER_URL, None))
        self.assertIsNone(self.manager.lookup('http://other.example.com/', self.assoc.handle))

    def test_unknown_handles_not_kept(self):
        for i in range(1000):
            self.assertIsNone(self.manager.lookup(SERVER_URL, '{HMAC-SHA1}{bogus-%d}' % i))
        self.manager.invalidate(SERVER_URL, '{HMAC-SHA1}{bogus}')
        self.assertEqual(len(self.manager._locks), 0)

    def test_lock_shared_while_held(self):
        lock = self.manager._lockFor(SERVER_URL, self.assoc.handle)
        self.assertIs(self.manager._lockFor(SERVER_URL, self.assoc.handle), lock)
        self.assertIsNot(self.manager._lockFor(SERVER_URL, 'other'), lock)

    def test_lookup_expired(self):
        expired = makeAssociation(handle='expired', issued=int(time.time()) - 1000)
        self.store.storeAssociation(SERVER_URL, expired)
        self.assertIsNone(self.manager.lookup(SERVER_URL, 'expired'))

    def test_invalidate(self):
        with LogCapture() as logbook:
            self.assertTrue(self.manager.invalidate(SERVER_URL, self.assoc.handle))
        logbook.check(('openid_rp.consumer.associations', 'INFO',
                       'Removed association %s for %s' % (self.assoc.handle, SERVER_URL)))
        self.assertIsNone(self.manager.lookup(SERVER_URL, self.assoc.handle))
        self.assertFalse(self.manager.invalidate(SERVER_URL, self.assoc.handle))

    def test_getAssociation_stored(self):
        # No request is made when the store has a live association
        with responses.RequestsMock():
            self.assertEqual(self.manager.getAssociation(SERVER_URL), self.assoc)

    def test_getAssociation_establishes(self):
        self.store.removeAssociation(SERVER_URL, self.assoc.handle)
        provider = ProviderStub()
        with responses.RequestsMock() as rsps:
            rsps.add_callback(responses.POST, SERVER_URL, callback=provider)
            assoc = self.manager.getAssociation(SERVER_URL)
        self.assertEqual(assoc.handle, provider.handle)
        self.assertEqual(len(provider.requests), 1)
