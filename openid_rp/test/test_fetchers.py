import unittest
from unittest.mock import Mock, sentinel

import requests
import responses

from openid_rp import fetchers


def assertResponse(expected, actual):
    assert expected.final_url == actual.final_url, (
        "%r != %r" % (expected.final_url, actual.final_url))
    assert expected.status == actual.status
    assert expected.body == actual.body, "%r != %r" % (expected.body, actual.body)
    got_headers = dict(actual.headers)
    for k, v in expected.headers.items():
        assert got_headers[k] == v, (k, v, got_headers[k])


class FakeFetcher(object):
    sentinel = object()

    def fetch(self, *args, **kwargs):
        return self.sentinel


class DefaultFetcherTest(unittest.TestCase):

    def setUp(self):
        """reset the default fetcher to None"""
        fetchers.setDefaultFetcher(None)

    def tearDown(self):
        """reset the default fetcher to None"""
        fetchers.setDefaultFetcher(None)

    def test_getDefaultNotNone(self):
        """Make sure that None is never returned as a default fetcher"""
        self.assertIsNotNone(fetchers.getDefaultFetcher())
        fetchers.setDefaultFetcher(None)
        self.assertIsNotNone(fetchers.getDefaultFetcher())

    def test_setDefault(self):
        """Make sure the getDefaultFetcher returns the object set for
        setDefaultFetcher"""
        sentinel = FakeFetcher()
        fetchers.setDefaultFetcher(sentinel, wrap_exceptions=False)
        self.assertEqual(fetchers.getDefaultFetcher(), sentinel)

    def test_callFetch(self):
        """Make sure that fetchers.fetch() uses the default fetcher
        instance that was set."""
        fetchers.setDefaultFetcher(FakeFetcher())
        actual = fetchers.fetch('bad://url')
        self.assertEqual(actual, FakeFetcher.sentinel)

    def test_wrappedByDefault(self):
        """Make sure that the default fetcher instance wraps
        exceptions by default"""
        default_fetcher = fetchers.getDefaultFetcher()
        self.assertIsInstance(default_fetcher, fetchers.ExceptionWrappingFetcher)
        self.assertRaises(fetchers.HTTPFetchingError, fetchers.fetch, 'ftp://example.cz/')

    def test_notWrapped(self):
        """Make sure that if we set a non-wrapped fetcher as default,
        it will not wrap exceptions."""
        fetcher = fetchers.RequestsFetcher()
        fetchers.setDefaultFetcher(fetcher, wrap_exceptions=False)
        self.assertNotIsInstance(fetchers.getDefaultFetcher(), fetchers.ExceptionWrappingFetcher)
        with self.assertRaises(ValueError):
            fetchers.fetch('ftp://example.cz/')


class ExceptionWrappingFetcherTest(unittest.TestCase):
    def test_success(self):
        inner = Mock()
        inner.fetch.return_value = sentinel.response
        fetcher = fetchers.ExceptionWrappingFetcher(inner)
        self.assertEqual(fetcher.fetch('http://example.cz/', timeout=5), sentinel.response)
        inner.fetch.assert_called_once_with('http://example.cz/', timeout=5)

    def test_wraps(self):
        error = RuntimeError('Oops')
        inner = Mock()
        inner.fetch.side_effect = error
        fetcher = fetchers.ExceptionWrappingFetcher(inner)
        with self.assertRaises(fetchers.HTTPFetchingError) as catcher:
            fetcher.fetch('http://example.cz/')
        self.assertIs(catcher.exception.why, error)

    def test_timeout_kept(self):
        inner = Mock()
        inner.fetch.side_effect = fetchers.FetchTimeout(why='slow')
        fetcher = fetchers.ExceptionWrappingFetcher(inner)
        self.assertRaises(fetchers.FetchTimeout, fetcher.fetch, 'http://example.cz/')


class TestRequestsFetcher(unittest.TestCase):
    """Test `RequestsFetcher` class."""

    fetcher = fetchers.RequestsFetcher()

    def test_get(self):
        # Test GET response
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, 'http://example.cz/', status=200, body=b'BODY',
                     headers={'Content-Type': 'text/plain'})
            response = self.fetcher.fetch('http://example.cz/')
        expected = fetchers.HTTPResponse('http://example.cz/', 200, {'Content-Type': 'text/plain'}, b'BODY')
        assertResponse(expected, response)

    def test_post(self):
        # Test POST response
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, 'http://example.cz/', status=200, body=b'BODY',
                     headers={'Content-Type': 'text/plain'})
            response = self.fetcher.fetch('http://example.cz/', body=b'key=value')
            self.assertEqual(rsps.calls[0].request.body, b'key=value')
        expected = fetchers.HTTPResponse('http://example.cz/', 200, {'Content-Type': 'text/plain'}, b'BODY')
        assertResponse(expected, response)

    def test_user_agent(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, 'http://example.cz/', status=200, body=b'BODY')
            self.fetcher.fetch('http://example.cz/')
            user_agent = rsps.calls[0].request.headers['User-Agent']
        self.assertTrue(user_agent.startswith('python-openid-rp/'))

    def test_redirect(self):
        # Test redirect response - a final response comes from another URL.
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, 'http://example.cz/redirect/', status=302,
                     headers={'Location': 'http://example.cz/target/'})
            rsps.add(responses.GET, 'http://example.cz/target/', status=200, body=b'BODY',
                     headers={'Content-Type': 'text/plain'})
            response = self.fetcher.fetch('http://example.cz/redirect/')
        expected = fetchers.HTTPResponse('http://example.cz/target/', 200, {'Content-Type': 'text/plain'}, b'BODY')
        assertResponse(expected, response)

    def test_error(self):
        # Test error responses - returned as obtained
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, 'http://example.cz/error/', status=500, body=b'BODY',
                     headers={'Content-Type': 'text/plain'})
            response = self.fetcher.fetch('http://example.cz/error/')
        expected = fetchers.HTTPResponse('http://example.cz/error/', 500, {'Content-Type': 'text/plain'}, b'BODY')
        assertResponse(expected, response)

    def test_invalid_url(self):
        with self.assertRaisesRegex(ValueError, 'Bad URL scheme'):
            self.fetcher.fetch('invalid://example.cz/')

    def test_connection_error(self):
        # Test connection error
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, 'http://example.cz/',
                     body=requests.exceptions.ConnectionError('Name or service not known'))
            with self.assertRaisesRegex(requests.exceptions.ConnectionError, 'Name or service not known'):
                self.fetcher.fetch('http://example.cz/')

    def test_timeout(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, 'http://example.cz/', body=requests.exceptions.ReadTimeout('Too slow'))
            with self.assertRaises(fetchers.FetchTimeout) as catcher:
                self.fetcher.fetch('http://example.cz/', timeout=0.5)
        self.assertIsInstance(catcher.exception.why, requests.Timeout)
        self.assertIsInstance(catcher.exception, fetchers.HTTPFetchingError)

    def test_body_limit(self):
        body = b'x' * (fetchers.MAX_RESPONSE_KB * 1024 + 10)
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, 'http://example.cz/', status=200, body=body)
            response = self.fetcher.fetch('http://example.cz/')
        self.assertEqual(len(response.body), fetchers.MAX_RESPONSE_KB * 1024)
