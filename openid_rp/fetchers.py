"""This module contains the HTTP fetcher interface and its C{requests} implementation."""
import logging
import sys

import requests

import openid_rp

__all__ = ['fetch', 'getDefaultFetcher', 'setDefaultFetcher', 'HTTPResponse',
           'HTTPFetcher', 'createHTTPFetcher', 'HTTPFetchingError', 'FetchTimeout',
           'RequestsFetcher']

_LOGGER = logging.getLogger(__name__)

USER_AGENT = "python-openid-rp/%s (%s)" % (openid_rp.__version__, sys.platform)
MAX_RESPONSE_KB = 1024


def fetch(url, body=None, headers=None, timeout=None):
    """Invoke the fetch method on the default fetcher. Most users
    should need only this method.

    @raises Exception: any exceptions that may be raised by the default fetcher
    """
    fetcher = getDefaultFetcher()
    return fetcher.fetch(url, body, headers, timeout=timeout)


def createHTTPFetcher():
    """Create a default HTTP fetcher instance."""
    return RequestsFetcher()


# Contains the currently set HTTP fetcher. If it is set to None, the
# library will call createHTTPFetcher() to set it. Do not access this
# variable outside of this module.
_default_fetcher = None


def getDefaultFetcher():
    """Return the default fetcher instance
    if no fetcher has been set, it will create a default fetcher.

    @return: the default fetcher
    @rtype: HTTPFetcher
    """
    global _default_fetcher

    if _default_fetcher is None:
        setDefaultFetcher(createHTTPFetcher())

    return _default_fetcher


def setDefaultFetcher(fetcher, wrap_exceptions=True):
    """Set the default fetcher

    @param fetcher: The fetcher to use as the default HTTP fetcher
    @type fetcher: HTTPFetcher

    @param wrap_exceptions: Whether to wrap exceptions thrown by the
        fetcher wil HTTPFetchingError so that they may be caught
        easier. By default, exceptions will be wrapped. In general,
        unwrapped fetchers are useful for debugging of fetching errors
        or if your fetcher raises well-known exceptions that you would
        like to catch.
    @type wrap_exceptions: bool
    """
    global _default_fetcher
    if fetcher is None or not wrap_exceptions:
        _default_fetcher = fetcher
    else:
        _default_fetcher = ExceptionWrappingFetcher(fetcher)


class HTTPResponse(object):
    """Response to an HTTP request.

    @ivar final_url: The URL of the response, after redirects.
    @ivar status: The HTTP status code.
    @ivar headers: Mapping of response headers.  Lookups are case
        insensitive when the response comes from L{RequestsFetcher}.
    @ivar body: The response body.
    @type body: bytes
    """
    headers = None
    status = None
    body = None
    final_url = None

    def __init__(self, final_url=None, status=None, headers=None, body=None):
        self.final_url = final_url
        self.status = status
        self.headers = headers
        self.body = body

    def __repr__(self):
        return "<%s status %s for %s>" % (self.__class__.__name__,
                                          self.status,
                                          self.final_url)


class HTTPFetcher(object):
    """
    This class is the interface for HTTP fetchers.  This interface is
    only important if you need to write a new fetcher for some reason.
    """

    def fetch(self, url, body=None, headers=None, timeout=None):
        """
        This performs an HTTP POST or GET, following redirects along
        the way. If a body is specified, then the request will be a
        POST. Otherwise, it will be a GET.

        @type body: bytes

        @param headers: HTTP headers to include with the request
        @type headers: Dict[str, str]

        @param timeout: Seconds to wait for the server, or C{None} for
            the fetcher's default.
        @type timeout: float

        @return: An object representing the server's HTTP response. If
            there are network or protocol errors, an exception will be
            raised. HTTP error responses, like 404 or 500, do not
            cause exceptions.

        @rtype: L{HTTPResponse}

        @raise Exception: Different implementations will raise
            different errors based on the underlying HTTP library.
        """
        raise NotImplementedError


def _allowedURL(url):
    return url.startswith('http://') or url.startswith('https://')


class HTTPFetchingError(Exception):
    """Exception that is wrapped around all exceptions that are raised
    by the underlying fetcher when using the ExceptionWrappingFetcher

    @ivar why: The exception that caused this exception
    """

    def __init__(self, why=None):
        Exception.__init__(self, why)
        self.why = why


class FetchTimeout(HTTPFetchingError):
    """The server did not answer within the timeout."""


class ExceptionWrappingFetcher(HTTPFetcher):
    """Fetcher wrapper which wraps all exceptions to `HTTPFetchingError`."""

    def __init__(self, fetcher):
        self.fetcher = fetcher

    def fetch(self, *args, **kwargs):
        try:
            return self.fetcher.fetch(*args, **kwargs)
        except HTTPFetchingError:
            raise
        except Exception as error:
            raise HTTPFetchingError(why=error)


class RequestsFetcher(HTTPFetcher):
    """A fetcher that uses C{requests} for performing HTTP requests.

    @ivar timeout: Default timeout in seconds for requests which do
        not pass their own.
    """

    def __init__(self, timeout=None):
        self.timeout = timeout

    def fetch(self, url, body=None, headers=None, timeout=None):
        """Perform an HTTP request

        @raises FetchTimeout: If the server does not answer in time
        @raises ValueError: If the URL is not an HTTP(S) URL
        @raises Exception: Any other exception that can be raised by 'requests'

        @see: C{L{HTTPFetcher.fetch}}
        """
        if not _allowedURL(url):
            raise ValueError('Bad URL scheme: %r' % (url,))

        headers = dict(headers or {})
        headers.setdefault('User-Agent', "%s python-requests" % USER_AGENT)

        if body:
            method = 'POST'
        else:
            method = 'GET'
        if timeout is None:
            timeout = self.timeout

        _LOGGER.debug('%s %s', method, url)
        try:
            response = requests.request(method, url, data=body, headers=headers, timeout=timeout)
        except requests.Timeout as error:
            raise FetchTimeout(why=error)
        content = response.content[:MAX_RESPONSE_KB * 1024]
        return HTTPResponse(response.url, response.status_code, response.headers, content)
