# -*- test-case-name: openid_rp.test.test_discover -*-
"""Discovery of OpenID 2.0 provider endpoints.

Discovery first tries Yadis: the identifier is fetched asking for an
XRDS document, following the C{X-XRDS-Location} header or the
equivalent C{<meta http-equiv>} tag when the response is not one.
When no XRDS document lists an OpenID service, the HTML of the page is
searched for C{<link rel="openid2.provider">} and
C{<link rel="openid2.local_id">}.
"""
import io
import logging
import string
from urllib.parse import parse_qsl, quote, unquote, urlencode, urljoin, urlparse, urlsplit, urlunsplit

from lxml import etree

from openid_rp import fetchers
from openid_rp.message import OPENID2_NS

__all__ = ['DiscoveryFailure', 'OpenIDServiceEndpoint', 'XRDSError', 'discover', 'normalizeURL',
           'OPENID_IDP_2_0_TYPE', 'OPENID_2_0_TYPE']

_LOGGER = logging.getLogger(__name__)

OPENID_IDP_2_0_TYPE = 'http://specs.openid.net/auth/2.0/server'
OPENID_2_0_TYPE = 'http://specs.openid.net/auth/2.0/signon'

XRDS_NS = 'xri://$xrds'
XRD_NS_2_0 = 'xri://$xrd*($v*2.0)'

_DEFAULT_PORTS = {'http': 80, 'https': 443}
# Sub-delimiters and "/" stay literal in a normalized path
_PATH_SAFE = "/!$&'()*+,;="
_URI_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-._~:/?#[]@!$&'()*+,;=%")

YADIS_HEADER_NAME = 'X-XRDS-Location'
YADIS_CONTENT_TYPE = 'application/xrds+xml'
YADIS_ACCEPT_HEADER = 'text/html; q=0.3, application/xhtml+xml; q=0.5, %s' % (YADIS_CONTENT_TYPE,)


def nsTag(ns, t):
    return '{%s}%s' % (ns, t)


class DiscoveryFailure(Exception):
    """Raised when a YADIS protocol error occurs in the discovery
    process

    @ivar http_response: The HTTP response, if any, that caused the failure
    """

    def __init__(self, message, http_response=None):
        Exception.__init__(self, message)
        self.http_response = http_response


class XRDSError(Exception):
    """An error with the XRDS document."""


class OpenIDServiceEndpoint(object):
    """Object representing an OpenID service endpoint.

    @ivar claimed_id: the identifier the user claims, or C{None} for
        an OP identifier endpoint.
    @ivar server_url: the provider endpoint URL.
    @ivar local_id: the identifier the provider knows the user by, if
        it differs from the claimed identifier.
    @ivar type_uris: the service types listed for the endpoint.
    """

    # OpenID service type URIs, listed in order of preference.  The
    # ordering of this list affects yadis service discovery.
    openid_type_uris = [
        OPENID_IDP_2_0_TYPE,
        OPENID_2_0_TYPE,
    ]

    def __init__(self):
        self.claimed_id = None
        self.server_url = None
        self.type_uris = []
        self.local_id = None
        self.used_yadis = False  # whether this came from an XRDS

    def preferredNamespace(self):
        return OPENID2_NS

    def isOPIdentifier(self):
        return OPENID_IDP_2_0_TYPE in self.type_uris

    def usesExtension(self, extension_uri):
        return extension_uri in self.type_uris

    def getLocalID(self):
        """Return the identifier that should be sent as the
        openid.identity parameter to the server."""
        if self.local_id is None:
            return self.claimed_id
        return self.local_id

    def isIdentifierSelect(self):
        return self.claimed_id is None

    @classmethod
    def fromOPEndpointURL(cls, op_endpoint_url):
        """Construct an OP-Identifier OpenIDServiceEndpoint object for
        a given OP Endpoint URL

        @param op_endpoint_url: The URL of the endpoint
        @rtype: OpenIDServiceEndpoint
        """
        service = cls()
        service.server_url = op_endpoint_url
        service.type_uris = [OPENID_IDP_2_0_TYPE]
        return service

    @classmethod
    def fromClaimedID(cls, claimed_id, op_endpoint_url, local_id=None):
        """Construct an endpoint for an identifier whose provider is
        already known.

        @rtype: OpenIDServiceEndpoint
        """
        service = cls()
        service.claimed_id = claimed_id
        service.server_url = op_endpoint_url
        service.local_id = local_id
        service.type_uris = [OPENID_2_0_TYPE]
        return service

    @classmethod
    def fromHTML(cls, uri, html):
        """Parse the given document as HTML looking for an OpenID <link
        rel=...>

        @type html: bytes or str
        @rtype: [OpenIDServiceEndpoint]
        """
        links = parseLinkAttrs(html)
        op_endpoint_url = findFirstHref(links, 'openid2.provider', uri)
        if op_endpoint_url is None:
            return []

        service = cls()
        service.claimed_id = uri
        service.local_id = findFirstHref(links, 'openid2.local_id', uri)
        service.server_url = op_endpoint_url
        service.type_uris = [OPENID_2_0_TYPE]
        return [service]

    @classmethod
    def fromXRDS(cls, uri, xrds_text):
        """Parse the given document as XRDS looking for OpenID services.

        @rtype: [OpenIDServiceEndpoint]

        @raises XRDSError: When the XRDS does not parse.
        """
        services = []
        for service_element in iterServices(parseXRDS(xrds_text)):
            type_uris = [t.text for t in service_element.findall(nsTag(XRD_NS_2_0, 'Type')) if t.text]
            if not any(t in cls.openid_type_uris for t in type_uris):
                continue
            for uri_element in prioSort(service_element.findall(nsTag(XRD_NS_2_0, 'URI'))):
                if not uri_element.text:
                    continue
                service = cls()
                service.type_uris = type_uris
                service.server_url = uri_element.text.strip()
                service.used_yadis = True
                if not service.isOPIdentifier():
                    service.claimed_id = uri
                    service.local_id = findOPLocalIdentifier(service_element)
                services.append(service)
        return services

    def __repr__(self):
        return '<%s server_url=%r claimed_id=%r local_id=%r>' % (
            self.__class__.__name__, self.server_url, self.claimed_id, self.local_id)


def parseLinkAttrs(html):
    """Find all link tags in an HTML document.

    @return: the attributes of each C{<link>} element, in document order
    @rtype: [Dict[str, str]]
    """
    if isinstance(html, str):
        html = html.encode('utf-8')
    if not html:
        return []

    parser = etree.HTMLParser()
    try:
        document = etree.parse(io.BytesIO(html), parser)
    except (ValueError, etree.XMLSyntaxError):
        return []
    if document.getroot() is None:
        return []

    return [dict(link.attrib) for link in document.iter('link')]


def findFirstHref(link_attrs_list, target_rel, base_url=None):
    """Return the href of the first link whose C{rel} lists
    C{target_rel}, made absolute against C{base_url}, or C{None}."""
    for attrs in link_attrs_list:
        rels = attrs.get('rel', '').lower().split()
        if target_rel in rels and attrs.get('href'):
            href = attrs['href'].strip()
            if base_url is not None:
                href = urljoin(base_url, href)
            return href
    return None


def findHTMLMeta(html):
    """Look for a meta http-equiv tag with the YADIS header name.

    @return: The URI from which to fetch the XRDS document or C{None}
    """
    if isinstance(html, str):
        html = html.encode('utf-8')
    if not html:
        return None

    parser = etree.HTMLParser()
    try:
        document = etree.parse(io.BytesIO(html), parser)
    except (ValueError, etree.XMLSyntaxError):
        return None
    if document.getroot() is None:
        return None

    for meta in document.iter('meta'):
        if meta.get('http-equiv', '').lower() == YADIS_HEADER_NAME.lower():
            return meta.get('content')
    return None


def parseXRDS(text):
    """Parse the given text as an XRDS document.

    @return: The root element of the document
    @raises XRDSError: When there is a parse error or the document
        does not contain an XRDS.
    """
    if isinstance(text, str):
        text = text.encode('utf-8')
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        element = etree.fromstring(text, parser)
    except (ValueError, etree.XMLSyntaxError) as why:
        raise XRDSError('Error parsing document as XML: %s' % (why,))

    if element.tag != nsTag(XRDS_NS, 'XRDS'):
        raise XRDSError('Not an XRDS document')
    return element


def _getPriority(element):
    try:
        return int(element.get('priority'))
    except (TypeError, ValueError):
        return None


def prioSort(elements):
    """Sort elements by their C{priority} attribute, lowest first.
    Elements without a priority come last, in document order."""
    def key(element):
        priority = _getPriority(element)
        if priority is None:
            return (1, 0)
        return (0, priority)
    return sorted(elements, key=key)


def iterServices(xrds_tree):
    """Return the service elements of the final XRD in the document,
    sorted by priority."""
    xrd_elements = xrds_tree.findall(nsTag(XRD_NS_2_0, 'XRD'))
    if not xrd_elements:
        raise XRDSError('No XRD present in tree')
    return prioSort(xrd_elements[-1].findall(nsTag(XRD_NS_2_0, 'Service')))


def findOPLocalIdentifier(service_element):
    """Find the OP-Local Identifier for this xrd:Service element.

    @raises DiscoveryFailure: If the element has LocalID tags with
        different values.
    @returns: The OP-Local Identifier, or None if there is none.
    """
    local_id = None
    for local_id_element in service_element.findall(nsTag(XRD_NS_2_0, 'LocalID')):
        if local_id is None:
            local_id = local_id_element.text
        elif local_id != local_id_element.text:
            raise DiscoveryFailure('More than one LocalID tag found in one service element')
    return local_id


def _removeDotSegments(path):
    # RFC 3986, section 5.2.4, for a path starting with "/"
    segments = []
    for segment in path.split('/')[1:]:
        if segment == '..':
            if segments:
                segments.pop()
        elif segment != '.':
            segments.append(segment)
    if path.rsplit('/', 1)[-1] in ('.', '..'):
        segments.append('')
    return '/' + '/'.join(segments)


def normalizeURL(url):
    """Normalize an HTTP or HTTPS identifier URL (RFC 3986, section 6).

    The scheme and host are lowercased and an internationalized host
    name is IDNA encoded.  The default port is dropped, dot segments
    are removed and percent encoding is made uniform.  The fragment is
    kept.

    @type url: str
    @rtype: str

    @raises DiscoveryFailure: If the URL is not an absolute HTTP or
        HTTPS URL or holds characters a URI can not.
    """
    if not isinstance(url, str):
        raise TypeError('URL must be a text string, got %r' % (url,))

    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise DiscoveryFailure('Not an absolute HTTP or HTTPS URL: %r' % (url,))
    if not parts.hostname:
        raise DiscoveryFailure('URL has no host: %r' % (url,))
    try:
        netloc = unquote(parts.hostname).encode('idna').decode('ascii')
        port = parts.port
    except ValueError as why:
        raise DiscoveryFailure('Invalid host or port in %r: %s' % (url, why))

    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = '%s:%d' % (netloc, port)
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += ':' + parts.password
        netloc = userinfo + '@' + netloc

    path = _removeDotSegments(quote(unquote(parts.path), safe=_PATH_SAFE))
    query = urlencode(parse_qsl(parts.query, keep_blank_values=True))
    normalized = urlunsplit((scheme, netloc, path, query, unquote(parts.fragment)))
    if not set(normalized) <= _URI_CHARACTERS:
        raise DiscoveryFailure('Illegal characters in URL: %r' % (url,))
    return normalized


def arrangeByType(service_list, preferred_types):
    """Rearrange service_list in a new list so services are ordered by
    types listed in preferred_types.  Return the new list."""

    def bestMatchingService(service):
        """Return the index of the first matching type, or something
        higher if no type matches.
        """
        for i, t in enumerate(preferred_types):
            if t in service.type_uris:
                return i
        return len(preferred_types)

    return sorted(service_list, key=bestMatchingService)


def getOPOrUserServices(openid_services):
    """Extract OP Identifier services.  If none found, return the
    rest, sorted with most preferred first according to
    OpenIDServiceEndpoint.openid_type_uris.

    @type openid_services: [OpenIDServiceEndpoint]
    @rtype: [OpenIDServiceEndpoint]
    """
    op_services = [s for s in openid_services if s.isOPIdentifier()]
    if op_services:
        return op_services
    return arrangeByType(openid_services, OpenIDServiceEndpoint.openid_type_uris)


def _fetch(fetcher, url, headers=None, timeout=None):
    if fetcher is None:
        fetcher = fetchers.getDefaultFetcher()
    try:
        return fetcher.fetch(url, headers=headers, timeout=timeout)
    except fetchers.HTTPFetchingError as why:
        raise DiscoveryFailure('Error fetching %s: %s' % (url, why))


def _isXRDS(response):
    content_type = response.headers.get('content-type', '') if response.headers else ''
    return content_type.split(';', 1)[0].strip().lower() == YADIS_CONTENT_TYPE


def discoverYadis(uri, fetcher=None, timeout=None):
    """Discover OpenID services for a URI. Tries Yadis and falls back
    on <link rel='...'> discovery if Yadis fails.

    @param uri: normalized identity URL
    @type uri: str

    @return: (claimed_id, services)
    @rtype: (str, [OpenIDServiceEndpoint])

    @raises DiscoveryFailure: When the identifier can not be fetched.
    """
    response = _fetch(fetcher, uri, {'Accept': YADIS_ACCEPT_HEADER}, timeout)
    if response.status not in (200, 206):
        raise DiscoveryFailure('HTTP Response status from identity URL host is not 200. '
                               'Got status %r' % (response.status,), response)

    claimed_id = response.final_url or uri
    html = None
    if not _isXRDS(response):
        html = response.body
        xrds_location = response.headers.get(YADIS_HEADER_NAME) if response.headers else None
        if xrds_location is None:
            xrds_location = findHTMLMeta(html)
        if xrds_location is not None:
            _LOGGER.debug('Following Yadis location %s', xrds_location)
            response = _fetch(fetcher, urljoin(claimed_id, xrds_location), {'Accept': YADIS_ACCEPT_HEADER}, timeout)
            if response.status not in (200, 206):
                raise DiscoveryFailure('HTTP Response status from Yadis host is not 200. '
                                       'Got status %r' % (response.status,), response)
        else:
            response = None

    openid_services = []
    if response is not None:
        try:
            openid_services = OpenIDServiceEndpoint.fromXRDS(claimed_id, response.body)
        except XRDSError as why:
            _LOGGER.debug('No usable XRDS for %s: %s', claimed_id, why)

    if not openid_services and html is not None:
        openid_services = OpenIDServiceEndpoint.fromHTML(claimed_id, html)

    return claimed_id, getOPOrUserServices(openid_services)


def discover(uri, fetcher=None, timeout=None):
    """Find the OpenID endpoints for an identifier.

    @param uri: The identifier the user entered.  A missing scheme
        defaults to C{http}.
    @type uri: str

    @param fetcher: The fetcher to use, or C{None} for the default
        fetcher.

    @return: The normalized claimed identifier and its endpoints, most
        preferred first.
    @rtype: (str, [OpenIDServiceEndpoint])

    @raises DiscoveryFailure: When the identifier is not an HTTP(S)
        URL or can not be fetched.
    """
    parsed = urlparse(uri)
    if parsed[0] and parsed[1]:
        if parsed[0] not in ['http', 'https']:
            raise DiscoveryFailure('URI scheme is not HTTP or HTTPS')
    else:
        uri = 'http://' + uri

    uri = normalizeURL(uri)
    claimed_id, openid_services = discoverYadis(uri, fetcher, timeout)
    claimed_id = normalizeURL(claimed_id)
    for service in openid_services:
        if service.claimed_id is not None:
            service.claimed_id = claimed_id
    return claimed_id, openid_services
