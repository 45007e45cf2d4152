"""
This module contains the C{L{Realm}} class, which helps handle realm
checking.  A realm is the URL pattern the user is asked to trust; the
relying party sends it along with every authentication request and
the C{return_to} URL of the request must fall within it.

@sort: Realm, RealmError, validateURL
"""
from urllib.parse import urlparse, urlunparse

__all__ = ['Realm', 'RealmError', 'validateURL']

_protocols = ['http', 'https']
_top_level_domains = [
    'ac', 'ad', 'ae', 'aero', 'af', 'ag', 'ai', 'al', 'am', 'an',
    'ao', 'aq', 'ar', 'arpa', 'as', 'asia', 'at', 'au', 'aw',
    'ax', 'az', 'ba', 'bb', 'bd', 'be', 'bf', 'bg', 'bh', 'bi',
    'biz', 'bj', 'bm', 'bn', 'bo', 'br', 'bs', 'bt', 'bv', 'bw',
    'by', 'bz', 'ca', 'cat', 'cc', 'cd', 'cf', 'cg', 'ch', 'ci',
    'ck', 'cl', 'cm', 'cn', 'co', 'com', 'coop', 'cr', 'cu', 'cv',
    'cx', 'cy', 'cz', 'de', 'dj', 'dk', 'dm', 'do', 'dz', 'ec',
    'edu', 'ee', 'eg', 'er', 'es', 'et', 'eu', 'fi', 'fj', 'fk',
    'fm', 'fo', 'fr', 'ga', 'gb', 'gd', 'ge', 'gf', 'gg', 'gh',
    'gi', 'gl', 'gm', 'gn', 'gov', 'gp', 'gq', 'gr', 'gs', 'gt',
    'gu', 'gw', 'gy', 'hk', 'hm', 'hn', 'hr', 'ht', 'hu', 'id',
    'ie', 'il', 'im', 'in', 'info', 'int', 'io', 'iq', 'ir', 'is',
    'it', 'je', 'jm', 'jo', 'jobs', 'jp', 'ke', 'kg', 'kh', 'ki',
    'km', 'kn', 'kp', 'kr', 'kw', 'ky', 'kz', 'la', 'lb', 'lc',
    'li', 'lk', 'lr', 'ls', 'lt', 'lu', 'lv', 'ly', 'ma', 'mc',
    'md', 'me', 'mg', 'mh', 'mil', 'mk', 'ml', 'mm', 'mn', 'mo',
    'mobi', 'mp', 'mq', 'mr', 'ms', 'mt', 'mu', 'museum', 'mv',
    'mw', 'mx', 'my', 'mz', 'na', 'name', 'nc', 'ne', 'net', 'nf',
    'ng', 'ni', 'nl', 'no', 'np', 'nr', 'nu', 'nz', 'om', 'org',
    'pa', 'pe', 'pf', 'pg', 'ph', 'pk', 'pl', 'pm', 'pn', 'pr',
    'pro', 'ps', 'pt', 'pw', 'py', 'qa', 're', 'ro', 'rs', 'ru',
    'rw', 'sa', 'sb', 'sc', 'sd', 'se', 'sg', 'sh', 'si', 'sj',
    'sk', 'sl', 'sm', 'sn', 'so', 'sr', 'st', 'su', 'sv', 'sy',
    'sz', 'tc', 'td', 'tel', 'tf', 'tg', 'th', 'tj', 'tk', 'tl',
    'tm', 'tn', 'to', 'tp', 'tr', 'travel', 'tt', 'tv', 'tw',
    'tz', 'ua', 'ug', 'uk', 'us', 'uy', 'uz', 'va', 'vc', 've',
    'vg', 'vi', 'vn', 'vu', 'wf', 'ws', 'xxx', 'ye', 'yt', 'yu',
    'za', 'zm', 'zw']


class RealmError(ValueError):
    """Raised for a realm that can not be parsed, or a return_to URL
    that the realm does not cover."""


def _parseURL(url):
    proto, netloc, path, params, query, frag = urlparse(url)
    if frag:
        return None
    path = urlunparse(('', '', path, params, query, ''))

    if ':' in netloc:
        try:
            host, port = netloc.split(':')
        except ValueError:
            return None
        if not port.isdigit():
            return None
    else:
        host = netloc
        port = ''

    host = host.lower()
    if not path:
        path = '/'

    return proto, host, port, path


class Realm(object):
    """
    This class represents an OpenID realm.  The C{L{parse}}
    classmethod accepts a realm string, producing a C{L{Realm}}
    object.

    A realm host may start with a C{*.} wildcard, which matches the
    domain itself and every subdomain of it.

    @sort: parse, validateURL, isSane
    """

    def __init__(self, unparsed, proto, wildcard, host, port, path):
        self.unparsed = unparsed
        self.proto = proto
        self.wildcard = wildcard
        self.host = host
        self.port = port
        self.path = path

    @classmethod
    def parse(cls, realm):
        """
        This method creates a C{L{Realm}} instance from the given
        input.

        @param realm: This is the realm to parse into a C{L{Realm}}
            object.
        @type realm: C{str}

        @rtype: C{L{Realm}}

        @raises RealmError: If the realm is not a valid realm URL.
        """
        if not isinstance(realm, str):
            raise RealmError('Realm must be a string, got %r' % (realm,))

        url_parts = _parseURL(realm)
        if url_parts is None:
            raise RealmError('Malformed realm %r' % (realm,))

        proto, host, port, path = url_parts

        if proto not in _protocols:
            raise RealmError('Realm %r is not an http or https URL' % (realm,))

        # wildcard must be at start of domain:  *.foo.com, not foo.*.com
        if host.find('*', 1) != -1:
            raise RealmError('Misplaced wildcard in realm %r' % (realm,))

        if host.startswith('*'):
            # Starts with star, so must have a dot after it (if a
            # domain is specified)
            if len(host) > 1 and host[1] != '.':
                raise RealmError('Misplaced wildcard in realm %r' % (realm,))
            host = host[1:]
            wildcard = True
        else:
            wildcard = False

        return cls(realm, proto, wildcard, host, port, path)

    @classmethod
    def checkURL(cls, realm, url):
        """Is C{url} within C{realm}?  Malformed realms are not
        considered to cover anything.

        @rtype: bool
        """
        try:
            parsed = cls.parse(realm)
        except RealmError:
            return False
        return parsed.validateURL(url)

    def isSane(self):
        """
        This method checks the to see if a realm represents a
        reasonable (sane) set of URLs.  C{'http://*.com/'}, for example
        is not a reasonable pattern, as it cannot meaningfully specify
        the site claiming it.  Negative responses from this method
        should be treated as advisory.

        @rtype: C{bool}
        """
        if self.host == 'localhost':
            return True

        host_parts = self.host.split('.')
        if self.wildcard:
            del host_parts[0]

        # If it's an absolute domain name, remove the empty string
        # from the end.
        if host_parts and not host_parts[-1]:
            del host_parts[-1]

        if not host_parts:
            return False

        # Do not allow adjacent dots
        if '' in host_parts:
            return False

        tld = host_parts[-1]
        if tld not in _top_level_domains:
            return False

        if len(host_parts) == 1:
            return False

        if self.wildcard:
            if len(tld) == 2 and len(host_parts[-2]) <= 3:
                # It's a 2-letter tld with a short second to last segment
                # so there needs to be more than two segments specified
                # (e.g. *.co.uk is insane)
                return len(host_parts) > 2

        return True

    def validateURL(self, url):
        """
        Validates a URL against this realm.

        @param url: The URL to check
        @type url: C{str}

        @return: Whether the given URL is within this realm.
        @rtype: C{bool}
        """
        url_parts = _parseURL(url)
        if url_parts is None:
            return False

        proto, host, port, path = url_parts

        if proto != self.proto:
            return False

        if port != self.port:
            return False

        if '*' in host:
            return False

        if not self.wildcard:
            if host != self.host:
                return False
        elif ((not host.endswith(self.host)) and ('.' + host) != self.host):
            return False

        if path != self.path:
            path_len = len(self.path)
            trust_prefix = self.path[:path_len]
            url_prefix = path[:path_len]

            # must be equal up to the length of the path, at least
            if trust_prefix != url_prefix:
                return False

            # These characters must be on the boundary between the end
            # of the realm's path and the start of the URL's path.
            if '?' in self.path:
                allowed = '&'
            else:
                allowed = '?/'

            return (self.path[-1] in allowed or path[path_len] in allowed)

        return True

    def __repr__(self):
        return "Realm(%r)" % (self.unparsed,)

    def __str__(self):
        return self.unparsed


def validateURL(realm, return_to):
    """Check that C{return_to} is within C{realm}.

    @raises RealmError: If the realm is malformed or does not cover
        the URL.
    """
    parsed = Realm.parse(realm)
    if not parsed.validateURL(return_to):
        raise RealmError('return_to %r is not within realm %r' % (return_to, realm))
