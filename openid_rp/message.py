"""OpenID protocol message parsing, serialization and namespace
handling.

Two wire forms are supported.  Indirect messages travel through the
user's browser as URL-encoded query arguments, all of them prefixed
with C{openid.}.  Direct messages are exchanged between the relying
party and the provider as newline terminated C{key:value} pairs
(L{encodeKV}, L{decodeKV}) without the prefix.  L{parse} and L{serialize}
convert between the wire forms and an ordered mapping of prefixed
keys; L{Message} resolves namespace aliases on top of that mapping.
"""
import copy
import logging
from urllib.parse import unquote_plus, urlencode

from lxml import etree

from openid_rp import oidutil

__all__ = ['Message', 'NamespaceMap', 'MalformedMessage', 'parse', 'serialize', 'encodeKV', 'decodeKV',
           'OPENID_NS', 'BARE_NS', 'OPENID2_NS', 'IDENTIFIER_SELECT',
           'KV_FORM', 'URL_FORM']

_LOGGER = logging.getLogger(__name__)

# The OpenID 2.0 namespace URI
OPENID2_NS = 'http://specs.openid.net/auth/2.0'

# Value of the identifier fields when the provider should choose the
# identifier
IDENTIFIER_SELECT = 'http://specs.openid.net/auth/2.0/identifier_select'

# The namespace consisting of pairs with keys that are prefixed with
# "openid."  but not in another namespace.
NULL_NAMESPACE = oidutil.Symbol('Null namespace')

# The null namespace, when it is an allowed OpenID namespace
OPENID_NS = oidutil.Symbol('OpenID namespace')

# The top-level namespace, excluding all pairs with keys that start
# with "openid."
BARE_NS = oidutil.Symbol('Bare namespace')

# Sentinel used for Message implementation to indicate that getArg
# should raise an exception instead of returning a default.
no_default = object()

# Wire forms understood by serialize
KV_FORM = 'kv'
URL_FORM = 'url'

# Keys in the OpenID core namespace
OPENID_PROTOCOL_FIELDS = [
    'ns', 'mode', 'error', 'return_to', 'contact', 'reference',
    'signed', 'assoc_type', 'session_type', 'dh_modulus', 'dh_gen',
    'dh_consumer_public', 'claimed_id', 'identity', 'realm',
    'invalidate_handle', 'op_endpoint', 'response_nonce', 'sig',
    'assoc_handle', 'trust_root', 'openid', 'error_code', 'is_valid',
    'expires_in', 'mac_key', 'enc_mac_key', 'dh_server_public',
]

_PREFIX = 'openid.'


class MalformedMessage(ValueError):
    """Raised when a message can not be parsed or serialized."""


class UndefinedOpenIDNamespace(ValueError):
    """Raised if the generic OpenID namespace is accessed when there
    is no OpenID namespace set for this message."""


class InvalidOpenIDNamespace(MalformedMessage):
    """Raised if openid.ns is not the OpenID 2.0 namespace."""


def encodeKV(pairs, strict=True):
    """Write C{(key, value)} pairs as newline terminated C{key:value}
    lines, in the order given.

    @param strict: Refuse keys and values with surrounding whitespace,
        which L{decodeKV} would not give back.  Signature text is built
        with C{strict=False}, as the provider signed whatever it sent.

    @rtype: str
    @raises MalformedMessage: If a pair can not be written in KV form.
    """
    lines = []
    for key, value in pairs:
        if not isinstance(key, str) or not isinstance(value, str):
            raise MalformedMessage('KV form holds text only, got %r' % ((key, value),))
        if ':' in key or '\n' in key or '\n' in value:
            raise MalformedMessage('Pair can not be written in KV form: %r' % ((key, value),))
        if strict and (key.strip() != key or value.strip() != value):
            raise MalformedMessage('Pair has surrounding whitespace: %r' % ((key, value),))
        lines.append('%s:%s\n' % (key, value))
    return ''.join(lines)


def decodeKV(data):
    """Split KV form text into its C{(key, value)} pairs.

    Blank lines are skipped and the last newline may be missing.

    @type data: str
    @rtype: List[Tuple[str, str]]
    @raises MalformedMessage: If a line has no colon or an empty key,
        or a key or value has surrounding whitespace.
    """
    pairs = []
    for line_num, line in enumerate(data.split('\n'), 1):
        if not line.strip():
            continue
        key, colon, value = line.partition(':')
        if not colon:
            raise MalformedMessage('Line %d of KV form has no colon: %r' % (line_num, line))
        if not key:
            raise MalformedMessage('Line %d of KV form has an empty key' % (line_num,))
        if key.strip() != key or value.strip() != value:
            raise MalformedMessage('Line %d of KV form has surrounding whitespace: %r' % (line_num, line))
        pairs.append((key, value))
    return pairs


def _isKV(data):
    # KV keys carry no "openid." prefix, so a colon before any "=" marks a
    # KV line even when the body is a single pair with no newline
    if '\n' in data:
        return True
    colon = data.find(':')
    equals = data.find('=')
    return colon != -1 and (equals == -1 or colon < equals)


def _parseKV(data):
    return [(_PREFIX + key, value) for key, value in decodeKV(data)]


def _collect(pairs):
    fields = {}
    for key, value in pairs:
        if not key or key == _PREFIX:
            raise MalformedMessage('Empty key in message')
        if key in fields:
            raise MalformedMessage('Duplicate key %r in message' % (key,))
        fields[key] = value
    return fields


def _parseURLEncoded(data, require_prefix=True):
    if not data:
        return []

    pairs = []
    for chunk in data.split('&'):
        if '=' not in chunk:
            raise MalformedMessage('Query argument without "=": %r' % (chunk,))
        key, value = chunk.split('=', 1)
        try:
            key = unquote_plus(key, errors='strict')
            value = unquote_plus(value, errors='strict')
        except UnicodeDecodeError as error:
            raise MalformedMessage('Query argument is not UTF-8 encoded: %s' % (error,))

        if require_prefix and not key.startswith(_PREFIX):
            raise MalformedMessage('Key %r lacks the "openid." prefix' % (key,))
        pairs.append((key, value))
    return pairs


def _decode(data):
    if isinstance(data, bytes):
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as error:
            raise MalformedMessage('Message is not UTF-8 encoded: %s' % (error,))
    return data


def parse(data):
    """Parse a message in either wire form into an ordered mapping.

    Data with a newline, or a colon ahead of any C{=}, is treated as KV
    form, anything else as URL-encoded query arguments.

    @param data: The raw message body or query string
    @type data: str or bytes

    @return: Mapping of C{openid.} prefixed keys to values, in wire order
    @rtype: Dict[str, str]

    @raises MalformedMessage: If a key lacks the C{openid.} prefix, a
        pair lacks its delimiter, a key is repeated or the data is not
        UTF-8.
    """
    data = _decode(data)

    if _isKV(data):
        pairs = _parseKV(data)
    else:
        pairs = _parseURLEncoded(data)

    return _collect(pairs)


def serialize(fields, form=KV_FORM):
    """Serialize an ordered mapping of C{openid.} prefixed keys.

    C{serialize(parse(data), form) == data} for well-formed data in
    canonical encoding.

    @param fields: Mapping or sequence of pairs
    @param form: L{KV_FORM} or L{URL_FORM}

    @rtype: str
    @raises MalformedMessage: If a key lacks the prefix or a pair can
        not be represented in the requested form.
    """
    if hasattr(fields, 'items'):
        pairs = list(fields.items())
    else:
        pairs = list(fields)

    for key, _ in pairs:
        if not key.startswith(_PREFIX) or key == _PREFIX:
            raise MalformedMessage('Key %r lacks the "openid." prefix' % (key,))

    if form == KV_FORM:
        return encodeKV([(key[len(_PREFIX):], value) for key, value in pairs])
    elif form == URL_FORM:
        return urlencode(pairs)
    else:
        raise ValueError('Unknown message form: %r' % (form,))


class Message(object):
    """
    In the implementation of this object, None represents the global
    namespace as well as a namespace with no key.

    @ivar args: dictionary of the values in this message, keyed by
        C{(namespace URI, key)} pairs in the order they were added.

    @ivar namespaces: The L{NamespaceMap} of this message.
    """

    allowed_openid_namespaces = [OPENID2_NS]

    def __init__(self, openid_namespace=None):
        """Create an empty Message."""
        self.args = {}
        self.namespaces = NamespaceMap()
        if openid_namespace is None:
            self._openid_ns_uri = None
        else:
            self.setOpenIDNamespace(openid_namespace)

    @classmethod
    def fromPostArgs(cls, args):
        """Construct a Message containing a set of POST arguments.

        Arguments without the C{openid.} prefix are kept in the
        L{BARE_NS} namespace.

        @type args: Dict[str, str]
        @raises MalformedMessage: If the namespaces are inconsistent.
        @raises TypeError: If a value is a list.
        """
        self = cls()

        # Partition into "openid." args and bare args
        openid_args = {}
        for key, value in args.items():
            if isinstance(value, list):
                raise TypeError("query dict must have one value for each key, "
                                "not lists of values.  Query is %r" % (args,))

            try:
                prefix, rest = key.split('.', 1)
            except ValueError:
                prefix = None

            if prefix != 'openid':
                self.args[(BARE_NS, key)] = value
            else:
                openid_args[rest] = value

        self._fromOpenIDArgs(openid_args)

        return self

    @classmethod
    def fromOpenIDArgs(cls, openid_args):
        """Construct a Message from a mapping of unprefixed keys."""
        self = cls()
        self._fromOpenIDArgs(openid_args)
        return self

    @classmethod
    def fromKVForm(cls, kvform_string):
        """Create a Message from a KVForm string

        @type kvform_string: str or bytes
        @raises MalformedMessage: If the data is not valid KV form.
        """
        fields = _collect(_parseKV(_decode(kvform_string)))
        return cls.fromPostArgs(fields)

    @classmethod
    def fromURLEncoded(cls, query):
        """Create a Message from an URL-encoded string of openid arguments."""
        return cls.fromPostArgs(parse(query))

    @classmethod
    def fromQueryString(cls, query):
        """Create a Message from the query string of a callback
        request.  Unlike L{fromURLEncoded}, arguments without the
        C{openid.} prefix are allowed and end up in L{BARE_NS}.

        @type query: str or bytes
        @raises MalformedMessage: If the query can not be parsed.
        """
        query = _decode(query)
        if query.startswith('?'):
            query = query[1:]
        pairs = _parseURLEncoded(query, require_prefix=False)
        return cls.fromPostArgs(_collect(pairs))

    def _fromOpenIDArgs(self, openid_args):
        ns_args = []

        # Resolve namespaces
        for rest, value in openid_args.items():
            try:
                ns_alias, ns_key = rest.split('.', 1)
            except ValueError:
                ns_alias = NULL_NAMESPACE
                ns_key = rest

            try:
                if ns_alias == 'ns':
                    self.namespaces.addAlias(value, ns_key)
                elif ns_alias == NULL_NAMESPACE and ns_key == 'ns':
                    # null namespace
                    self.setOpenIDNamespace(value)
                else:
                    ns_args.append((ns_alias, ns_key, value))
            except KeyError as error:
                raise MalformedMessage(error.args[0])

        if self._openid_ns_uri is None:
            raise InvalidOpenIDNamespace('Message has no openid.ns declaration')

        # Actually put the pairs into the appropriate namespaces
        for (ns_alias, ns_key, value) in ns_args:
            ns_uri = self.namespaces.getNamespaceURI(ns_alias)
            if ns_uri is None:
                # An undeclared alias stays in the OpenID namespace as
                # a dotted key so that its post argument is unchanged.
                _LOGGER.debug('Namespace alias %r is not defined', ns_alias)
                ns_uri = self._openid_ns_uri
                ns_key = '%s.%s' % (ns_alias, ns_key)
            self.setArg(ns_uri, ns_key, value)

    def setOpenIDNamespace(self, openid_ns_uri):
        if openid_ns_uri not in self.allowed_openid_namespaces:
            raise InvalidOpenIDNamespace('Invalid null namespace: %r' % (openid_ns_uri,))

        try:
            self.namespaces.addAlias(openid_ns_uri, NULL_NAMESPACE)
        except KeyError as error:
            raise MalformedMessage(error.args[0])
        self._openid_ns_uri = openid_ns_uri

    def getOpenIDNamespace(self):
        return self._openid_ns_uri

    def copy(self):
        return copy.deepcopy(self)

    def toPostArgs(self):
        """Return all arguments with openid. in front of namespaced arguments.

        @rtype: Dict[str, str]
        """
        args = {}

        # Add namespace definitions to the output
        for ns_uri, alias in self.namespaces.items():
            if alias == NULL_NAMESPACE:
                args['openid.ns'] = ns_uri
            else:
                args['openid.ns.' + alias] = ns_uri

        for (ns_uri, ns_key), value in self.args.items():
            key = self.getKey(ns_uri, ns_key)
            args[key] = value

        return args

    def toArgs(self):
        """Return all namespaced arguments, failing if any
        non-namespaced arguments exist."""
        post_args = self.toPostArgs()
        kvargs = {}
        for k, v in post_args.items():
            if not k.startswith(_PREFIX):
                raise ValueError(
                    'This message can only be encoded as a POST, because it '
                    'contains arguments that are not prefixed with "openid."')
            else:
                kvargs[k[len(_PREFIX):]] = v

        return kvargs

    def toFormMarkup(self, action_url, form_tag_attrs=None, submit_text='Continue'):
        """Generate HTML form markup that contains the values in this
        message, to be HTTP POSTed as x-www-form-urlencoded UTF-8.

        @param action_url: The URL to which the form will be POSTed
        @type action_url: str

        @param form_tag_attrs: Dictionary of attributes to be added to
            the form tag. 'accept-charset' and 'enctype' have defaults
            that can be overridden. If a value is supplied for
            'action' or 'method', it will be replaced.
        @type form_tag_attrs: Dict[str, str]

        @param submit_text: The text that will appear on the submit
            button for this form.
        @type submit_text: str

        @rtype: str
        """
        form = etree.Element('form', {
            'accept-charset': 'UTF-8',
            'enctype': 'application/x-www-form-urlencoded',
        })

        if form_tag_attrs:
            for name, attr in form_tag_attrs.items():
                form.attrib[name] = attr

        form.attrib['action'] = action_url
        form.attrib['method'] = 'post'

        for name, value in self.toPostArgs().items():
            attrs = {'type': 'hidden', 'name': name, 'value': value}
            form.append(etree.Element('input', attrs))

        submit = etree.Element('input', {'type': 'submit', 'value': submit_text})
        form.append(submit)

        return etree.tostring(form, encoding='unicode')

    def toURL(self, base_url):
        """Generate a GET URL with the parameters in this message
        attached as query parameters."""
        return oidutil.appendArgs(base_url, self.toPostArgs())

    def toKVForm(self):
        """Generate a KVForm string that contains the parameters in
        this message. This will fail if the message contains arguments
        outside of the 'openid.' prefix.
        """
        return encodeKV(sorted(self.toArgs().items()))

    def toURLEncoded(self):
        """Generate an x-www-urlencoded string"""
        args = sorted(self.toPostArgs().items())
        return urlencode(args)

    def _fixNS(self, namespace):
        """Convert an input value into the internally used values of
        this object

        @param namespace: The string or constant to convert
        @type namespace: str or BARE_NS or OPENID_NS
        """
        if namespace == OPENID_NS:
            if self._openid_ns_uri is None:
                raise UndefinedOpenIDNamespace('OpenID namespace not set')
            else:
                namespace = self._openid_ns_uri
        elif namespace != BARE_NS and not isinstance(namespace, str):
            raise TypeError("Namespace must be BARE_NS, OPENID_NS or a string. got %r" % (namespace,))

        return namespace

    def hasKey(self, namespace, ns_key):
        namespace = self._fixNS(namespace)
        return (namespace, ns_key) in self.args

    def getKey(self, namespace, ns_key):
        """Get the key for a particular namespaced argument"""
        namespace = self._fixNS(namespace)
        if namespace == BARE_NS:
            return ns_key

        ns_alias = self.namespaces.getAlias(namespace)

        # No alias is defined, so no key can exist
        if ns_alias is None:
            return None

        if ns_alias == NULL_NAMESPACE:
            tail = ns_key
        else:
            tail = '%s.%s' % (ns_alias, ns_key)

        return _PREFIX + tail

    def getArg(self, namespace, key, default=None):
        """Get a value for a namespaced key.

        @raises KeyError: If the value is missing and C{default} is
            L{no_default}.
        """
        namespace = self._fixNS(namespace)
        args_key = (namespace, key)
        try:
            return self.args[args_key]
        except KeyError:
            if default is no_default:
                raise KeyError((namespace, key))
            else:
                return default

    def getArgs(self, namespace):
        """Get the arguments that are defined for this namespace URI

        @returns: mapping from namespaced keys to values
        @returntype: dict
        """
        namespace = self._fixNS(namespace)
        return dict([
            (ns_key, value)
            for ((pair_ns, ns_key), value)
            in self.args.items()
            if pair_ns == namespace
        ])

    def getSignedList(self):
        """Return the keys listed in C{openid.signed}, in order, or
        C{None} if the message has no signed list."""
        signed = self.getArg(OPENID_NS, 'signed')
        if not signed:
            return None
        return signed.split(',')

    def updateArgs(self, namespace, updates):
        """Set multiple key/value pairs in one call

        @param updates: The values to set
        @type updates: Dict[str, str]
        """
        namespace = self._fixNS(namespace)
        for k, v in updates.items():
            self.setArg(namespace, k, v)

    def setArg(self, namespace, key, value):
        """Set a single argument in this namespace"""
        assert key is not None
        assert value is not None
        namespace = self._fixNS(namespace)
        self.args[(namespace, key)] = value
        if namespace != BARE_NS:
            self.namespaces.add(namespace)

    def delArg(self, namespace, key):
        namespace = self._fixNS(namespace)
        del self.args[(namespace, key)]

    def __repr__(self):
        return "<%s.%s %r>" % (self.__class__.__module__,
                               self.__class__.__name__,
                               self.args)

    def __eq__(self, other):
        return isinstance(other, Message) and self.args == other.args

    def __ne__(self, other):
        return not (self == other)


class NamespaceMap(object):
    """Maintains a bijective map between namespace uris and aliases.
    """

    def __init__(self):
        self.alias_to_namespace = {}
        self.namespace_to_alias = {}

    def getAlias(self, namespace_uri):
        return self.namespace_to_alias.get(namespace_uri)

    def getNamespaceURI(self, alias):
        return self.alias_to_namespace.get(alias)

    def iterNamespaceURIs(self):
        return iter(self.namespace_to_alias)

    def iterAliases(self):
        return iter(self.alias_to_namespace)

    def items(self):
        """Iterate over the mapping

        @returns: iterator of (namespace_uri, alias)
        """
        return self.namespace_to_alias.items()

    def addAlias(self, namespace_uri, desired_alias):
        """Add an alias from this namespace URI to the desired alias

        @raises KeyError: If either side is already mapped differently.
        """
        if desired_alias != NULL_NAMESPACE:
            if not isinstance(desired_alias, str):
                raise TypeError('Alias must be a string, got %r' % (desired_alias,))
            if '.' in desired_alias or ',' in desired_alias:
                raise KeyError('%r is not an allowed namespace alias' % (desired_alias,))

        # Check that there is not a namespace already defined for
        # the desired alias
        current_namespace_uri = self.alias_to_namespace.get(desired_alias)
        if current_namespace_uri is not None and current_namespace_uri != namespace_uri:
            fmt = ('Cannot map %r to alias %r. '
                   '%r is already mapped to alias %r')
            msg = fmt % (namespace_uri, desired_alias, current_namespace_uri, desired_alias)
            raise KeyError(msg)

        # Check that there is not already a (different) alias for
        # this namespace URI
        alias = self.namespace_to_alias.get(namespace_uri)
        if alias is not None and alias != desired_alias:
            fmt = ('Cannot map %r to alias %r. '
                   'It is already mapped to alias %r')
            raise KeyError(fmt % (namespace_uri, desired_alias, alias))

        self.alias_to_namespace[desired_alias] = namespace_uri
        self.namespace_to_alias[namespace_uri] = desired_alias
        return desired_alias

    def add(self, namespace_uri):
        """Add this namespace URI to the mapping, without caring what
        alias it ends up with"""
        # See if this namespace is already mapped to an alias
        alias = self.namespace_to_alias.get(namespace_uri)
        if alias is not None:
            return alias

        # Fall back to generating a numerical alias
        i = 0
        while True:
            alias = 'ext%d' % i
            try:
                self.addAlias(namespace_uri, alias)
            except KeyError:
                i += 1
            else:
                return alias

    def isDefined(self, namespace_uri):
        return namespace_uri in self.namespace_to_alias

    def __contains__(self, namespace_uri):
        return self.isDefined(namespace_uri)
