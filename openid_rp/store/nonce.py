"""Response nonces and replay protection.

A response nonce starts with the UTC time it was generated at in the
form C{YYYY-MM-DDTHH:MM:SSZ}, followed by arbitrary salt characters.
The L{NonceTracker} accepts each nonce once per provider and only
within the replay window.
"""
import logging
import random
import string
import time
from calendar import timegm

__all__ = [
    'split',
    'mkNonce',
    'checkTimestamp',
    'InvalidNonce',
    'NonceTracker',
    'SKEW',
]

_LOGGER = logging.getLogger(__name__)

NONCE_CHARS = string.ascii_letters + string.digits

# Replay window, in seconds. Nonces with a timestamp further than this
# from the current time, in the past or in the future, are rejected
# and recorded nonces older than this are forgotten.
SKEW = 60 * 60

time_fmt = '%Y-%m-%dT%H:%M:%SZ'
time_str_len = len('0000-00-00T00:00:00Z')

_random = random.SystemRandom()


class InvalidNonce(ValueError):
    """Raised when a nonce has no parseable timestamp or its timestamp
    is outside of the replay window."""


def split(nonce_string):
    """Extract a timestamp from the given nonce string

    @param nonce_string: the nonce from which to extract the timestamp
    @type nonce_string: str

    @returns: A pair of a Unix timestamp and the salt characters
    @returntype: (int, str)

    @raises ValueError: if the nonce does not start with a correctly
        formatted time string
    """
    timestamp_str = nonce_string[:time_str_len]
    timestamp = timegm(time.strptime(timestamp_str, time_fmt))
    if timestamp < 0:
        raise ValueError('time out of range')
    return timestamp, nonce_string[time_str_len:]


def checkTimestamp(nonce_string, allowed_skew=SKEW, now=None):
    """Is the timestamp that is part of the specified nonce string
    within the allowed clock-skew of the current time?

    @param nonce_string: The nonce that is being checked
    @type nonce_string: str

    @param allowed_skew: How many seconds should be allowed for
        completing the request, allowing for clock skew.
    @type allowed_skew: int

    @param now: The current time, as a Unix timestamp
    @type now: int

    @returntype: bool
    @returns: Whether the timestamp is correctly formatted and within
        the allowed skew of the current time.
    """
    try:
        stamp, _ = split(nonce_string)
    except ValueError:
        return False
    else:
        if now is None:
            now = time.time()

        # Time after which we should not use the nonce
        past = now - allowed_skew

        # Time that is too far in the future for us to allow
        future = now + allowed_skew

        # the stamp is not too far in the future and is not too far in
        # the past
        return past <= stamp <= future


def mkNonce(when=None):
    """Generate a nonce with the current timestamp

    @param when: Unix timestamp representing the issue time of the
        nonce. Defaults to the current time.
    @type when: int

    @returntype: str
    @returns: A string that should be usable as a one-way nonce
    """
    salt = ''.join(_random.choice(NONCE_CHARS) for _ in range(6))
    if when is None:
        t = time.gmtime()
    else:
        t = time.gmtime(when)

    time_str = time.strftime(time_fmt, t)
    return time_str + salt


class NonceTracker(object):
    """Records consumed response nonces in a store.

    @ivar store: The L{OpenIDStore<openid_rp.store.interface.OpenIDStore>}
        that keeps the nonces. Its C{useNonce} is the atomic test and
        set operation.
    @ivar window: The replay window, in seconds.
    @ivar clock: Callable returning the current Unix time.
    """

    def __init__(self, store, window=SKEW, clock=time.time):
        self.store = store
        self.window = window
        self.clock = clock

    def checkAndRecord(self, nonce, server_url):
        """Record a nonce for a provider unless it was seen before.

        Nonces older than the window are evicted from the store as a
        side effect.

        @param nonce: The C{openid.response_nonce} value
        @type nonce: str

        @param server_url: The provider endpoint that issued the nonce
        @type server_url: str

        @return: C{True} if the nonce is fresh and is now recorded,
            C{False} if it was already recorded for this provider.
        @rtype: bool

        @raises InvalidNonce: If the nonce has no valid timestamp or
            is outside of the replay window.
        """
        try:
            timestamp, salt = split(nonce)
        except ValueError:
            raise InvalidNonce('Nonce has no valid timestamp')

        now = int(self.clock())
        if not (now - self.window <= timestamp <= now + self.window):
            raise InvalidNonce('Nonce timestamp is outside of the replay window')

        evicted = self.store.cleanupNonces(now - self.window)
        if evicted:
            _LOGGER.debug('Evicted %d expired nonces', evicted)

        if self.store.useNonce(server_url, timestamp, salt):
            return True

        _LOGGER.warning('Nonce already used for %s', server_url)
        return False
