"""
This package is an implementation of the relying party (consumer) side
of the OpenID 2.0 authentication protocol.  For information on
authenticating users against an OpenID provider, see the
C{L{openid_rp.consumer.consumer}} module.
"""

__version__ = '1.0.0'

__all__ = [
    'association',
    'consumer',
    'dh',
    'extensions',
    'fetchers',
    'message',
    'oidutil',
    'signature',
    'store',
    'trustroot',
]
