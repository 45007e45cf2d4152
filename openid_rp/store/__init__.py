"""
This package contains the modules related to this library's use of
persistent storage.

@sort: interface, sqlstore, memstore, nonce
"""

__all__ = ['interface', 'sqlstore', 'memstore', 'nonce']
