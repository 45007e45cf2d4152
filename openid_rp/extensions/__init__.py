"""OpenID extension modules."""

__all__ = ['ax']
