"""OpenID Extension modules."""

__all__ = ['ax']
