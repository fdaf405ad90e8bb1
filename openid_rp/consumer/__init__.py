"""
This package contains the portions of openid_rp that are used by the
relying party: discovery, associations and the verification of the
provider's responses.

@sort: consumer, discover, associate
"""

__all__ = ['consumer', 'discover', 'associate']
