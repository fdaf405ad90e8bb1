"""
This package is an implementation of an OpenID 1.x/2.0 relying party
(consumer) in Python.  For information on performing a login with it,
see the C{L{openid_rp.consumer.consumer}} module, or the
C{L{openid_rp.provider}} module for the profile-oriented wrapper.
"""

__version__ = '1.0.0'

version_info = tuple(int(part) for part in __version__.split('.'))
