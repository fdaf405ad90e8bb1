# -*- test-case-name: openid_rp.test.test_provider -*-
"""The profile of a user who logged in with OpenID."""
from openid_rp.extensions import ax

__all__ = ['Profile', 'PROFILE_ATTRIBUTES', 'profileFromAX']

# Attribute exchange type URIs of each profile field, in order of
# preference.  Providers answer in one schema or the other.
PROFILE_ATTRIBUTES = [
    ('email', [
        ('email', 'http://schema.openid.net/contact/email'),
        ('emailax', 'http://axschema.org/contact/email'),
    ]),
    ('first_name', [
        ('firstname', 'http://schema.openid.net/namePerson/first'),
        ('firstnameax', 'http://axschema.org/namePerson/first'),
    ]),
    ('last_name', [
        ('lastname', 'http://schema.openid.net/namePerson/last'),
        ('lastnameax', 'http://axschema.org/namePerson/last'),
    ]),
    ('full_name', [
        ('fullname', 'http://schema.openid.net/namePerson'),
        ('fullnameax', 'http://axschema.org/namePerson'),
    ]),
]


class Profile(object):
    """Profile information of an authenticated user.

    @ivar validated_id: the verified claimed identifier
    @ivar provider_id: the name of the provider that authenticated the user
    """

    def __init__(self, validated_id, provider_id='openid', email=None, first_name=None, last_name=None,
                 full_name=None):
        self.validated_id = validated_id
        self.provider_id = provider_id
        self.email = email
        self.first_name = first_name
        self.last_name = last_name
        self.full_name = full_name

    def __eq__(self, other):
        return isinstance(other, Profile) and self.__dict__ == other.__dict__

    def __ne__(self, other):
        return not (self == other)

    def __repr__(self):
        return "<%s.%s %r email=%r>" % (self.__class__.__module__, self.__class__.__name__,
                                        self.validated_id, self.email)


def profileFetchRequest():
    """Create the attribute exchange request asking for every profile
    field in both schemas.

    @rtype: L{ax.FetchRequest}
    """
    request = ax.FetchRequest()
    for _, candidates in PROFILE_ATTRIBUTES:
        for alias, type_uri in reversed(candidates):
            request.add(ax.AttrInfo(type_uri, required=True, alias=alias))
    return request


def profileFromAX(fetch_response, validated_id=None, provider_id='openid'):
    """Fill a profile from an attribute exchange fetch response.

    Each field takes the first value of the first candidate attribute
    that has one.

    @param fetch_response: the response, may be C{None}
    @type fetch_response: L{ax.FetchResponse} or NoneType

    @rtype: L{Profile}
    """
    profile = Profile(validated_id, provider_id)
    if fetch_response is None:
        return profile

    for field, candidates in PROFILE_ATTRIBUTES:
        for _, type_uri in candidates:
            values = fetch_response.data.get(type_uri)
            if values:
                setattr(profile, field, values[0])
                break

    return profile
