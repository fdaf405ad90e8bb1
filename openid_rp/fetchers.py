"""HTTP access for discovery and direct requests to providers.

Everything goes through the default fetcher, which tests and
applications may replace with L{setDefaultFetcher}.
"""
import logging
import sys

import requests
from requests.structures import CaseInsensitiveDict

import openid_rp

__all__ = ['fetch', 'getDefaultFetcher', 'setDefaultFetcher', 'HTTPResponse',
           'HTTPFetcher', 'RequestsFetcher', 'HTTPFetchingError']

_LOGGER = logging.getLogger(__name__)

USER_AGENT = "python-openid-rp/%s (%s)" % (openid_rp.__version__, sys.platform)

# Bodies are cut at this size, documents of providers are small.
MAX_RESPONSE_KB = 1024

_default_fetcher = None


def fetch(url, body=None, headers=None):
    """Fetch with the default fetcher, a POST when there is a body.

    @rtype: L{HTTPResponse}
    @raises HTTPFetchingError: if the request fails, unless the default
        fetcher was set up not to wrap errors
    """
    return getDefaultFetcher().fetch(url, body, headers)


def getDefaultFetcher():
    """The default fetcher, a wrapped L{RequestsFetcher} unless one was set.

    @rtype: HTTPFetcher
    """
    if _default_fetcher is None:
        setDefaultFetcher(RequestsFetcher())
    return _default_fetcher


def setDefaultFetcher(fetcher, wrap_exceptions=True):
    """Replace the default fetcher.

    @param fetcher: the new fetcher, C{None} to go back to the built-in one
    @type fetcher: HTTPFetcher

    @param wrap_exceptions: whether errors of the fetcher reach callers as
        L{HTTPFetchingError}
    @type wrap_exceptions: bool
    """
    global _default_fetcher
    if fetcher is not None and wrap_exceptions:
        fetcher = ExceptionWrappingFetcher(fetcher)
    _default_fetcher = fetcher


class HTTPResponse(object):
    """Result of a fetch.

    @ivar final_url: URL of the response, after redirects were followed
    @ivar status: HTTP status code
    @ivar headers: response headers, looked up case-insensitively
    @ivar body: response body, cut at L{MAX_RESPONSE_KB}
    @type body: bytes
    """

    def __init__(self, final_url=None, status=None, headers=None, body=None):
        self.final_url = final_url
        self.status = status
        self.headers = CaseInsensitiveDict(headers or {})
        self.body = body

    def __repr__(self):
        return '<%s status %s for %s>' % (self.__class__.__name__, self.status, self.final_url)


class HTTPFetcher(object):
    """Interface of fetchers."""

    def fetch(self, url, body=None, headers=None):
        """Make a GET request, or a POST of the body if there is one.

        Redirects are followed.  Error statuses are responses like any
        other, only failures to get a response raise.

        @type body: Union[str, bytes]
        @type headers: Dict[str, str]
        @rtype: L{HTTPResponse}
        """
        raise NotImplementedError


class HTTPFetchingError(Exception):
    """A fetch failed.

    @ivar why: the error of the underlying fetcher, if any
    """

    def __init__(self, why=None):
        Exception.__init__(self, why)
        self.why = why


class ExceptionWrappingFetcher(HTTPFetcher):
    """Turns every error of another fetcher into L{HTTPFetchingError}."""

    def __init__(self, fetcher):
        self.fetcher = fetcher

    def fetch(self, *args, **kwargs):
        try:
            return self.fetcher.fetch(*args, **kwargs)
        except HTTPFetchingError:
            raise
        except Exception as error:
            raise HTTPFetchingError(why=error) from error


class RequestsFetcher(HTTPFetcher):
    """Fetcher on top of a C{requests} session.

    @cvar timeout: seconds to wait for the server
    """
    timeout = 20

    def __init__(self, session=None):
        if session is None:
            session = requests.Session()
        self.session = session

    def fetch(self, url, body=None, headers=None):
        """@raises ValueError: for URLs other than HTTP and HTTPS ones
        @raises requests.RequestException: if no response is received
        """
        if not url.startswith(('http://', 'https://')):
            raise ValueError('Bad URL scheme: %r' % (url,))

        method = 'POST' if body else 'GET'
        headers = dict(headers or {})
        headers.setdefault('User-Agent', '%s requests/%s' % (USER_AGENT, requests.__version__))
        if isinstance(body, str):
            body = body.encode('utf-8')
            headers.setdefault('Content-Type', 'application/x-www-form-urlencoded')

        _LOGGER.debug('%s %s', method, url)
        limit = MAX_RESPONSE_KB * 1024
        with self.session.request(method, url, data=body or None, headers=headers, timeout=self.timeout,
                                  stream=True) as response:
            content = b''
            for chunk in response.iter_content(8192):
                content += chunk
                if len(content) >= limit:
                    break
        return HTTPResponse(response.url, response.status_code, response.headers, content[:limit])
