"""Utilities to parse YADIS header from HTML."""
from io import BytesIO

from lxml import etree

from openid_rp.yadis.constants import YADIS_HEADER_NAME

__all__ = ['findHTMLMeta', 'MetaNotFound']


class MetaNotFound(Exception):
    """Yadis meta tag not found in the HTML page."""


def xpath_lower_case(context, values):
    """Return lower cased values in XPath."""
    return [v.lower() for v in values]


def parseHTML(body):
    """Parse an HTML document.

    @param body: the page, as fetched
    @type body: bytes or str
    @return: the parsed tree, or C{None} if the page has no content
    """
    if isinstance(body, str):
        body = body.encode('utf-8')
        parser = etree.HTMLParser(encoding='utf-8')
    else:
        parser = etree.HTMLParser()
    try:
        html = etree.parse(BytesIO(body), parser)
    except (ValueError, etree.XMLSyntaxError):
        return None
    # Invalid input may return element with no content
    if html.getroot() is None:
        return None
    return html


def findHTMLMeta(body):
    """Look for a meta http-equiv tag with the YADIS header name.

    @param body: Source of the html text
    @type body: bytes or str

    @return: The URI from which to fetch the XRDS document
    @rtype: str

    @raises MetaNotFound: raised with the content that was
        searched as the first parameter.
    """
    html = parseHTML(body)
    if html is None:
        raise MetaNotFound("Couldn't parse HTML page.")

    # Create a XPath evaluator with a local function to lowercase values.
    xpath_evaluator = etree.XPathEvaluator(html, extensions={(None, 'lower-case'): xpath_lower_case})
    # Find YADIS meta tag, case insensitive to the header name.
    yadis_headers = xpath_evaluator('/html/head/meta[lower-case(@http-equiv)="{}"]'.format(YADIS_HEADER_NAME.lower()))
    if not yadis_headers:
        raise MetaNotFound('Yadis meta tag not found.')

    yadis_header = yadis_headers[0]
    yadis_url = yadis_header.get('content')
    if yadis_url is None:
        raise MetaNotFound('Attribute "content" missing in yadis meta tag.')
    return yadis_url
