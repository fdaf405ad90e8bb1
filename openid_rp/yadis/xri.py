"""XRI identifiers: recognizing them, and the forms resolution and
canonical ID checks use.

@see: XRI Syntax v2.0 at the
      U{OASIS XRI Technical Committee<http://www.oasis-open.org/committees/tc_home.php?wg_abbrev=xri>}
"""
import re
from urllib.parse import quote

from openid_rp.urinorm import GEN_DELIMS, PERCENT_ENCODING_CHARACTER, SUB_DELIMS

XRI_SCHEME = 'xri://'

# Global context symbols and the start of a cross-reference.
XRI_AUTHORITIES = '!=@+$('

_XREF_RE = re.compile(r'\(.*?\)')

# Delimiters that would end the segment of a cross-reference.
_XREF_ESCAPES = {'/': '%2F', '?': '%3F', '#': '%23'}


def identifierScheme(identifier):
    """@returns: C{"XRI"} or C{"URI"}"""
    if identifier.startswith(XRI_SCHEME) or (identifier and identifier[0] in XRI_AUTHORITIES):
        return 'XRI'
    return 'URI'


def XRI(xri):
    """The XRI with its scheme, the form XRIs are compared in.

    @type xri: str
    @rtype: str
    """
    if xri.startswith(XRI_SCHEME):
        return xri
    return XRI_SCHEME + xri


def escapeForIRI(xri):
    """Escape percent signs, and the delimiters inside cross-references."""
    def escapeXref(match):
        return ''.join(_XREF_ESCAPES.get(char, char) for char in match.group())

    return _XREF_RE.sub(escapeXref, xri.replace('%', '%25'))


def toIRINormal(xri):
    return escapeForIRI(XRI(xri))


def iriToURI(iri):
    """Percent-encode what an IRI has beyond ASCII, see RFC 3987, section 3.1.

    @type iri: str
    @rtype: str
    """
    return quote(iri, safe=GEN_DELIMS + SUB_DELIMS + PERCENT_ENCODING_CHARACTER)


def toURINormal(xri):
    """The XRI in the form a proxy resolver is queried with."""
    return iriToURI(toIRINormal(xri))


def providerIsAuthoritative(providerID, canonicalID):
    """Is the provider the immediate parent authority of the canonical ID?

    @rtype: bool
    """
    return canonicalID.rsplit('!', 1)[0] == providerID


def rootAuthority(xri):
    """The root authority of an XRI, C{xri://@} for C{@example}.

    @type xri: str
    @rtype: str
    """
    authority = xri[len(XRI_SCHEME):] if xri.startswith(XRI_SCHEME) else xri
    authority = authority.split('/', 1)[0]
    if authority[0] == '(':
        # Cross-references do not nest, the first close-paren ends it.
        root = authority[:authority.index(')') + 1]
    elif authority[0] in XRI_AUTHORITIES:
        root = authority[0]
    else:
        # IRI authority, up to its first subsegment.
        root = re.split(r'[!*]', authority, maxsplit=1)[0]
    return XRI(root)
