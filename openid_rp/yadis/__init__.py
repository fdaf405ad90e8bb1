"""Yadis service discovery: XRDS documents, XRI identifiers and the
Yadis protocol for locating them."""
