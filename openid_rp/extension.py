"""Base class of the OpenID extensions."""
from openid_rp.message import OPENID2_NS, Message

__all__ = ['Extension']


class Extension(object):
    """An interface for OpenID extensions.

    @ivar ns_uri: The namespace to which to add the arguments for this
        extension
    @ivar ns_alias: The preferred alias of the namespace
    """
    ns_uri = None
    ns_alias = None

    def getExtensionArgs(self):
        """Get the string arguments that should be added to an OpenID
        message for this extension.

        @returns: A dictionary of completely non-namespaced arguments
            to be added. For example, if the extension's alias is
            'ax', and this method returns {'mode': 'fetch_request'}, the
            final message will contain {'openid.ax.mode': 'fetch_request'}
        """
        raise NotImplementedError

    def toMessage(self, message=None):
        """Add the arguments from this extension to the provided
        message, or create a new OpenID 2 message containing only those
        arguments.

        @returns: The message with the extension arguments added
        @raises KeyError: if the preferred alias is taken by another
            namespace in the message
        """
        if message is None:
            message = Message(OPENID2_NS)

        implicit = message.isOpenID1()

        try:
            message.namespaces.addAlias(self.ns_uri, self.ns_alias, implicit=implicit)
        except KeyError:
            if message.namespaces.getAlias(self.ns_uri) != self.ns_alias:
                raise

        message.updateArgs(self.ns_uri, self.getExtensionArgs())
        return message
