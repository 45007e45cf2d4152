"""Base class for OpenID extension messages."""

__all__ = ['Extension']


class Extension(object):
    """An interface for OpenID extensions.

    @ivar ns_uri: The namespace to which to add the arguments for this
        extension
    @ivar ns_alias: The preferred alias for the namespace, or C{None}
        to let the message pick one.
    """
    ns_uri = None
    ns_alias = None

    def getExtensionArgs(self):
        """Get the string arguments that should be added to an OpenID
        message for this extension.

        @rtype: Dict[str, str]
        """
        raise NotImplementedError

    def toMessage(self, message):
        """Add the arguments from this extension to the provided
        message.

        @type message: L{Message}
        @returns: The message with the extension arguments added
        """
        if self.ns_alias is not None and not message.namespaces.isDefined(self.ns_uri):
            message.namespaces.addAlias(self.ns_uri, self.ns_alias)

        message.updateArgs(self.ns_uri, self.getExtensionArgs())
        return message
