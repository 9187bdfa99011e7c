"""
Exceptions for the archive_proxy library. Backend-native errors (Globus,
boto) never cross the proxy boundary; they are wrapped in one of these.
"""


class ArchiveProxyError(Exception):
    def __init__(self, message):
        super(ArchiveProxyError, self).__init__(message)


class AuthenticationError(ArchiveProxyError):
    """
    Bad or missing credentials, or a session that was not issued by the
    proxy it is being used with.
    """


class ConfigurationError(ArchiveProxyError):
    """
    The proxy was configured incorrectly. Raised at construction time.
    """


class InvalidLocationError(ArchiveProxyError):
    """
    A FileLocation (or a logical path used to build one) is malformed.
    """


class TransferError(ArchiveProxyError):
    def __init__(self, message, source=None, destination=None):
        if source is not None or destination is not None:
            message = f"{message} (source: {source}, destination: {destination})"

        super(TransferError, self).__init__(message)
        self.source = source
        self.destination = destination


class EndpointActivationError(TransferError):
    """
    A Globus endpoint could not be auto-activated before a transfer.
    """
